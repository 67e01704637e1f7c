"""
Inference Worker

All model loading and generation runs in a separate process so the window
never blocks. The process owns the model cache; the window talks to it only
through two multiprocessing queues:

    input_queue:  command dicts ({'action': ...}) or the TERMINATE sentinel
    output_queue: status event dicts ({'status': ...})

Commands are processed one at a time in arrival order.
"""

import gc
import multiprocessing
import time
import traceback
from queue import Empty

from basechat.config import QUEUE_TIMEOUT_SECONDS, WORKER_STOP_GRACE_SECONDS, WORKER_TERMINATE_SIGNAL
from basechat.engine.model_cache import ModelCache
from basechat.engine.transformers_provider import TransformersModelProvider
from basechat.events import ErrorStatus
from basechat.logging_config import close_debug_log, debug_log, warning
from basechat.session.controller import SessionController, handle_safely


def run_session_loop(controller: SessionController, input_queue, timeout: float = QUEUE_TIMEOUT_SECONDS) -> None:
    """
    Feed commands from input_queue to the controller until TERMINATE arrives.

    Works with multiprocessing and queue.Queue alike.
    """
    while True:
        try:
            command = input_queue.get(timeout=timeout)
        except Empty:
            continue

        if command == WORKER_TERMINATE_SIGNAL:
            debug_log("[WORKER] Termination signal received. Exiting.")
            break

        debug_log(f"[WORKER] Received {command.get('action')!r} for {command.get('modelType')!r}")
        handle_safely(controller, command)


def inference_worker_process(input_queue: multiprocessing.Queue, output_queue: multiprocessing.Queue):
    """
    Target function for the inference worker process.
    """
    controller = None
    try:
        cache = ModelCache(TransformersModelProvider())
        controller = SessionController(cache, emit=output_queue.put)
        debug_log(f"[WORKER] Session ready (device: {cache.device.value})")
        run_session_loop(controller, input_queue)
    except Exception as e:
        error_msg = f"Critical error in inference worker setup: {e}"
        debug_log(f"[WORKER] {error_msg}\n{traceback.format_exc()}")
        output_queue.put(ErrorStatus(message=error_msg).to_message())
    finally:
        if controller is not None:
            controller.shutdown()
        debug_log("[WORKER] Worker process finished.")
        close_debug_log()


class InferenceWorkerManager:
    """
    Owns the inference worker and the two queues connecting it to the window.

    The worker is started by the first command. Each worker gets fresh
    queues, so nothing sent to or produced by a previous worker reaches the
    next one.

    Stopping is graceful first: TERMINATE is queued behind any pending
    commands, and the worker finishes them, evicts the resident model and
    exits. A worker still running after grace_seconds is terminated. Events
    produced before the worker exited are returned by stop_worker(), never
    discarded.

    Args:
        target: Worker entry point, called as target(input_queue, output_queue).
        queue_factory: Creates the queues (multiprocessing.Queue in the app).
        process_factory: Creates the worker (multiprocessing.Process in the app).
        grace_seconds: How long stop_worker() waits for a graceful exit.
    """

    def __init__(self, target=inference_worker_process, queue_factory=multiprocessing.Queue,
                 process_factory=multiprocessing.Process, grace_seconds: float = WORKER_STOP_GRACE_SECONDS):
        self.target = target
        self.queue_factory = queue_factory
        self.process_factory = process_factory
        self.grace_seconds = grace_seconds
        self.process = None
        self.input_queue = None
        self.output_queue = None

    def is_worker_alive(self) -> bool:
        return self.process is not None and self.process.is_alive()

    def start_worker(self):
        if self.is_worker_alive():
            return
        self.input_queue = self.queue_factory()
        self.output_queue = self.queue_factory()
        self.process = self.process_factory(
            target=self.target,
            args=(self.input_queue, self.output_queue),
            daemon=True,
        )
        self.process.start()
        debug_log(f"[WORKER MANAGER] Worker started (pid {getattr(self.process, 'pid', None)})")

    def send_command(self, command: dict):
        """Queue a command for the worker, starting it if needed."""
        if not self.is_worker_alive():
            self.start_worker()
        debug_log(f"[WORKER MANAGER] -> {command.get('action')!r} ({command.get('modelType')!r})")
        self.input_queue.put(command)

    def check_for_messages(self) -> list[dict]:
        """Return every event the worker has produced so far, without blocking."""
        messages = []
        if self.output_queue is None:
            return messages
        while True:
            try:
                messages.append(self.output_queue.get_nowait())
            except Empty:
                return messages

    def stop_worker(self, grace_seconds: float | None = None) -> list[dict]:
        """
        Stop the worker and release its model.

        Returns:
            list[dict]: Events the worker produced that were not collected yet,
                including those of commands it finished during the grace period.
        """
        if self.process is None:
            return []

        grace = self.grace_seconds if grace_seconds is None else grace_seconds
        leftover = []
        if self.process.is_alive():
            self.input_queue.put(WORKER_TERMINATE_SIGNAL)
            deadline = time.monotonic() + grace
            # Keep reading while waiting: a worker blocked on a full pipe never exits
            while self.process.is_alive() and time.monotonic() < deadline:
                leftover.extend(self.check_for_messages())
                self.process.join(timeout=0.05)

        if self.process.is_alive():
            warning(f"[WORKER MANAGER] Worker still busy after {grace:.1f}s; terminating it")
            self.process.terminate()
            self.process.join(timeout=1)

        leftover.extend(self.check_for_messages())
        debug_log(f"[WORKER MANAGER] Worker stopped ({len(leftover)} uncollected events)")
        self.process = None
        self.input_queue = None
        self.output_queue = None
        gc.collect()
        return leftover
