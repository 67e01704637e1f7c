"""
Logging for BaseChat.

Two sinks, shared by the window process and the inference worker:
- logs/debug_flow.txt: every debug_log() line, always, tagged with the pid
  of the process that wrote it (the worker and the window interleave)
- logs/basechat.log: info/warning/error through the standard logging module

In DEBUG_MODE both are echoed to the console.

Usage:
    from basechat.logging_config import debug_log, info, warning, error, Timer

    debug_log("[MODEL CACHE] Disposing HuggingFaceTB/SmolLM2-360M")
"""

import logging
import os
import sys
import time
from datetime import datetime

from basechat.config import DEBUG_LOG_FILE, DEBUG_MODE, LOG_DATE_FORMAT, LOG_FILE, LOG_FORMAT


def _timestamp() -> str:
    return datetime.now().strftime("%H:%M:%S.%f")[:-3]


class _DebugFileLogger:
    """Append-only flow log. Opening failures disable it instead of crashing the app."""

    def __init__(self, path):
        self.pid = os.getpid()
        try:
            self._log_file = open(path, 'a', encoding='utf-8')
        except OSError:
            self._log_file = None
            return
        self._log_file.write(f"\n=== BaseChat session {datetime.now().isoformat()} "
                             f"(pid {self.pid}, DEBUG_MODE={DEBUG_MODE}) ===\n")
        self._log_file.flush()

    def write(self, message: str):
        if self._log_file is None:
            return
        self._log_file.write(f"[{_timestamp()}] [{self.pid}] {message}\n")
        self._log_file.flush()

    def close(self):
        if self._log_file is None:
            return
        self._log_file.write(f"=== pid {self.pid} ended {datetime.now().isoformat()} ===\n")
        self._log_file.close()
        self._log_file = None


_debug_file_logger = _DebugFileLogger(DEBUG_LOG_FILE)


def _setup_standard_logging() -> logging.Logger:
    logger = logging.getLogger('BaseChat')
    logger.setLevel(logging.DEBUG if DEBUG_MODE else logging.INFO)
    if logger.handlers:
        return logger

    handlers = []
    try:
        handlers.append(logging.FileHandler(LOG_FILE, encoding='utf-8'))
    except OSError:
        pass  # logs directory not writable; the flow log still works
    if DEBUG_MODE:
        handlers.append(logging.StreamHandler(sys.stdout))

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    return logger


_logger = _setup_standard_logging()


class Timer:
    """
    Context manager that logs how long a block took.

    Usage:
        with Timer("[MODEL CACHE] Load of HuggingFaceTB/SmolLM2-360M"):
            engine = provider.load(...)

    Writes "Starting ..." on entry and "... took 8.31s" on exit, with
    " (failed)" appended when the block raised. Exceptions are not suppressed.
    """

    def __init__(self, operation_name: str):
        self.operation_name = operation_name
        self.start_time: float | None = None
        self.elapsed_seconds: float | None = None

    def __enter__(self):
        debug_log(f"Starting {self.operation_name}...")
        self.start_time = time.time()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.elapsed_seconds = time.time() - self.start_time
        outcome = " (failed)" if exc_type is not None else ""
        debug_log(f"{self.operation_name} took {_format_elapsed(self.elapsed_seconds)}{outcome}")
        return False


def debug_log(message: str):
    """
    Write to the flow log, and to the console in DEBUG_MODE.

    Prefix messages with the component, e.g. "[SESSION] ...".
    """
    _debug_file_logger.write(message)
    if DEBUG_MODE:
        line = f"[{_timestamp()}] {message}"
        try:
            print(line, flush=True)
        except UnicodeEncodeError:
            # Windows consoles choke on characters outside their code page
            print(line.encode("ascii", errors="replace").decode("ascii"), flush=True)


def info(message: str):
    """Log to the debug file and the standard logger at INFO."""
    _debug_file_logger.write(f"[INFO] {message}")
    _logger.info(message)


def warning(message: str):
    """Log a warning. Warnings reach basechat.log even outside DEBUG_MODE."""
    _debug_file_logger.write(f"[WARNING] {message}")
    _logger.warning(message)


def error(message: str, exc_info: bool = False):
    """
    Log an error message with optional exception traceback.

    Args:
        message: The error message to log
        exc_info: If True, include exception traceback (only in DEBUG_MODE)
    """
    _debug_file_logger.write(f"[ERROR] {message}")
    _logger.error(message, exc_info=exc_info and DEBUG_MODE)


def debug_timing(operation: str, elapsed_seconds: float):
    """
    Log operation timing in human-readable form.

    For automatic start/end logging use the Timer context manager instead.

    Example:
        start = time.time()
        ...
        debug_timing("Chat generation", time.time() - start)
    """
    debug_log(f"{operation} took {_format_elapsed(elapsed_seconds)}")


def _format_elapsed(elapsed_seconds: float) -> str:
    if elapsed_seconds < 1:
        return f"{elapsed_seconds * 1000:.0f} ms"
    if elapsed_seconds < 60:
        return f"{elapsed_seconds:.2f}s"
    return f"{elapsed_seconds / 60:.1f}m"


def close_debug_log():
    """
    Close the debug log file gracefully.

    Call at application or worker shutdown so all lines are flushed.
    """
    _debug_file_logger.close()


__all__ = [
    'debug_log',
    'debug_timing',
    'info',
    'warning',
    'error',
    'close_debug_log',
    'Timer',
    'DEBUG_MODE',
]
