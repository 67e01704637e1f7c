"""
Session Controller

Maps the two inbound commands onto the model cache and the generation
coordinator, and reports everything through the fixed status vocabulary:

    {'action': 'load', 'modelType': 'base'|'chat'}
        -> device, [progress..., ] ready | error
    {'action': 'generate', 'modelType': 'base', 'text': str, 'temperature': float}
    {'action': 'generate', 'modelType': 'chat', 'messages': [...], 'temperature': float}
        -> start, update*, complete | error

One command is handled at a time. The controller is IDLE or BUSY; a command
that arrives while BUSY is rejected (logged, no events). Commands delivered by
the worker loop are queued instead, because the loop is sequential.
"""

import threading
import traceback
from collections.abc import Callable
from enum import Enum

from basechat.config import get_model_config
from basechat.conversation import Message
from basechat.engine.coordinator import GenerationCoordinator
from basechat.engine.errors import ValidationFailure
from basechat.engine.model_cache import ModelCache
from basechat.engine.types import GenerationRequest, ModelConfig, ModelType
from basechat.events import DeviceStatus, ErrorStatus, ProgressStatus, ReadyStatus, StatusEvent
from basechat.logging_config import debug_log, error, info, warning


class SessionState(str, Enum):
    IDLE = "idle"
    BUSY = "busy"


def resolve_model_config(model_type: ModelType) -> ModelConfig:
    """Look up the configured model for a model type."""
    return ModelConfig.from_dict(get_model_config(model_type.value))


class SessionController:
    """
    Boundary-facing command handler for one inference session.

    Args:
        cache: Model cache owning the resident engine.
        emit: Receives every outbound event as a plain dict.
        coordinator: Generation coordinator (default instance if omitted).
        config_resolver: ModelType -> ModelConfig (defaults to config/models.yaml).

    Example:
        controller = SessionController(ModelCache(provider), emit=output_queue.put)
        controller.handle({'action': 'load', 'modelType': 'chat'})
    """

    def __init__(
        self,
        cache: ModelCache,
        emit: Callable[[dict], None],
        coordinator: GenerationCoordinator | None = None,
        config_resolver: Callable[[ModelType], ModelConfig] = resolve_model_config,
    ):
        self.cache = cache
        self.coordinator = coordinator or GenerationCoordinator()
        self.config_resolver = config_resolver
        self._emit = emit
        self._busy = threading.Lock()

    @property
    def state(self) -> SessionState:
        return SessionState.BUSY if self._busy.locked() else SessionState.IDLE

    def emit(self, event: StatusEvent) -> None:
        self._emit(event.to_message())

    def handle(self, command: dict) -> bool:
        """
        Dispatch one command.

        Returns:
            bool: True if the command ran to a successful terminal event.
        """
        action = command.get('action')
        if action not in ('load', 'generate'):
            error(f"[SESSION] Unknown action: {action!r}")
            self.emit(ErrorStatus(message=f"Unknown action: {action}"))
            return False

        try:
            model_type = ModelType(command.get('modelType'))
        except ValueError:
            error(f"[SESSION] Unknown model type: {command.get('modelType')!r}")
            self.emit(ErrorStatus(message=f"Unknown model type: {command.get('modelType')}"))
            return False

        if action == 'load':
            return self.load(model_type)
        payload = command.get('messages') if model_type is ModelType.CHAT else command.get('text')
        return self.generate(model_type, payload, command.get('temperature'))

    def load(self, model_type: ModelType) -> bool:
        """Make the model for model_type resident, reporting progress."""
        if not self._busy.acquire(blocking=False):
            warning(f"[SESSION] Busy; rejected load of {model_type.value} model")
            return False
        try:
            config = self.config_resolver(model_type)
            self.emit(DeviceStatus(device=self.cache.device.value))

            if self.cache.is_resident(config):
                debug_log(f"[SESSION] {config.identifier} already resident")
                self.emit(ReadyStatus(cached=True))
                return True

            self.emit(ProgressStatus(progress=0))
            try:
                self.cache.ensure(config, progress_callback=self._relay_progress)
            except Exception as e:
                self.emit(ErrorStatus(message=str(e)))
                return False

            info(f"[SESSION] {config.identifier} ready")
            self.emit(ReadyStatus(cached=False))
            return True
        finally:
            self._busy.release()

    def generate(self, model_type: ModelType, payload, temperature: float | None) -> bool:
        """
        Run one generation, forwarding every coordinator event.

        Blank prompts are refused: nothing is emitted and False is returned.
        """
        if not self._busy.acquire(blocking=False):
            warning(f"[SESSION] Busy; rejected {model_type.value} generation")
            return False
        try:
            try:
                request = self._build_request(model_type, payload, temperature)
                self.coordinator.validate(request)
            except ValidationFailure as e:
                warning(f"[SESSION] Generation refused: {e}")
                return False

            config = self.config_resolver(model_type)
            try:
                engine = self.cache.ensure(config)
            except Exception as e:
                self.emit(ErrorStatus(message=str(e)))
                return False

            terminal = None
            for event in self.coordinator.generate(engine, request):
                terminal = event
                self.emit(event)
            return not isinstance(terminal, ErrorStatus)
        finally:
            self._busy.release()

    def shutdown(self) -> None:
        """Release the resident engine."""
        debug_log("[SESSION] Shutting down, evicting resident engine")
        self.cache.evict_all()

    @staticmethod
    def _build_request(model_type: ModelType, payload, temperature) -> GenerationRequest:
        if model_type is ModelType.CHAT:
            try:
                messages = tuple(Message.from_dict(m) for m in (payload or []))
            except (KeyError, ValueError, TypeError) as e:
                raise ValidationFailure(f"Malformed conversation: {e}") from e
            return GenerationRequest(ModelType.CHAT, messages, temperature)
        return GenerationRequest(ModelType.BASE, payload or "", temperature)

    def _relay_progress(self, record: dict) -> None:
        # Only byte-progress records with a non-zero value reach the window
        if record.get('status') == 'progress' and record.get('progress'):
            self.emit(ProgressStatus(progress=record['progress'], file=record.get('file')))


def handle_safely(controller: SessionController, command: dict) -> None:
    """Run a command, turning unexpected exceptions into an error event."""
    try:
        controller.handle(command)
    except Exception as e:
        debug_log(f"[SESSION] Unhandled error for {command.get('action')!r}:\n{traceback.format_exc()}")
        controller.emit(ErrorStatus(message=f"Unexpected error: {e}"))
