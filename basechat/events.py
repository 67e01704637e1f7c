"""
Status events sent from the inference worker to the window.

Each event is a small frozen dataclass. to_message() turns it into the plain
dict that crosses the process boundary, e.g.

    {'status': 'update', 'chunk': ' world'}
    {'status': 'complete', 'assistantReply': 'Hello!'}
"""

from dataclasses import dataclass
from typing import ClassVar


@dataclass(frozen=True)
class StatusEvent:
    status: ClassVar[str] = ""

    def to_message(self) -> dict:
        return {'status': self.status}


@dataclass(frozen=True)
class DeviceStatus(StatusEvent):
    """Compute backend chosen for this process; sent on every load."""
    status: ClassVar[str] = "device"
    device: str = ""

    def to_message(self) -> dict:
        return {'status': self.status, 'device': self.device}


@dataclass(frozen=True)
class ProgressStatus(StatusEvent):
    """Model asset download progress (0-100)."""
    status: ClassVar[str] = "progress"
    progress: float = 0.0
    file: str | None = None

    def to_message(self) -> dict:
        message = {'status': self.status, 'progress': self.progress}
        if self.file is not None:
            message['file'] = self.file
        return message


@dataclass(frozen=True)
class ReadyStatus(StatusEvent):
    """Engine resident and usable. cached=True means no load was needed."""
    status: ClassVar[str] = "ready"
    cached: bool = False

    def to_message(self) -> dict:
        return {'status': self.status, 'cached': self.cached}


@dataclass(frozen=True)
class StartStatus(StatusEvent):
    status: ClassVar[str] = "start"


@dataclass(frozen=True)
class UpdateStatus(StatusEvent):
    """Base-mode text appended since the previous update."""
    status: ClassVar[str] = "update"
    chunk: str = ""

    def to_message(self) -> dict:
        return {'status': self.status, 'chunk': self.chunk}


@dataclass(frozen=True)
class CompleteStatus(StatusEvent):
    """Final answer: full_text in base mode, assistant_reply in chat mode."""
    status: ClassVar[str] = "complete"
    full_text: str | None = None
    assistant_reply: str | None = None

    def to_message(self) -> dict:
        message = {'status': self.status}
        if self.full_text is not None:
            message['fullText'] = self.full_text
        if self.assistant_reply is not None:
            message['assistantReply'] = self.assistant_reply
        return message


@dataclass(frozen=True)
class ErrorStatus(StatusEvent):
    """Load or generation failed; the window must re-enable its controls."""
    status: ClassVar[str] = "error"
    message: str = ""

    def to_message(self) -> dict:
        return {'status': self.status, 'message': self.message}
