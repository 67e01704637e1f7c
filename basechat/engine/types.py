"""
Types shared by the model cache, the generation coordinator and the session.
"""

from dataclasses import dataclass
from enum import Enum

from basechat.conversation import Message


class ModelType(str, Enum):
    """The two model flavours the app switches between."""
    BASE = "base"
    CHAT = "chat"


class Precision(str, Enum):
    """Numeric precision hint passed to the model provider."""
    Q4 = "q4"
    FP16 = "fp16"
    FP32 = "fp32"


class Device(str, Enum):
    """Compute backend, chosen once per process."""
    ACCELERATED = "accelerated"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class ModelConfig:
    """
    Identifies one loadable model.

    Attributes:
        identifier: Hugging Face repo id, also the cache key.
        precision: Precision hint for the provider.
    """
    identifier: str
    precision: Precision = Precision.Q4

    @classmethod
    def from_dict(cls, data: dict) -> "ModelConfig":
        """Build from a config/models.yaml entry."""
        return cls(
            identifier=data['identifier'],
            precision=Precision(str(data.get('precision', Precision.Q4.value)).lower()),
        )


@dataclass(frozen=True)
class GenerationRequest:
    """
    One generation call.

    Attributes:
        mode: BASE (payload is the prompt text) or CHAT (payload is the messages).
        payload: Prompt string or sequence of Message.
        temperature: Sampling temperature.
    """
    mode: ModelType
    payload: str | tuple[Message, ...]
    temperature: float

    @property
    def text(self) -> str:
        return self.payload if isinstance(self.payload, str) else ""

    @property
    def messages(self) -> tuple[Message, ...]:
        return () if isinstance(self.payload, str) else tuple(self.payload)
