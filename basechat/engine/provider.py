"""
Model provider and generation engine interfaces.

The core never talks to an inference library directly. A ModelProvider turns a
ModelConfig into a GenerationEngine; the engine exposes one blocking
generation call, a tokenizer, and dispose(). The production implementation
lives in transformers_provider.py; tests substitute fakes.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from functools import lru_cache
from typing import Any, Protocol

from basechat.engine.types import Device, ModelConfig
from basechat.logging_config import debug_log

# Receives the token ids generated so far, once per decoding step
StepCallback = Callable[[Sequence[int]], None]

# Receives provider progress records: {'status': 'initiate'|'progress'|'done', 'file': str, 'progress': float}
ProgressCallback = Callable[[dict], None]


class Tokenizer(Protocol):
    """The tokenizer capabilities the coordinator relies on."""

    def encode(self, text: str, **kwargs) -> list[int]: ...

    def decode(self, token_ids: Sequence[int], skip_special_tokens: bool = False, **kwargs) -> str: ...

    def apply_chat_template(self, conversation: list[dict], tokenize: bool = True,
                            add_generation_prompt: bool = False, **kwargs) -> Any: ...


class GenerationEngine(ABC):
    """A loaded model, owned by the model cache."""

    @property
    @abstractmethod
    def tokenizer(self) -> Tokenizer:
        """Tokenizer matching the loaded model."""
        ...

    @abstractmethod
    def generate(
        self,
        prompt: str,
        *,
        max_new_tokens: int,
        temperature: float,
        do_sample: bool = True,
        repetition_penalty: float | None = None,
        return_full_text: bool = False,
        step_callback: StepCallback | None = None,
    ) -> str:
        """
        Run one generation to completion.

        Args:
            prompt: Fully formatted prompt text.
            max_new_tokens: Token budget for the continuation.
            temperature: Sampling temperature (<= 0 means greedy decoding).
            do_sample: Whether to sample at all.
            repetition_penalty: Optional penalty for repeated tokens.
            return_full_text: If False, only the continuation is returned.
            step_callback: Called after every decoding step with the tokens
                generated so far.

        Returns:
            str: The generated text.

        Raises:
            GenerationFailure: If inference fails.
        """
        ...

    @abstractmethod
    def dispose(self) -> None:
        """Release the engine's compute resources."""
        ...


class ModelProvider(ABC):
    """Produces engines. May download assets and report progress while doing so."""

    @abstractmethod
    def load(
        self,
        config: ModelConfig,
        device: Device,
        progress_callback: ProgressCallback | None = None,
    ) -> GenerationEngine:
        """
        Load the model described by config on the given device.

        Raises:
            LoadFailure: If the engine cannot be produced.
        """
        ...


@lru_cache(maxsize=1)
def detect_device() -> Device:
    """
    Decide once per process whether an accelerator is available.

    Returns:
        Device.ACCELERATED when torch sees CUDA or Apple MPS, else Device.FALLBACK.
    """
    import torch

    mps = getattr(torch.backends, "mps", None)
    if torch.cuda.is_available() or (mps is not None and mps.is_available()):
        device = Device.ACCELERATED
    else:
        device = Device.FALLBACK
    debug_log(f"[DEVICE] Compute backend: {device.value}")
    return device
