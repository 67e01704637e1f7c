"""
Exception taxonomy for model loading and generation.

LoadFailure and GenerationFailure reach the caller as an 'error' event.
DisposalFailure is recorded by the model cache and never raised out of it.
ValidationFailure means a request was refused before any work started.
"""


class EngineError(Exception):
    """Base class for model lifecycle and generation errors."""


class LoadFailure(EngineError):
    """The provider could not produce an engine (network, device, corrupt asset)."""

    def __init__(self, identifier: str, reason: str):
        self.identifier = identifier
        self.reason = reason
        super().__init__(f"Failed to load {identifier}: {reason}")


class DisposalFailure(EngineError):
    """Releasing an evicted engine failed. Logged, never fatal."""

    def __init__(self, identifier: str, reason: str):
        self.identifier = identifier
        self.reason = reason
        super().__init__(f"Failed to dispose {identifier}: {reason}")


class GenerationFailure(EngineError):
    """The underlying inference call rejected the request or threw."""


class ValidationFailure(EngineError):
    """The request is empty or malformed; generation is refused."""
