"""
BaseChat Engine Module
Model lifecycle and generation for the two SmolLM2 variants.

- ModelCache keeps exactly one model resident and evicts before loading.
- GenerationCoordinator turns one request into start/update/complete events.
- TransformersModelProvider is the production provider (transformers + torch,
  assets from the Hugging Face Hub). Tests substitute fake providers.
"""

from .coordinator import CompletionStream, GenerationCoordinator
from .errors import DisposalFailure, EngineError, GenerationFailure, LoadFailure, ValidationFailure
from .model_cache import ModelCache
from .provider import GenerationEngine, ModelProvider, detect_device
from .reply_post_processor import AssistantMarkerExtractor, PassthroughExtractor, strip_prompt_prefix
from .transformers_provider import TransformersModelProvider
from .types import Device, GenerationRequest, ModelConfig, ModelType, Precision

__all__ = [
    'AssistantMarkerExtractor',
    'CompletionStream',
    'Device',
    'DisposalFailure',
    'EngineError',
    'GenerationCoordinator',
    'GenerationEngine',
    'GenerationFailure',
    'GenerationRequest',
    'LoadFailure',
    'ModelCache',
    'ModelConfig',
    'ModelProvider',
    'ModelType',
    'PassthroughExtractor',
    'Precision',
    'TransformersModelProvider',
    'ValidationFailure',
    'detect_device',
    'strip_prompt_prefix',
]
