"""
Single-slot model cache.

Holds at most one resident GenerationEngine. Asking for a different model
disposes whatever is resident first, because the machine cannot hold two large
models at once. Disposal failures are logged and recorded, then ignored, so
cleanup problems never block the next load.
"""

import os
import threading

import psutil

from basechat.engine.errors import DisposalFailure, LoadFailure
from basechat.engine.provider import GenerationEngine, ModelProvider, ProgressCallback, detect_device
from basechat.engine.types import Device, ModelConfig
from basechat.logging_config import Timer, debug_log, error, warning


class ModelCache:
    """
    Owns the resident engine and never lets two models be resident at once.

    The container is a dict and eviction walks all of it, but every
    insert happens after all previous entries have been disposed and removed.
    ensure() holds a lock for the whole check/evict/load sequence: a second
    caller waits for the first load and then takes the fast path.

    Attributes:
        provider: Produces new engines.
        device: Compute backend used for every load.
        disposal_failures: Every DisposalFailure swallowed so far.

    Example:
        cache = ModelCache(TransformersModelProvider())
        engine = cache.ensure(ModelConfig("HuggingFaceTB/SmolLM2-360M"))
    """

    def __init__(self, provider: ModelProvider, device: Device | None = None):
        self.provider = provider
        self.device = device or detect_device()
        self.disposal_failures: list[DisposalFailure] = []
        self._engines: dict[str, GenerationEngine] = {}
        self._lock = threading.Lock()

    @property
    def resident_ids(self) -> list[str]:
        return list(self._engines)

    def is_resident(self, config: ModelConfig) -> bool:
        return config.identifier in self._engines

    def ensure(self, config: ModelConfig, progress_callback: ProgressCallback | None = None) -> GenerationEngine:
        """
        Return the engine for config, loading it if needed.

        Args:
            config: Model to make resident.
            progress_callback: Relayed unmodified to the provider.

        Returns:
            GenerationEngine: The resident engine for config.identifier.

        Raises:
            LoadFailure: If the provider fails. The cache is left empty.
        """
        with self._lock:
            engine = self._engines.get(config.identifier)
            if engine is not None:
                debug_log(f"[MODEL CACHE] {config.identifier} already resident")
                return engine

            self._evict_all_locked(reason=f"before loading {config.identifier}")

            debug_log(f"[MODEL CACHE] Loading {config.identifier} on device: "
                      f"{self.device.value}, precision: {config.precision.value}")
            try:
                with Timer(f"[MODEL CACHE] Load of {config.identifier}"):
                    engine = self.provider.load(config, self.device, progress_callback)
            except LoadFailure as e:
                error(f"[MODEL CACHE] {e}")
                raise
            except Exception as e:
                error(f"[MODEL CACHE] Failed to load {config.identifier}: {e}", exc_info=True)
                raise LoadFailure(config.identifier, str(e)) from e

            self._engines[config.identifier] = engine
            self._log_memory(f"after loading {config.identifier}")
            return engine

    def evict_all(self) -> None:
        """Dispose and remove every resident engine."""
        with self._lock:
            self._evict_all_locked(reason="eviction requested")

    def _evict_all_locked(self, reason: str) -> None:
        if not self._engines:
            return
        for identifier, engine in list(self._engines.items()):
            debug_log(f"[MODEL CACHE] Disposing {identifier} ({reason})")
            try:
                engine.dispose()
            except Exception as e:
                failure = DisposalFailure(identifier, str(e))
                self.disposal_failures.append(failure)
                warning(f"[MODEL CACHE] {failure}. Continuing.")
            del self._engines[identifier]
        self._log_memory("after eviction")

    @staticmethod
    def _log_memory(context: str) -> None:
        rss_mb = psutil.Process(os.getpid()).memory_info().rss / (1024 * 1024)
        debug_log(f"[MODEL CACHE] Process memory {context}: {rss_mb:.0f} MB")
