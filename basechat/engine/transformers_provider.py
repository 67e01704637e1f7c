"""
Hugging Face Transformers Model Provider for BaseChat

Downloads model assets with huggingface_hub (reporting byte progress per file) and
builds a transformers text-generation pipeline on the process-wide device.

torch and transformers are imported lazily so that importing basechat.engine
(for example in the window process) does not pay their startup cost.

Precision handling:
- q4: 4-bit bitsandbytes quantization on CUDA; on other backends the model
  is loaded in full precision and a warning is logged.
- fp16: half precision on an accelerator, full precision on CPU.
- fp32: full precision everywhere.
"""

import fnmatch
import gc
from collections.abc import Sequence
from pathlib import Path

from huggingface_hub import HfApi, hf_hub_download, snapshot_download
from huggingface_hub.utils import tqdm as hf_tqdm

from basechat.config import MODEL_ALLOW_PATTERNS, MODELS_DIR
from basechat.engine.errors import GenerationFailure, LoadFailure
from basechat.engine.provider import GenerationEngine, ModelProvider, ProgressCallback, StepCallback
from basechat.engine.types import Device, ModelConfig, Precision
from basechat.logging_config import debug_log, warning


class _StepStreamer:
    """
    Streamer handed to model.generate().

    generate() calls put() first with the prompt ids, then with each new token;
    end() once at the end. The prompt is skipped so the callback only ever sees
    generated tokens.
    """

    def __init__(self, step_callback: StepCallback):
        self.step_callback = step_callback
        self.token_ids: list[int] = []
        self._prompt_seen = False

    def put(self, value):
        if not self._prompt_seen:
            self._prompt_seen = True
            return
        if hasattr(value, "tolist"):
            value = value.tolist()
        # Batch of one: [[id]] or [id]
        while isinstance(value, list) and value and isinstance(value[0], list):
            value = value[0]
        self.token_ids.extend(value if isinstance(value, list) else [value])
        self.step_callback(list(self.token_ids))

    def end(self):
        pass


def _file_progress_class(filename: str, progress_callback: ProgressCallback):
    """
    Build a progress bar class for hf_hub_download that relays byte progress.

    huggingface_hub instantiates the class once per file with the expected
    size as total and calls update() with every chunk written. A record is
    sent whenever the whole percentage changes.
    """

    class _FileProgress(hf_tqdm):
        def __init__(self, *args, **kwargs):
            super().__init__(*args, **kwargs)
            self.expected_bytes = self.total
            self.received_bytes = self.n
            self.reported = -1

        def update(self, n=1):
            # tqdm skips its own bookkeeping when the bar is disabled
            self.received_bytes += n or 0
            if self.expected_bytes:
                progress = min(self.received_bytes / self.expected_bytes * 100, 100.0)
                if int(progress) != self.reported:
                    self.reported = int(progress)
                    progress_callback({'status': 'progress', 'file': filename, 'progress': progress})
            return super().update(n)

    return _FileProgress


class TransformersEngine(GenerationEngine):
    """Wraps a transformers text-generation pipeline."""

    def __init__(self, identifier: str, text_pipeline, torch_device: str):
        self.identifier = identifier
        self._pipeline = text_pipeline
        self._torch_device = torch_device

    @property
    def tokenizer(self):
        return self._pipeline.tokenizer

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
        if self._pipeline is None:
            raise GenerationFailure(f"{self.identifier} has been disposed")

        # transformers rejects a non-positive temperature when sampling
        sample = do_sample and temperature > 0
        kwargs = {
            'max_new_tokens': max_new_tokens,
            'do_sample': sample,
            'return_full_text': return_full_text,
        }
        if sample:
            kwargs['temperature'] = temperature
        if repetition_penalty is not None:
            kwargs['repetition_penalty'] = repetition_penalty
        if step_callback is not None:
            kwargs['streamer'] = _StepStreamer(step_callback)

        debug_log(f"[TRANSFORMERS] Generating (max_new_tokens={max_new_tokens}, sample={sample}, "
                  f"temp={temperature}, prompt={len(prompt)} chars)")
        try:
            result = self._pipeline(prompt, **kwargs)
        except Exception as e:
            raise GenerationFailure(f"Text generation failed: {e}") from e

        if not result:
            return ""
        return result[0].get('generated_text') or ""

    def dispose(self) -> None:
        if self._pipeline is None:
            return
        debug_log(f"[TRANSFORMERS] Releasing {self.identifier}")
        self._pipeline = None
        gc.collect()
        if self._torch_device.startswith("cuda"):
            import torch
            torch.cuda.empty_cache()


class TransformersModelProvider(ModelProvider):
    """
    Produces TransformersEngine instances.

    Args:
        cache_dir: Where huggingface_hub stores downloaded assets.
        allow_patterns: Glob patterns of repo files to download.
    """

    def __init__(self, cache_dir: Path = MODELS_DIR, allow_patterns: Sequence[str] = MODEL_ALLOW_PATTERNS):
        self.cache_dir = Path(cache_dir)
        self.allow_patterns = list(allow_patterns)
        self._api = HfApi()

    def load(self, config: ModelConfig, device: Device,
             progress_callback: ProgressCallback | None = None) -> GenerationEngine:
        try:
            local_dir = self._download(config.identifier, progress_callback)
        except Exception as e:
            raise LoadFailure(config.identifier, f"download failed: {e}") from e

        try:
            from transformers import pipeline

            torch_device = self._torch_device(device)
            pipeline_kwargs = self._precision_kwargs(config, device, torch_device)
            debug_log(f"[TRANSFORMERS] Building pipeline for {config.identifier} from {local_dir} "
                      f"({torch_device}, {config.precision.value})")
            text_pipeline = pipeline("text-generation", model=str(local_dir), **pipeline_kwargs)
        except Exception as e:
            raise LoadFailure(config.identifier, str(e)) from e

        return TransformersEngine(config.identifier, text_pipeline, torch_device)

    def _download(self, repo_id: str, progress_callback: ProgressCallback | None) -> Path:
        """
        Fetch the repo's pipeline files one by one, reporting byte progress per file.

        Without network access the repo cannot be listed; a snapshot already in
        cache_dir is then used as-is, with no progress records.
        """
        try:
            files = [
                name for name in self._api.list_repo_files(repo_id)
                if any(fnmatch.fnmatch(name, pattern) for pattern in self.allow_patterns)
            ]
        except Exception as e:
            warning(f"[TRANSFORMERS] Cannot list {repo_id} ({e}); using the local cache")
            return Path(snapshot_download(
                repo_id,
                allow_patterns=self.allow_patterns,
                cache_dir=str(self.cache_dir),
                local_files_only=True,
            ))

        debug_log(f"[TRANSFORMERS] {repo_id}: {len(files)} files to fetch")
        for filename in files:
            if progress_callback:
                progress_callback({'status': 'initiate', 'file': filename})
            hf_hub_download(
                repo_id,
                filename,
                cache_dir=str(self.cache_dir),
                tqdm_class=_file_progress_class(filename, progress_callback) if progress_callback else None,
            )
            if progress_callback:
                progress_callback({'status': 'done', 'file': filename})

        # Everything is cached now; this only resolves the snapshot directory
        return Path(snapshot_download(
            repo_id,
            allow_patterns=self.allow_patterns,
            cache_dir=str(self.cache_dir),
        ))

    @staticmethod
    def _torch_device(device: Device) -> str:
        if device is Device.FALLBACK:
            return "cpu"
        import torch
        return "cuda" if torch.cuda.is_available() else "mps"

    @staticmethod
    def _precision_kwargs(config: ModelConfig, device: Device, torch_device: str) -> dict:
        import torch

        if config.precision is Precision.Q4:
            if torch_device == "cuda":
                from transformers import BitsAndBytesConfig
                return {
                    'device_map': "auto",
                    'model_kwargs': {'quantization_config': BitsAndBytesConfig(load_in_4bit=True)},
                }
            warning(f"[TRANSFORMERS] 4-bit weights need CUDA; loading {config.identifier} "
                    f"in full precision on {torch_device}")
            return {'device': torch_device, 'dtype': torch.float32}

        if config.precision is Precision.FP16 and device is Device.ACCELERATED:
            return {'device': torch_device, 'dtype': torch.float16}
        return {'device': torch_device, 'dtype': torch.float32}
