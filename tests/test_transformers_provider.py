"""
Tests for the transformers-backed engine and provider.

The pipeline and the Hugging Face Hub are mocked; no model is downloaded.
"""

from unittest.mock import MagicMock, patch

import pytest

from basechat.engine.errors import GenerationFailure, LoadFailure
from basechat.engine.transformers_provider import (
    TransformersEngine,
    TransformersModelProvider,
    _StepStreamer,
)
from basechat.engine.types import Device, ModelConfig, Precision


class TestStepStreamer:

    def test_prompt_ids_are_skipped(self):
        steps = []
        streamer = _StepStreamer(steps.append)

        streamer.put([[101, 102, 103]])
        streamer.put([7])
        streamer.put([[8]])
        streamer.end()

        assert steps == [[7], [7, 8]]

    def test_callback_gets_copies(self):
        steps = []
        streamer = _StepStreamer(steps.append)
        streamer.put([1])
        streamer.put([2])
        streamer.put([3])

        assert steps[0] == [2]
        assert steps[1] == [2, 3]


class TestTransformersEngine:

    @pytest.fixture
    def text_pipeline(self):
        mock = MagicMock()
        mock.return_value = [{'generated_text': 'a continuation'}]
        return mock

    def test_sampling_kwargs(self, text_pipeline):
        engine = TransformersEngine("org/model", text_pipeline, "cpu")

        result = engine.generate("prompt", max_new_tokens=200, temperature=0.7, repetition_penalty=1.1)

        assert result == 'a continuation'
        text_pipeline.assert_called_once_with(
            "prompt",
            max_new_tokens=200,
            do_sample=True,
            return_full_text=False,
            temperature=0.7,
            repetition_penalty=1.1,
        )

    def test_zero_temperature_is_greedy(self, text_pipeline):
        engine = TransformersEngine("org/model", text_pipeline, "cpu")

        engine.generate("prompt", max_new_tokens=10, temperature=0)

        kwargs = text_pipeline.call_args.kwargs
        assert kwargs['do_sample'] is False
        assert 'temperature' not in kwargs

    def test_step_callback_installs_streamer(self, text_pipeline):
        engine = TransformersEngine("org/model", text_pipeline, "cpu")

        engine.generate("prompt", max_new_tokens=10, temperature=0.7, step_callback=lambda ids: None)

        assert isinstance(text_pipeline.call_args.kwargs['streamer'], _StepStreamer)

    def test_pipeline_error_wrapped(self, text_pipeline):
        text_pipeline.side_effect = RuntimeError("CUDA out of memory")
        engine = TransformersEngine("org/model", text_pipeline, "cpu")

        with pytest.raises(GenerationFailure, match="CUDA out of memory"):
            engine.generate("prompt", max_new_tokens=10, temperature=0.7)

    def test_empty_result(self, text_pipeline):
        text_pipeline.return_value = []
        engine = TransformersEngine("org/model", text_pipeline, "cpu")

        assert engine.generate("prompt", max_new_tokens=10, temperature=0.7) == ""

    def test_generate_after_dispose_fails(self, text_pipeline):
        engine = TransformersEngine("org/model", text_pipeline, "cpu")
        engine.dispose()
        engine.dispose()

        with pytest.raises(GenerationFailure):
            engine.generate("prompt", max_new_tokens=10, temperature=0.7)


class TestTransformersModelProvider:

    @pytest.fixture
    def provider(self, tmp_path):
        provider = TransformersModelProvider(cache_dir=tmp_path, allow_patterns=["*.json", "*.safetensors"])
        provider._api = MagicMock()
        provider._api.list_repo_files.return_value = [
            "config.json", "model.safetensors", "README.md", "onnx/model.onnx",
        ]
        return provider

    @staticmethod
    def chunked_download(sizes):
        """Stand-in for hf_hub_download that writes each file in four chunks."""
        def download(repo_id, filename, cache_dir=None, tqdm_class=None):
            size = sizes[filename]
            if tqdm_class is not None:
                bar = tqdm_class(total=size, initial=0, desc=filename, disable=True)
                for _ in range(4):
                    bar.update(size // 4)
                bar.close()
            return f"{cache_dir}/{filename}"
        return download

    def test_download_reports_byte_progress_per_file(self, provider, tmp_path):
        records = []
        download = self.chunked_download({"config.json": 100, "model.safetensors": 1000})
        with patch('basechat.engine.transformers_provider.hf_hub_download', side_effect=download) as mock_download, \
                patch('basechat.engine.transformers_provider.snapshot_download',
                      return_value=str(tmp_path / "snapshot")) as mock_snapshot:
            local_dir = provider._download("org/model", records.append)

        assert [call.args[1] for call in mock_download.call_args_list] == ["config.json", "model.safetensors"]
        assert [(r['file'], r['progress']) for r in records if r['status'] == 'progress'] == [
            ("config.json", 25.0), ("config.json", 50.0), ("config.json", 75.0), ("config.json", 100.0),
            ("model.safetensors", 25.0), ("model.safetensors", 50.0),
            ("model.safetensors", 75.0), ("model.safetensors", 100.0),
        ]
        assert records[0] == {'status': 'initiate', 'file': 'config.json'}
        assert records[5] == {'status': 'done', 'file': 'config.json'}
        assert local_dir == tmp_path / "snapshot"
        assert mock_snapshot.call_args.kwargs['allow_patterns'] == ["*.json", "*.safetensors"]

    def test_single_large_file_reports_intermediate_progress(self, provider, tmp_path):
        provider._api.list_repo_files.return_value = ["model.safetensors"]
        records = []
        download = self.chunked_download({"model.safetensors": 724_000_000})
        with patch('basechat.engine.transformers_provider.hf_hub_download', side_effect=download), \
                patch('basechat.engine.transformers_provider.snapshot_download', return_value=str(tmp_path)):
            provider._download("org/model", records.append)

        progress = [r['progress'] for r in records if r['status'] == 'progress']
        assert progress == [25.0, 50.0, 75.0, 100.0]

    def test_cached_files_send_no_byte_progress(self, provider, tmp_path):
        records = []
        with patch('basechat.engine.transformers_provider.hf_hub_download'), \
                patch('basechat.engine.transformers_provider.snapshot_download', return_value=str(tmp_path)):
            provider._download("org/model", records.append)

        assert [r['status'] for r in records] == ['initiate', 'done', 'initiate', 'done']

    def test_offline_uses_local_snapshot(self, provider, tmp_path):
        provider._api.list_repo_files.side_effect = OSError("offline")
        records = []
        with patch('basechat.engine.transformers_provider.hf_hub_download') as mock_download, \
                patch('basechat.engine.transformers_provider.snapshot_download',
                      return_value=str(tmp_path / "snapshot")) as mock_snapshot, \
                patch('basechat.engine.transformers_provider.warning') as mock_warning:
            local_dir = provider._download("org/model", records.append)

        assert local_dir == tmp_path / "snapshot"
        assert mock_snapshot.call_args.kwargs['local_files_only'] is True
        mock_download.assert_not_called()
        mock_warning.assert_called_once()
        assert records == []

    def test_offline_without_cache_becomes_load_failure(self, provider):
        provider._api.list_repo_files.side_effect = OSError("network unreachable")

        with patch('basechat.engine.transformers_provider.snapshot_download',
                   side_effect=OSError("org/model is not in the local cache")):
            with pytest.raises(LoadFailure, match="not in the local cache") as exc_info:
                provider.load(ModelConfig("org/model", Precision.Q4), Device.FALLBACK)

        assert exc_info.value.identifier == "org/model"

    def test_fallback_device_is_cpu(self):
        assert TransformersModelProvider._torch_device(Device.FALLBACK) == "cpu"

    def test_q4_without_cuda_loads_full_precision(self):
        import torch

        with patch('basechat.engine.transformers_provider.warning') as mock_warning:
            kwargs = TransformersModelProvider._precision_kwargs(
                ModelConfig("org/model", Precision.Q4), Device.FALLBACK, "cpu")

        assert kwargs == {'device': "cpu", 'dtype': torch.float32}
        mock_warning.assert_called_once()
