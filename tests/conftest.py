"""
Shared fakes for the engine and session tests.

FakeProvider hands out FakeEngine instances and records every load and
dispose in one ordered event log, so tests can check what was resident at
each moment without loading a real model.
"""

import sys
from pathlib import Path

import pytest

# Add project root to path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from basechat.engine.provider import GenerationEngine, ModelProvider


class FakeTokenizer:
    """Token id i decodes to pieces[i]; chat template joins role/content lines."""

    def __init__(self, pieces=None):
        self.pieces = list(pieces or [])
        self.template_calls = []

    def encode(self, text, **kwargs):
        return list(range(len(text.split())))

    def decode(self, token_ids, skip_special_tokens=False, **kwargs):
        return "".join(self.pieces[i] for i in token_ids)

    def apply_chat_template(self, conversation, tokenize=True, add_generation_prompt=False, **kwargs):
        self.template_calls.append({
            'conversation': [dict(m) for m in conversation],
            'tokenize': tokenize,
            'add_generation_prompt': add_generation_prompt,
        })
        prompt = "".join(f"<|im_start|>{m['role']}\n{m['content']}<|im_end|>\n" for m in conversation)
        if add_generation_prompt:
            prompt += "<|im_start|>assistant\n"
        return prompt


class FakeEngine(GenerationEngine):
    """
    Scripted engine.

    Args:
        identifier: Model id, used in the shared event log.
        pieces: Text produced per decoding step (one token each).
        final: Value returned by generate(); defaults to "".join(pieces).
        error: Exception raised by generate() after streaming all steps.
        dispose_error: Exception raised by dispose().
        log: Shared event log.
    """

    def __init__(self, identifier="fake/model", pieces=(), final=None, error=None,
                 dispose_error=None, log=None):
        self.identifier = identifier
        self._tokenizer = FakeTokenizer(pieces)
        self.final = final
        self.error = error
        self.dispose_error = dispose_error
        self.log = log if log is not None else []
        self.calls = []
        self.disposed = False

    @property
    def tokenizer(self):
        return self._tokenizer

    def generate(self, prompt, *, max_new_tokens, temperature, do_sample=True,
                 repetition_penalty=None, return_full_text=False, step_callback=None):
        self.calls.append({
            'prompt': prompt,
            'max_new_tokens': max_new_tokens,
            'temperature': temperature,
            'do_sample': do_sample,
            'repetition_penalty': repetition_penalty,
            'return_full_text': return_full_text,
            'streaming': step_callback is not None,
        })
        if step_callback is not None:
            for step in range(1, len(self._tokenizer.pieces) + 1):
                step_callback(list(range(step)))
        if self.error is not None:
            raise self.error
        if self.final is not None:
            return self.final
        return "".join(self._tokenizer.pieces)

    def dispose(self):
        self.log.append(('dispose', self.identifier))
        self.disposed = True
        if self.dispose_error is not None:
            raise self.dispose_error


class FakeProvider(ModelProvider):
    """
    Provider that builds FakeEngines.

    Attributes:
        log: Ordered ('load', id) / ('dispose', id) events, shared with engines.
        load_calls: Number of load() calls.
        max_live: Most engines alive (loaded and not disposed) at any load.
        fail_ids: Identifiers whose load raises.
        engine_kwargs: Extra FakeEngine arguments per identifier.
    """

    def __init__(self, fail_ids=(), engine_kwargs=None, progress_records=()):
        self.log = []
        self.load_calls = 0
        self.max_live = 0
        self.fail_ids = set(fail_ids)
        self.engine_kwargs = engine_kwargs or {}
        self.progress_records = list(progress_records)
        self.devices = []
        self.engines = []

    def live_engines(self):
        return [e for e in self.engines if not e.disposed]

    def load(self, config, device, progress_callback=None):
        self.load_calls += 1
        self.devices.append(device)
        self.log.append(('load', config.identifier))
        for record in self.progress_records:
            if progress_callback:
                progress_callback(record)
        if config.identifier in self.fail_ids:
            raise OSError(f"cannot fetch {config.identifier}")
        engine = FakeEngine(config.identifier, log=self.log, **self.engine_kwargs.get(config.identifier, {}))
        self.engines.append(engine)
        self.max_live = max(self.max_live, len(self.live_engines()))
        return engine


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def make_engine():
    """Factory for FakeEngine, so tests don't import conftest directly."""
    return FakeEngine


@pytest.fixture
def make_provider():
    return FakeProvider
