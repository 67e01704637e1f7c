"""
Generation Coordinator

Runs one generation request against an already-resident engine and turns it
into a sequence of status events:

    start -> update* -> complete      (base mode)
    start -> complete                 (chat mode)
    start -> ... -> error             (any failure)

complete and error are mutually exclusive and always terminal. The coordinator
borrows the engine for the duration of one call and keeps no reference to it.

Base mode streams. The engine reports the tokens generated so far after every
decoding step; CompletionStream runs the engine on a helper thread and exposes
those steps as a lazy iterator of non-overlapping text chunks.
"""

import threading
import time
import traceback
from collections.abc import Iterator, Sequence
from queue import Queue

from basechat.config import DEFAULT_TEMPERATURE, MAX_NEW_TOKENS, REPETITION_PENALTY
from basechat.conversation import has_user_content, trim_trailing_assistant
from basechat.engine.errors import GenerationFailure, ValidationFailure
from basechat.engine.provider import GenerationEngine
from basechat.engine.reply_post_processor import AssistantMarkerExtractor, ReplyExtractor, strip_prompt_prefix
from basechat.engine.types import GenerationRequest, ModelType
from basechat.logging_config import debug_log, debug_timing, error
from basechat.events import (
    CompleteStatus,
    ErrorStatus,
    StartStatus,
    StatusEvent,
    UpdateStatus,
)

_DONE = object()


class CompletionStream:
    """
    Lazy, finite, non-restartable stream of base-mode text chunks.

    Iterating starts the engine call on a helper thread. Each decoding step is
    decoded, stripped of an echoed prompt, and the part not yet emitted is
    yielded. Once exhausted, final_text holds the authoritative answer: the
    final decode when it is non-empty, otherwise the streamed text.

    Raises GenerationFailure from the iterator if the engine call fails.
    """

    def __init__(self, engine: GenerationEngine, prompt: str, temperature: float,
                 max_new_tokens: int = MAX_NEW_TOKENS,
                 repetition_penalty: float = REPETITION_PENALTY):
        self.engine = engine
        self.prompt = prompt
        self.temperature = temperature
        self.max_new_tokens = max_new_tokens
        self.repetition_penalty = repetition_penalty
        self.final_text: str | None = None
        self._emitted = ""
        self._chunks: Queue = Queue()
        self._thread: threading.Thread | None = None
        self._exhausted = False

    @property
    def streamed_text(self) -> str:
        return self._emitted

    def __iter__(self):
        return self

    def __next__(self) -> str:
        if self._exhausted:
            raise StopIteration
        if self._thread is None:
            self._thread = threading.Thread(target=self._run, daemon=True)
            self._thread.start()

        item = self._chunks.get()
        if item is _DONE:
            self._exhausted = True
            self._thread.join()
            raise StopIteration
        if isinstance(item, BaseException):
            self._exhausted = True
            self._thread.join()
            if isinstance(item, GenerationFailure):
                raise item
            raise GenerationFailure(f"Text generation failed: {item}") from item
        return item

    def _on_step(self, token_ids: Sequence[int]) -> None:
        decoded = self.engine.tokenizer.decode(token_ids, skip_special_tokens=True)
        decoded = strip_prompt_prefix(decoded, self.prompt)
        if len(decoded) > len(self._emitted):
            chunk = decoded[len(self._emitted):]
            self._emitted = decoded
            self._chunks.put(chunk)

    def _run(self) -> None:
        try:
            raw = self.engine.generate(
                self.prompt,
                max_new_tokens=self.max_new_tokens,
                temperature=self.temperature,
                do_sample=True,
                repetition_penalty=self.repetition_penalty,
                return_full_text=False,
                step_callback=self._on_step,
            )
            final = strip_prompt_prefix(raw or "", self.prompt)
            self.final_text = final or self._emitted
            self._chunks.put(_DONE)
        except Exception as e:
            debug_log(f"[COORDINATOR] Engine call failed:\n{traceback.format_exc()}")
            self._chunks.put(e)


class GenerationCoordinator:
    """
    Orchestrates a single base or chat generation against a borrowed engine.

    Args:
        reply_extractor: Chat-mode cleanup strategy. Defaults to AssistantMarkerExtractor.
        max_new_tokens: Token budget for both modes.
        repetition_penalty: Applied in base mode only.
    """

    def __init__(self, reply_extractor: ReplyExtractor | None = None,
                 max_new_tokens: int = MAX_NEW_TOKENS,
                 repetition_penalty: float = REPETITION_PENALTY):
        self.reply_extractor = reply_extractor or AssistantMarkerExtractor()
        self.max_new_tokens = max_new_tokens
        self.repetition_penalty = repetition_penalty

    def validate(self, request: GenerationRequest) -> None:
        """
        Refuse requests that must never reach the engine.

        Raises:
            ValidationFailure: Blank base prompt, or no non-blank last user message in chat.
        """
        if request.mode is ModelType.CHAT:
            if not has_user_content(request.messages):
                raise ValidationFailure("The last user message is empty")
        elif not request.text.strip():
            raise ValidationFailure("The prompt is empty")

    def generate(self, engine: GenerationEngine, request: GenerationRequest) -> Iterator[StatusEvent]:
        """
        Validate eagerly, then return the lazy event stream for the request.

        Raises:
            ValidationFailure: Before any event is produced.
        """
        self.validate(request)
        if request.mode is ModelType.CHAT:
            return self._generate_chat(engine, request)
        return self._generate_base(engine, request)

    @staticmethod
    def _temperature(request: GenerationRequest) -> float:
        return DEFAULT_TEMPERATURE if request.temperature is None else request.temperature

    def _generate_base(self, engine: GenerationEngine, request: GenerationRequest) -> Iterator[StatusEvent]:
        yield StartStatus()
        start = time.time()
        stream = CompletionStream(
            engine,
            request.text,
            temperature=self._temperature(request),
            max_new_tokens=self.max_new_tokens,
            repetition_penalty=self.repetition_penalty,
        )
        chunk_count = 0
        try:
            for chunk in stream:
                chunk_count += 1
                yield UpdateStatus(chunk=chunk)
        except GenerationFailure as e:
            error(f"[COORDINATOR] Base generation failed: {e}")
            yield ErrorStatus(message=str(e))
            return

        debug_timing(f"[COORDINATOR] Base generation ({chunk_count} chunks)", time.time() - start)
        yield CompleteStatus(full_text=stream.final_text)

    def _generate_chat(self, engine: GenerationEngine, request: GenerationRequest) -> Iterator[StatusEvent]:
        yield StartStatus()
        start = time.time()
        messages = trim_trailing_assistant(request.messages)
        try:
            prompt = engine.tokenizer.apply_chat_template(
                [m.to_dict() for m in messages],
                tokenize=False,
                add_generation_prompt=True,
            )
            debug_log(f"[COORDINATOR] Chat prompt from {len(messages)} messages, {len(prompt)} chars")
            raw = engine.generate(
                prompt,
                max_new_tokens=self.max_new_tokens,
                temperature=self._temperature(request),
                do_sample=True,
                return_full_text=False,
            )
        except Exception as e:
            debug_log(f"[COORDINATOR] Chat generation failed:\n{traceback.format_exc()}")
            error(f"[COORDINATOR] Chat generation failed: {e}")
            yield ErrorStatus(message=str(e))
            return

        reply = self.reply_extractor.extract(raw)
        debug_timing("[COORDINATOR] Chat generation", time.time() - start)
        yield CompleteStatus(assistant_reply=reply)
