"""
Post-processing of raw model output.

Small chat models sometimes echo part of the templated conversation before the
actual answer. The extraction strategy is injectable so a model with different
quirks can swap it out without touching the coordinator.
"""

from typing import Protocol

from basechat.logging_config import debug_log


class ReplyExtractor(Protocol):
    """Turns raw chat-mode output into the assistant reply."""

    def extract(self, raw_output: str) -> str: ...


class AssistantMarkerExtractor:
    """
    Keep only the text after the last "assistant" role marker.

    Looks for the marker preceded by a newline first, then for the bare word.
    Output without any marker is returned trimmed and otherwise unchanged.
    This is a best-effort cleanup tuned to SmolLM2-style templates: a reply
    that legitimately contains the word "assistant" will be cut.

    Example:
        >>> AssistantMarkerExtractor().extract("user\\nhi\\nassistant The answer is 4")
        'The answer is 4'
    """

    def __init__(self, marker: str = "assistant"):
        self.marker = marker

    def extract(self, raw_output: str) -> str:
        raw = (raw_output or "").strip()
        for candidate in (f"\n{self.marker}", self.marker):
            idx = raw.rfind(candidate)
            if idx != -1:
                debug_log(f"[POST-PROCESS] Stripped {idx + len(candidate)} chars of echoed conversation")
                return raw[idx + len(candidate):].strip()
        return raw


class PassthroughExtractor:
    """Return the trimmed output as-is, for models that do not echo the template."""

    def extract(self, raw_output: str) -> str:
        return (raw_output or "").strip()


def strip_prompt_prefix(text: str, prompt: str) -> str:
    """
    Remove the prompt if the decoded text still starts with it.

    Some tokenizers decode the prompt back into the continuation. Leading
    whitespace left after the prompt is dropped as well.
    """
    if prompt and text.startswith(prompt):
        return text[len(prompt):].lstrip()
    return text
