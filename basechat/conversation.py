"""
Conversation state for chat mode.

A conversation is an ordered list of role-tagged messages. The window edits it;
the generation coordinator only reads a snapshot of it and never appends the
reply itself.
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import Enum

DEFAULT_SYSTEM_PROMPT = "You are a helpful and intelligent assistant."


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class Message:
    """A single chat message."""
    role: Role
    content: str

    @classmethod
    def from_dict(cls, data: dict) -> "Message":
        """
        Raises:
            ValueError: Not a mapping, unknown role, or content that is not text.
        """
        if not isinstance(data, dict):
            raise ValueError(f"Message must be a mapping, got {type(data).__name__}")
        content = data.get('content')
        if content is None:
            content = ""
        elif not isinstance(content, str):
            raise ValueError(f"Message content must be text, got {type(content).__name__}")
        return cls(role=Role(data.get('role')), content=content)

    def to_dict(self) -> dict:
        return {'role': self.role.value, 'content': self.content}


def last_user_message(messages: Sequence[Message]) -> Message | None:
    """Return the most recent user message, or None."""
    for message in reversed(messages):
        if message.role is Role.USER:
            return message
    return None


def has_user_content(messages: Sequence[Message]) -> bool:
    """True if the last user message has non-blank content."""
    message = last_user_message(messages)
    return message is not None and bool(message.content.strip())


def trim_trailing_assistant(messages: Sequence[Message]) -> list[Message]:
    """
    Drop assistant messages from the end of the list.

    Lets the user regenerate after a reply without deleting it first.
    """
    trimmed = list(messages)
    while trimmed and trimmed[-1].role is Role.ASSISTANT:
        trimmed.pop()
    return trimmed


class Conversation:
    """
    Editable conversation held by the chat view.

    Starts with a system message and one empty user message. The first two
    messages are permanent; anything after them can be removed together with
    everything that follows it.
    """

    PERMANENT_MESSAGES = 2

    def __init__(self, system_prompt: str = DEFAULT_SYSTEM_PROMPT):
        self._messages: list[Message] = [
            Message(Role.SYSTEM, system_prompt),
            Message(Role.USER, ""),
        ]

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self):
        return iter(self._messages)

    def __getitem__(self, index: int) -> Message:
        return self._messages[index]

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    def can_add_user_message(self) -> bool:
        """A new user turn is only allowed after a non-user message."""
        return self._messages[-1].role is not Role.USER

    def add_user_message(self, content: str = "") -> None:
        if not self.can_add_user_message():
            raise ValueError("The last message is already a user message")
        self._messages.append(Message(Role.USER, content))

    def add_assistant_reply(self, content: str) -> None:
        self._messages.append(Message(Role.ASSISTANT, content))

    def set_content(self, index: int, content: str) -> None:
        """Replace the text of any message; every role is editable."""
        current = self._messages[index]
        self._messages[index] = Message(current.role, content)

    def truncate(self, index: int) -> None:
        """
        Remove the message at index and everything after it.

        Raises:
            IndexError: If index refers to one of the permanent messages or is out of range.
        """
        if index < self.PERMANENT_MESSAGES or index >= len(self._messages):
            raise IndexError(f"Cannot remove message {index}")
        del self._messages[index:]

    def ready_for_generation(self) -> bool:
        return has_user_content(self._messages)

    def to_dicts(self) -> list[dict]:
        return [m.to_dict() for m in self._messages]

    @classmethod
    def from_messages(cls, messages: Iterable[Message]) -> "Conversation":
        conversation = cls.__new__(cls)
        conversation._messages = list(messages)
        return conversation
