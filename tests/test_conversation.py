"""
Tests for chat conversation state and message helpers.
"""

import pytest

from basechat.conversation import (
    DEFAULT_SYSTEM_PROMPT,
    Conversation,
    Message,
    Role,
    has_user_content,
    last_user_message,
    trim_trailing_assistant,
)


def msgs(*pairs):
    return [Message(Role(role), content) for role, content in pairs]


class TestMessage:

    def test_dict_round_trip(self):
        message = Message.from_dict({'role': 'assistant', 'content': 'hi'})
        assert message == Message(Role.ASSISTANT, 'hi')
        assert message.to_dict() == {'role': 'assistant', 'content': 'hi'}

    def test_missing_content_is_empty(self):
        assert Message.from_dict({'role': 'user'}).content == ""

    @pytest.mark.parametrize("data", [
        {'role': 'user', 'content': 5},
        {'role': 'user', 'content': ['hi']},
        "user: hi",
        {'content': 'no role'},
    ])
    def test_malformed_message_rejected(self, data):
        with pytest.raises(ValueError):
            Message.from_dict(data)

    def test_unknown_role_rejected(self):
        with pytest.raises(ValueError):
            Message.from_dict({'role': 'tool', 'content': 'x'})


class TestHelpers:

    def test_last_user_message(self):
        messages = msgs(('system', 's'), ('user', 'first'), ('assistant', 'a'), ('user', 'second'))
        assert last_user_message(messages).content == 'second'

    def test_last_user_message_none(self):
        assert last_user_message(msgs(('system', 's'))) is None

    @pytest.mark.parametrize("pairs,expected", [
        ((('system', 's'), ('user', 'hi')), True),
        ((('system', 's'), ('user', '   ')), False),
        ((('system', 's'), ('user', 'hi'), ('assistant', 'hello')), True),
        ((('system', 's'), ('user', 'hi'), ('assistant', 'a'), ('user', '')), False),
        ((('system', 's'),), False),
    ])
    def test_has_user_content(self, pairs, expected):
        assert has_user_content(msgs(*pairs)) is expected

    def test_trim_trailing_assistant(self):
        messages = msgs(('system', 's'), ('user', 'hi'), ('assistant', 'a'), ('assistant', 'b'))
        assert trim_trailing_assistant(messages) == messages[:2]
        assert len(messages) == 4

    def test_trim_keeps_non_trailing_assistant(self):
        messages = msgs(('system', 's'), ('user', 'hi'), ('assistant', 'a'), ('user', 'again'))
        assert trim_trailing_assistant(messages) == messages


class TestConversation:

    def test_initial_state(self):
        conversation = Conversation()
        assert conversation.to_dicts() == [
            {'role': 'system', 'content': DEFAULT_SYSTEM_PROMPT},
            {'role': 'user', 'content': ''},
        ]
        assert not conversation.ready_for_generation()

    def test_user_message_only_after_non_user(self):
        conversation = Conversation()
        assert not conversation.can_add_user_message()
        with pytest.raises(ValueError):
            conversation.add_user_message("again")

        conversation.add_assistant_reply("Hello")
        assert conversation.can_add_user_message()
        conversation.add_user_message("again")
        assert conversation[-1] == Message(Role.USER, "again")

    def test_set_content_any_role(self):
        conversation = Conversation()
        conversation.set_content(0, "Be brief.")
        conversation.set_content(1, "hi")
        assert conversation[0] == Message(Role.SYSTEM, "Be brief.")
        assert conversation.ready_for_generation()

    def test_truncate_removes_following_messages(self):
        conversation = Conversation()
        conversation.set_content(1, "hi")
        conversation.add_assistant_reply("hello")
        conversation.add_user_message("again")
        conversation.add_assistant_reply("hey")

        conversation.truncate(3)

        assert [m.role for m in conversation] == [Role.SYSTEM, Role.USER, Role.ASSISTANT]

    @pytest.mark.parametrize("index", [0, 1, 3, 5])
    def test_truncate_rejects_permanent_or_missing(self, index):
        conversation = Conversation()
        conversation.add_assistant_reply("hello")
        with pytest.raises(IndexError):
            conversation.truncate(index)

    def test_messages_is_a_snapshot(self):
        conversation = Conversation()
        snapshot = conversation.messages
        conversation.add_assistant_reply("x")
        assert len(snapshot) == 2
        assert len(conversation) == 3
