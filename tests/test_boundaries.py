"""Tests for response boundaries and visibility."""

import random

import pytest

from factories import assistant, random_conversation, tool_results, user
from turnstile.engine.models import Message, Role
from turnstile.timeline.boundaries import (
    MessageIndex,
    assign_message_ids,
    find_response,
    get_final_message_status,
    get_visible_messages,
    group_into_responses,
    is_final_assistant_message,
    locate_message,
    message_key,
    tool_calls_for_response,
)


@pytest.fixture
def tool_turn():
    return [
        user("u1", "list files"),
        assistant("a1", None, ("X", "bash")),
        tool_results("r1", "X"),
        assistant("a2", "here are your files"),
    ]


class TestFinalClassification:
    def test_tool_result_turn_has_one_final(self, tool_turn):
        assert not is_final_assistant_message(tool_turn[1], tool_turn)
        assert is_final_assistant_message(tool_turn[3], tool_turn)

    def test_visible_hides_intermediate(self, tool_turn):
        visible = get_visible_messages(tool_turn)
        assert [m.id for m in visible] == ["u1", "r1", "a2"]

    def test_user_message_is_never_final(self, tool_turn):
        assert not is_final_assistant_message(tool_turn[0], tool_turn)

    def test_genuine_user_closes_response(self):
        messages = [user("u1"), assistant("a1", "hi"), user("u2"), assistant("a2", "again")]
        assert is_final_assistant_message(messages[1], messages)
        assert is_final_assistant_message(messages[3], messages)

    def test_string_content_user_is_genuine(self):
        messages = [
            user("u1"),
            assistant("a1", "hi"),
            Message(id="u2", role=Role.USER, content="follow up"),
        ]
        assert is_final_assistant_message(messages[1], messages)

    def test_empty_content_user_passes_through(self):
        messages = [
            user("u1"),
            assistant("a1", "thinking"),
            Message(id="u2", role=Role.USER, content=[]),
            assistant("a2", "done"),
        ]
        assert not is_final_assistant_message(messages[1], messages)
        assert is_final_assistant_message(messages[3], messages)

    def test_system_message_does_not_end_response(self):
        messages = [
            user("u1"),
            assistant("a1", "one"),
            Message(id="s1", role=Role.SYSTEM, content="note"),
            assistant("a2", "two"),
        ]
        assert not is_final_assistant_message(messages[1], messages)
        assert [m.id for m in get_visible_messages(messages)] == ["u1", "a2"]

    def test_unknown_message_is_not_final(self, tool_turn):
        assert not is_final_assistant_message(assistant("elsewhere", "x"), tool_turn)

    def test_final_status(self, tool_turn):
        assert get_final_message_status(tool_turn[1], tool_turn) == "intermediate"
        assert get_final_message_status(tool_turn[3], tool_turn) == "final"
        streaming = tool_turn[3].model_copy(update={"is_streaming": True})
        assert get_final_message_status(streaming, tool_turn) == "streaming"


class TestResponses:
    def test_group_closed_response(self, tool_turn):
        responses = group_into_responses(tool_turn)
        assert len(responses) == 1
        assert not responses[0].is_open
        assert responses[0].final_message.id == "a2"

    def test_trailing_open_response(self):
        messages = [user("u1"), assistant("a1", "hi"), user("u2")]
        responses = group_into_responses(messages)
        assert [r.is_open for r in responses] == [False, True]
        assert responses[1].final_message is None

    def test_empty_list(self):
        assert group_into_responses([]) == []
        assert get_visible_messages([]) == []

    def test_responses_partition_random_lists(self):
        rng = random.Random(1234)
        for _ in range(50):
            messages = random_conversation(rng, rng.randint(0, 30))
            responses = group_into_responses(messages)
            flattened = [m for r in responses for m in r.messages]
            assert len(flattened) == len(messages)
            assert all(a is b for a, b in zip(flattened, messages))
            assert all(not r.is_open for r in responses[:-1])

    def test_tool_calls_for_response_include_intermediate(self, tool_turn):
        messages = tool_turn + [user("u2"), assistant("a3", None, ("Y", "cat")), assistant("a4", "ok")]
        first = tool_calls_for_response(messages, "a2")
        second = tool_calls_for_response(messages, "a4")
        assert [c.id for c in first] == ["X"]
        assert [c.id for c in second] == ["Y"]
        assert tool_calls_for_response(messages, "missing") == []

    def test_find_response_by_synthesized_key(self):
        messages = [user(None), assistant(None, "hi")]
        responses = group_into_responses(messages)
        assert find_response(responses, "msg-1") is responses[0]


class TestMessageKeys:
    def test_key_prefers_id(self):
        assert message_key(user("u1"), 4) == "u1"
        assert message_key(user(None), 4) == "msg-4"

    def test_assign_ids_is_deterministic(self):
        messages = [user(None), assistant("a1", "x"), user(None)]
        first = assign_message_ids(messages)
        second = assign_message_ids(messages)
        assert [m.id for m in first] == ["msg-0", "a1", "msg-2"]
        assert [m.id for m in first] == [m.id for m in second]
        assert messages[0].id is None

    def test_locate_idless_by_identity(self):
        a = assistant(None, "same")
        b = assistant(None, "same")
        messages = [user("u1"), a, b]
        assert locate_message(b, messages) == 2
        assert locate_message(b.model_copy(), messages) == 1

    def test_index_matches_locate(self):
        rng = random.Random(99)
        messages = random_conversation(rng, 40)
        index = MessageIndex(messages)
        for message in messages:
            assert index.position_of(message) == locate_message(message, messages)
        assert index.position_of_key(index.keys[-1]) is not None
