"""Tests for the memoized filtering layer."""

import random

from factories import assistant, random_conversation, tool_results, user
from turnstile.engine.models import TextPart
from turnstile.timeline.boundaries import (
    get_visible_messages,
    group_into_responses,
    is_final_assistant_message,
    tool_calls_for_response,
)
from turnstile.timeline.filtering import MessageFilterCache, fingerprint


class TestEquivalence:
    def test_matches_reference_on_random_lists(self):
        rng = random.Random(2024)
        for _ in range(100):
            messages = random_conversation(rng, rng.randint(0, 40))
            cache = MessageFilterCache()

            for message in messages:
                assert cache.is_final_assistant_message(message, messages) == is_final_assistant_message(
                    message, messages
                )

            expected = get_visible_messages(messages)
            visible = cache.visible_messages(messages)
            assert len(visible) == len(expected)
            assert all(a is b for a, b in zip(visible, expected))

            expected_groups = [[id(m) for m in r.messages] for r in group_into_responses(messages)]
            groups = [[id(m) for m in r.messages] for r in cache.responses(messages)]
            assert groups == expected_groups

    def test_resupplied_idless_copy_after_cache_hit(self):
        cache = MessageFilterCache()
        first = [user("u1"), assistant(None, "hi")]
        assert cache.is_final_assistant_message(first[1], first)

        edited = first[1].model_copy(update={"content": [TextPart(text="hi there")]})
        second = [first[0], edited]
        assert cache.is_final_assistant_message(edited, second) == is_final_assistant_message(edited, second)
        assert cache.is_final_assistant_message(edited, second)
        assert cache.misses == 1

    def test_tool_calls_match_reference(self):
        messages = [
            user("u1"),
            assistant("a1", None, ("X", "bash")),
            tool_results("r1", "X"),
            assistant("a2", "done"),
        ]
        cache = MessageFilterCache()
        assert cache.tool_calls_for_response(messages, "a2") == tool_calls_for_response(messages, "a2")


class TestMemoization:
    def test_repeat_query_returns_same_object(self):
        messages = [user("u1"), assistant("a1", "hi")]
        cache = MessageFilterCache()
        first = cache.visible_messages(messages)
        second = cache.visible_messages(list(messages))
        assert first is second
        assert cache.hits == 1
        assert cache.misses == 1

    def test_append_invalidates(self):
        messages = [user("u1"), assistant("a1", "hi")]
        cache = MessageFilterCache()
        assert [m.id for m in cache.visible_messages(messages)] == ["u1", "a1"]

        messages.append(assistant("a2", "more"))
        assert [m.id for m in cache.visible_messages(messages)] == ["u1", "a2"]
        assert cache.misses == 2

    def test_operation_cache_and_stats(self):
        messages = [user("u1"), assistant("a1", None, ("X", "bash")), tool_results("r1", "X"), assistant("a2", "ok")]
        cache = MessageFilterCache()
        assert cache.stats()["is_cached"] is False

        calls = cache.tool_calls_for_response(messages, "a2")
        assert cache.tool_calls_for_response(messages, "a2") is calls
        interactions = cache.interactions_for_response(messages, "a2")
        assert cache.interactions_for_response(messages, "a2") is interactions

        stats = cache.stats()
        assert stats["is_cached"] is True
        assert stats["messages_count"] == 4
        assert stats["visible_count"] == 3
        assert stats["cache_size"] == 4
        assert stats["operations_cache_size"] == 2

    def test_clear(self):
        messages = [user("u1")]
        cache = MessageFilterCache()
        cache.visible_messages(messages)
        cache.clear()
        assert cache.stats()["is_cached"] is False
        cache.visible_messages(messages)
        assert cache.misses == 2


class TestFingerprint:
    def test_marks_tool_result_only_users(self):
        assert fingerprint([user("u1"), tool_results("r1", "X")]) == "u1:user|r1:user~"

    def test_uses_position_keys_for_idless(self):
        assert fingerprint([user(None), assistant(None, "x")]) == "msg-0:user|msg-1:assistant"
