"""Memoized message filtering.

Cached, single-pass versions of the boundary queries in
``timeline.boundaries``. Results are identical to the reference functions;
only the cost changes.

One ``MessageFilterCache`` per session (or per test). The cache is keyed on a
structural fingerprint of the message list and is dropped wholesale when the
fingerprint changes.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Sequence

from turnstile.engine.models import ConversationResponse, Message, Role, ToolUsePart
from turnstile.timeline.boundaries import MessageIndex, find_response, locate_message, message_key
from turnstile.tools.correlation import CorrelationResult, ToolCorrelator

logger = logging.getLogger(__name__)


def fingerprint(messages: Sequence[Message]) -> str:
    """``key:role`` pairs; tool-result-only user messages carry a ``~`` marker."""
    entries = []
    for i, message in enumerate(messages):
        marker = "~" if message.role is Role.USER and message.is_tool_result_only else ""
        entries.append(f"{message_key(message, i)}:{message.role.value}{marker}")
    return "|".join(entries)


@dataclass
class _Snapshot:
    fingerprint: str
    index: MessageIndex
    # decision_from[p]: outcome of scanning forward starting at position p.
    decision_from: list[bool]
    final_flags: list[bool]
    visible: list[Message]
    responses: list[ConversationResponse]
    tool_calls: dict[str, list[ToolUsePart]] = field(default_factory=dict)
    interactions: dict[str, CorrelationResult] = field(default_factory=dict)


class MessageFilterCache:
    """O(1) repeated lookups for final/visible classification."""

    def __init__(self, correlator: ToolCorrelator | None = None) -> None:
        self._correlator = correlator or ToolCorrelator()
        self._snapshot: _Snapshot | None = None
        self.hits = 0
        self.misses = 0

    # -- public queries -----------------------------------------------------

    def visible_messages(self, messages: Sequence[Message]) -> list[Message]:
        return self._ensure(messages).visible

    def is_final_assistant_message(self, message: Message, messages: Sequence[Message]) -> bool:
        snapshot = self._ensure(messages)
        if message.role is not Role.ASSISTANT:
            return False
        if message.id:
            position = snapshot.index.position_of(message)
        else:
            # The snapshot may come from an earlier list with the same
            # fingerprint; id-less lookups must see the caller's objects.
            position = locate_message(message, messages)
        if position is None:
            return False
        return snapshot.decision_from[position + 1]

    def responses(self, messages: Sequence[Message]) -> list[ConversationResponse]:
        return self._ensure(messages).responses

    def tool_calls_for_response(self, messages: Sequence[Message], final_message_id: str) -> list[ToolUsePart]:
        snapshot = self._ensure(messages)
        cached = snapshot.tool_calls.get(final_message_id)
        if cached is not None:
            return cached
        response = find_response(snapshot.responses, final_message_id)
        calls = [] if response is None else [
            part
            for message in response.messages
            for part in message.parts()
            if isinstance(part, ToolUsePart)
        ]
        snapshot.tool_calls[final_message_id] = calls
        return calls

    def interactions_for_response(self, messages: Sequence[Message], final_message_id: str) -> CorrelationResult:
        snapshot = self._ensure(messages)
        cached = snapshot.interactions.get(final_message_id)
        if cached is not None:
            return cached
        result = self._correlator.correlate_in(snapshot.responses, final_message_id)
        snapshot.interactions[final_message_id] = result
        return result

    def clear(self) -> None:
        self._snapshot = None
        logger.debug("Message filter cache cleared")

    def stats(self) -> dict[str, Any]:
        snapshot = self._snapshot
        if snapshot is None:
            return {
                "is_cached": False,
                "messages_count": 0,
                "visible_count": 0,
                "cache_size": 0,
                "operations_cache_size": 0,
                "hits": self.hits,
                "misses": self.misses,
            }
        return {
            "is_cached": True,
            "messages_count": len(snapshot.index),
            "visible_count": len(snapshot.visible),
            "cache_size": len(snapshot.final_flags),
            "operations_cache_size": len(snapshot.tool_calls) + len(snapshot.interactions),
            "hits": self.hits,
            "misses": self.misses,
        }

    # -- recomputation ------------------------------------------------------

    def _ensure(self, messages: Sequence[Message]) -> _Snapshot:
        fp = fingerprint(messages)
        if self._snapshot is not None and self._snapshot.fingerprint == fp:
            self.hits += 1
            return self._snapshot
        self.misses += 1
        t0 = time.perf_counter()
        self._snapshot = self._compute(messages, fp)
        logger.debug(
            "Recomputed filter cache: %d/%d visible in %.2fms",
            len(self._snapshot.visible), len(messages), (time.perf_counter() - t0) * 1000,
        )
        return self._snapshot

    @staticmethod
    def _compute(messages: Sequence[Message], fp: str) -> _Snapshot:
        index = MessageIndex(messages)
        n = len(messages)

        decision_from = [True] * (n + 1)
        for p in range(n - 1, -1, -1):
            message = messages[p]
            if message.role is Role.ASSISTANT:
                decision_from[p] = False
            elif message.role is Role.USER and not message.is_tool_result_only:
                decision_from[p] = True
            else:
                decision_from[p] = decision_from[p + 1]

        final_flags: list[bool] = []
        for message in messages:
            if message.role is not Role.ASSISTANT:
                final_flags.append(False)
                continue
            position = index.position_of(message)
            final_flags.append(position is not None and decision_from[position + 1])

        visible = [
            message
            for message, is_final in zip(messages, final_flags)
            if message.role is Role.USER or is_final
        ]

        responses: list[ConversationResponse] = []
        current: list[Message] = []
        for message, is_final in zip(messages, final_flags):
            current.append(message)
            if is_final:
                responses.append(ConversationResponse(messages=current))
                current = []
        if current:
            responses.append(ConversationResponse(messages=current, is_open=True))

        return _Snapshot(
            fingerprint=fp,
            index=index,
            decision_from=decision_from,
            final_flags=final_flags,
            visible=visible,
            responses=responses,
        )
