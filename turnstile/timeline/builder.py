"""Timeline builder — folds canonical events into a session's message list.

Events must be applied in arrival order for a given session; the boundary
resolver depends on message positions.
"""

from __future__ import annotations

import logging
import time

from turnstile.engine.models import (
    CanonicalEvent,
    CanonicalEventKind,
    Message,
    Role,
    SessionTimeline,
    TextPart,
    ToolResultPart,
    ToolUsePart,
)

logger = logging.getLogger(__name__)

CLOSING_STATUSES = frozenset({"done", "session_idle", "error"})


class TimelineBuilder:
    """Applies canonical events to a ``SessionTimeline``.

    Assistant output (tokens, tool calls) lands in assistant messages keyed by
    the event's ``message_id``. Tool results land in tool-result-only user
    messages, the shape the boundary resolver treats as pass-through.
    """

    def apply(self, timeline: SessionTimeline, event: CanonicalEvent) -> Message | None:
        if event.kind is not CanonicalEventKind.TOKEN:
            # Token deltas may legitimately share an id while streaming.
            if event.event_id in timeline.seen_event_ids:
                logger.debug("Skipping duplicate event %s", event.event_id)
                return None
            timeline.seen_event_ids.add(event.event_id)

        timeline.updated_at = time.time()

        if event.kind is CanonicalEventKind.TOKEN:
            return self._apply_token(timeline, event)
        if event.kind is CanonicalEventKind.TOOL_CALL:
            return self._apply_tool_call(timeline, event)
        if event.kind is CanonicalEventKind.TOOL_RESULT:
            return self._apply_tool_result(timeline, event)
        if event.kind is CanonicalEventKind.STATUS:
            status = event.payload.get("status")
            if status in CLOSING_STATUSES:
                self.close_streaming(timeline)
            if status == "error":
                logger.warning("Agent error in session %s: %s", timeline.session_id, event.payload.get("error"))
            return None
        # connected: nothing to record
        return None

    def append_message(self, timeline: SessionTimeline, message: Message) -> Message:
        if not message.session_id:
            message = message.model_copy(update={"session_id": timeline.session_id})
        timeline.messages.append(message)
        timeline.updated_at = time.time()
        return message

    def close_streaming(self, timeline: SessionTimeline) -> None:
        for message in timeline.messages:
            if message.is_streaming:
                message.is_streaming = False

    # -- per-kind handlers --------------------------------------------------

    def _apply_token(self, timeline: SessionTimeline, event: CanonicalEvent) -> Message:
        message = self._assistant_message(timeline, event, streaming=True)
        delta = event.payload.get("delta", "")
        parts = message.content
        if parts and isinstance(parts[-1], TextPart):
            parts[-1].text += delta
        else:
            parts.append(TextPart(text=delta))
        message.is_streaming = True
        return message

    def _apply_tool_call(self, timeline: SessionTimeline, event: CanonicalEvent) -> Message:
        message = self._assistant_message(timeline, event, streaming=False)
        message.content.append(
            ToolUsePart(
                id=event.payload.get("id"),
                name=event.payload.get("name", ""),
                input=event.payload.get("input") or {},
            )
        )
        return message

    def _apply_tool_result(self, timeline: SessionTimeline, event: CanonicalEvent) -> Message:
        payload = event.payload
        part = ToolResultPart(
            tool_use_id=payload.get("tool_use_id"),
            content=payload.get("error") if payload.get("result") is None else payload.get("result"),
            is_error=not payload.get("success", True),
        )

        tail = timeline.messages[-1] if timeline.messages else None
        if (
            tail is not None
            and tail.role is Role.USER
            and isinstance(tail.content, list)
            and tail.content
            and tail.is_tool_result_only
        ):
            tail.content.append(part)
            return tail

        base = event.message_id or event.event_id
        message = Message(
            id=f"{base}-results-{len(timeline.messages)}",
            session_id=timeline.session_id,
            role=Role.USER,
            content=[part],
            created_at=event.timestamp,
        )
        timeline.messages.append(message)
        return message

    # -- helpers ------------------------------------------------------------

    def _assistant_message(self, timeline: SessionTimeline, event: CanonicalEvent, *, streaming: bool) -> Message:
        if event.message_id:
            for message in reversed(timeline.messages):
                if message.id == event.message_id and message.role is Role.ASSISTANT:
                    return _with_parts(message)
        elif streaming:
            tail = timeline.messages[-1] if timeline.messages else None
            if tail is not None and tail.role is Role.ASSISTANT and tail.is_streaming:
                return _with_parts(tail)
        elif timeline.messages and timeline.messages[-1].role is Role.ASSISTANT:
            # A tool call without message id belongs to the assistant turn in progress.
            return _with_parts(timeline.messages[-1])

        message = Message(
            id=event.message_id or f"{event.session_id}-assistant-{len(timeline.messages)}",
            session_id=timeline.session_id,
            role=Role.ASSISTANT,
            content=[],
            created_at=event.timestamp,
            is_streaming=streaming,
        )
        timeline.messages.append(message)
        return message


def _with_parts(message: Message) -> Message:
    """Convert plain-string content to a part list so it can be extended."""
    if isinstance(message.content, str):
        message.content = message.parts()
    return message
