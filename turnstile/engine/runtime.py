"""ConversationRuntime — the core event-processing loop."""

from __future__ import annotations

import logging
import time
from typing import Any, AsyncIterable, AsyncIterator, Callable, Iterable

from turnstile.approval.gatekeeper import ApprovalGatekeeper
from turnstile.engine.models import (
    ApprovalInvocation,
    ApprovalStatus,
    CanonicalEvent,
    CanonicalEventKind,
    ConversationResponse,
    Message,
    SessionTimeline,
    ToolUsePart,
)
from turnstile.engine.session import TimelineStore
from turnstile.ingest.adapter import IngestionAdapter
from turnstile.timeline.builder import TimelineBuilder
from turnstile.timeline.filtering import MessageFilterCache
from turnstile.tools.correlation import CorrelationResult, ToolCorrelator
from turnstile.tracing.interface import TraceCollector

logger = logging.getLogger(__name__)


class ConversationRuntime:
    """Public API: ``async for event in runtime.handle(frames): ...``

    raw frame → ``IngestionAdapter`` → ``TimelineBuilder`` → approval gate for
    sensitive tool calls. Read queries go through one ``MessageFilterCache``
    per session.
    """

    def __init__(
        self,
        store: TimelineStore,
        gatekeeper: ApprovalGatekeeper,
        correlator: ToolCorrelator,
        trace_collector: TraceCollector,
        adapter: IngestionAdapter | None = None,
        cache_factory: Callable[[ToolCorrelator], MessageFilterCache] = MessageFilterCache,
    ) -> None:
        self._store = store
        self.gatekeeper = gatekeeper
        self._correlator = correlator
        self._trace = trace_collector
        self._adapter = adapter or IngestionAdapter()
        self._builder = TimelineBuilder()
        self._cache_factory = cache_factory
        self._caches: dict[str, MessageFilterCache] = {}

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def ingest(self, raw: Any) -> CanonicalEvent | None:
        event = self._adapter.normalize(raw)
        if event is None:
            await self._trace.emit("unknown", "drop", {"raw_type": type(raw).__name__})
            return None

        # 1. Timeline ---------------------------------------------------
        timeline = await self._timeline(event.session_id)
        if event.kind is not CanonicalEventKind.TOKEN and event.event_id in timeline.seen_event_ids:
            # Redelivered frame: already applied and already gated.
            await self._trace.emit(event.session_id, "duplicate", {
                "kind": event.kind.value,
                "event_id": event.event_id,
            })
            return None
        message = self._builder.apply(timeline, event)
        await self._store.save(timeline)
        await self._trace.emit(event.session_id, "ingest", {
            "kind": event.kind.value,
            "event_id": event.event_id,
            "sequence": event.sequence,
            "message_id": message.id if message is not None else None,
        })

        # 2. Approval gate for sensitive tool calls ---------------------
        if event.kind is CanonicalEventKind.TOOL_CALL:
            name = event.payload.get("name", "")
            tool_use_id = event.payload.get("id") or event.event_id
            if self.gatekeeper.requires_approval(name):
                await self.gatekeeper.request_approval(
                    tool_use_id=tool_use_id,
                    session_id=event.session_id,
                    tool_name=name,
                    tool_input=event.payload.get("input") or {},
                    job_id=event.event_id,
                )
                await self._trace.emit(event.session_id, "approval_requested", {
                    "tool_use_id": tool_use_id,
                    "tool_name": name,
                })

        return event

    async def handle(self, frames: Iterable[Any] | AsyncIterable[Any]) -> AsyncIterator[CanonicalEvent]:
        """Ingest frames in arrival order, yielding each canonical event."""
        if hasattr(frames, "__aiter__"):
            async for raw in frames:  # type: ignore[union-attr]
                event = await self.ingest(raw)
                if event is not None:
                    yield event
        else:
            for raw in frames:  # type: ignore[union-attr]
                event = await self.ingest(raw)
                if event is not None:
                    yield event

    async def add_message(self, session_id: str, message: Message) -> Message:
        """Append an externally supplied message (e.g. the user's prompt)."""
        timeline = await self._timeline(session_id)
        message = self._builder.append_message(timeline, message)
        await self._store.save(timeline)
        return message

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def sessions(self) -> list[str]:
        """Ids of every session with a stored timeline, oldest first."""
        return await self._store.session_ids()

    async def messages(self, session_id: str) -> list[Message]:
        timeline = await self._store.get(session_id)
        return list(timeline.messages) if timeline is not None else []

    async def responses(self, session_id: str) -> list[ConversationResponse]:
        return self._cache(session_id).responses(await self.messages(session_id))

    async def visible_messages(self, session_id: str) -> list[Message]:
        return self._cache(session_id).visible_messages(await self.messages(session_id))

    async def is_final(self, session_id: str, message: Message) -> bool:
        return self._cache(session_id).is_final_assistant_message(message, await self.messages(session_id))

    async def interactions(self, session_id: str, final_message_id: str | None = None) -> CorrelationResult:
        """Tool interactions for the whole session, or for one response."""
        messages = await self.messages(session_id)
        if final_message_id is None:
            return self._correlator.correlate(messages)
        return self._cache(session_id).interactions_for_response(messages, final_message_id)

    def pending_approvals(self, session_id: str) -> list[ApprovalInvocation]:
        return self.gatekeeper.get_pending_approvals(session_id)

    # ------------------------------------------------------------------
    # Approvals
    # ------------------------------------------------------------------

    async def decide(self, tool_use_id: str, decision: ApprovalStatus | str, user_id: str) -> bool:
        accepted = self.gatekeeper.process_decision(tool_use_id, decision, user_id)
        invocation = self.gatekeeper.get_invocation(tool_use_id)
        session_id = invocation.session_id if invocation is not None else "unknown"
        await self._trace.emit(session_id, "decision", {
            "tool_use_id": tool_use_id,
            "decision": str(getattr(decision, "value", decision)),
            "user_id": user_id,
            "accepted": accepted,
        })
        return accepted

    async def clear_tool_call(self, session_id: str, tool_use_id: str) -> ApprovalStatus:
        """Resolve once ``tool_use_id`` may proceed (or is refused).

        Calls that never needed approval are cleared immediately.
        """
        if self.gatekeeper.get_invocation(tool_use_id) is None:
            tool_name = await self._find_tool_name(session_id, tool_use_id)
            if tool_name is not None and not self.gatekeeper.requires_approval(tool_name):
                return ApprovalStatus.APPROVED
        t0 = time.time()
        outcome = await self.gatekeeper.wait_for_approval(tool_use_id)
        await self._trace.emit(session_id, "approval_outcome", {
            "tool_use_id": tool_use_id,
            "status": outcome.value,
            "wait_ms": round((time.time() - t0) * 1000, 2),
        })
        return outcome

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def close_session(self, session_id: str) -> None:
        cancelled = self.gatekeeper.cancel_session(session_id)
        self._caches.pop(session_id, None)
        await self._store.delete(session_id)
        await self._trace.emit(session_id, "session_closed", {"timers_cancelled": cancelled})
        await self._trace.flush(session_id)

    async def aclose(self) -> None:
        self.gatekeeper.cleanup()
        self._caches.clear()
        await self._trace.flush_all()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _timeline(self, session_id: str) -> SessionTimeline:
        timeline = await self._store.get(session_id)
        if timeline is None:
            timeline = SessionTimeline(session_id=session_id)
        return timeline

    def _cache(self, session_id: str) -> MessageFilterCache:
        cache = self._caches.get(session_id)
        if cache is None:
            cache = self._caches[session_id] = self._cache_factory(self._correlator)
        return cache

    async def _find_tool_name(self, session_id: str, tool_use_id: str) -> str | None:
        for message in await self.messages(session_id):
            for part in message.parts():
                if isinstance(part, ToolUsePart) and part.id == tool_use_id:
                    return part.name
        return None
