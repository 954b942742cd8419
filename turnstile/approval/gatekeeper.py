"""Approval gatekeeper — human sign-off for sensitive tool invocations.

Each invocation is a small state machine::

    PENDING ──decision──▶ APPROVED | REJECTED
       └────timer expiry──▶ TIMED_OUT

Every terminal state is final. Decisions and timer expiry go through the same
``_settle`` step, which only acts on a PENDING invocation, so at most one of
them ever wins.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable

from turnstile.approval.bus import EventBus
from turnstile.engine.models import (
    ApprovalConfig,
    ApprovalEvent,
    ApprovalEventType,
    ApprovalInvocation,
    ApprovalStatus,
)

logger = logging.getLogger(__name__)

DECISIONS = {ApprovalStatus.APPROVED, ApprovalStatus.REJECTED}
PREFERENCE_ACTOR = "preference"


class ApprovalGatekeeper:
    """Tracks approval invocations, their timers and their waiters.

    Must be driven from a single asyncio event loop.
    """

    def __init__(
        self,
        config: ApprovalConfig | dict[str, Any] | None = None,
        bus: EventBus | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if config is None:
            config = ApprovalConfig()
        elif isinstance(config, dict):
            config = ApprovalConfig.model_validate(config)
        self._config = config
        self.bus = bus if bus is not None else EventBus()
        self._clock = clock
        self._invocations: dict[str, ApprovalInvocation] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._waiters: dict[str, list[asyncio.Future[ApprovalStatus]]] = {}
        logger.info(
            "Approval gatekeeper ready (enabled=%s, tools=%d, timeout=%.2fmin)",
            config.approval_enabled, len(config.required_approval_tools), config.default_timeout_minutes,
        )

    # -- configuration ------------------------------------------------------

    @property
    def config(self) -> ApprovalConfig:
        return self._config

    def get_config(self) -> ApprovalConfig:
        return self._config.model_copy(deep=True)

    def update_config(self, **changes: Any) -> ApprovalConfig:
        merged = {**self._config.model_dump(), **changes}
        self._config = ApprovalConfig.model_validate(merged)
        logger.info("Approval config updated: %s", sorted(changes))
        return self._config

    def requires_approval(self, tool_name: str) -> bool:
        if not self._config.approval_enabled:
            return False
        return any(matcher.matches(tool_name) for matcher in self._config.required_approval_tools)

    # -- invocations --------------------------------------------------------

    def create_invocation(
        self,
        *,
        tool_use_id: str,
        session_id: str,
        tool_name: str,
        tool_input: dict[str, Any] | None = None,
        tool_call_id: str | None = None,
        job_id: str | None = None,
    ) -> ApprovalInvocation:
        """Store a PENDING record. No timer is armed.

        An existing record for ``tool_use_id`` is returned unchanged.
        """
        existing = self._invocations.get(tool_use_id)
        if existing is not None:
            logger.debug("Invocation %s already exists (status=%s)", tool_use_id, existing.status.value)
            return existing

        now = self._clock()
        invocation = ApprovalInvocation(
            tool_use_id=tool_use_id,
            session_id=session_id,
            tool_name=tool_name,
            tool_input=tool_input or {},
            tool_call_id=tool_call_id,
            job_id=job_id,
            created_at=now,
            updated_at=now,
        )
        self._invocations[tool_use_id] = invocation
        logger.debug("Created invocation %s for %s", tool_use_id, tool_name)
        return invocation

    async def request_approval(
        self,
        *,
        tool_use_id: str,
        session_id: str,
        tool_name: str,
        tool_input: dict[str, Any] | None = None,
        job_id: str | None = None,
        timeout_minutes: float | None = None,
    ) -> None:
        invocation = self.create_invocation(
            tool_use_id=tool_use_id,
            session_id=session_id,
            tool_name=tool_name,
            tool_input=tool_input,
            job_id=job_id,
        )
        if invocation.status.is_terminal:
            logger.warning(
                "Ignoring approval request for %s: already %s", tool_use_id, invocation.status.value,
            )
            return
        if tool_use_id in self._timers:
            logger.debug("Approval for %s already pending; keeping its timer", tool_use_id)
            return

        minutes = self._config.default_timeout_minutes if timeout_minutes is None else timeout_minutes
        if minutes < 0:
            raise ValueError("timeout_minutes must not be negative")
        seconds = minutes * 60.0

        now = self._clock()
        if job_id is not None:
            invocation.job_id = job_id
        invocation.timeout_at = now + seconds
        invocation.updated_at = now

        loop = asyncio.get_running_loop()
        self._timers[tool_use_id] = loop.call_later(seconds, self._handle_timeout, tool_use_id)

        self.bus.emit(ApprovalEvent(
            type=ApprovalEventType.APPROVAL_REQUESTED,
            session_id=invocation.session_id,
            tool_use_id=tool_use_id,
            data={
                "tool_name": invocation.tool_name,
                "tool_input": invocation.tool_input,
                "status": ApprovalStatus.PENDING.value,
                "timeout_at": invocation.timeout_at,
            },
            timestamp=now,
        ))
        logger.info("Requested approval for %s (%s), timeout %.1fs", tool_name, tool_use_id, seconds)

        preference = self._config.tool_preferences.get(tool_name, "ask")
        if preference == "always":
            self._settle(invocation, ApprovalStatus.APPROVED, approved_by=PREFERENCE_ACTOR)
        elif preference == "never":
            self._settle(invocation, ApprovalStatus.REJECTED, approved_by=PREFERENCE_ACTOR)

    def process_decision(self, tool_use_id: str, decision: ApprovalStatus | str, user_id: str) -> bool:
        """Record a human decision. ``False`` when unknown or already decided."""
        status = ApprovalStatus(decision)
        if status not in DECISIONS:
            raise ValueError(f"Decision must be APPROVED or REJECTED, got {status.value}")

        invocation = self._invocations.get(tool_use_id)
        if invocation is None:
            logger.warning("Decision for unknown tool_use_id %s", tool_use_id)
            return False
        if invocation.status.is_terminal:
            logger.warning(
                "Decision for non-pending approval %s (status=%s)", tool_use_id, invocation.status.value,
            )
            return False
        return self._settle(invocation, status, approved_by=user_id)

    async def wait_for_approval(self, tool_use_id: str) -> ApprovalStatus:
        """Resolve with the terminal status; unknown ids fail closed as REJECTED."""
        invocation = self._invocations.get(tool_use_id)
        if invocation is None:
            return ApprovalStatus.REJECTED
        if invocation.status.is_terminal:
            return invocation.status

        future: asyncio.Future[ApprovalStatus] = asyncio.get_running_loop().create_future()
        waiters = self._waiters.setdefault(tool_use_id, [])
        waiters.append(future)
        try:
            return await future
        finally:
            remaining = self._waiters.get(tool_use_id)
            if remaining and future in remaining:
                remaining.remove(future)
                if not remaining:
                    del self._waiters[tool_use_id]

    async def gate(
        self,
        *,
        tool_use_id: str,
        session_id: str,
        tool_name: str,
        tool_input: dict[str, Any] | None = None,
        job_id: str | None = None,
        timeout_minutes: float | None = None,
    ) -> ApprovalStatus:
        """Clear a tool invocation: immediately when no approval is needed."""
        if not self.requires_approval(tool_name):
            return ApprovalStatus.APPROVED
        await self.request_approval(
            tool_use_id=tool_use_id,
            session_id=session_id,
            tool_name=tool_name,
            tool_input=tool_input,
            job_id=job_id,
            timeout_minutes=timeout_minutes,
        )
        return await self.wait_for_approval(tool_use_id)

    # -- queries ------------------------------------------------------------

    def get_invocation(self, tool_use_id: str) -> ApprovalInvocation | None:
        return self._invocations.get(tool_use_id)

    def get_invocation_by_job_id(self, job_id: str) -> ApprovalInvocation | None:
        for invocation in self._invocations.values():
            if invocation.job_id == job_id:
                return invocation
        return None

    def get_pending_approvals(self, session_id: str) -> list[ApprovalInvocation]:
        return [
            invocation
            for invocation in self._invocations.values()
            if invocation.session_id == session_id and invocation.status is ApprovalStatus.PENDING
        ]

    @property
    def armed_timers(self) -> int:
        return len(self._timers)

    # -- teardown -----------------------------------------------------------

    def cancel_session(self, session_id: str) -> int:
        """Cancel a session's timers, fail its waiters closed, forget its invocations."""
        ids = [i.tool_use_id for i in self._invocations.values() if i.session_id == session_id]
        cancelled = self._teardown(ids)
        for tool_use_id in ids:
            del self._invocations[tool_use_id]
        if ids:
            logger.info("Cancelled %d approval timer(s) for session %s", cancelled, session_id)
        return cancelled

    def cleanup(self) -> int:
        """Cancel every timer, fail every waiter closed, drop all invocations."""
        cancelled = self._teardown(list(self._invocations))
        self._invocations.clear()
        logger.debug("Approval gatekeeper cleaned up (%d timer(s) cancelled)", cancelled)
        return cancelled

    def prune(self, max_age_seconds: float = 24 * 60 * 60) -> int:
        """Drop terminal invocations older than ``max_age_seconds`` with no waiters."""
        cutoff = self._clock() - max_age_seconds
        expired = [
            tool_use_id
            for tool_use_id, invocation in self._invocations.items()
            if invocation.status.is_terminal
            and invocation.created_at < cutoff
            and not self._waiters.get(tool_use_id)
        ]
        for tool_use_id in expired:
            del self._invocations[tool_use_id]
        if expired:
            logger.info("Pruned %d expired approval invocation(s)", len(expired))
        return len(expired)

    # -- internals ----------------------------------------------------------

    def _handle_timeout(self, tool_use_id: str) -> None:
        self._timers.pop(tool_use_id, None)
        invocation = self._invocations.get(tool_use_id)
        if invocation is None or invocation.status.is_terminal:
            return
        self._settle(invocation, ApprovalStatus.TIMED_OUT)

    def _settle(
        self,
        invocation: ApprovalInvocation,
        status: ApprovalStatus,
        approved_by: str | None = None,
    ) -> bool:
        if invocation.status.is_terminal:
            return False

        now = self._clock()
        invocation.status = status
        invocation.updated_at = now
        if status is not ApprovalStatus.TIMED_OUT:
            invocation.decided_at = now
            invocation.approved_by = approved_by

        tool_use_id = invocation.tool_use_id
        timer = self._timers.pop(tool_use_id, None)
        if timer is not None:
            timer.cancel()
        for future in self._waiters.pop(tool_use_id, []):
            if not future.done():
                future.set_result(status)

        if status is ApprovalStatus.TIMED_OUT:
            event_type = ApprovalEventType.APPROVAL_TIMED_OUT
            data: dict[str, Any] = {"status": status.value}
            logger.info("Approval timed out for %s (%s)", invocation.tool_name, tool_use_id)
        else:
            event_type = ApprovalEventType.APPROVAL_DECIDED
            data = {"status": status.value, "approved_by": approved_by}
            logger.info("Recorded %s for %s (%s) by %s", status.value, invocation.tool_name, tool_use_id, approved_by)

        self.bus.emit(ApprovalEvent(
            type=event_type,
            session_id=invocation.session_id,
            tool_use_id=tool_use_id,
            data=data,
            timestamp=now,
        ))
        return True

    def _teardown(self, tool_use_ids: list[str]) -> int:
        cancelled = 0
        for tool_use_id in tool_use_ids:
            timer = self._timers.pop(tool_use_id, None)
            if timer is not None:
                timer.cancel()
                cancelled += 1
            for future in self._waiters.pop(tool_use_id, []):
                if not future.done():
                    future.set_result(ApprovalStatus.REJECTED)
        return cancelled
