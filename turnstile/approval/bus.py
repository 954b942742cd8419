"""Typed publish/subscribe channel for approval events."""

from __future__ import annotations

import logging
from typing import Callable

from turnstile.engine.models import ApprovalEvent, ApprovalEventType

logger = logging.getLogger(__name__)

ApprovalHandler = Callable[[ApprovalEvent], None]
Unsubscribe = Callable[[], None]


class EventBus:
    """``subscribe(kind, handler) -> unsubscribe`` plus a single ``emit``.

    ``kind=None`` subscribes to every event type. Handlers run synchronously
    in subscription order; a failing handler is logged and skipped.
    """

    def __init__(self) -> None:
        self._handlers: list[tuple[ApprovalEventType | None, ApprovalHandler]] = []

    def subscribe(self, kind: ApprovalEventType | None, handler: ApprovalHandler) -> Unsubscribe:
        entry = (kind, handler)
        self._handlers.append(entry)

        def unsubscribe() -> None:
            try:
                self._handlers.remove(entry)
            except ValueError:
                pass  # already removed

        return unsubscribe

    def emit(self, event: ApprovalEvent) -> None:
        for kind, handler in list(self._handlers):
            if kind is not None and kind is not event.type:
                continue
            try:
                handler(event)
            except Exception:
                logger.exception("Approval handler failed for %s (%s)", event.type.value, event.tool_use_id)

    def __len__(self) -> int:
        return len(self._handlers)
