"""Timeline store — ABC + in-memory implementation."""

from __future__ import annotations

import time
from abc import ABC, abstractmethod

from turnstile.engine.models import SessionTimeline


class TimelineStore(ABC):
    """Async per-session timeline persistence interface.

    The durable message store lives outside this package; implement this ABC
    to back timelines with it.
    """

    @abstractmethod
    async def get(self, session_id: str) -> SessionTimeline | None: ...

    @abstractmethod
    async def save(self, timeline: SessionTimeline) -> None: ...

    @abstractmethod
    async def delete(self, session_id: str) -> None: ...

    @abstractmethod
    async def session_ids(self) -> list[str]: ...


class InMemoryTimelineStore(TimelineStore):
    """Dict-backed store — suitable for single-process dev/test."""

    def __init__(self) -> None:
        self._store: dict[str, SessionTimeline] = {}

    async def get(self, session_id: str) -> SessionTimeline | None:
        return self._store.get(session_id)

    async def save(self, timeline: SessionTimeline) -> None:
        timeline.updated_at = time.time()
        self._store[timeline.session_id] = timeline

    async def delete(self, session_id: str) -> None:
        self._store.pop(session_id, None)

    async def session_ids(self) -> list[str]:
        return list(self._store)
