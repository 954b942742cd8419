"""TraceCollector ABC — no internal deps."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class TraceCollector(ABC):
    """Collects structured per-session trace records (ingest, drops, approvals)."""

    @abstractmethod
    async def emit(self, session_id: str, event_type: str, data: dict[str, Any]) -> None: ...

    @abstractmethod
    async def flush(self, session_id: str) -> None: ...

    async def flush_all(self) -> None:
        """Flush every buffered session. Collectors without buffers need not override."""
