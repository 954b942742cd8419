"""JSONL file-based trace collector."""

from __future__ import annotations

import json
import logging
import re
import time
from pathlib import Path
from typing import Any

from turnstile.tracing.interface import TraceCollector

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]")


class JSONLTraceCollector(TraceCollector):
    """Writes trace records to ``{trace_dir}/{session_id}.jsonl``.

    Records are buffered in memory per session and appended on ``flush``.
    A failed write is logged and the records are dropped; tracing never
    breaks event processing.
    """

    def __init__(self, trace_dir: str = "./traces") -> None:
        self._dir = Path(trace_dir)
        self._dir.mkdir(parents=True, exist_ok=True)
        self._buffers: dict[str, list[dict[str, Any]]] = {}

    def path_for(self, session_id: str) -> Path:
        return self._dir / f"{_UNSAFE.sub('_', session_id) or 'unknown'}.jsonl"

    async def emit(self, session_id: str, event_type: str, data: dict[str, Any]) -> None:
        entry = {
            "ts": time.time(),
            "session_id": session_id,
            "event": event_type,
            **data,
        }
        self._buffers.setdefault(session_id, []).append(entry)

    async def flush(self, session_id: str) -> None:
        entries = self._buffers.pop(session_id, [])
        if not entries:
            return
        path = self.path_for(session_id)
        try:
            with open(path, "a") as f:
                for entry in entries:
                    f.write(json.dumps(entry, default=str) + "\n")
        except OSError as exc:
            logger.warning("Failed to write %d trace record(s) to %s: %s", len(entries), path, exc)

    async def flush_all(self) -> None:
        for session_id in list(self._buffers):
            await self.flush(session_id)
