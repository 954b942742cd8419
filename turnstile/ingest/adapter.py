"""Event ingestion adapter — wire frames in, canonical events out.

Recognised shapes:

* versioned envelope ``{"v": 2, "type": "agent_event", "payload": {...}}``
* legacy flat frame ``{"event_type": ..., "session_id": ..., "data": ...}``
* control frames ``{"type": "connected"}`` and ``{"type": "heartbeat"}``

Everything else is logged and dropped. ``normalize`` never raises.
"""

from __future__ import annotations

import itertools
import json
import logging
import time
from typing import Any

from turnstile.engine.models import CanonicalEvent, CanonicalEventKind

logger = logging.getLogger(__name__)

TOKEN_EVENT_TYPES = frozenset({"chunk", "token", "message_chunk"})
DONE_EVENT_TYPES = frozenset({"done", "message_done"})


class IngestionAdapter:
    """Normalizes heterogeneous wire payloads into ``CanonicalEvent``.

    Each instance owns its own ``sequence`` counter, so two adapters never
    share ordering state.
    """

    def __init__(self) -> None:
        self._sequence = itertools.count(1)

    def normalize(self, raw: Any) -> CanonicalEvent | None:
        try:
            frame = _decode(raw)
            if frame is None:
                return None
            return self._normalize_frame(frame)
        except Exception as exc:
            logger.warning("Dropping frame that failed to normalize: %s", exc)
            return None

    # -- shapes -------------------------------------------------------------

    def _normalize_frame(self, frame: dict[str, Any]) -> CanonicalEvent | None:
        frame_type = frame.get("type")

        if frame_type == "agent_event":
            payload = frame.get("payload")
            if not isinstance(payload, dict):
                logger.warning("Dropping agent_event without payload object")
                return None
            return self._from_fields(
                event_type=payload.get("event_type"),
                session_id=payload.get("session_id"),
                event_id=payload.get("event_id"),
                message_id=payload.get("message_id"),
                timestamp=payload.get("timestamp"),
                data=_as_dict(payload.get("data")),
            )

        if frame_type == "connected":
            return self._build(
                CanonicalEventKind.CONNECTED,
                session_id=frame.get("session_id"),
                event_id=frame.get("event_id"),
                timestamp=frame.get("timestamp"),
                payload={},
            )

        if frame_type == "heartbeat":
            return self._build(
                CanonicalEventKind.STATUS,
                session_id=frame.get("session_id"),
                event_id=frame.get("event_id"),
                timestamp=frame.get("timestamp"),
                payload={"status": "heartbeat"},
            )

        if frame.get("event_type"):
            # Legacy flat shape: tool_call / result / error live at top level.
            data = dict(_as_dict(frame.get("data")))
            if isinstance(frame.get("tool_call"), dict):
                data.setdefault("tool_call", frame["tool_call"])
            if frame.get("result") is not None:
                data.setdefault("result", frame["result"])
            if frame.get("error") is not None:
                data.setdefault("error", frame["error"])
            return self._from_fields(
                event_type=frame.get("event_type"),
                session_id=frame.get("session_id"),
                event_id=frame.get("event_id"),
                message_id=frame.get("message_id"),
                timestamp=frame.get("timestamp"),
                data=data,
            )

        logger.warning("Dropping unrecognized frame (type=%r keys=%s)", frame_type, sorted(frame))
        return None

    def _from_fields(
        self,
        *,
        event_type: Any,
        session_id: Any,
        event_id: Any,
        message_id: Any,
        timestamp: Any,
        data: dict[str, Any],
    ) -> CanonicalEvent | None:
        common = dict(
            session_id=session_id,
            event_id=event_id,
            message_id=message_id,
            timestamp=timestamp,
        )

        if event_type in TOKEN_EVENT_TYPES:
            delta = _first(data, "delta", "text", "content")
            if not isinstance(delta, str) or not delta:
                logger.warning("Dropping %s event without delta text", event_type)
                return None
            return self._build(CanonicalEventKind.TOKEN, payload={"delta": delta}, **common)

        if event_type == "tool_call":
            nested = _as_dict(data.get("tool_call"))
            name = _first(data, "tool_name", "tool") or nested.get("name")
            if not name:
                logger.warning("Dropping tool_call event without tool name")
                return None
            call_id = data.get("call_id") or nested.get("id") or event_id
            tool_input = _first(data, "tool_input", "input")
            if tool_input is None:
                tool_input = nested.get("arguments") or nested.get("args") or {}
            if isinstance(tool_input, str):
                tool_input = _maybe_json(tool_input)
            if not isinstance(tool_input, dict):
                tool_input = {"value": tool_input}
            return self._build(
                CanonicalEventKind.TOOL_CALL,
                payload={"id": call_id, "name": str(name), "input": tool_input},
                **common,
            )

        if event_type == "tool_result":
            return self._tool_result(data, common)

        if event_type == "error":
            message = _first(data, "message", "error")
            if message is None:
                message = json.dumps(data, default=str)
            return self._build(
                CanonicalEventKind.STATUS,
                payload={"status": "error", "error": str(message)},
                **common,
            )

        if event_type in DONE_EVENT_TYPES:
            return self._build(CanonicalEventKind.STATUS, payload={"status": "done"}, **common)

        if event_type == "agent_status":
            status = data.get("status")
            if not status:
                logger.warning("Dropping agent_status event without status")
                return None
            return self._build(CanonicalEventKind.STATUS, payload={"status": str(status)}, **common)

        logger.warning("Dropping event with unknown event_type %r", event_type)
        return None

    def _tool_result(self, data: dict[str, Any], common: dict[str, Any]) -> CanonicalEvent | None:
        if not data:
            logger.warning("Dropping tool_result event without data")
            return None
        nested = _as_dict(data.get("result"))
        tool_use_id = (
            _first(data, "call_id", "tool_use_id", "tool_call_id")
            or nested.get("tool_use_id")
            or nested.get("tool_call_id")
        )
        if not tool_use_id:
            logger.warning("Dropping tool_result event without a call id")
            return None

        result = _first(data, "output", "result")
        if isinstance(result, dict) and isinstance(result.get("content"), list):
            texts = [c.get("text") for c in result["content"] if isinstance(c, dict) and c.get("text")]
            if texts:
                result = texts[0]
        if isinstance(result, str):
            result = _maybe_json(result)

        success = data.get("success")
        if success is None:
            success = data.get("ok", True)

        payload: dict[str, Any] = {
            "tool_use_id": str(tool_use_id),
            "result": result,
            "success": bool(success),
        }
        if data.get("error") is not None:
            payload["error"] = data["error"]
        tool_name = _first(data, "tool_name", "tool")
        if tool_name:
            payload["tool_name"] = tool_name
        return self._build(CanonicalEventKind.TOOL_RESULT, payload=payload, **common)

    # -- construction -------------------------------------------------------

    def _build(
        self,
        kind: CanonicalEventKind,
        *,
        session_id: Any,
        event_id: Any,
        payload: dict[str, Any],
        message_id: Any = None,
        timestamp: Any = None,
    ) -> CanonicalEvent:
        sequence = next(self._sequence)
        event = CanonicalEvent(
            kind=kind,
            session_id=str(session_id) if session_id else "unknown",
            event_id=str(event_id) if event_id else f"{kind.value}-{sequence}",
            message_id=str(message_id) if message_id else None,
            payload=payload,
            sequence=sequence,
            timestamp=_timestamp(timestamp),
        )
        logger.debug("Normalized %s event %s (session=%s)", kind.value, event.event_id, event.session_id)
        return event


# ---------------------------------------------------------------------------
# helpers
# ---------------------------------------------------------------------------

def _decode(raw: Any) -> dict[str, Any] | None:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    if isinstance(raw, str):
        text = raw.strip()
        if text.startswith("data:"):
            text = text[len("data:"):].strip()
        if not text:
            logger.warning("Dropping empty frame")
            return None
        try:
            raw = json.loads(text)
        except json.JSONDecodeError as exc:
            logger.warning("Dropping frame with invalid JSON: %s", exc)
            return None
    if not isinstance(raw, dict):
        logger.warning("Dropping frame of unsupported type %s", type(raw).__name__)
        return None
    return raw


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _first(data: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return None


def _maybe_json(text: str) -> Any:
    if text.startswith("{") or text.startswith("["):
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return text
    return text


def _timestamp(value: Any) -> float:
    """Accept epoch seconds or milliseconds; fall back to now."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return time.time()
    value = float(value)
    # Browser clocks send milliseconds.
    if value > 1e11:
        value /= 1000.0
    return value
