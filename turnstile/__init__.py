"""turnstile — agent event timeline, tool correlation, and approval gating.

Usage::

    from turnstile import create_runtime

    runtime = create_runtime()
    async for event in runtime.handle(frames):
        print(event)
"""

from __future__ import annotations

import os

from dotenv import load_dotenv

load_dotenv()  # reads .env into os.environ (no-op if file missing)

from turnstile.approval.bus import EventBus
from turnstile.approval.gatekeeper import ApprovalGatekeeper
from turnstile.engine.models import ApprovalConfig, ApprovalStatus, CanonicalEvent, Message
from turnstile.engine.runtime import ConversationRuntime
from turnstile.engine.session import InMemoryTimelineStore
from turnstile.ingest.adapter import IngestionAdapter
from turnstile.tools.correlation import DEFAULT_EXCLUDED_TOOLS, ToolCorrelator
from turnstile.tracing.jsonl_tracer import JSONLTraceCollector

__all__ = [
    "ApprovalConfig",
    "ApprovalGatekeeper",
    "ApprovalStatus",
    "CanonicalEvent",
    "ConversationRuntime",
    "Message",
    "create_runtime",
]

_TRUTHY = {"1", "true", "yes", "on"}


def _split(value: str | None) -> list[str] | None:
    if value is None:
        return None
    return [item.strip() for item in value.split(",") if item.strip()]


def create_runtime(
    *,
    approval_enabled: bool | None = None,
    required_approval_tools: list[str] | None = None,
    default_timeout_minutes: float | None = None,
    excluded_tools: list[str] | None = None,
    trace_dir: str | None = None,
) -> ConversationRuntime:
    """Wire all components and return a ready-to-use ConversationRuntime.

    Environment variables (all optional):
      TURNSTILE_APPROVAL_ENABLED          — ``1`` to gate tool calls
      TURNSTILE_APPROVAL_TOOLS            — comma separated names or ``/regex/``
      TURNSTILE_APPROVAL_TIMEOUT_MINUTES  — default ``10``
      TURNSTILE_EXCLUDED_TOOLS            — never paired; default ``think``
      TURNSTILE_TRACE_DIR                 — default ``./traces``
    """
    if approval_enabled is None:
        approval_enabled = os.environ.get("TURNSTILE_APPROVAL_ENABLED", "").lower() in _TRUTHY
    if required_approval_tools is None:
        required_approval_tools = _split(os.environ.get("TURNSTILE_APPROVAL_TOOLS")) or []
    if default_timeout_minutes is None:
        default_timeout_minutes = float(os.environ.get("TURNSTILE_APPROVAL_TIMEOUT_MINUTES", "10"))
    if excluded_tools is None:
        excluded_tools = _split(os.environ.get("TURNSTILE_EXCLUDED_TOOLS"))
    trace_dir = trace_dir or os.environ.get("TURNSTILE_TRACE_DIR", "./traces")

    # -- components --
    config = ApprovalConfig(
        approval_enabled=approval_enabled,
        required_approval_tools=required_approval_tools,
        default_timeout_minutes=default_timeout_minutes,
    )
    gatekeeper = ApprovalGatekeeper(config, bus=EventBus())
    correlator = ToolCorrelator(excluded_tools if excluded_tools is not None else DEFAULT_EXCLUDED_TOOLS)

    return ConversationRuntime(
        store=InMemoryTimelineStore(),
        gatekeeper=gatekeeper,
        correlator=correlator,
        trace_collector=JSONLTraceCollector(trace_dir),
        adapter=IngestionAdapter(),
    )
