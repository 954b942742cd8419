"""Shared fixtures for turnstile tests."""

from __future__ import annotations

import pytest

from turnstile.approval.bus import EventBus
from turnstile.approval.gatekeeper import ApprovalGatekeeper
from turnstile.engine.models import ApprovalConfig
from turnstile.engine.runtime import ConversationRuntime
from turnstile.engine.session import InMemoryTimelineStore
from turnstile.ingest.adapter import IngestionAdapter
from turnstile.tools.correlation import ToolCorrelator
from turnstile.tracing.jsonl_tracer import JSONLTraceCollector


@pytest.fixture
def adapter():
    return IngestionAdapter()


@pytest.fixture
def approval_config():
    return ApprovalConfig(
        required_approval_tools=["str_replace_editor", "/.*delete.*/"],
        default_timeout_minutes=1,
        approval_enabled=True,
    )


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def gatekeeper(approval_config, bus):
    keeper = ApprovalGatekeeper(approval_config, bus=bus)
    yield keeper
    # No timer may outlive the test.
    keeper.cleanup()


@pytest.fixture
def correlator():
    return ToolCorrelator()


@pytest.fixture
def trace_collector(tmp_path):
    return JSONLTraceCollector(trace_dir=str(tmp_path / "traces"))


@pytest.fixture
async def runtime(gatekeeper, correlator, trace_collector):
    rt = ConversationRuntime(
        store=InMemoryTimelineStore(),
        gatekeeper=gatekeeper,
        correlator=correlator,
        trace_collector=trace_collector,
    )
    yield rt
    await rt.aclose()
