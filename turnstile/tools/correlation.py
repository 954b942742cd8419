"""Tool correlation — pairs tool_use parts with their tool_result parts."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from turnstile.engine.models import (
    ConversationResponse,
    InteractionStatus,
    Message,
    TimelineEntry,
    ToolInteraction,
    ToolResultPart,
    ToolUsePart,
)
from turnstile.timeline.boundaries import find_response, group_into_responses, message_key

logger = logging.getLogger(__name__)

DEFAULT_EXCLUDED_TOOLS: frozenset[str] = frozenset({"think"})


@dataclass
class CorrelationResult:
    """Output of ``ToolCorrelator.correlate``.

    ``entries`` preserves call order; the other lists are views by kind.
    """

    entries: list[TimelineEntry] = field(default_factory=list)
    interactions: list[ToolInteraction] = field(default_factory=list)
    standalone_calls: list[ToolUsePart] = field(default_factory=list)
    standalone_results: list[ToolResultPart] = field(default_factory=list)
    orphan_results: int = 0

    @property
    def running(self) -> list[ToolInteraction]:
        return [i for i in self.interactions if i.status is InteractionStatus.RUNNING]


@dataclass
class _Located:
    part: ToolUsePart | ToolResultPart
    message_key: str
    created_at: float


class ToolCorrelator:
    """Matches calls with results by invocation id.

    Tools named in ``excluded_tools`` are never folded into an interaction;
    their calls and results surface as standalone entries.
    """

    def __init__(self, excluded_tools: Iterable[str] | None = None) -> None:
        self.excluded_tools = (
            frozenset(excluded_tools) if excluded_tools is not None else DEFAULT_EXCLUDED_TOOLS
        )

    def correlate(self, messages: Sequence[Message], *, offset: int = 0) -> CorrelationResult:
        """``offset`` is the position of ``messages[0]`` in the full session list."""
        calls: dict[str, _Located] = {}
        results: dict[str, _Located] = {}
        orphans = 0

        for position, message in enumerate(messages, start=offset):
            key = message_key(message, position)
            for part_index, part in enumerate(message.parts()):
                if isinstance(part, ToolUsePart):
                    if not part.id:
                        part = part.model_copy(update={"id": f"{key}:tool_use:{part_index}"})
                    if part.id in calls:
                        logger.warning("Duplicate tool call id %s in message %s; keeping first", part.id, key)
                        continue
                    calls[part.id] = _Located(part, key, message.created_at)
                elif isinstance(part, ToolResultPart):
                    if not part.tool_use_id:
                        orphans += 1
                        logger.warning("Dropping tool result without tool_use_id in message %s", key)
                        continue
                    if part.tool_use_id in results:
                        logger.warning("Duplicate tool result for %s in message %s; keeping first", part.tool_use_id, key)
                        continue
                    results[part.tool_use_id] = _Located(part, key, message.created_at)

        for tool_use_id in results.keys() - calls.keys():
            orphans += 1
            logger.warning("Dropping tool result %s with no matching tool call", tool_use_id)

        out = CorrelationResult(orphan_results=orphans)
        for call_id, located_call in calls.items():
            call = located_call.part
            located_result = results.get(call_id)

            if call.name in self.excluded_tools:
                out.standalone_calls.append(call)
                out.entries.append(TimelineEntry(kind="tool_call", call=call))
                if located_result is not None:
                    out.standalone_results.append(located_result.part)
                    out.entries.append(TimelineEntry(kind="tool_result", result=located_result.part))
                continue

            interaction = ToolInteraction(
                call=call,
                start_time=located_call.created_at,
                call_message_id=located_call.message_key,
            )
            if located_result is not None:
                result = located_result.part
                interaction.result = result
                interaction.status = InteractionStatus.FAILED if result.is_error else InteractionStatus.COMPLETED
                interaction.end_time = located_result.created_at
                interaction.result_message_id = located_result.message_key
            out.interactions.append(interaction)
            out.entries.append(TimelineEntry(kind="interaction", interaction=interaction))

        return out

    def correlate_response(self, messages: Sequence[Message], final_message_id: str) -> CorrelationResult:
        """Correlate only within the response that contains ``final_message_id``."""
        responses = group_into_responses(messages)
        return self.correlate_in(responses, final_message_id)

    def correlate_in(
        self,
        responses: Sequence[ConversationResponse],
        final_message_id: str,
    ) -> CorrelationResult:
        response = find_response(responses, final_message_id)
        if response is None:
            return CorrelationResult()
        offset = 0
        for candidate in responses:
            if candidate is response:
                break
            offset += len(candidate.messages)
        return self.correlate(response.messages, offset=offset)
