from turnstile.timeline.boundaries import (
    MessageIndex,
    assign_message_ids,
    get_final_message_status,
    get_visible_messages,
    group_into_responses,
    is_final_assistant_message,
    tool_calls_for_response,
)
from turnstile.timeline.builder import TimelineBuilder

__all__ = [
    "MessageIndex",
    "TimelineBuilder",
    "assign_message_ids",
    "get_final_message_status",
    "get_visible_messages",
    "group_into_responses",
    "is_final_assistant_message",
    "tool_calls_for_response",
]
