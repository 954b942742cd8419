from turnstile.engine.models import (
    ApprovalConfig,
    ApprovalEvent,
    ApprovalEventType,
    ApprovalInvocation,
    ApprovalStatus,
    CanonicalEvent,
    CanonicalEventKind,
    ConversationResponse,
    InteractionStatus,
    Message,
    Role,
    SessionTimeline,
    TextPart,
    TimelineEntry,
    ToolInteraction,
    ToolMatcher,
    ToolResultPart,
    ToolUsePart,
)
from turnstile.engine.session import InMemoryTimelineStore, TimelineStore

__all__ = [
    "ApprovalConfig",
    "ApprovalEvent",
    "ApprovalEventType",
    "ApprovalInvocation",
    "ApprovalStatus",
    "CanonicalEvent",
    "CanonicalEventKind",
    "ConversationResponse",
    "InMemoryTimelineStore",
    "InteractionStatus",
    "Message",
    "Role",
    "SessionTimeline",
    "TextPart",
    "TimelineEntry",
    "TimelineStore",
    "ToolInteraction",
    "ToolMatcher",
    "ToolResultPart",
    "ToolUsePart",
]
