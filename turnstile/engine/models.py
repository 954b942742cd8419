"""Core data models — no internal dependencies, only Pydantic + stdlib."""

from __future__ import annotations

import re
import time
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    PrivateAttr,
    Tag,
    field_validator,
)


# ---------------------------------------------------------------------------
# Canonical events (ingestion adapter → timeline)
# ---------------------------------------------------------------------------

class CanonicalEventKind(str, Enum):
    TOKEN = "token"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    STATUS = "status"
    CONNECTED = "connected"


class CanonicalEvent(BaseModel):
    """Transport-agnostic agent event. Read-only once created."""

    model_config = ConfigDict(frozen=True)

    kind: CanonicalEventKind
    session_id: str = "unknown"
    event_id: str
    message_id: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    sequence: int = 0
    timestamp: float = Field(default_factory=time.time)


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"


class TextPart(BaseModel):
    type: Literal["text"] = "text"
    text: str = ""


class ToolUsePart(BaseModel):
    type: Literal["tool_use"] = "tool_use"
    id: str | None = None
    name: str = ""
    input: dict[str, Any] = Field(default_factory=dict)


class ToolResultPart(BaseModel):
    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str | None = None
    content: Any = None
    is_error: bool = False


class UnknownPart(BaseModel):
    """Any content part type we do not interpret (images, documents, ...)."""

    model_config = ConfigDict(extra="allow")

    type: str = "unknown"


_KNOWN_PART_TYPES = {"text", "tool_use", "tool_result"}


def _part_tag(value: Any) -> str:
    part_type = value.get("type") if isinstance(value, dict) else getattr(value, "type", None)
    return part_type if part_type in _KNOWN_PART_TYPES else "other"


ContentPart = Annotated[
    Union[
        Annotated[TextPart, Tag("text")],
        Annotated[ToolUsePart, Tag("tool_use")],
        Annotated[ToolResultPart, Tag("tool_result")],
        Annotated[UnknownPart, Tag("other")],
    ],
    Discriminator(_part_tag),
]


class Message(BaseModel):
    id: str | None = None
    session_id: str = ""
    role: Role
    content: str | list[ContentPart] = Field(default_factory=list)
    created_at: float = Field(default_factory=time.time)
    is_streaming: bool = False

    @property
    def is_tool_result_only(self) -> bool:
        """True when the content is a list made only of tool_result parts.

        An empty list counts as tool-result-only; a plain string never does.
        """
        if not isinstance(self.content, list):
            return False
        return all(isinstance(part, ToolResultPart) for part in self.content)

    def parts(self) -> list[Any]:
        if isinstance(self.content, list):
            return self.content
        return [TextPart(text=self.content)] if self.content else []


class ConversationResponse(BaseModel):
    """Contiguous slice from a genuine user message to its final assistant message."""

    messages: list[Message] = Field(default_factory=list)
    is_open: bool = False

    @property
    def final_message(self) -> Message | None:
        if self.is_open or not self.messages:
            return None
        return self.messages[-1]


class SessionTimeline(BaseModel):
    """Ordered per-session message sequence built from canonical events."""

    session_id: str
    messages: list[Message] = Field(default_factory=list)
    seen_event_ids: set[str] = Field(default_factory=set)
    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)


# ---------------------------------------------------------------------------
# Tool correlation
# ---------------------------------------------------------------------------

class InteractionStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ToolInteraction(BaseModel):
    call: ToolUsePart
    result: ToolResultPart | None = None
    status: InteractionStatus = InteractionStatus.RUNNING
    start_time: float
    end_time: float | None = None
    call_message_id: str
    result_message_id: str | None = None


class TimelineEntry(BaseModel):
    kind: Literal["interaction", "tool_call", "tool_result"]
    interaction: ToolInteraction | None = None
    call: ToolUsePart | None = None
    result: ToolResultPart | None = None


# ---------------------------------------------------------------------------
# Approvals
# ---------------------------------------------------------------------------

class ApprovalStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    TIMED_OUT = "TIMED_OUT"

    @property
    def is_terminal(self) -> bool:
        return self is not ApprovalStatus.PENDING


class ApprovalInvocation(BaseModel):
    tool_use_id: str
    session_id: str
    job_id: str | None = None
    tool_call_id: str | None = None
    tool_name: str
    tool_input: dict[str, Any] = Field(default_factory=dict)
    status: ApprovalStatus = ApprovalStatus.PENDING
    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)
    timeout_at: float | None = None
    decided_at: float | None = None
    approved_by: str | None = None


class ApprovalEventType(str, Enum):
    APPROVAL_REQUESTED = "APPROVAL_REQUESTED"
    APPROVAL_DECIDED = "APPROVAL_DECIDED"
    APPROVAL_TIMED_OUT = "APPROVAL_TIMED_OUT"


class ApprovalEvent(BaseModel):
    type: ApprovalEventType
    session_id: str
    tool_use_id: str
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: float = Field(default_factory=time.time)


class ToolMatcher(BaseModel):
    """Either an exact tool name or a regular expression searched in the name."""

    kind: Literal["exact", "pattern"] = "exact"
    value: str

    _compiled: re.Pattern[str] | None = PrivateAttr(default=None)

    def model_post_init(self, __context: Any) -> None:
        if self.kind == "pattern":
            try:
                self._compiled = re.compile(self.value)
            except re.error as exc:
                raise ValueError(f"Invalid tool pattern {self.value!r}: {exc}") from exc

    @classmethod
    def parse(cls, entry: Any) -> "ToolMatcher":
        """Accept a ``ToolMatcher``, a ``{kind, value}`` mapping, or a plain string.

        Plain strings wrapped in slashes (``/.*delete.*/``) become patterns;
        every other string is an exact name.
        """
        if isinstance(entry, ToolMatcher):
            return entry
        if isinstance(entry, dict):
            return cls.model_validate(entry)
        text = str(entry)
        if len(text) >= 2 and text.startswith("/") and text.endswith("/"):
            return cls(kind="pattern", value=text[1:-1])
        return cls(kind="exact", value=text)

    def matches(self, tool_name: str) -> bool:
        if self._compiled is not None:
            return self._compiled.search(tool_name) is not None
        return tool_name == self.value


ToolPreference = Literal["always", "never", "ask"]


class ApprovalConfig(BaseModel):
    required_approval_tools: list[ToolMatcher] = Field(default_factory=list)
    default_timeout_minutes: float = 10.0
    approval_enabled: bool = False
    tool_preferences: dict[str, ToolPreference] = Field(default_factory=dict)

    @field_validator("required_approval_tools", mode="before")
    @classmethod
    def _parse_matchers(cls, value: Any) -> list[ToolMatcher]:
        if value is None:
            return []
        if isinstance(value, (str, dict, ToolMatcher)):
            value = [value]
        return [ToolMatcher.parse(entry) for entry in value]

    @field_validator("default_timeout_minutes")
    @classmethod
    def _positive_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("default_timeout_minutes must be positive")
        return value
