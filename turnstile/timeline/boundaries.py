"""Conversation boundaries — which assistant message closes a response.

A *response* spans from a genuine user message to the last assistant message
before the next genuine user message. User messages carrying nothing but
``tool_result`` parts are pass-throughs and never open a new response.

These functions are the O(n²) reference. ``timeline.filtering`` provides a
cached single-pass equivalent.
"""

from __future__ import annotations

from typing import Literal, Sequence

from turnstile.engine.models import ConversationResponse, Message, Role, ToolUsePart

FinalStatus = Literal["streaming", "final", "intermediate"]


# ---------------------------------------------------------------------------
# Position arena
# ---------------------------------------------------------------------------

def message_key(message: Message, position: int) -> str:
    """Stable key for a message: its id, or ``msg-<position>`` when it has none."""
    return message.id if message.id else f"msg-{position}"


def locate_message(message: Message, messages: Sequence[Message]) -> int | None:
    """Position of ``message`` in ``messages``.

    Messages with an id resolve to the first position carrying that id.
    Id-less messages resolve by identity first, then by equality among the
    other id-less messages.
    """
    if message.id:
        for i, candidate in enumerate(messages):
            if candidate.id == message.id:
                return i
        return None
    for i, candidate in enumerate(messages):
        if candidate is message:
            return i
    for i, candidate in enumerate(messages):
        if not candidate.id and candidate == message:
            return i
    return None


class MessageIndex:
    """Position arena over an ordered message list.

    Keys follow ``message_key``; ``position_of`` follows ``locate_message`` but
    answers in O(1) for the common cases.
    """

    def __init__(self, messages: Sequence[Message]) -> None:
        self._messages = messages
        self.keys: list[str] = []
        self._by_id: dict[str, int] = {}
        self._by_identity: dict[int, int] = {}
        for i, message in enumerate(messages):
            self.keys.append(message_key(message, i))
            if message.id:
                self._by_id.setdefault(message.id, i)
            else:
                self._by_identity.setdefault(id(message), i)

    def __len__(self) -> int:
        return len(self.keys)

    def position_of(self, message: Message) -> int | None:
        if message.id:
            return self._by_id.get(message.id)
        position = self._by_identity.get(id(message))
        if position is not None and self._messages[position] is message:
            return position
        for i, candidate in enumerate(self._messages):
            if not candidate.id and candidate == message:
                return i
        return None

    def position_of_key(self, key: str) -> int | None:
        position = self._by_id.get(key)
        if position is not None:
            return position
        for i, k in enumerate(self.keys):
            if k == key:
                return i
        return None


def assign_message_ids(messages: Sequence[Message]) -> list[Message]:
    """Copies of ``messages`` with position-derived ids filled in where missing."""
    return [
        message if message.id else message.model_copy(update={"id": message_key(message, i)})
        for i, message in enumerate(messages)
    ]


# ---------------------------------------------------------------------------
# Final / intermediate classification
# ---------------------------------------------------------------------------

def is_final_assistant_message(message: Message, all_messages: Sequence[Message]) -> bool:
    """True when ``message`` is the last assistant output of its response."""
    if message.role is not Role.ASSISTANT:
        return False

    position = locate_message(message, all_messages)
    if position is None:
        return False

    for following in all_messages[position + 1:]:
        if following.role is Role.ASSISTANT:
            return False
        if following.role is Role.USER:
            if following.is_tool_result_only:
                continue
            return True
        # system / tool messages do not end a response
    return True


def group_into_responses(messages: Sequence[Message]) -> list[ConversationResponse]:
    responses: list[ConversationResponse] = []
    current: list[Message] = []

    for message in messages:
        current.append(message)
        if is_final_assistant_message(message, messages):
            responses.append(ConversationResponse(messages=current))
            current = []

    # In-progress turn without its final assistant message yet.
    if current:
        responses.append(ConversationResponse(messages=current, is_open=True))

    return responses


def get_visible_messages(messages: Sequence[Message]) -> list[Message]:
    """User messages plus final assistant messages, in order."""
    return [
        message
        for message in messages
        if message.role is Role.USER or is_final_assistant_message(message, messages)
    ]


def get_final_message_status(message: Message, all_messages: Sequence[Message]) -> FinalStatus:
    if message.is_streaming:
        return "streaming"
    if is_final_assistant_message(message, all_messages):
        return "final"
    return "intermediate"


# ---------------------------------------------------------------------------
# Response-scoped queries
# ---------------------------------------------------------------------------

def find_response(
    responses: Sequence[ConversationResponse],
    message_id: str,
) -> ConversationResponse | None:
    # Responses partition the list, so running positions match message_key.
    position = 0
    for response in responses:
        for message in response.messages:
            if message_key(message, position) == message_id:
                return response
            position += 1
    return None


def tool_calls_for_response(messages: Sequence[Message], final_message_id: str) -> list[ToolUsePart]:
    """Every tool call of the response containing ``final_message_id``.

    Includes calls made from intermediate assistant messages that
    ``get_visible_messages`` hides.
    """
    response = find_response(group_into_responses(messages), final_message_id)
    if response is None:
        return []
    return [
        part
        for message in response.messages
        for part in message.parts()
        if isinstance(part, ToolUsePart)
    ]
