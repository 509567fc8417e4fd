"""Message list utilities for a chat turn.

The model sees a step's tool results as separate ``tool`` messages; the
persisted form merges a ``tool`` message into the assistant message that
follows it, so a completed tool round trip is stored as
``assistant(tool-call)`` + ``assistant(tool-result..., text)``.
"""

from __future__ import annotations

from collections.abc import Sequence

from core.exceptions import ValidationError
from models.chat_models import Message, TextPart, ToolCallPart, ToolResultPart
from models.error_models import ErrorDetail


def get_most_recent_user_message(messages: Sequence[Message]) -> Message:
    """Return the last user message with content.

    Raises:
        ValidationError: If the conversation has no user message
    """
    for message in reversed(messages):
        if message.role == "user" and not message.is_empty():
            return message
    raise ValidationError(
        "No user message found",
        errors=[ErrorDetail(field="messages", message="At least one user message is required")],
    )


def sanitize_response_messages(messages: Sequence[Message]) -> list[Message]:
    """Drop tool calls that never got a result, empty text parts, and messages left empty.

    Results whose call is not present are dropped as well, so the output
    never contains half of a round trip.
    """
    result_ids = {result.tool_call_id for message in messages for result in message.tool_results}
    call_ids = {call.tool_call_id for message in messages for call in message.tool_calls}

    sanitized: list[Message] = []
    for message in messages:
        if message.role in ("user", "system"):
            sanitized.append(message)
            continue
        parts = [part for part in message.parts if _keep_part(part, result_ids, call_ids)]
        if not parts:
            continue
        if parts == message.parts:
            sanitized.append(message)
        else:
            sanitized.append(message.model_copy(update={"content": parts}))
    return sanitized


def _keep_part(part: TextPart | ToolCallPart | ToolResultPart, result_ids: set[str], call_ids: set[str]) -> bool:
    if isinstance(part, TextPart):
        return bool(part.text)
    if isinstance(part, ToolCallPart):
        return part.tool_call_id in result_ids
    return part.tool_call_id in call_ids


def materialize_for_persistence(messages: Sequence[Message]) -> list[Message]:
    """Merge each ``tool`` message into the assistant message right after it.

    A ``tool`` message not followed by an assistant message (the turn stopped
    at the step limit) is kept as is.
    """
    materialized: list[Message] = []
    pending: Message | None = None
    for message in messages:
        if message.role == "tool":
            if pending is not None:
                materialized.append(pending)
            pending = message
            continue
        if pending is not None and message.role == "assistant":
            merged = [*pending.tool_results, *message.parts]
            materialized.append(message.model_copy(update={"content": merged}))
            pending = None
            continue
        if pending is not None:
            materialized.append(pending)
            pending = None
        materialized.append(message)
    if pending is not None:
        materialized.append(pending)
    return materialized


def expand_history(messages: Sequence[Message]) -> list[Message]:
    """Inverse of ``materialize_for_persistence`` for history sent by a client.

    Results merged into assistant messages are split back out into ``tool``
    messages, then dangling calls are dropped.
    """
    expanded: list[Message] = []
    for message in messages:
        results = message.tool_results
        if message.role != "assistant" or not results:
            expanded.append(message)
            continue
        expanded.append(Message(role="tool", content=list(results), created_at=message.created_at))
        rest = [part for part in message.parts if not isinstance(part, ToolResultPart)]
        if rest:
            expanded.append(message.model_copy(update={"content": rest}))
    return sanitize_response_messages(expanded)


__all__ = [
    "expand_history",
    "get_most_recent_user_message",
    "materialize_for_persistence",
    "sanitize_response_messages",
]
