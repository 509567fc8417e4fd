"""
Conversation models: messages, their content parts, and tool invocations.

A message's content is either plain text or an ordered list of parts. Tool
calls and their results are parts, so a persisted assistant message can carry
the results of the calls it depended on.
"""

from __future__ import annotations

import uuid

from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field

Role = Literal["user", "assistant", "tool", "system"]


def generate_id() -> str:
    return str(uuid.uuid4())


class TextPart(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ToolCallPart(BaseModel):
    """A call requested by the model. ``args`` is the raw string when the model emitted invalid JSON."""

    type: Literal["tool-call"] = "tool-call"
    tool_call_id: str
    tool_name: str
    args: dict[str, Any] | str = Field(default_factory=dict)


class ToolResultPart(BaseModel):
    type: Literal["tool-result"] = "tool-result"
    tool_call_id: str
    tool_name: str
    result: Any = None
    is_error: bool = False


ContentPart = Annotated[TextPart | ToolCallPart | ToolResultPart, Field(discriminator="type")]


class Message(BaseModel):
    """One message of a conversation."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(default_factory=generate_id)
    role: Role
    content: str | list[ContentPart]
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def parts(self) -> list[TextPart | ToolCallPart | ToolResultPart]:
        if isinstance(self.content, str):
            return [TextPart(text=self.content)] if self.content else []
        return list(self.content)

    @property
    def text(self) -> str:
        return "".join(p.text for p in self.parts if isinstance(p, TextPart))

    @property
    def tool_calls(self) -> list[ToolCallPart]:
        return [p for p in self.parts if isinstance(p, ToolCallPart)]

    @property
    def tool_results(self) -> list[ToolResultPart]:
        return [p for p in self.parts if isinstance(p, ToolResultPart)]

    def is_empty(self) -> bool:
        return not self.parts


class ToolInvocationState(str, Enum):
    REQUESTED = "requested"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


class InvalidStateTransition(RuntimeError):
    """A tool invocation was moved out of a state that does not allow it."""


class ToolInvocation(BaseModel):
    """Lifecycle of one model-requested tool call within a turn.

    ``requested -> executing -> completed | failed``; terminal states are final.
    """

    id: str
    tool_name: str
    args: dict[str, Any] | str = Field(default_factory=dict)
    state: ToolInvocationState = ToolInvocationState.REQUESTED
    result: Any = None

    @property
    def is_terminal(self) -> bool:
        return self.state in (ToolInvocationState.COMPLETED, ToolInvocationState.FAILED)

    def start(self) -> None:
        self._move(ToolInvocationState.EXECUTING, allowed_from=(ToolInvocationState.REQUESTED,))

    def complete(self, result: Any) -> None:
        self._move(ToolInvocationState.COMPLETED, allowed_from=(ToolInvocationState.EXECUTING,))
        self.result = result

    def fail(self, error: Any) -> None:
        self._move(
            ToolInvocationState.FAILED,
            allowed_from=(ToolInvocationState.REQUESTED, ToolInvocationState.EXECUTING),
        )
        self.result = error

    def _move(self, target: ToolInvocationState, allowed_from: tuple[ToolInvocationState, ...]) -> None:
        if self.state not in allowed_from:
            raise InvalidStateTransition(f"Tool call {self.id}: cannot move from {self.state.value} to {target.value}")
        self.state = target

    def to_call_part(self) -> ToolCallPart:
        return ToolCallPart(tool_call_id=self.id, tool_name=self.tool_name, args=self.args)

    def to_result_part(self) -> ToolResultPart:
        if not self.is_terminal:
            raise InvalidStateTransition(f"Tool call {self.id} has no result yet ({self.state.value})")
        return ToolResultPart(
            tool_call_id=self.id,
            tool_name=self.tool_name,
            result=self.result,
            is_error=self.state == ToolInvocationState.FAILED,
        )


__all__ = [
    "ContentPart",
    "InvalidStateTransition",
    "Message",
    "Role",
    "TextPart",
    "ToolCallPart",
    "ToolInvocation",
    "ToolInvocationState",
    "ToolResultPart",
    "generate_id",
]
