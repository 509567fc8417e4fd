"""
Event models for a streamed chat turn.

Two families live here:

- Generation events, produced by the model gateway and consumed by the turn
  orchestrator (text deltas, tool calls, step and stream completion, errors).
- Stream events, the frames written to the client's NDJSON response by the
  stream multiplexer.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from utils.json_utils import json_compact

# ============================================================================
# Generation events (model gateway -> orchestrator)
# ============================================================================


class TextDeltaEvent(BaseModel):
    type: Literal["text-delta"] = "text-delta"
    text: str


class ToolCallEvent(BaseModel):
    type: Literal["tool-call"] = "tool-call"
    tool_call_id: str
    tool_name: str
    args: dict[str, Any] | str = Field(default_factory=dict)


class StepFinishEvent(BaseModel):
    """End of one model call; ``tool_call_ids`` are the calls the caller must answer before resuming."""

    type: Literal["step-finish"] = "step-finish"
    step: int
    finish_reason: str | None = None
    tool_call_ids: list[str] = Field(default_factory=list)
    usage: dict[str, int] | None = None


class StreamFinishEvent(BaseModel):
    type: Literal["stream-finish"] = "stream-finish"
    finish_reason: str
    steps: int


class ErrorEvent(BaseModel):
    """Terminal upstream failure; nothing follows it."""

    type: Literal["error"] = "error"
    message: str
    error_type: str | None = None
    retryable: bool = False


GenerationEvent = Annotated[
    TextDeltaEvent | ToolCallEvent | StepFinishEvent | StreamFinishEvent | ErrorEvent,
    Field(discriminator="type"),
]

# ============================================================================
# Stream events (multiplexer -> client)
# ============================================================================

StreamEventType = Literal[
    "id",
    "title",
    "clear",
    "text-delta",
    "suggestion",
    "finish",
    "tool-call",
    "tool-result",
    "error",
]


class StreamEvent(BaseModel):
    """One frame of the multiplexed response. Immutable once emitted.

    Example frame:
        {"seq":4,"stream":"tool:call_1","type":"text-delta","content":"# Silicon"}
    """

    model_config = ConfigDict(frozen=True)

    seq: int
    stream: str
    type: StreamEventType
    content: Any = None

    def to_frame(self) -> str:
        """Serialize as one newline-terminated NDJSON line."""
        return json_compact(self.model_dump(mode="json")) + "\n"


__all__ = [
    "ErrorEvent",
    "GenerationEvent",
    "StepFinishEvent",
    "StreamEvent",
    "StreamEventType",
    "StreamFinishEvent",
    "TextDeltaEvent",
    "ToolCallEvent",
]
