"""
Request and response schemas for the HTTP API.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from core.constants import DEFAULT_MODEL_ID
from models.chat_models import Message


class UserInfo(BaseModel):
    """The authenticated principal."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": "550e8400-e29b-41d4-a716-446655440000",
                "email": "user@example.com",
                "display_name": "Ada",
            }
        }
    )

    id: str = Field(..., description="User id")
    email: str = Field(..., description="User email address")
    display_name: str | None = Field(default=None, max_length=100, description="User display name")


class ChatRequest(BaseModel):
    """One user turn: the full client-side history ending with the new user message."""

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "id": "1f0c5f7e-8a57-4d0e-9d43-3f1f4c7a2b10",
                "model_id": "quill-mini",
                "messages": [{"role": "user", "content": "What is the weather in San Francisco?"}],
            }
        },
    )

    id: str = Field(..., min_length=1, max_length=100, description="Chat id (created on first turn)")
    messages: list[Message] = Field(default_factory=list, description="Conversation history")
    model_id: str = Field(default=DEFAULT_MODEL_ID, alias="modelId", description="Catalog model id")


class ModelInfo(BaseModel):
    id: str
    label: str
    description: str
    tools: list[str]


class ModelsResponse(BaseModel):
    models: list[ModelInfo]
    default_model: str


class DeleteChatResponse(BaseModel):
    id: str
    deleted: bool = True


class StopTurnResponse(BaseModel):
    chat_id: str
    stopped: bool


class DocumentResponse(BaseModel):
    id: str
    title: str
    content: str | None
    created_at: datetime


class ChatSummary(BaseModel):
    """One entry of the caller's chat history."""

    id: str
    title: str
    created_at: datetime


class ChatMessagesResponse(BaseModel):
    chat_id: str
    messages: list[Message]


class SaveDocumentRequest(BaseModel):
    """A version of a document edited by the user."""

    model_config = ConfigDict(
        json_schema_extra={"example": {"title": "Silicon Valley", "content": "# Silicon Valley\n\nEdited text."}}
    )

    title: str = Field(..., min_length=1, max_length=200, description="Document title")
    content: str = Field(..., description="Full document text")


class HealthResponse(BaseModel):
    status: Literal["healthy", "degraded", "unhealthy"]
    version: str
    database: dict[str, object] | None = None
    active_turns: int = 0


__all__ = [
    "ChatMessagesResponse",
    "ChatRequest",
    "ChatSummary",
    "DeleteChatResponse",
    "DocumentResponse",
    "HealthResponse",
    "ModelInfo",
    "ModelsResponse",
    "SaveDocumentRequest",
    "StopTurnResponse",
    "UserInfo",
]
