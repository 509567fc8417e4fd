"""
Records exchanged with the persistence collaborator.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from models.chat_models import generate_id


def _now() -> datetime:
    return datetime.now(UTC)


class Chat(BaseModel):
    id: str
    user_id: str
    title: str
    created_at: datetime = Field(default_factory=_now)


class Document(BaseModel):
    """One version of a document; the latest ``created_at`` is the current one."""

    id: str
    created_at: datetime = Field(default_factory=_now)
    title: str
    content: str | None = None
    user_id: str


class SuggestionDraft(BaseModel):
    """Shape requested from the model for each writing suggestion."""

    model_config = ConfigDict(extra="ignore")

    original_sentence: str = Field(min_length=1, description="The original sentence")
    suggested_sentence: str = Field(min_length=1, description="The suggested sentence")
    description: str = Field(min_length=1, description="The description of the suggestion")


class Suggestion(BaseModel):
    """A stored suggestion. Serialized with camelCase keys for clients."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(default_factory=generate_id)
    document_id: str
    document_created_at: datetime
    original_text: str
    suggested_text: str
    description: str | None = None
    is_resolved: bool = False
    user_id: str
    created_at: datetime = Field(default_factory=_now)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude={"user_id"})


__all__ = ["Chat", "Document", "Suggestion", "SuggestionDraft"]
