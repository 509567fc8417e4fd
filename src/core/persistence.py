"""
Persistence collaborator contract.

The chat core talks to storage only through this protocol. Every call is
awaited, may be retried by the implementation, and raises
``PersistenceError`` on failure. No transaction spans two calls.
"""

from __future__ import annotations

from typing import Protocol

from models.chat_models import Message
from models.store_models import Chat, Document, Suggestion


class ChatStore(Protocol):
    async def save_chat(self, chat_id: str, user_id: str, title: str) -> Chat: ...

    async def save_messages(self, chat_id: str, messages: list[Message]) -> None: ...

    async def get_chat_by_id(self, chat_id: str) -> Chat | None: ...

    async def get_chats_by_user_id(self, user_id: str) -> list[Chat]: ...

    async def get_messages_by_chat_id(self, chat_id: str) -> list[Message]: ...

    async def delete_chat_by_id(self, chat_id: str) -> None: ...

    async def save_document(self, document_id: str, title: str, content: str, user_id: str) -> Document: ...

    async def get_document_by_id(self, document_id: str) -> Document | None: ...

    async def save_suggestions(self, suggestions: list[Suggestion]) -> None: ...

    async def get_suggestions_by_document_id(self, document_id: str) -> list[Suggestion]: ...


__all__ = ["ChatStore"]
