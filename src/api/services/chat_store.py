"""PostgreSQL implementation of the chat store.

Raw SQL over an asyncpg pool. Each public call is one statement (or one
``executemany``) retried on transient connection failures; anything the driver
raises after that becomes ``PersistenceError``.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Sequence
from contextlib import asynccontextmanager
from typing import Any

import asyncpg

from core.exceptions import PersistenceError
from models.chat_models import Message
from models.store_models import Chat, Document, Suggestion
from utils.db_utils import DatabaseError, acquire_connection, with_retry
from utils.logger import logger
from utils.metrics import persistence_failures_total, track_query

_DRIVER_ERRORS: tuple[type[Exception], ...] = (
    asyncpg.PostgresError,
    asyncpg.InterfaceError,
    DatabaseError,
    OSError,
)


def _chat(row: asyncpg.Record) -> Chat:
    return Chat(id=row["id"], user_id=str(row["user_id"]), title=row["title"], created_at=row["created_at"])


def _message(row: asyncpg.Record) -> Message:
    return Message(id=row["id"], role=row["role"], content=row["content"], created_at=row["created_at"])


def _document(row: asyncpg.Record) -> Document:
    return Document(
        id=row["id"],
        created_at=row["created_at"],
        title=row["title"],
        content=row["content"],
        user_id=str(row["user_id"]),
    )


def _suggestion(row: asyncpg.Record) -> Suggestion:
    return Suggestion(
        id=row["id"],
        document_id=row["document_id"],
        document_created_at=row["document_created_at"],
        original_text=row["original_text"],
        suggested_text=row["suggested_text"],
        description=row["description"],
        is_resolved=row["is_resolved"],
        user_id=str(row["user_id"]),
        created_at=row["created_at"],
    )


class PostgresChatStore:
    """``ChatStore`` backed by PostgreSQL."""

    def __init__(self, pool: asyncpg.Pool, *, acquire_timeout: float | None = None):
        self.pool = pool
        self.acquire_timeout = acquire_timeout

    @asynccontextmanager
    async def _operation(self, name: str) -> AsyncGenerator[None, None]:
        try:
            yield
        except _DRIVER_ERRORS as exc:
            persistence_failures_total.labels(operation=name).inc()
            logger.error(f"Store operation {name} failed: {exc}", operation=name)
            raise PersistenceError(f"Failed to {name.replace('_', ' ')}", cause=exc) from exc

    @with_retry()
    async def _fetchrow(self, query: str, *args: Any) -> asyncpg.Record | None:
        async with acquire_connection(self.pool, timeout=self.acquire_timeout) as conn:
            return await conn.fetchrow(query, *args)

    @with_retry()
    async def _fetch(self, query: str, *args: Any) -> list[asyncpg.Record]:
        async with acquire_connection(self.pool, timeout=self.acquire_timeout) as conn:
            return list(await conn.fetch(query, *args))

    @with_retry()
    async def _execute(self, query: str, *args: Any) -> str:
        async with acquire_connection(self.pool, timeout=self.acquire_timeout) as conn:
            return str(await conn.execute(query, *args))

    @with_retry()
    async def _executemany(self, query: str, rows: Sequence[tuple[Any, ...]]) -> None:
        async with acquire_connection(self.pool, timeout=self.acquire_timeout) as conn:
            await conn.executemany(query, rows)

    # ------------------------------------------------------------------
    # Chats and messages
    # ------------------------------------------------------------------

    @track_query("insert")
    async def save_chat(self, chat_id: str, user_id: str, title: str) -> Chat:
        async with self._operation("save_chat"):
            row = await self._fetchrow(
                """
                INSERT INTO chats (id, user_id, title)
                VALUES ($1, $2, $3)
                RETURNING id, user_id, title, created_at
                """,
                chat_id,
                user_id,
                title,
            )
        if row is None:
            raise PersistenceError("Chat insert returned no row")
        return _chat(row)

    @track_query("insert")
    async def save_messages(self, chat_id: str, messages: list[Message]) -> None:
        """Insert messages; ids already stored are left unchanged."""
        if not messages:
            return
        rows = [
            (message.id, chat_id, message.role, message.model_dump(mode="json")["content"], message.created_at)
            for message in messages
        ]
        async with self._operation("save_messages"):
            await self._executemany(
                """
                INSERT INTO messages (id, chat_id, role, content, created_at)
                VALUES ($1, $2, $3, $4, $5)
                ON CONFLICT (id) DO NOTHING
                """,
                rows,
            )

    @track_query("select")
    async def get_chat_by_id(self, chat_id: str) -> Chat | None:
        async with self._operation("get_chat"):
            row = await self._fetchrow(
                "SELECT id, user_id, title, created_at FROM chats WHERE id = $1",
                chat_id,
            )
        return _chat(row) if row else None

    @track_query("select")
    async def get_chats_by_user_id(self, user_id: str) -> list[Chat]:
        """The user's chats, newest first."""
        async with self._operation("get_chats"):
            rows = await self._fetch(
                """
                SELECT id, user_id, title, created_at
                FROM chats
                WHERE user_id = $1
                ORDER BY created_at DESC
                """,
                user_id,
            )
        return [_chat(row) for row in rows]

    @track_query("select")
    async def get_messages_by_chat_id(self, chat_id: str) -> list[Message]:
        async with self._operation("get_messages"):
            rows = await self._fetch(
                """
                SELECT id, role, content, created_at
                FROM messages
                WHERE chat_id = $1
                ORDER BY created_at
                """,
                chat_id,
            )
        return [_message(row) for row in rows]

    @track_query("delete")
    async def delete_chat_by_id(self, chat_id: str) -> None:
        # Messages go with the chat (ON DELETE CASCADE)
        async with self._operation("delete_chat"):
            await self._execute("DELETE FROM chats WHERE id = $1", chat_id)

    # ------------------------------------------------------------------
    # Documents and suggestions
    # ------------------------------------------------------------------

    @track_query("insert")
    async def save_document(self, document_id: str, title: str, content: str, user_id: str) -> Document:
        """Store a new version of a document."""
        async with self._operation("save_document"):
            row = await self._fetchrow(
                """
                INSERT INTO documents (id, title, content, user_id)
                VALUES ($1, $2, $3, $4)
                RETURNING id, created_at, title, content, user_id
                """,
                document_id,
                title,
                content,
                user_id,
            )
        if row is None:
            raise PersistenceError("Document insert returned no row")
        return _document(row)

    @track_query("select")
    async def get_document_by_id(self, document_id: str) -> Document | None:
        """Latest version of a document."""
        async with self._operation("get_document"):
            row = await self._fetchrow(
                """
                SELECT id, created_at, title, content, user_id
                FROM documents
                WHERE id = $1
                ORDER BY created_at DESC
                LIMIT 1
                """,
                document_id,
            )
        return _document(row) if row else None

    @track_query("insert")
    async def save_suggestions(self, suggestions: list[Suggestion]) -> None:
        if not suggestions:
            return
        rows = [
            (
                s.id,
                s.document_id,
                s.document_created_at,
                s.original_text,
                s.suggested_text,
                s.description,
                s.is_resolved,
                s.user_id,
                s.created_at,
            )
            for s in suggestions
        ]
        async with self._operation("save_suggestions"):
            await self._executemany(
                """
                INSERT INTO suggestions (
                    id, document_id, document_created_at, original_text, suggested_text,
                    description, is_resolved, user_id, created_at
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                """,
                rows,
            )

    @track_query("select")
    async def get_suggestions_by_document_id(self, document_id: str) -> list[Suggestion]:
        async with self._operation("get_suggestions"):
            rows = await self._fetch(
                """
                SELECT id, document_id, document_created_at, original_text, suggested_text,
                       description, is_resolved, user_id, created_at
                FROM suggestions
                WHERE document_id = $1
                ORDER BY created_at
                """,
                document_id,
            )
        return [_suggestion(row) for row in rows]


__all__ = ["PostgresChatStore"]
