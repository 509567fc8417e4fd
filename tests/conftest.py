"""Shared test fixtures for the Quill Chat test suite.

Provides in-memory stand-ins for the persistence and model collaborators, a
scripted model gateway that replays generation events step by step, and a
tool context wired to both.
"""

from __future__ import annotations

import asyncio
import os

from collections.abc import AsyncIterator, Generator, Sequence
from datetime import UTC, datetime, timedelta
from typing import Any, TypeVar

# Settings are validated on first use; provide credentials before any project import
os.environ.setdefault("OPENAI_API_KEY", "sk-test-0123456789")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("ALLOW_LOCALHOST_NOAUTH", "true")

import httpx
import pytest

from pydantic import BaseModel

from core.constants import Settings, clear_settings_cache, get_model_config
from core.exceptions import PersistenceError, UpstreamModelError
from core.multiplexer import StreamMultiplexer
from models.api_models import UserInfo
from models.chat_models import Message
from models.event_models import (
    ErrorEvent,
    GenerationEvent,
    StepFinishEvent,
    StreamEvent,
    StreamFinishEvent,
    ToolCallEvent,
)
from models.store_models import Chat, Document, Suggestion
from tools.registry import ToolContext

T = TypeVar("T", bound=BaseModel)

USER_ID = "7d9f1c2e-0000-4000-8000-000000000001"
OTHER_USER_ID = "7d9f1c2e-0000-4000-8000-000000000002"


# ============================================================================
# Test Isolation: Settings Management
# ============================================================================


@pytest.fixture(autouse=True)
def reset_settings_singleton() -> Generator[None, None, None]:
    """Start every test with a freshly loaded settings instance."""
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        openai_api_key="sk-test-0123456789",
        search_api_url="https://search.test/api",
        weather_api_url="https://weather.test/v1/forecast",
        max_steps=5,
    )


# ============================================================================
# Collaborator fakes
# ============================================================================


class FakeChatStore:
    """In-memory ``ChatStore``. Names in ``fail_on`` raise ``PersistenceError``."""

    def __init__(self) -> None:
        self.chats: dict[str, Chat] = {}
        self.messages: dict[str, list[Message]] = {}
        self.documents: dict[str, list[Document]] = {}
        self.suggestions: list[Suggestion] = []
        self.calls: list[str] = []
        self.fail_on: set[str] = set()

    def _record(self, name: str) -> None:
        self.calls.append(name)
        if name in self.fail_on:
            raise PersistenceError(f"{name} failed")

    async def save_chat(self, chat_id: str, user_id: str, title: str) -> Chat:
        self._record("save_chat")
        chat = Chat(id=chat_id, user_id=user_id, title=title)
        self.chats[chat_id] = chat
        return chat

    async def save_messages(self, chat_id: str, messages: list[Message]) -> None:
        self._record("save_messages")
        self.messages.setdefault(chat_id, []).extend(messages)

    async def get_chat_by_id(self, chat_id: str) -> Chat | None:
        self._record("get_chat_by_id")
        return self.chats.get(chat_id)

    async def get_chats_by_user_id(self, user_id: str) -> list[Chat]:
        self._record("get_chats_by_user_id")
        chats = [chat for chat in self.chats.values() if chat.user_id == user_id]
        return sorted(chats, key=lambda chat: chat.created_at, reverse=True)

    async def get_messages_by_chat_id(self, chat_id: str) -> list[Message]:
        self._record("get_messages_by_chat_id")
        return sorted(self.messages.get(chat_id, []), key=lambda message: message.created_at)

    async def delete_chat_by_id(self, chat_id: str) -> None:
        self._record("delete_chat_by_id")
        self.chats.pop(chat_id, None)
        self.messages.pop(chat_id, None)

    async def save_document(self, document_id: str, title: str, content: str, user_id: str) -> Document:
        self._record("save_document")
        versions = self.documents.setdefault(document_id, [])
        created_at = datetime.now(UTC)
        if versions and created_at <= versions[-1].created_at:
            created_at = versions[-1].created_at + timedelta(microseconds=1)
        document = Document(id=document_id, created_at=created_at, title=title, content=content, user_id=user_id)
        versions.append(document)
        return document

    async def get_document_by_id(self, document_id: str) -> Document | None:
        self._record("get_document_by_id")
        versions = self.documents.get(document_id)
        return versions[-1] if versions else None

    async def save_suggestions(self, suggestions: list[Suggestion]) -> None:
        self._record("save_suggestions")
        self.suggestions.extend(suggestions)

    async def get_suggestions_by_document_id(self, document_id: str) -> list[Suggestion]:
        self._record("get_suggestions_by_document_id")
        return [s for s in self.suggestions if s.document_id == document_id]


class ScriptedGateway:
    """Model gateway that replays one scripted list of events per step.

    A step's list may contain ``TextDeltaEvent``/``ToolCallEvent`` items, an
    ``ErrorEvent`` (ends the generation), or ``"block"`` (waits forever, for
    cancellation tests). With ``block_text`` set, ``stream_text`` waits forever
    after its chunks. Like the real gateway, it stops after a step without tool
    calls and reports ``max-steps`` when the bound is reached.
    """

    def __init__(self, steps: Sequence[Sequence[Any]] = ()) -> None:
        self.steps = [list(step) for step in steps]
        self.seen_messages: list[list[Message]] = []
        self.seen_tools: list[list[dict[str, Any]]] = []
        self.text_chunks: list[str] = []
        self.block_text = False
        self.text_blocked = asyncio.Event()
        self.objects: list[dict[str, Any]] = []
        self.title = "Generated title"
        self.title_error: Exception | None = None
        self.prompts: list[str] = []

    async def generate(
        self,
        system_prompt: str,
        messages: list[Message],
        tools: Sequence[dict[str, Any]],
        max_steps: int,
        *,
        model: str,
    ) -> AsyncIterator[GenerationEvent]:
        self.seen_tools.append(list(tools))
        for step in range(1, max_steps + 1):
            self.seen_messages.append(list(messages))
            script = self.steps[step - 1] if step <= len(self.steps) else []
            call_ids: list[str] = []
            for item in script:
                if item == "block":
                    await asyncio.Event().wait()
                if isinstance(item, ErrorEvent):
                    yield item
                    return
                if isinstance(item, ToolCallEvent):
                    call_ids.append(item.tool_call_id)
                yield item
            yield StepFinishEvent(step=step, finish_reason="tool_calls" if call_ids else "stop", tool_call_ids=call_ids)
            if not call_ids:
                yield StreamFinishEvent(finish_reason="stop", steps=step)
                return
        yield StreamFinishEvent(finish_reason="max-steps", steps=max_steps)

    async def stream_text(self, system_prompt: str, prompt: str, *, model: str) -> AsyncIterator[str]:
        self.prompts.append(prompt)
        for chunk in self.text_chunks:
            yield chunk
        if self.block_text:
            self.text_blocked.set()
            await asyncio.Event().wait()

    async def stream_objects(
        self,
        system_prompt: str,
        prompt: str,
        item_model: type[T],
        *,
        model: str,
        limit: int | None = None,
    ) -> AsyncIterator[T]:
        self.prompts.append(prompt)
        for produced, raw in enumerate(self.objects, start=1):
            yield item_model.model_validate(raw)
            if limit is not None and produced >= limit:
                return

    async def generate_text(self, system_prompt: str, prompt: str, *, model: str) -> str:
        if self.title_error is not None:
            raise self.title_error
        return self.title


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def store() -> FakeChatStore:
    return FakeChatStore()


@pytest.fixture
def gateway() -> ScriptedGateway:
    return ScriptedGateway()


@pytest.fixture
def multiplexer() -> StreamMultiplexer:
    return StreamMultiplexer()


@pytest.fixture
def principal() -> UserInfo:
    return UserInfo(id=USER_ID, email="ada@example.com", display_name="Ada")


@pytest.fixture
def model_config() -> Any:
    return get_model_config("quill-mini")


@pytest.fixture
def http_client() -> httpx.AsyncClient:
    """Client whose transport answers every request with 599; tests swap in their own."""
    return httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(599)))


@pytest.fixture
def tool_context(
    store: FakeChatStore,
    gateway: ScriptedGateway,
    multiplexer: StreamMultiplexer,
    http_client: httpx.AsyncClient,
    settings: Settings,
) -> ToolContext:
    return ToolContext(
        user_id=USER_ID,
        chat_id="chat-1",
        model="gpt-4o-mini",
        gateway=gateway,
        store=store,
        multiplexer=multiplexer,
        http_client=http_client,
        settings=settings,
        tool_call_id="call_1",
    )


# ============================================================================
# Helpers
# ============================================================================


async def drain(multiplexer: StreamMultiplexer) -> list[StreamEvent]:
    """Collect every event of a multiplexer whose terminal signal has been written."""
    return [event async for event in multiplexer.events()]


async def close_and_drain(multiplexer: StreamMultiplexer) -> list[StreamEvent]:
    await multiplexer.close_all()
    return await drain(multiplexer)


def events_on(events: Sequence[StreamEvent], stream: str) -> list[StreamEvent]:
    return [event for event in events if event.stream == stream]


def upstream_failure() -> UpstreamModelError:
    return UpstreamModelError("Model request failed: connection reset")
