from __future__ import annotations

from typing import Annotated

import asyncpg
import httpx

from fastapi import Depends, Request

from api.services.chat_store import PostgresChatStore
from api.services.turn_registry import ActiveTurns
from core.constants import Settings, get_settings
from core.persistence import ChatStore
from integrations.model_gateway import ModelGateway
from tools.registry import ToolRegistry


async def get_db(request: Request) -> asyncpg.Pool:
    """Get database connection pool from application state."""
    return request.app.state.db_pool


def get_app_settings() -> Settings:
    return get_settings()


def get_chat_store(db: Annotated[asyncpg.Pool, Depends(get_db)]) -> ChatStore:
    """Provide the chat store backed by PostgreSQL."""
    settings = get_settings()
    return PostgresChatStore(db, acquire_timeout=settings.db_connection_timeout)


def get_model_gateway(request: Request) -> ModelGateway:
    return request.app.state.model_gateway


def get_tool_registry(request: Request) -> ToolRegistry:
    return request.app.state.tool_registry


def get_http_client(request: Request) -> httpx.AsyncClient:
    """Shared outbound HTTP client for tools (weather, search)."""
    return request.app.state.http_client


def get_active_turns(request: Request) -> ActiveTurns:
    return request.app.state.active_turns


# Type aliases for cleaner route signatures
DB = Annotated[asyncpg.Pool, Depends(get_db)]
AppSettings = Annotated[Settings, Depends(get_app_settings)]
Store = Annotated[ChatStore, Depends(get_chat_store)]
Gateway = Annotated[ModelGateway, Depends(get_model_gateway)]
Registry = Annotated[ToolRegistry, Depends(get_tool_registry)]
HttpClient = Annotated[httpx.AsyncClient, Depends(get_http_client)]
Turns = Annotated[ActiveTurns, Depends(get_active_turns)]
