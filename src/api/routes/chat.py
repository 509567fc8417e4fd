"""
Chat endpoints.

``POST /chat`` checks its preconditions synchronously (so failures get a
proper status code), then starts the turn in its own task and streams the
multiplexed NDJSON frames back. Leaving the response early (client
disconnect) cancels the turn.

The history and message reads are owner-scoped like deletion.
"""

from __future__ import annotations

import asyncio

from collections.abc import AsyncIterator
from typing import Annotated

from fastapi import APIRouter, Query
from fastapi.responses import StreamingResponse

from api.dependencies import AppSettings, Gateway, HttpClient, Registry, Store, Turns
from api.middleware.auth import CurrentUser
from api.middleware.request_context import update_request_context
from api.services.turn_registry import ActiveTurn, ActiveTurns
from core.cancellation import CancellationToken
from core.constants import STREAM_MEDIA_TYPE, get_model_config
from core.exceptions import AppException, NotFoundError, UnauthorizedError
from core.multiplexer import StreamMultiplexer
from core.orchestrator import TurnOrchestrator, TurnRequest
from models.api_models import ChatMessagesResponse, ChatRequest, ChatSummary, DeleteChatResponse, StopTurnResponse
from models.error_models import ErrorCode
from tools.coordinator import ToolCoordinator
from utils.logger import logger

router = APIRouter()


async def _relay(multiplexer: StreamMultiplexer, turn: ActiveTurn, turns: ActiveTurns) -> AsyncIterator[str]:
    try:
        async for frame in multiplexer.frames():
            yield frame
    finally:
        # No awaits here: this block also runs when the response is cancelled
        multiplexer.detach()
        if not turn.task.done():
            logger.info(f"Client left before turn finished, cancelling chat {turn.chat_id}")
            turn.task.cancel("Client disconnected")
        turns.unregister(turn)


@router.post(
    "/chat",
    summary="Run a chat turn",
    description="Streams the assistant's response as newline-delimited JSON frames.",
    responses={
        200: {
            "description": "Multiplexed event stream",
            "content": {
                STREAM_MEDIA_TYPE: {
                    "example": '{"seq":1,"stream":"message","type":"text-delta","content":"Hi"}\n'
                    '{"seq":2,"stream":"message","type":"finish","content":null}\n'
                    '{"seq":3,"stream":"turn","type":"finish","content":{"finish_reason":"stop"}}\n'
                }
            },
        },
        400: {"description": "No user message"},
        401: {"description": "Not authenticated"},
        403: {"description": "Chat belongs to another user"},
        404: {"description": "Unknown model"},
    },
)
async def chat(
    body: ChatRequest,
    user: CurrentUser,
    store: Store,
    gateway: Gateway,
    registry: Registry,
    http_client: HttpClient,
    turns: Turns,
    settings: AppSettings,
) -> StreamingResponse:
    if turns.shutting_down:
        raise AppException(ErrorCode.SERVICE_SHUTTING_DOWN, "Server is shutting down")

    model = get_model_config(body.model_id)
    if model is None:
        raise NotFoundError("Model", body.model_id)

    update_request_context(chat_id=body.id)
    multiplexer = StreamMultiplexer(settings.stream_buffer_size)
    orchestrator = TurnOrchestrator(
        gateway=gateway,
        coordinator=ToolCoordinator(registry),
        registry=registry,
        store=store,
        multiplexer=multiplexer,
        http_client=http_client,
        settings=settings,
    )
    await orchestrator.prepare(TurnRequest(chat_id=body.id, messages=body.messages, model=model), user)

    token = CancellationToken()
    task = asyncio.create_task(orchestrator.run(token), name=f"turn-{body.id}")
    turn = ActiveTurn(chat_id=body.id, user_id=user.id, task=task, token=token)
    previous = turns.register(turn)
    if previous is not None:
        await previous.token.cancel("Superseded by a new turn")

    logger.info(f"Turn started on chat {body.id} with {model.id}", model=model.id)
    return StreamingResponse(
        _relay(multiplexer, turn, turns),
        media_type=STREAM_MEDIA_TYPE,
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/history", response_model=list[ChatSummary], summary="List the caller's chats")
async def chat_history(user: CurrentUser, store: Store) -> list[ChatSummary]:
    """Newest first."""
    chats = await store.get_chats_by_user_id(user.id)
    return [ChatSummary(id=chat.id, title=chat.title, created_at=chat.created_at) for chat in chats]


@router.get("/chat/{chat_id}/messages", response_model=ChatMessagesResponse, summary="Load a chat's messages")
async def chat_messages(chat_id: str, user: CurrentUser, store: Store) -> ChatMessagesResponse:
    chat = await store.get_chat_by_id(chat_id)
    if chat is None:
        raise NotFoundError("Chat", chat_id)
    if chat.user_id != user.id:
        raise UnauthorizedError("Chat", chat_id)

    messages = await store.get_messages_by_chat_id(chat_id)
    return ChatMessagesResponse(chat_id=chat_id, messages=messages)


@router.delete("/chat", response_model=DeleteChatResponse, summary="Delete a chat")
async def delete_chat(
    chat_id: Annotated[str, Query(alias="id", min_length=1)],
    user: CurrentUser,
    store: Store,
) -> DeleteChatResponse:
    chat = await store.get_chat_by_id(chat_id)
    if chat is None:
        raise NotFoundError("Chat", chat_id)
    if chat.user_id != user.id:
        raise UnauthorizedError("Chat", chat_id)

    await store.delete_chat_by_id(chat_id)
    logger.info(f"Deleted chat {chat_id}")
    return DeleteChatResponse(id=chat_id)


@router.post("/chat/{chat_id}/stop", response_model=StopTurnResponse, summary="Stop the running turn")
async def stop_turn(chat_id: str, user: CurrentUser, turns: Turns) -> StopTurnResponse:
    """Cancel the caller's in-flight turn; the stream ends with finish reason ``cancelled``."""
    stopped = await turns.stop(chat_id, user.id)
    return StopTurnResponse(chat_id=chat_id, stopped=stopped)
