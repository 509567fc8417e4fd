"""
Turn orchestrator: the state machine for one user turn.

    IDLE -> AWAITING_MODEL -> {EXECUTING_TOOL -> AWAITING_MODEL}* -> FINALIZING -> DONE

ERRORED and CANCELLED are reachable from every non-terminal state.

``prepare`` runs the precondition checks while the HTTP status can still be
chosen. ``run`` drives the model gateway, relays its text and tool activity
onto the ``message`` sub-stream, hands each step's tool calls to the
coordinator, persists the turn once, and always closes the multiplexer.

The message list handed to the gateway is mutated only here; tool executors
return results and never touch it.
"""

from __future__ import annotations

import asyncio
import contextlib
import time

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

import httpx

from api.middleware.request_context import get_request_id
from core.constants import (
    FRAME_TEXT_DELTA,
    FRAME_TOOL_CALL,
    FRAME_TOOL_RESULT,
    MAX_TITLE_LENGTH,
    MESSAGE_STREAM,
    ModelConfig,
    Settings,
)
from core.exceptions import AppException, AuthenticationError, UnauthorizedError, UpstreamModelError
from core.message_utils import (
    expand_history,
    get_most_recent_user_message,
    materialize_for_persistence,
    sanitize_response_messages,
)
from core.multiplexer import StreamMultiplexer, SubStream
from core.prompts import TITLE_PROMPT, build_system_prompt
from models.api_models import UserInfo
from models.chat_models import Message, TextPart, ToolInvocation
from models.error_models import ErrorCode, StreamError
from models.event_models import (
    ErrorEvent,
    StepFinishEvent,
    StreamFinishEvent,
    TextDeltaEvent,
    ToolCallEvent,
)
from models.store_models import Chat
from tools.coordinator import ToolCoordinator
from tools.registry import ToolContext, ToolRegistry
from utils.logger import logger
from utils.metrics import record_turn, turns_active

if TYPE_CHECKING:
    from core.cancellation import CancellationToken
    from core.persistence import ChatStore
    from integrations.model_gateway import ModelGateway

FINISH_CANCELLED = "cancelled"
FINISH_ERROR = "error"


class TurnState(str, Enum):
    IDLE = "idle"
    AWAITING_MODEL = "awaiting_model"
    EXECUTING_TOOL = "executing_tool"
    FINALIZING = "finalizing"
    DONE = "done"
    ERRORED = "errored"
    CANCELLED = "cancelled"


_ABORT = {TurnState.ERRORED, TurnState.CANCELLED}
TERMINAL_STATES = frozenset({TurnState.DONE, *_ABORT})

ALLOWED_TRANSITIONS: dict[TurnState, set[TurnState]] = {
    TurnState.IDLE: {TurnState.AWAITING_MODEL, *_ABORT},
    TurnState.AWAITING_MODEL: {TurnState.EXECUTING_TOOL, TurnState.FINALIZING, *_ABORT},
    TurnState.EXECUTING_TOOL: {TurnState.AWAITING_MODEL, *_ABORT},
    TurnState.FINALIZING: {TurnState.DONE, *_ABORT},
    TurnState.DONE: set(),
    TurnState.ERRORED: set(),
    TurnState.CANCELLED: set(),
}


class InvalidTurnTransition(RuntimeError):
    pass


@dataclass
class TurnRequest:
    chat_id: str
    messages: list[Message]
    model: ModelConfig


@dataclass
class TurnOutcome:
    state: TurnState
    finish_reason: str
    steps: int = 0
    persisted: list[Message] = field(default_factory=list)
    error: StreamError | None = None


class TurnOrchestrator:
    """Runs one turn. Instances are single-use: ``prepare`` once, then ``run`` once."""

    def __init__(
        self,
        *,
        gateway: ModelGateway,
        coordinator: ToolCoordinator,
        registry: ToolRegistry,
        store: ChatStore,
        multiplexer: StreamMultiplexer,
        http_client: httpx.AsyncClient,
        settings: Settings,
        max_steps: int | None = None,
    ):
        self.gateway = gateway
        self.coordinator = coordinator
        self.registry = registry
        self.store = store
        self.multiplexer = multiplexer
        self.http_client = http_client
        self.settings = settings
        self.max_steps = max_steps or settings.max_steps
        self.state = TurnState.IDLE

        self._request: TurnRequest | None = None
        self._principal: UserInfo | None = None
        self._user_message: Message | None = None
        self._chat: Chat | None = None
        self._history: list[Message] = []
        self._steps = 0
        self._tool_names: list[str] = []
        self._response_text: list[str] = []

    def _transition(self, target: TurnState) -> None:
        if target not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTurnTransition(f"Turn cannot move from {self.state.value} to {target.value}")
        logger.debug(f"Turn state {self.state.value} -> {target.value}")
        self.state = target

    # ------------------------------------------------------------------
    # Idle: preconditions
    # ------------------------------------------------------------------

    async def prepare(self, request: TurnRequest, principal: UserInfo | None) -> None:
        """Check everything that must fail with a non-2xx status.

        Raises:
            AuthenticationError: No principal
            ValidationError: No user message in the conversation
            UnauthorizedError: The chat exists and belongs to someone else
            PersistenceError: The chat lookup failed
        """
        if principal is None:
            raise AuthenticationError()
        user_message = get_most_recent_user_message(request.messages)

        chat = await self.store.get_chat_by_id(request.chat_id)
        if chat is not None and chat.user_id != principal.id:
            raise UnauthorizedError("Chat", request.chat_id)

        self._request = request
        self._principal = principal
        self._user_message = user_message
        self._chat = chat
        self._history = expand_history(request.messages)

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def run(self, cancellation_token: CancellationToken | None = None) -> TurnOutcome:
        """Drive the turn to a terminal state; the multiplexer is closed on every path.

        Raises:
            asyncio.CancelledError: After the stream was closed with reason ``cancelled``
        """
        if self._request is None or self._principal is None:
            raise RuntimeError("prepare() must succeed before run()")

        start = time.perf_counter()
        turns_active.inc()
        outcome: TurnOutcome | None = None
        try:
            self._transition(TurnState.AWAITING_MODEL)
            if cancellation_token is not None:
                async with cancellation_token.cancellation_scope():
                    outcome = await self._drive()
            else:
                outcome = await self._drive()
            return outcome
        except asyncio.CancelledError:
            # A cancel that lands while the terminal frame is being written leaves the outcome as it was
            if self.state not in TERMINAL_STATES:
                self._transition(TurnState.CANCELLED)
            await self._close(FINISH_CANCELLED)
            outcome = TurnOutcome(self.state, self.multiplexer.finish_reason or FINISH_CANCELLED, self._steps)
            logger.info(
                f"Turn cancelled after {self._steps} steps ({self.state.value})", chat_id=self._request.chat_id
            )
            raise
        except AppException as exc:
            outcome = await self._fail(exc.to_stream_error(get_request_id()))
            logger.error(f"Turn failed: {exc.message}", error_code=exc.code.value, chat_id=self._request.chat_id)
            return outcome
        except Exception as exc:
            error = StreamError(code=ErrorCode.INTERNAL_ERROR, message="Internal error", request_id=get_request_id())
            outcome = await self._fail(error)
            logger.error(f"Turn failed unexpectedly: {exc}", exc_info=True, chat_id=self._request.chat_id)
            return outcome
        finally:
            if not self.multiplexer.closed:
                await self._close(FINISH_CANCELLED if self.state == TurnState.CANCELLED else FINISH_ERROR)
            turns_active.dec()
            duration = time.perf_counter() - start
            if outcome is not None:
                record_turn(outcome.state.value, duration)
                logger.log_turn(
                    self._request.chat_id,
                    self._user_message.text if self._user_message else "",
                    "".join(self._response_text),
                    outcome=outcome.state.value,
                    steps=outcome.steps,
                    tool_names=self._tool_names,
                    duration_ms=duration * 1000,
                )

    async def _close(self, finish_reason: str, error: StreamError | None = None) -> None:
        """Write the terminal signal; a cancel arriving meanwhile does not interrupt it."""
        await asyncio.shield(self.multiplexer.close_all(finish_reason, error=error.to_dict() if error else None))

    async def _fail(self, error: StreamError) -> TurnOutcome:
        if self.state not in TERMINAL_STATES:
            self._transition(TurnState.ERRORED)
        await self._close(FINISH_ERROR, error)
        return TurnOutcome(TurnState.ERRORED, FINISH_ERROR, self._steps, error=error)

    async def _drive(self) -> TurnOutcome:
        assert self._request is not None and self._principal is not None
        request = self._request

        tool_names = [name for name in request.model.tools if name in self.registry]
        messages = list(self._history)
        response: list[Message] = []
        pending: list[ToolInvocation] = []
        text: list[str] = []
        finish_reason = "stop"

        context = ToolContext(
            user_id=self._principal.id,
            chat_id=request.chat_id,
            model=request.model.api_identifier,
            gateway=self.gateway,
            store=self.store,
            multiplexer=self.multiplexer,
            http_client=self.http_client,
            settings=self.settings,
        )

        events = self.gateway.generate(
            build_system_prompt(tool_names),
            messages,
            self.registry.declarations(tool_names),
            self.max_steps,
            model=request.model.api_identifier,
        )
        async with self.multiplexer.open(MESSAGE_STREAM) as stream, contextlib.aclosing(events):
            async for event in events:
                if isinstance(event, TextDeltaEvent):
                    text.append(event.text)
                    self._response_text.append(event.text)
                    await stream.append(FRAME_TEXT_DELTA, event.text)

                elif isinstance(event, ToolCallEvent):
                    invocation = ToolInvocation(id=event.tool_call_id, tool_name=event.tool_name, args=event.args)
                    pending.append(invocation)
                    self._tool_names.append(event.tool_name)
                    await stream.append(
                        FRAME_TOOL_CALL,
                        {"toolCallId": invocation.id, "toolName": invocation.tool_name, "args": invocation.args},
                    )

                elif isinstance(event, StepFinishEvent):
                    self._steps = event.step
                    assistant = _assistant_message("".join(text), pending)
                    text = []
                    if assistant is not None:
                        messages.append(assistant)
                        response.append(assistant)
                    if pending:
                        tool_message = await self._execute_tools(pending, context, stream)
                        messages.append(tool_message)
                        response.append(tool_message)
                        pending = []

                elif isinstance(event, StreamFinishEvent):
                    finish_reason = event.finish_reason
                    self._steps = event.steps

                elif isinstance(event, ErrorEvent):
                    raise UpstreamModelError(event.message)

        persisted = await self._finalize(response)
        self._transition(TurnState.DONE)
        await self._close(finish_reason)
        return TurnOutcome(TurnState.DONE, finish_reason, self._steps, persisted)

    async def _execute_tools(
        self,
        invocations: list[ToolInvocation],
        context: ToolContext,
        stream: SubStream,
    ) -> Message:
        self._transition(TurnState.EXECUTING_TOOL)
        await self.coordinator.execute_all(invocations, context)
        parts = [invocation.to_result_part() for invocation in invocations]
        for part in parts:
            await stream.append(
                FRAME_TOOL_RESULT,
                {
                    "toolCallId": part.tool_call_id,
                    "toolName": part.tool_name,
                    "result": part.result,
                    "isError": part.is_error,
                },
            )
        self._transition(TurnState.AWAITING_MODEL)
        return Message(role="tool", content=parts)

    # ------------------------------------------------------------------
    # Finalizing: the single persistence point
    # ------------------------------------------------------------------

    async def _finalize(self, response: list[Message]) -> list[Message]:
        assert self._request is not None and self._principal is not None and self._user_message is not None
        self._transition(TurnState.FINALIZING)

        materialized = materialize_for_persistence(sanitize_response_messages(response))
        if self._chat is None:
            title = await self._generate_title(self._user_message.text)
            self._chat = await self.store.save_chat(self._request.chat_id, self._principal.id, title)

        to_save = [self._user_message, *materialized]
        await self.store.save_messages(self._request.chat_id, to_save)
        logger.debug(f"Persisted {len(to_save)} messages", chat_id=self._request.chat_id)
        return to_save

    async def _generate_title(self, user_text: str) -> str:
        assert self._request is not None
        try:
            title = await self.gateway.generate_text(TITLE_PROMPT, user_text, model=self._request.model.api_identifier)
        except UpstreamModelError as exc:
            logger.warning(f"Title generation failed, using message text: {exc.message}")
            title = ""
        return clean_title(title) or clean_title(user_text) or "New chat"


def clean_title(text: str) -> str:
    """Single-line title without surrounding quotes, at most MAX_TITLE_LENGTH characters."""
    title = " ".join(text.split()).strip("\"'` ")
    if len(title) > MAX_TITLE_LENGTH:
        title = title[: MAX_TITLE_LENGTH - 3].rstrip() + "..."
    return title


def _assistant_message(text: str, calls: list[ToolInvocation]) -> Message | None:
    parts: list[Any] = []
    if text:
        parts.append(TextPart(text=text))
    parts.extend(call.to_call_part() for call in calls)
    if not parts:
        return None
    return Message(role="assistant", content=parts)


__all__ = [
    "ALLOWED_TRANSITIONS",
    "InvalidTurnTransition",
    "TERMINAL_STATES",
    "TurnOrchestrator",
    "TurnOutcome",
    "TurnRequest",
    "TurnState",
    "clean_title",
]
