"""Tests for the turn orchestrator.

Turns run against the scripted gateway, the in-memory store and the real tool
registry; the weather service is an httpx MockTransport.
"""

from __future__ import annotations

import asyncio

from typing import Any

import httpx
import pytest

from conftest import OTHER_USER_ID, USER_ID, FakeChatStore, ScriptedGateway, drain, events_on

from core.cancellation import CancellationToken
from core.constants import BASE_TOOLS, MAX_TITLE_LENGTH, ModelConfig, Settings, get_model_config
from core.exceptions import AuthenticationError, UnauthorizedError, UpstreamModelError, ValidationError
from core.multiplexer import StreamMultiplexer
from core.orchestrator import (
    ALLOWED_TRANSITIONS,
    InvalidTurnTransition,
    TurnOrchestrator,
    TurnRequest,
    TurnState,
    clean_title,
)
from models.api_models import UserInfo
from models.chat_models import Message, ToolInvocation, ToolInvocationState
from models.error_models import ErrorCode
from models.event_models import ErrorEvent, TextDeltaEvent, ToolCallEvent
from models.store_models import Chat
from tools import build_default_registry
from tools.coordinator import ToolCoordinator, ToolOutcome
from tools.registry import ToolContext, ToolRegistry

FORECAST = {"current": {"temperature_2m": 18.2}}
WEATHER_ARGS = {"latitude": 37.77, "longitude": -122.42}
QUESTION = "What's the weather in San Francisco?"


def weather_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200, json=FORECAST)))


def make_orchestrator(
    gateway: ScriptedGateway,
    store: Any,
    multiplexer: StreamMultiplexer,
    settings: Settings,
    max_steps: int | None = None,
) -> TurnOrchestrator:
    registry = build_default_registry()
    return TurnOrchestrator(
        gateway=gateway,
        coordinator=ToolCoordinator(registry),
        registry=registry,
        store=store,
        multiplexer=multiplexer,
        http_client=weather_client(),
        settings=settings,
        max_steps=max_steps,
    )


def turn_request(text: str = QUESTION, model: ModelConfig | None = None) -> TurnRequest:
    return TurnRequest(
        chat_id="chat-1",
        messages=[Message(role="user", content=text)],
        model=model or get_model_config("quill-mini"),  # type: ignore[arg-type]
    )


async def prepared(
    gateway: ScriptedGateway,
    store: Any,
    multiplexer: StreamMultiplexer,
    settings: Settings,
    principal: UserInfo,
    **kwargs: Any,
) -> TurnOrchestrator:
    orchestrator = make_orchestrator(gateway, store, multiplexer, settings, **kwargs)
    await orchestrator.prepare(turn_request(), principal)
    return orchestrator


class RecordingCoordinator(ToolCoordinator):
    """Keeps every invocation it runs so tests can inspect final states."""

    def __init__(self, registry: ToolRegistry):
        super().__init__(registry)
        self.invocations: list[ToolInvocation] = []

    async def execute(self, invocation: ToolInvocation, context: ToolContext) -> ToolOutcome:
        self.invocations.append(invocation)
        return await super().execute(invocation, context)


async def wait_for_state(orchestrator: TurnOrchestrator, state: TurnState) -> None:
    for _ in range(200):
        if orchestrator.state == state:
            return
        await asyncio.sleep(0.005)
    raise AssertionError(f"Turn never reached {state.value}; stuck in {orchestrator.state.value}")


class TestPrepare:
    @pytest.mark.asyncio
    async def test_requires_principal(
        self, gateway: ScriptedGateway, store: FakeChatStore, multiplexer: StreamMultiplexer, settings: Settings
    ) -> None:
        orchestrator = make_orchestrator(gateway, store, multiplexer, settings)

        with pytest.raises(AuthenticationError):
            await orchestrator.prepare(turn_request(), None)

    @pytest.mark.asyncio
    async def test_requires_user_message(
        self,
        gateway: ScriptedGateway,
        store: FakeChatStore,
        multiplexer: StreamMultiplexer,
        settings: Settings,
        principal: UserInfo,
    ) -> None:
        orchestrator = make_orchestrator(gateway, store, multiplexer, settings)
        request = turn_request()
        request.messages = [Message(role="assistant", content="Hi")]

        with pytest.raises(ValidationError):
            await orchestrator.prepare(request, principal)
        assert store.calls == []

    @pytest.mark.asyncio
    async def test_foreign_chat_rejected_before_any_event(
        self,
        gateway: ScriptedGateway,
        store: FakeChatStore,
        multiplexer: StreamMultiplexer,
        settings: Settings,
        principal: UserInfo,
    ) -> None:
        store.chats["chat-1"] = Chat(id="chat-1", user_id=OTHER_USER_ID, title="Theirs")
        orchestrator = make_orchestrator(gateway, store, multiplexer, settings)

        with pytest.raises(UnauthorizedError):
            await orchestrator.prepare(turn_request(), principal)

        assert not multiplexer.closed
        assert multiplexer.open_streams == []
        assert gateway.seen_messages == []

    @pytest.mark.asyncio
    async def test_run_requires_prepare(
        self, gateway: ScriptedGateway, store: FakeChatStore, multiplexer: StreamMultiplexer, settings: Settings
    ) -> None:
        orchestrator = make_orchestrator(gateway, store, multiplexer, settings)

        with pytest.raises(RuntimeError):
            await orchestrator.run()


class TestCompletedTurn:
    @pytest.mark.asyncio
    async def test_weather_round_trip(
        self,
        gateway: ScriptedGateway,
        store: FakeChatStore,
        multiplexer: StreamMultiplexer,
        settings: Settings,
        principal: UserInfo,
    ) -> None:
        gateway.steps = [
            [ToolCallEvent(tool_call_id="call_1", tool_name="getWeather", args=WEATHER_ARGS)],
            [TextDeltaEvent(text="It is 18°C in San Francisco.")],
        ]
        gateway.title = "Weather in San Francisco"
        orchestrator = await prepared(gateway, store, multiplexer, settings, principal)

        outcome = await orchestrator.run(CancellationToken())
        events = await drain(multiplexer)

        assert outcome.state == TurnState.DONE
        assert outcome.finish_reason == "stop"
        assert outcome.steps == 2

        message = events_on(events, "message")
        assert [(e.type, e.content) for e in message] == [
            ("tool-call", {"toolCallId": "call_1", "toolName": "getWeather", "args": WEATHER_ARGS}),
            (
                "tool-result",
                {"toolCallId": "call_1", "toolName": "getWeather", "result": FORECAST, "isError": False},
            ),
            ("text-delta", "It is 18°C in San Francisco."),
            ("finish", None),
        ]
        assert events[-1].stream == "turn"
        assert events[-1].content == {"finish_reason": "stop"}
        assert [e.seq for e in events] == list(range(1, len(events) + 1))

        persisted = store.messages["chat-1"]
        assert [m.role for m in persisted] == ["user", "assistant", "assistant"]
        assert persisted[0].text == QUESTION
        assert persisted[1].tool_calls[0].tool_call_id == "call_1"
        assert [p.type for p in persisted[2].parts] == ["tool-result", "text"]
        assert persisted[2].tool_results[0].result == FORECAST
        assert outcome.persisted == persisted

        assert store.chats["chat-1"].title == "Weather in San Francisco"
        assert store.chats["chat-1"].user_id == USER_ID

        # The second model call saw the tool result
        assert [m.role for m in gateway.seen_messages[1]] == ["user", "assistant", "tool"]
        assert [t["function"]["name"] for t in gateway.seen_tools[0]] == list(BASE_TOOLS)

    @pytest.mark.asyncio
    async def test_text_only_turn_on_existing_chat(
        self,
        gateway: ScriptedGateway,
        store: FakeChatStore,
        multiplexer: StreamMultiplexer,
        settings: Settings,
        principal: UserInfo,
    ) -> None:
        store.chats["chat-1"] = Chat(id="chat-1", user_id=USER_ID, title="Existing")
        gateway.steps = [[TextDeltaEvent(text="Hello"), TextDeltaEvent(text=" there")]]
        orchestrator = await prepared(gateway, store, multiplexer, settings, principal)

        outcome = await orchestrator.run()

        assert outcome.state == TurnState.DONE
        assert "save_chat" not in store.calls
        assert store.chats["chat-1"].title == "Existing"
        assert [m.role for m in store.messages["chat-1"]] == ["user", "assistant"]
        assert store.messages["chat-1"][1].text == "Hello there"

    @pytest.mark.asyncio
    async def test_document_substream_finishes_before_tool_result(
        self,
        gateway: ScriptedGateway,
        store: FakeChatStore,
        multiplexer: StreamMultiplexer,
        settings: Settings,
        principal: UserInfo,
    ) -> None:
        gateway.steps = [
            [ToolCallEvent(tool_call_id="call_doc", tool_name="createDocument", args={"title": "Silicon Valley"})],
            [TextDeltaEvent(text="Done.")],
        ]
        gateway.text_chunks = ["# Silicon Valley"]
        orchestrator = await prepared(gateway, store, multiplexer, settings, principal)

        await orchestrator.run()
        events = await drain(multiplexer)

        kinds = [(e.stream, e.type) for e in events]
        assert kinds[:8] == [
            ("message", "tool-call"),
            ("tool:call_doc", "id"),
            ("tool:call_doc", "title"),
            ("tool:call_doc", "clear"),
            ("tool:call_doc", "text-delta"),
            ("tool:call_doc", "finish"),
            ("message", "tool-result"),
            ("message", "text-delta"),
        ]
        assert len(store.documents) == 1

    @pytest.mark.asyncio
    async def test_failed_tool_goes_back_to_model(
        self,
        gateway: ScriptedGateway,
        store: FakeChatStore,
        multiplexer: StreamMultiplexer,
        settings: Settings,
        principal: UserInfo,
    ) -> None:
        gateway.steps = [
            [ToolCallEvent(tool_call_id="call_1", tool_name="launchRocket", args={})],
            [TextDeltaEvent(text="I can't do that.")],
        ]
        orchestrator = await prepared(gateway, store, multiplexer, settings, principal)

        outcome = await orchestrator.run()
        events = await drain(multiplexer)

        assert outcome.state == TurnState.DONE
        [result] = [e for e in events if e.type == "tool-result"]
        assert result.content["isError"] is True
        assert result.content["result"]["code"] == ErrorCode.TOOL_NOT_FOUND.value
        assert [e.type for e in events_on(events, "turn")] == ["finish"]

    @pytest.mark.asyncio
    async def test_step_limit(
        self,
        gateway: ScriptedGateway,
        store: FakeChatStore,
        multiplexer: StreamMultiplexer,
        settings: Settings,
        principal: UserInfo,
    ) -> None:
        """Tools requested in the last step run; the turn then ends with max-steps."""
        gateway.steps = [[ToolCallEvent(tool_call_id="call_1", tool_name="getWeather", args=WEATHER_ARGS)]]
        orchestrator = await prepared(gateway, store, multiplexer, settings, principal, max_steps=1)

        outcome = await orchestrator.run()
        events = await drain(multiplexer)

        assert outcome.finish_reason == "max-steps"
        assert outcome.steps == 1
        assert events[-1].content == {"finish_reason": "max-steps"}
        assert [m.role for m in store.messages["chat-1"]] == ["user", "assistant", "tool"]

    @pytest.mark.asyncio
    async def test_title_falls_back_to_user_text(
        self,
        gateway: ScriptedGateway,
        store: FakeChatStore,
        multiplexer: StreamMultiplexer,
        settings: Settings,
        principal: UserInfo,
    ) -> None:
        gateway.steps = [[TextDeltaEvent(text="Sunny.")]]
        gateway.title_error = UpstreamModelError("Text generation failed")
        orchestrator = await prepared(gateway, store, multiplexer, settings, principal)

        await orchestrator.run()

        assert store.chats["chat-1"].title == QUESTION


class TestFailedTurn:
    @pytest.mark.asyncio
    async def test_upstream_error(
        self,
        gateway: ScriptedGateway,
        store: FakeChatStore,
        multiplexer: StreamMultiplexer,
        settings: Settings,
        principal: UserInfo,
    ) -> None:
        gateway.steps = [[TextDeltaEvent(text="Partial"), ErrorEvent(message="Model request failed: reset")]]
        orchestrator = await prepared(gateway, store, multiplexer, settings, principal)

        outcome = await orchestrator.run()
        events = await drain(multiplexer)

        assert outcome.state == TurnState.ERRORED
        assert outcome.error is not None and outcome.error.code == ErrorCode.OPENAI_ERROR
        assert [(e.stream, e.type) for e in events] == [
            ("message", "text-delta"),
            ("message", "finish"),
            ("turn", "error"),
            ("turn", "finish"),
        ]
        assert events[2].content["code"] == ErrorCode.OPENAI_ERROR.value
        assert events[3].content == {"finish_reason": "error"}
        assert store.messages == {}
        assert "save_chat" not in store.calls

    @pytest.mark.asyncio
    async def test_persistence_failure(
        self,
        gateway: ScriptedGateway,
        store: FakeChatStore,
        multiplexer: StreamMultiplexer,
        settings: Settings,
        principal: UserInfo,
    ) -> None:
        gateway.steps = [[TextDeltaEvent(text="Hello")]]
        store.fail_on = {"save_messages"}
        orchestrator = await prepared(gateway, store, multiplexer, settings, principal)

        outcome = await orchestrator.run()
        events = await drain(multiplexer)

        assert outcome.state == TurnState.ERRORED
        assert [e.type for e in events_on(events, "turn")] == ["error", "finish"]
        assert events_on(events, "turn")[0].content["code"] == ErrorCode.DATABASE_ERROR.value

    @pytest.mark.asyncio
    async def test_unexpected_exception(
        self,
        gateway: ScriptedGateway,
        multiplexer: StreamMultiplexer,
        settings: Settings,
        principal: UserInfo,
    ) -> None:
        class BrokenStore(FakeChatStore):
            async def save_messages(self, chat_id: str, messages: list[Message]) -> None:
                raise RuntimeError("disk on fire")

        gateway.steps = [[TextDeltaEvent(text="Hello")]]
        orchestrator = await prepared(gateway, BrokenStore(), multiplexer, settings, principal)

        outcome = await orchestrator.run()
        events = await drain(multiplexer)

        assert outcome.state == TurnState.ERRORED
        error = events_on(events, "turn")[0].content
        assert error["code"] == ErrorCode.INTERNAL_ERROR.value
        assert "disk on fire" not in error["message"]


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_mid_generation(
        self,
        gateway: ScriptedGateway,
        store: FakeChatStore,
        multiplexer: StreamMultiplexer,
        settings: Settings,
        principal: UserInfo,
    ) -> None:
        gateway.steps = [[TextDeltaEvent(text="Thinking"), "block"]]
        orchestrator = await prepared(gateway, store, multiplexer, settings, principal)
        token = CancellationToken()
        task = asyncio.create_task(orchestrator.run(token))
        await asyncio.sleep(0.01)

        await token.cancel("Stopped by user")

        with pytest.raises(asyncio.CancelledError):
            await task
        events = await drain(multiplexer)
        assert orchestrator.state == TurnState.CANCELLED
        assert events[0].content == "Thinking"
        assert events[-1].stream == "turn"
        assert events[-1].content == {"finish_reason": "cancelled"}
        assert multiplexer.open_streams == []
        assert store.messages == {}

    @pytest.mark.asyncio
    async def test_cancelled_before_start(
        self,
        gateway: ScriptedGateway,
        store: FakeChatStore,
        multiplexer: StreamMultiplexer,
        settings: Settings,
        principal: UserInfo,
    ) -> None:
        orchestrator = await prepared(gateway, store, multiplexer, settings, principal)
        token = CancellationToken()
        await token.cancel("Server shutdown")

        with pytest.raises(asyncio.CancelledError):
            await orchestrator.run(token)

        events = await drain(multiplexer)
        assert [(e.stream, e.content) for e in events] == [("turn", {"finish_reason": "cancelled"})]
        assert gateway.seen_messages == []

    @pytest.mark.asyncio
    async def test_cancel_while_tool_streams(
        self,
        gateway: ScriptedGateway,
        store: FakeChatStore,
        multiplexer: StreamMultiplexer,
        settings: Settings,
        principal: UserInfo,
    ) -> None:
        """Cancelling mid document draft closes the tool's sub-stream and fails its invocation."""
        gateway.steps = [
            [ToolCallEvent(tool_call_id="call_doc", tool_name="createDocument", args={"title": "Silicon Valley"})]
        ]
        gateway.text_chunks = ["# Silicon"]
        gateway.block_text = True
        orchestrator = make_orchestrator(gateway, store, multiplexer, settings)
        coordinator = RecordingCoordinator(orchestrator.registry)
        orchestrator.coordinator = coordinator
        await orchestrator.prepare(turn_request(), principal)
        token = CancellationToken()
        task = asyncio.create_task(orchestrator.run(token))
        await asyncio.wait_for(gateway.text_blocked.wait(), timeout=1)

        await token.cancel("Stopped by user")

        with pytest.raises(asyncio.CancelledError):
            await task
        events = await drain(multiplexer)
        assert orchestrator.state == TurnState.CANCELLED
        tool_events = events_on(events, "tool:call_doc")
        assert [e.type for e in tool_events] == ["id", "title", "clear", "text-delta", "finish"]
        assert [e.type for e in events_on(events, "message")] == ["tool-call", "finish"]
        assert events[-1].content == {"finish_reason": "cancelled"}
        assert multiplexer.open_streams == []

        [invocation] = coordinator.invocations
        assert invocation.state == ToolInvocationState.FAILED
        assert invocation.result["code"] == ErrorCode.TOOL_CANCELLED.value
        assert store.messages == {}
        assert store.documents == {}

    @pytest.mark.asyncio
    async def test_cancel_while_finish_frame_waits_for_reader(
        self,
        gateway: ScriptedGateway,
        store: FakeChatStore,
        settings: Settings,
        principal: UserInfo,
    ) -> None:
        """The turn already finished; a late cancel must not lose the terminal frame."""
        multiplexer = StreamMultiplexer(2)
        store.chats["chat-1"] = Chat(id="chat-1", user_id=USER_ID, title="Existing")
        gateway.steps = [[TextDeltaEvent(text="Hello")]]
        orchestrator = await prepared(gateway, store, multiplexer, settings, principal)
        token = CancellationToken()
        task = asyncio.create_task(orchestrator.run(token))
        await wait_for_state(orchestrator, TurnState.DONE)

        await token.cancel("Stopped by user")
        events = await drain(multiplexer)

        with pytest.raises(asyncio.CancelledError):
            await task
        assert multiplexer.closed
        assert orchestrator.state == TurnState.DONE
        assert [(e.stream, e.type) for e in events] == [
            ("message", "text-delta"),
            ("message", "finish"),
            ("turn", "finish"),
        ]
        assert events[-1].content == {"finish_reason": "stop"}
        assert [m.role for m in store.messages["chat-1"]] == ["user", "assistant"]

    @pytest.mark.asyncio
    async def test_cancel_while_error_frame_waits_for_reader(
        self,
        gateway: ScriptedGateway,
        store: FakeChatStore,
        settings: Settings,
        principal: UserInfo,
    ) -> None:
        multiplexer = StreamMultiplexer(2)
        gateway.steps = [[TextDeltaEvent(text="Partial"), ErrorEvent(message="Model request failed: reset")]]
        orchestrator = await prepared(gateway, store, multiplexer, settings, principal)
        token = CancellationToken()
        task = asyncio.create_task(orchestrator.run(token))
        await wait_for_state(orchestrator, TurnState.ERRORED)

        await token.cancel("Server shutdown")
        events = await drain(multiplexer)

        with pytest.raises(asyncio.CancelledError):
            await task
        assert multiplexer.closed
        assert [(e.stream, e.type) for e in events_on(events, "turn")] == [("turn", "error"), ("turn", "finish")]
        assert events[-1].content == {"finish_reason": "error"}
        assert store.messages == {}


class TestStateMachine:
    def test_terminal_states_have_no_exits(self) -> None:
        for state in (TurnState.DONE, TurnState.ERRORED, TurnState.CANCELLED):
            assert ALLOWED_TRANSITIONS[state] == set()

    def test_abort_reachable_from_every_active_state(self) -> None:
        for state in (TurnState.IDLE, TurnState.AWAITING_MODEL, TurnState.EXECUTING_TOOL, TurnState.FINALIZING):
            assert {TurnState.ERRORED, TurnState.CANCELLED} <= ALLOWED_TRANSITIONS[state]

    def test_invalid_transition(
        self, gateway: ScriptedGateway, store: FakeChatStore, multiplexer: StreamMultiplexer, settings: Settings
    ) -> None:
        orchestrator = make_orchestrator(gateway, store, multiplexer, settings)
        with pytest.raises(InvalidTurnTransition):
            orchestrator._transition(TurnState.DONE)


class TestCleanTitle:
    def test_strips_quotes_and_whitespace(self) -> None:
        assert clean_title('  "Weather in\n San Francisco"  ') == "Weather in San Francisco"

    def test_truncates(self) -> None:
        title = clean_title("word " * 40)
        assert len(title) <= MAX_TITLE_LENGTH
        assert title.endswith("...")

    def test_empty(self) -> None:
        assert clean_title(" '' ") == ""
