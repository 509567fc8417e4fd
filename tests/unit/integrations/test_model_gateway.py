"""Tests for the OpenAI model gateway.

The OpenAI client is replaced by a MagicMock whose ``chat.completions.create``
returns fake streams built from plain namespaces shaped like SDK chunks.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from openai import APIConnectionError

from core.exceptions import UpstreamModelError
from integrations.model_gateway import FINISH_MAX_STEPS, OpenAIModelGateway, to_openai_messages
from models.chat_models import Message, TextPart, ToolCallPart, ToolResultPart
from models.event_models import (
    ErrorEvent,
    GenerationEvent,
    StepFinishEvent,
    StreamFinishEvent,
    TextDeltaEvent,
    ToolCallEvent,
)
from models.store_models import SuggestionDraft


def chunk(
    content: str | None = None,
    tool_calls: list[Any] | None = None,
    finish_reason: str | None = None,
) -> SimpleNamespace:
    delta = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(choices=[SimpleNamespace(delta=delta, finish_reason=finish_reason)], usage=None)


def usage_chunk(prompt_tokens: int, completion_tokens: int) -> SimpleNamespace:
    usage = SimpleNamespace(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens)
    return SimpleNamespace(choices=[], usage=usage)


def fragment(index: int, call_id: str | None = None, name: str | None = None, arguments: str | None = None) -> Any:
    return SimpleNamespace(index=index, id=call_id, function=SimpleNamespace(name=name, arguments=arguments))


class FakeStream:
    """Async-iterable, async-context-managed stream of chunks."""

    def __init__(self, chunks: list[SimpleNamespace]):
        self._chunks = chunks
        self.closed = False

    async def __aenter__(self) -> FakeStream:
        return self

    async def __aexit__(self, *exc: object) -> None:
        self.closed = True

    def __aiter__(self) -> AsyncIterator[SimpleNamespace]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[SimpleNamespace]:
        for item in self._chunks:
            yield item


def make_client(*responses: Any) -> MagicMock:
    client = MagicMock()
    client.chat.completions.create = AsyncMock(side_effect=list(responses))
    return client


def connection_error() -> APIConnectionError:
    return APIConnectionError(request=httpx.Request("POST", "https://api.openai.test/v1/chat/completions"))


async def run_generation(
    gateway: OpenAIModelGateway,
    messages: list[Message],
    max_steps: int = 5,
    answer_calls: bool = True,
) -> list[GenerationEvent]:
    """Consume ``generate`` the way the orchestrator does, answering tool calls between steps."""
    events: list[GenerationEvent] = []
    async for event in gateway.generate("You are helpful.", messages, [], max_steps, model="gpt-test"):
        events.append(event)
        if isinstance(event, StepFinishEvent) and event.tool_call_ids and answer_calls:
            calls = [e for e in events if isinstance(e, ToolCallEvent) and e.tool_call_id in event.tool_call_ids]
            messages.append(
                Message(
                    role="assistant",
                    content=[
                        ToolCallPart(tool_call_id=c.tool_call_id, tool_name=c.tool_name, args=c.args) for c in calls
                    ],
                )
            )
            messages.append(
                Message(
                    role="tool",
                    content=[
                        ToolResultPart(tool_call_id=c.tool_call_id, tool_name=c.tool_name, result={"ok": True})
                        for c in calls
                    ],
                )
            )
    return events


class TestGenerate:
    @pytest.mark.asyncio
    async def test_text_only_single_step(self) -> None:
        client = make_client(FakeStream([chunk("Hel"), chunk("lo"), chunk(finish_reason="stop"), usage_chunk(12, 2)]))
        gateway = OpenAIModelGateway(client)

        events = await run_generation(gateway, [Message(role="user", content="Hi")])

        assert [e.type for e in events] == ["text-delta", "text-delta", "step-finish", "stream-finish"]
        assert events[2] == StepFinishEvent(
            step=1, finish_reason="stop", tool_call_ids=[], usage={"prompt_tokens": 12, "completion_tokens": 2}
        )
        assert events[3] == StreamFinishEvent(finish_reason="stop", steps=1)
        assert client.chat.completions.create.await_count == 1

    @pytest.mark.asyncio
    async def test_tool_call_fragments_assembled(self) -> None:
        step_one = FakeStream(
            [
                chunk(tool_calls=[fragment(0, "call_a", "getWeather", '{"latitude":')]),
                chunk(tool_calls=[fragment(0, arguments=' 37.7, "longitude": -122.4}')]),
                chunk(finish_reason="tool_calls"),
            ]
        )
        step_two = FakeStream([chunk("Sunny."), chunk(finish_reason="stop")])
        client = make_client(step_one, step_two)
        gateway = OpenAIModelGateway(client)

        events = await run_generation(gateway, [Message(role="user", content="Weather in SF?")])

        assert events[0] == ToolCallEvent(
            tool_call_id="call_a", tool_name="getWeather", args={"latitude": 37.7, "longitude": -122.4}
        )
        assert events[1] == StepFinishEvent(step=1, finish_reason="tool_calls", tool_call_ids=["call_a"])
        assert events[2] == TextDeltaEvent(text="Sunny.")
        assert events[-1] == StreamFinishEvent(finish_reason="stop", steps=2)

        second_request = client.chat.completions.create.await_args_list[1].kwargs
        roles = [m["role"] for m in second_request["messages"]]
        assert roles == ["system", "user", "assistant", "tool"]
        assert second_request["messages"][3]["tool_call_id"] == "call_a"

    @pytest.mark.asyncio
    async def test_parallel_calls_ordered_by_index(self) -> None:
        stream = FakeStream(
            [
                chunk(
                    tool_calls=[fragment(1, "call_b", "getWeather", "{}"), fragment(0, "call_a", "getWeather", "{}")]
                ),
                chunk(finish_reason="tool_calls"),
            ]
        )
        gateway = OpenAIModelGateway(make_client(stream, FakeStream([chunk("ok")])))

        events = await run_generation(gateway, [Message(role="user", content="Two cities")])

        assert [e.tool_call_id for e in events if isinstance(e, ToolCallEvent)] == ["call_a", "call_b"]

    @pytest.mark.asyncio
    async def test_invalid_arguments_passed_through_raw(self) -> None:
        stream = FakeStream([chunk(tool_calls=[fragment(0, None, "createDocument", '{"title": ')])])
        gateway = OpenAIModelGateway(make_client(stream, FakeStream([chunk("ok")])))

        events = await run_generation(gateway, [Message(role="user", content="Write")])

        call = events[0]
        assert isinstance(call, ToolCallEvent)
        assert call.args == '{"title": '
        assert call.tool_call_id == "call_1_0"

    @pytest.mark.asyncio
    async def test_step_bound(self) -> None:
        """Tools requested in the last allowed step are answered, then generation stops."""
        stream = FakeStream([chunk(tool_calls=[fragment(0, "call_a", "getWeather", "{}")])])
        client = make_client(stream)
        gateway = OpenAIModelGateway(client)

        events = await run_generation(gateway, [Message(role="user", content="Weather?")], max_steps=1)

        assert events[-1] == StreamFinishEvent(finish_reason=FINISH_MAX_STEPS, steps=1)
        assert client.chat.completions.create.await_count == 1

    @pytest.mark.asyncio
    async def test_unanswered_calls_end_with_error(self) -> None:
        stream = FakeStream([chunk(tool_calls=[fragment(0, "call_a", "getWeather", "{}")])])
        gateway = OpenAIModelGateway(make_client(stream))

        events = await run_generation(gateway, [Message(role="user", content="Weather?")], answer_calls=False)

        assert isinstance(events[-1], ErrorEvent)
        assert events[-1].error_type == "protocol"
        assert "call_a" in events[-1].message

    @pytest.mark.asyncio
    async def test_upstream_failure_is_terminal_error_event(self) -> None:
        gateway = OpenAIModelGateway(make_client(connection_error()))

        events = await run_generation(gateway, [Message(role="user", content="Hi")])

        assert len(events) == 1
        assert isinstance(events[0], ErrorEvent)
        assert events[0].error_type == "APIConnectionError"
        assert events[0].retryable

    @pytest.mark.asyncio
    async def test_request_shape(self) -> None:
        client = make_client(FakeStream([chunk("ok")]))
        gateway = OpenAIModelGateway(client, temperature=0.2)
        tools = [{"type": "function", "function": {"name": "getWeather", "parameters": {}}}]

        async for _ in gateway.generate("system", [Message(role="user", content="Hi")], tools, 3, model="gpt-test"):
            pass

        kwargs = client.chat.completions.create.await_args.kwargs
        assert kwargs["model"] == "gpt-test"
        assert kwargs["stream"] is True
        assert kwargs["tools"] == tools
        assert kwargs["temperature"] == 0.2

    @pytest.mark.asyncio
    async def test_no_tools_key_without_tools(self) -> None:
        client = make_client(FakeStream([chunk("ok")]))
        gateway = OpenAIModelGateway(client)

        async for _ in gateway.generate("system", [Message(role="user", content="Hi")], [], 3, model="gpt-test"):
            pass

        kwargs = client.chat.completions.create.await_args.kwargs
        assert "tools" not in kwargs
        assert "temperature" not in kwargs


class TestToOpenAIMessages:
    def test_merged_results_become_tool_messages(self) -> None:
        messages = [
            Message(role="user", content="Weather?"),
            Message(
                role="assistant",
                content=[ToolCallPart(tool_call_id="c1", tool_name="getWeather", args={"latitude": 1})],
            ),
            Message(
                role="assistant",
                content=[
                    ToolResultPart(tool_call_id="c1", tool_name="getWeather", result={"t": 18}),
                    TextPart(text="It is 18 degrees."),
                ],
            ),
        ]

        converted = to_openai_messages("system", messages)

        assert [m["role"] for m in converted] == ["system", "user", "assistant", "tool", "assistant"]
        assert converted[2]["content"] is None
        assert converted[2]["tool_calls"][0]["function"] == {"name": "getWeather", "arguments": '{"latitude":1}'}
        assert converted[3] == {"role": "tool", "tool_call_id": "c1", "content": '{"t":18}'}
        assert converted[4] == {"role": "assistant", "content": "It is 18 degrees."}

    def test_raw_string_arguments_kept(self) -> None:
        messages = [
            Message(role="assistant", content=[ToolCallPart(tool_call_id="c1", tool_name="x", args="{bad")]),
        ]
        converted = to_openai_messages("", messages)
        assert converted[0]["tool_calls"][0]["function"]["arguments"] == "{bad"


class TestNestedGeneration:
    @pytest.mark.asyncio
    async def test_stream_text(self) -> None:
        gateway = OpenAIModelGateway(make_client(FakeStream([chunk("# Title"), chunk(None), chunk("\nBody")])))

        chunks = [c async for c in gateway.stream_text("draft", "Title", model="gpt-test")]

        assert chunks == ["# Title", "\nBody"]

    @pytest.mark.asyncio
    async def test_stream_text_failure(self) -> None:
        gateway = OpenAIModelGateway(make_client(connection_error()))

        with pytest.raises(UpstreamModelError):
            async for _ in gateway.stream_text("draft", "Title", model="gpt-test"):
                pass

    @pytest.mark.asyncio
    async def test_stream_objects_respects_limit_and_skips_malformed(self) -> None:
        item = '{"original_sentence":"a%d","suggested_sentence":"b","description":"c"}'
        body = '{"elements":[' + item % 0 + ',{"original_sentence":"broken"},'
        body += ",".join(item % i for i in range(1, 8)) + "]}"
        pieces = [body[i : i + 7] for i in range(0, len(body), 7)]
        gateway = OpenAIModelGateway(make_client(FakeStream([chunk(p) for p in pieces])))

        drafts = [
            d async for d in gateway.stream_objects("suggest", "text", SuggestionDraft, model="gpt-test", limit=5)
        ]

        assert [d.original_sentence for d in drafts] == ["a0", "a1", "a2", "a3", "a4"]

    @pytest.mark.asyncio
    async def test_stream_objects_requests_json_schema(self) -> None:
        client = make_client(FakeStream([chunk('{"elements":[]}')]))
        gateway = OpenAIModelGateway(client)

        drafts = [d async for d in gateway.stream_objects("suggest", "text", SuggestionDraft, model="gpt-test")]

        assert drafts == []
        response_format = client.chat.completions.create.await_args.kwargs["response_format"]
        assert response_format["type"] == "json_schema"
        assert response_format["json_schema"]["schema"]["properties"]["elements"]["type"] == "array"

    @pytest.mark.asyncio
    async def test_generate_text(self) -> None:
        response = SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content="Weather in SF"))])
        gateway = OpenAIModelGateway(make_client(response))

        assert await gateway.generate_text("title", "Weather in SF?", model="gpt-test") == "Weather in SF"

    @pytest.mark.asyncio
    async def test_generate_text_failure(self) -> None:
        gateway = OpenAIModelGateway(make_client(connection_error()))

        with pytest.raises(UpstreamModelError):
            await gateway.generate_text("title", "Hi", model="gpt-test")
