"""
Model gateway: the chat core's only view of the hosted model.

``generate`` drives a bounded, multi-step tool-calling generation as a lazy
event stream. The consumer appends each step's assistant message and tool
results to the same ``messages`` list it passed in before pulling the next
event; the gateway then issues the next model call with that history.

The nested helpers (``stream_text``, ``stream_objects``, ``generate_text``)
are single calls used by tools and by chat title generation.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from typing import Any, Protocol, TypeVar

import httpx

from openai import APIConnectionError, APIError, AsyncOpenAI, RateLimitError
from pydantic import BaseModel, ValidationError as PydanticValidationError

from core.exceptions import UpstreamModelError
from models.chat_models import Message, ToolResultPart
from models.event_models import (
    ErrorEvent,
    GenerationEvent,
    StepFinishEvent,
    StreamFinishEvent,
    TextDeltaEvent,
    ToolCallEvent,
)
from utils.json_utils import JsonArrayStreamParser, json_compact, parse_json_arguments
from utils.logger import logger
from utils.metrics import model_errors_total, model_steps_total

T = TypeVar("T", bound=BaseModel)

FINISH_MAX_STEPS = "max-steps"

_UPSTREAM_ERRORS: tuple[type[Exception], ...] = (APIError, httpx.HTTPError)


class ModelGateway(Protocol):
    def generate(
        self,
        system_prompt: str,
        messages: list[Message],
        tools: Sequence[dict[str, Any]],
        max_steps: int,
        *,
        model: str,
    ) -> AsyncIterator[GenerationEvent]: ...

    def stream_text(self, system_prompt: str, prompt: str, *, model: str) -> AsyncIterator[str]: ...

    def stream_objects(
        self,
        system_prompt: str,
        prompt: str,
        item_model: type[T],
        *,
        model: str,
        limit: int | None = None,
    ) -> AsyncIterator[T]: ...

    async def generate_text(self, system_prompt: str, prompt: str, *, model: str) -> str: ...


def to_openai_messages(system_prompt: str, messages: Sequence[Message]) -> list[dict[str, Any]]:
    """Convert conversation messages to the chat completions format.

    Assistant messages may carry ``tool-result`` parts (the persisted form
    merges a step's results into the following assistant message); those are
    emitted as ``tool`` messages ahead of the assistant's own content.
    """
    converted: list[dict[str, Any]] = [{"role": "system", "content": system_prompt}] if system_prompt else []

    for message in messages:
        if message.role in ("system", "user"):
            converted.append({"role": message.role, "content": message.text})
            continue

        converted.extend(_tool_messages(message.tool_results))
        if message.role == "tool":
            continue

        text = message.text
        calls = message.tool_calls
        if not text and not calls:
            continue
        entry: dict[str, Any] = {"role": "assistant", "content": text or None}
        if calls:
            entry["tool_calls"] = [
                {
                    "id": call.tool_call_id,
                    "type": "function",
                    "function": {
                        "name": call.tool_name,
                        "arguments": call.args if isinstance(call.args, str) else json_compact(call.args),
                    },
                }
                for call in calls
            ]
        converted.append(entry)

    return converted


def _tool_messages(results: list[ToolResultPart]) -> list[dict[str, Any]]:
    return [
        {
            "role": "tool",
            "tool_call_id": result.tool_call_id,
            "content": result.result if isinstance(result.result, str) else json_compact(result.result),
        }
        for result in results
    ]


def _answered_call_ids(messages: Sequence[Message]) -> set[str]:
    return {result.tool_call_id for message in messages for result in message.tool_results}


class OpenAIModelGateway:
    """Model gateway over the OpenAI chat completions streaming API (OpenAI or Azure)."""

    def __init__(self, client: AsyncOpenAI, *, temperature: float | None = None):
        self._client = client
        self._temperature = temperature

    def _sampling(self) -> dict[str, Any]:
        return {"temperature": self._temperature} if self._temperature is not None else {}

    async def generate(
        self,
        system_prompt: str,
        messages: list[Message],
        tools: Sequence[dict[str, Any]],
        max_steps: int,
        *,
        model: str,
    ) -> AsyncIterator[GenerationEvent]:
        """Yield generation events for up to ``max_steps`` model calls.

        Ends with exactly one ``stream-finish`` or ``error`` event.
        """
        for step in range(1, max_steps + 1):
            calls: dict[int, dict[str, str]] = {}
            finish_reason: str | None = None
            usage: dict[str, int] | None = None

            request: dict[str, Any] = {
                "model": model,
                "messages": to_openai_messages(system_prompt, messages),
                "stream": True,
                "stream_options": {"include_usage": True},
                **self._sampling(),
            }
            if tools:
                request["tools"] = list(tools)

            model_steps_total.labels(model=model).inc()
            try:
                stream = await self._client.chat.completions.create(**request)
                async with stream:
                    async for chunk in stream:
                        if chunk.usage is not None:
                            usage = {
                                "prompt_tokens": chunk.usage.prompt_tokens,
                                "completion_tokens": chunk.usage.completion_tokens,
                            }
                        if not chunk.choices:
                            continue
                        choice = chunk.choices[0]
                        delta = choice.delta
                        if delta.content:
                            yield TextDeltaEvent(text=delta.content)
                        for fragment in delta.tool_calls or []:
                            slot = calls.setdefault(fragment.index, {"id": "", "name": "", "arguments": ""})
                            if fragment.id:
                                slot["id"] = fragment.id
                            if fragment.function is not None:
                                if fragment.function.name:
                                    slot["name"] += fragment.function.name
                                if fragment.function.arguments:
                                    slot["arguments"] += fragment.function.arguments
                        if choice.finish_reason:
                            finish_reason = choice.finish_reason
            except _UPSTREAM_ERRORS as exc:
                model_errors_total.labels(model=model, error_type=type(exc).__name__).inc()
                logger.error(f"Model call failed at step {step}: {exc}", model=model, step=step)
                yield ErrorEvent(
                    message=f"Model request failed: {exc}",
                    error_type=type(exc).__name__,
                    retryable=isinstance(exc, (RateLimitError, APIConnectionError, httpx.TransportError)),
                )
                return

            call_ids: list[str] = []
            for index in sorted(calls):
                slot = calls[index]
                call_id = slot["id"] or f"call_{step}_{index}"
                call_ids.append(call_id)
                yield ToolCallEvent(
                    tool_call_id=call_id,
                    tool_name=slot["name"],
                    args=parse_json_arguments(slot["arguments"]),
                )

            yield StepFinishEvent(step=step, finish_reason=finish_reason, tool_call_ids=call_ids, usage=usage)

            if not call_ids:
                yield StreamFinishEvent(finish_reason=finish_reason or "stop", steps=step)
                return

            # The consumer has appended this step's messages by the time we resume
            missing = [call_id for call_id in call_ids if call_id not in _answered_call_ids(messages)]
            if missing:
                yield ErrorEvent(message=f"Tool calls without results: {', '.join(missing)}", error_type="protocol")
                return

        yield StreamFinishEvent(finish_reason=FINISH_MAX_STEPS, steps=max_steps)

    async def stream_text(self, system_prompt: str, prompt: str, *, model: str) -> AsyncIterator[str]:
        """Stream a plain-text completion.

        Raises:
            UpstreamModelError: If the model call fails
        """
        try:
            stream = await self._client.chat.completions.create(
                model=model,
                messages=[{"role": "system", "content": system_prompt}, {"role": "user", "content": prompt}],
                stream=True,
                **self._sampling(),
            )
            async with stream:
                async for chunk in stream:
                    if chunk.choices and chunk.choices[0].delta.content:
                        yield chunk.choices[0].delta.content
        except _UPSTREAM_ERRORS as exc:
            model_errors_total.labels(model=model, error_type=type(exc).__name__).inc()
            raise UpstreamModelError(f"Text generation failed: {exc}", cause=exc) from exc

    async def stream_objects(
        self,
        system_prompt: str,
        prompt: str,
        item_model: type[T],
        *,
        model: str,
        limit: int | None = None,
    ) -> AsyncIterator[T]:
        """Stream a schema-constrained array, yielding each element once it is complete.

        Elements that do not match ``item_model`` are skipped.

        Raises:
            UpstreamModelError: If the model call fails
        """
        schema = {
            "type": "object",
            "properties": {"elements": {"type": "array", "items": item_model.model_json_schema()}},
            "required": ["elements"],
        }
        parser = JsonArrayStreamParser("elements")
        produced = 0
        try:
            stream = await self._client.chat.completions.create(
                model=model,
                messages=[{"role": "system", "content": system_prompt}, {"role": "user", "content": prompt}],
                response_format={
                    "type": "json_schema",
                    "json_schema": {"name": item_model.__name__, "schema": schema},
                },
                stream=True,
                **self._sampling(),
            )
            async with stream:
                async for chunk in stream:
                    if not chunk.choices or not chunk.choices[0].delta.content:
                        continue
                    for element in parser.feed(chunk.choices[0].delta.content):
                        try:
                            item = item_model.model_validate(element)
                        except PydanticValidationError as exc:
                            logger.warning(f"Skipping malformed {item_model.__name__}: {exc.error_count()} errors")
                            continue
                        yield item
                        produced += 1
                        if limit is not None and produced >= limit:
                            return
        except _UPSTREAM_ERRORS as exc:
            model_errors_total.labels(model=model, error_type=type(exc).__name__).inc()
            raise UpstreamModelError(f"Structured generation failed: {exc}", cause=exc) from exc

    async def generate_text(self, system_prompt: str, prompt: str, *, model: str) -> str:
        """Single non-streaming completion.

        Raises:
            UpstreamModelError: If the model call fails
        """
        try:
            response = await self._client.chat.completions.create(
                model=model,
                messages=[{"role": "system", "content": system_prompt}, {"role": "user", "content": prompt}],
                **self._sampling(),
            )
        except _UPSTREAM_ERRORS as exc:
            model_errors_total.labels(model=model, error_type=type(exc).__name__).inc()
            raise UpstreamModelError(f"Text generation failed: {exc}", cause=exc) from exc
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""


__all__ = ["FINISH_MAX_STEPS", "ModelGateway", "OpenAIModelGateway", "to_openai_messages"]
