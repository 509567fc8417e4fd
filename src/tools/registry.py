"""
Tool registry for Quill Chat.

Declares the tools the model may call. Each tool has a name, a pydantic model
describing its arguments, and an async executor. The registry only looks up
and validates; it never runs anything.
"""

from __future__ import annotations

import dataclasses

from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx

from pydantic import BaseModel, ValidationError as PydanticValidationError

from core.constants import TOOL_STREAM_PREFIX, Settings
from core.exceptions import InvalidArgumentsError, ToolNotFoundError
from core.multiplexer import StreamMultiplexer, SubStream
from models.error_models import ErrorDetail

if TYPE_CHECKING:
    from core.persistence import ChatStore
    from integrations.model_gateway import ModelGateway


@dataclass(frozen=True)
class ToolContext:
    """What an executor may use while running one invocation.

    Executors return their result; they never touch the conversation.
    """

    user_id: str
    chat_id: str
    model: str
    gateway: ModelGateway
    store: ChatStore
    multiplexer: StreamMultiplexer
    http_client: httpx.AsyncClient
    settings: Settings
    tool_call_id: str = ""

    def for_invocation(self, tool_call_id: str) -> ToolContext:
        return dataclasses.replace(self, tool_call_id=tool_call_id)

    def substream(self) -> SubStream:
        """Open this invocation's sub-stream (``tool:<call id>``).

        Use as ``async with ctx.substream() as stream:`` so the ``finish``
        marker is written on success and on failure.
        """
        return self.multiplexer.open(f"{TOOL_STREAM_PREFIX}{self.tool_call_id}")


ToolExecutor = Callable[[Any, ToolContext], Awaitable[Any]]


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    args_model: type[BaseModel]
    executor: ToolExecutor

    def declaration(self) -> dict[str, Any]:
        """Function-tool declaration in the chat completions format."""
        schema = self.args_model.model_json_schema(by_alias=True)
        schema.pop("title", None)
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": schema,
            },
        }


class ToolRegistry:
    def __init__(self, specs: Iterable[ToolSpec] = ()):
        self._specs: dict[str, ToolSpec] = {}
        for spec in specs:
            self.register(spec)

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._specs:
            raise ValueError(f"Tool '{spec.name}' is already registered")
        self._specs[spec.name] = spec

    def resolve(self, name: str) -> ToolSpec:
        """Return the tool registered under ``name``.

        Raises:
            ToolNotFoundError: If no such tool exists
        """
        try:
            return self._specs[name]
        except KeyError:
            raise ToolNotFoundError(name) from None

    def validate(self, name: str, args: dict[str, Any] | str) -> BaseModel:
        """Validate untrusted, model-supplied arguments against the tool's schema.

        Raises:
            ToolNotFoundError: If no such tool exists
            InvalidArgumentsError: If the arguments are not valid JSON or violate the schema
        """
        spec = self.resolve(name)
        if not isinstance(args, dict):
            raise InvalidArgumentsError(name, [ErrorDetail(message="Arguments are not a JSON object")])
        try:
            return spec.args_model.model_validate(args)
        except PydanticValidationError as exc:
            errors = [
                ErrorDetail(
                    field=".".join(str(loc) for loc in error["loc"]) or None,
                    message=error["msg"],
                    code=error["type"],
                )
                for error in exc.errors()
            ]
            raise InvalidArgumentsError(name, errors) from exc

    def declarations(self, names: Iterable[str] | None = None) -> list[dict[str, Any]]:
        """Declarations for ``names`` (all tools when None); unknown names are skipped."""
        selected = self._specs.values() if names is None else [self._specs[n] for n in names if n in self._specs]
        return [spec.declaration() for spec in selected]

    @property
    def names(self) -> list[str]:
        return list(self._specs)

    def __contains__(self, name: object) -> bool:
        return name in self._specs

    def __len__(self) -> int:
        return len(self._specs)


__all__ = ["ToolContext", "ToolExecutor", "ToolRegistry", "ToolSpec"]
