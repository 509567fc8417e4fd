"""
Tool execution coordinator.

Runs the tool calls of one model step. Every failure inside a tool (unknown
name, bad arguments, missing document, upstream error in a nested
generation, plain bugs) is turned into a ``ToolError`` that goes back to the
model as a failed tool result, so the turn continues. Only cancellation
propagates.
"""

from __future__ import annotations

import asyncio
import time

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from core.exceptions import AppException
from models.chat_models import ToolInvocation
from models.error_models import ErrorCode
from tools.registry import ToolContext, ToolRegistry
from utils.logger import logger
from utils.metrics import record_tool_call


@dataclass(frozen=True)
class ToolResult:
    invocation_id: str
    tool_name: str
    output: Any

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class ToolError:
    invocation_id: str
    tool_name: str
    code: ErrorCode
    message: str

    @property
    def ok(self) -> bool:
        return False

    def payload(self) -> dict[str, Any]:
        """Failure description the model sees in place of a result."""
        return {"error": self.message, "code": self.code.value}


ToolOutcome = ToolResult | ToolError


class ToolCoordinator:
    def __init__(self, registry: ToolRegistry):
        self.registry = registry

    async def execute(self, invocation: ToolInvocation, context: ToolContext) -> ToolOutcome:
        """Validate and run one invocation, moving it to a terminal state."""
        invocation.start()
        start = time.perf_counter()
        status = "error"
        try:
            spec = self.registry.resolve(invocation.tool_name)
            args = self.registry.validate(invocation.tool_name, invocation.args)
            output = await spec.executor(args, context.for_invocation(invocation.id))
        except asyncio.CancelledError:
            status = "cancelled"
            invocation.fail({"error": "Tool call was cancelled", "code": ErrorCode.TOOL_CANCELLED.value})
            raise
        except AppException as exc:
            error = ToolError(invocation.id, invocation.tool_name, exc.code, exc.message)
            invocation.fail(error.payload())
            logger.warning(
                f"Tool {invocation.tool_name} failed: {exc.message}",
                tool=invocation.tool_name,
                tool_call_id=invocation.id,
                error_code=exc.code.value,
            )
            return error
        except Exception as exc:
            error = ToolError(
                invocation.id,
                invocation.tool_name,
                ErrorCode.TOOL_EXECUTION_FAILED,
                str(exc) or type(exc).__name__,
            )
            invocation.fail(error.payload())
            logger.error(
                f"Tool {invocation.tool_name} raised unexpectedly: {exc}",
                exc_info=True,
                tool=invocation.tool_name,
                tool_call_id=invocation.id,
            )
            return error
        else:
            status = "success"
            invocation.complete(output)
            return ToolResult(invocation.id, invocation.tool_name, output)
        finally:
            duration = time.perf_counter() - start
            record_tool_call(invocation.tool_name, status, duration)
            logger.log_tool_call(invocation.tool_name, invocation.args, status, duration * 1000)

    async def execute_all(self, invocations: Sequence[ToolInvocation], context: ToolContext) -> list[ToolOutcome]:
        """Run the calls of one step concurrently; outcomes keep request order."""
        if not invocations:
            return []
        if len(invocations) == 1:
            return [await self.execute(invocations[0], context)]
        return list(await asyncio.gather(*(self.execute(inv, context) for inv in invocations)))


__all__ = ["ToolCoordinator", "ToolError", "ToolOutcome", "ToolResult"]
