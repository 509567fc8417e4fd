"""
Application exception hierarchy.

Every failure the chat core can produce is an ``AppException`` carrying an
``ErrorCode``. The HTTP layer turns them into JSON error responses before a
stream starts; after that they become the turn's terminal ``error`` frame, or
(for tool failures) a failed tool result the model can react to.
"""

from __future__ import annotations

from typing import Any

from models.error_models import ErrorCode, ErrorDetail, StreamError


class AppException(Exception):
    """Base application exception with error code support.

    Example:
        raise AppException(
            code=ErrorCode.RESOURCE_NOT_FOUND,
            message="Chat not found",
            details={"chat_id": chat_id}
        )
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ):
        self.code = code
        self.message = message
        self.details = details
        self.cause = cause
        super().__init__(message)

    def to_stream_error(self, request_id: str | None = None) -> StreamError:
        return StreamError(code=self.code, message=self.message, request_id=request_id)


class ValidationError(AppException):
    """Bad or missing request fields; the caller can correct them."""

    def __init__(
        self,
        message: str = "Validation error",
        errors: list[ErrorDetail] | None = None,
        code: ErrorCode = ErrorCode.VALIDATION_BAD_REQUEST,
    ):
        super().__init__(
            code=code,
            message=message,
            details={"errors": [e.model_dump() for e in errors]} if errors else None,
        )
        self.errors = errors or []


class AuthenticationError(AppException):
    """No usable principal for a request that needs one."""

    def __init__(
        self,
        message: str = "Authentication required",
        code: ErrorCode = ErrorCode.AUTH_REQUIRED,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(code=code, message=message, details=details, cause=cause)


class UnauthorizedError(AppException):
    """The principal does not own the resource it is trying to use."""

    def __init__(self, resource: str, resource_id: str | None = None):
        super().__init__(
            code=ErrorCode.AUTH_INSUFFICIENT_PERMISSIONS,
            message=f"Not permitted to access this {resource.lower()}",
            details={"resource": resource, "id": resource_id},
        )


class NotFoundError(AppException):
    """Referenced chat, document, or model is absent."""

    def __init__(
        self,
        resource: str,
        resource_id: str | None = None,
        code: ErrorCode = ErrorCode.RESOURCE_NOT_FOUND,
    ):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} '{resource_id}' not found"
        super().__init__(code=code, message=message, details={"resource": resource, "id": resource_id})


class EmptyContentError(AppException):
    """The referenced document exists but has no content to work on."""

    def __init__(self, resource: str, resource_id: str | None = None):
        super().__init__(
            code=ErrorCode.RESOURCE_EMPTY,
            message=f"{resource} has no content",
            details={"resource": resource, "id": resource_id},
        )


class ToolNotFoundError(AppException):
    """The model asked for a tool that is not registered."""

    def __init__(self, tool_name: str):
        super().__init__(
            code=ErrorCode.TOOL_NOT_FOUND,
            message=f"Unknown tool: {tool_name}",
            details={"tool": tool_name},
        )
        self.tool_name = tool_name


class InvalidArgumentsError(AppException):
    """Model-supplied tool arguments failed schema validation."""

    def __init__(self, tool_name: str, errors: list[ErrorDetail]):
        summary = "; ".join(f"{e.field}: {e.message}" if e.field else e.message for e in errors)
        super().__init__(
            code=ErrorCode.TOOL_INVALID_ARGUMENTS,
            message=f"Invalid arguments for {tool_name}: {summary}",
            details={"errors": [e.model_dump() for e in errors]},
        )
        self.tool_name = tool_name
        self.errors = errors


class ToolExecutionError(AppException):
    """A tool failed while running; reported back to the model."""

    def __init__(self, tool_name: str, message: str, cause: Exception | None = None):
        super().__init__(
            code=ErrorCode.TOOL_EXECUTION_FAILED,
            message=message,
            details={"tool": tool_name},
            cause=cause,
        )
        self.tool_name = tool_name


class UpstreamModelError(AppException):
    """The hosted model capability failed; fatal to the turn."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.OPENAI_ERROR,
        cause: Exception | None = None,
    ):
        super().__init__(code=code, message=message, details={"service": "model"}, cause=cause)


class PersistenceError(AppException):
    """A store read or write failed."""

    def __init__(
        self,
        message: str = "Database operation failed",
        code: ErrorCode = ErrorCode.DATABASE_ERROR,
        cause: Exception | None = None,
    ):
        super().__init__(code=code, message=message, cause=cause)


class StreamClosedError(AppException):
    """An append was attempted on a closed sub-stream or a finished multiplexer."""

    def __init__(self, stream_id: str):
        super().__init__(
            code=ErrorCode.STREAM_CLOSED,
            message=f"Stream '{stream_id}' is closed",
            details={"stream": stream_id},
        )


__all__ = [
    "AppException",
    "AuthenticationError",
    "EmptyContentError",
    "InvalidArgumentsError",
    "NotFoundError",
    "PersistenceError",
    "StreamClosedError",
    "ToolExecutionError",
    "ToolNotFoundError",
    "UnauthorizedError",
    "UpstreamModelError",
    "ValidationError",
]
