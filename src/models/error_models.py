"""
Error payloads for the Quill Chat API.

Failures detected before a turn starts streaming are JSON bodies with an HTTP
status. Failures after that ride the ``turn`` sub-stream as one ``error``
frame ahead of the terminal ``finish``.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ErrorCode(str, Enum):
    """Stable error codes; the prefix names the failure family."""

    # Authentication (1xxx)
    AUTH_REQUIRED = "AUTH_1001"
    AUTH_INVALID_TOKEN = "AUTH_1002"
    AUTH_INSUFFICIENT_PERMISSIONS = "AUTH_1004"
    AUTH_USER_NOT_FOUND = "AUTH_1005"

    # Validation (2xxx)
    VALIDATION_ERROR = "VAL_2001"
    VALIDATION_BAD_REQUEST = "VAL_2005"

    # Resources (3xxx)
    RESOURCE_NOT_FOUND = "RES_3001"
    RESOURCE_EMPTY = "RES_3004"

    # Tools (4xxx)
    TOOL_NOT_FOUND = "TOOL_4001"
    TOOL_INVALID_ARGUMENTS = "TOOL_4002"
    TOOL_EXECUTION_FAILED = "TOOL_4003"
    TOOL_CANCELLED = "TOOL_4004"

    # Streaming (6xxx)
    STREAM_CLOSED = "STREAM_6001"

    # Model provider (7xxx)
    OPENAI_ERROR = "EXT_7010"

    # Storage (8xxx)
    DATABASE_ERROR = "DB_8001"

    # Internal (9xxx)
    INTERNAL_ERROR = "INT_9001"
    SERVICE_SHUTTING_DOWN = "INT_9003"


ERROR_CODE_TO_STATUS: dict[ErrorCode, int] = {
    ErrorCode.VALIDATION_BAD_REQUEST: 400,
    ErrorCode.RESOURCE_EMPTY: 400,
    ErrorCode.AUTH_REQUIRED: 401,
    ErrorCode.AUTH_INVALID_TOKEN: 401,
    ErrorCode.AUTH_USER_NOT_FOUND: 401,
    ErrorCode.AUTH_INSUFFICIENT_PERMISSIONS: 403,
    ErrorCode.RESOURCE_NOT_FOUND: 404,
    ErrorCode.TOOL_NOT_FOUND: 404,
    ErrorCode.STREAM_CLOSED: 409,
    ErrorCode.VALIDATION_ERROR: 422,
    ErrorCode.TOOL_INVALID_ARGUMENTS: 422,
    ErrorCode.OPENAI_ERROR: 502,
    ErrorCode.SERVICE_SHUTTING_DOWN: 503,
}


def get_status_code(error_code: ErrorCode) -> int:
    """HTTP status for an error code; anything unmapped is a 500."""
    return ERROR_CODE_TO_STATUS.get(error_code, 500)


class ErrorDetail(BaseModel):
    """One field-level problem inside a validation failure."""

    field: str | None = None
    message: str
    code: str | None = None


class ErrorResponse(BaseModel):
    """JSON body of a failed REST call.

    Example:
        {"error": {"code": "RES_3001", "message": "Chat not found",
                   "request_id": "a1b2c3d4", "path": "/api/chat", "timestamp": "..."}}
    """

    code: ErrorCode
    message: str
    request_id: str | None = None
    path: str | None = None
    details: list[ErrorDetail] | None = None
    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    debug: dict[str, Any] | None = Field(default=None, exclude=True)

    def to_dict(self, include_debug: bool = False) -> dict[str, Any]:
        body = self.model_dump(mode="json", exclude_none=True)
        if include_debug and self.debug:
            body["debug"] = self.debug
        return {"error": body}


class StreamError(BaseModel):
    """Content of the in-band ``error`` frame that precedes a failed turn's finish."""

    code: ErrorCode
    message: str
    request_id: str | None = None
    recoverable: bool = False

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


__all__ = [
    "ERROR_CODE_TO_STATUS",
    "ErrorCode",
    "ErrorDetail",
    "ErrorResponse",
    "StreamError",
    "get_status_code",
]
