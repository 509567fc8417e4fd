"""
Request context for the Quill Chat API.

A ``RequestContext`` lives in a ContextVar for the duration of one request.
Turn tasks are created while it is set, so they inherit it and every log line
of a streamed turn carries the request id, user id and chat id.
"""

from __future__ import annotations

import secrets
import time

from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from utils.metrics import http_requests_total, request_duration_seconds

REQUEST_ID_HEADER = "X-Request-ID"

_current: ContextVar[RequestContext | None] = ContextVar("quill_request_context", default=None)


@dataclass
class RequestContext:
    request_id: str
    method: str = ""
    path: str = ""
    user_id: str | None = None
    chat_id: str | None = None
    started: float = field(default_factory=time.monotonic)

    @property
    def elapsed(self) -> float:
        """Seconds since the request arrived."""
        return time.monotonic() - self.started

    def to_log_context(self) -> dict[str, Any]:
        fields = {
            "request_id": self.request_id,
            "method": self.method,
            "path": self.path,
            "user_id": self.user_id,
            "chat_id": self.chat_id,
        }
        return {key: value for key, value in fields.items() if value}


def generate_request_id() -> str:
    return secrets.token_hex(8)


def get_request_context() -> RequestContext | None:
    return _current.get()


def get_request_id() -> str | None:
    ctx = _current.get()
    return ctx.request_id if ctx else None


def update_request_context(**values: Any) -> None:
    """Attach identifiers learned mid-request, e.g. ``user_id`` after authentication."""
    ctx = _current.get()
    if ctx is None:
        return
    for key, value in values.items():
        if not hasattr(ctx, key):
            raise AttributeError(f"RequestContext has no field '{key}'")
        setattr(ctx, key, value)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Sets the request context, echoes the request id and records HTTP metrics.

    For a streamed turn the recorded duration covers time to the response
    headers; the turn's own duration is tracked separately.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        ctx = RequestContext(
            request_id=request.headers.get(REQUEST_ID_HEADER) or generate_request_id(),
            method=request.method,
            path=request.url.path,
        )
        token = _current.set(ctx)
        status = 500
        try:
            response = await call_next(request)
            status = response.status_code
            response.headers[REQUEST_ID_HEADER] = ctx.request_id
            return response
        finally:
            route = request.scope.get("route")
            path = getattr(route, "path", request.url.path)
            request_duration_seconds.labels(request.method, path, str(status)).observe(ctx.elapsed)
            http_requests_total.labels(request.method, path, str(status)).inc()
            _current.reset(token)


__all__ = [
    "REQUEST_ID_HEADER",
    "RequestContext",
    "RequestContextMiddleware",
    "generate_request_id",
    "get_request_context",
    "get_request_id",
    "update_request_context",
]
