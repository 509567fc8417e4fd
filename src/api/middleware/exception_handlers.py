"""
Exception handlers for the Quill Chat API.

They cover everything that fails before a turn starts streaming: request
validation, authentication, ownership and unknown resources. Once the NDJSON
response has begun, the orchestrator reports failures in-band instead.
"""

from __future__ import annotations

import traceback

from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from api.middleware.request_context import get_request_id
from core.constants import get_settings
from core.exceptions import AppException
from models.error_models import ErrorCode, ErrorDetail, ErrorResponse, get_status_code
from utils.logger import logger

# Framework-raised HTTP errors (unknown route, wrong method) mapped onto our codes
HTTP_STATUS_CODES: dict[int, ErrorCode] = {
    401: ErrorCode.AUTH_REQUIRED,
    403: ErrorCode.AUTH_INSUFFICIENT_PERMISSIONS,
    404: ErrorCode.RESOURCE_NOT_FOUND,
    422: ErrorCode.VALIDATION_ERROR,
    503: ErrorCode.SERVICE_SHUTTING_DOWN,
}


def _respond(
    request: Request,
    status_code: int,
    code: ErrorCode,
    message: str,
    details: list[ErrorDetail] | None = None,
    debug: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    log_fields = {"error_code": code.value, "status_code": status_code}
    if status_code >= 500:
        logger.error(f"{code.value}: {message}", **log_fields)
    else:
        logger.warning(f"{code.value}: {message}", **log_fields)

    include_debug = get_settings().debug
    body = ErrorResponse(
        code=code,
        message=message,
        request_id=get_request_id(),
        path=request.url.path,
        details=details,
        debug=debug,
    )
    return JSONResponse(status_code=status_code, content=body.to_dict(include_debug=include_debug), headers=headers)


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    details = None
    if exc.details:
        if "errors" in exc.details:
            details = [ErrorDetail(**e) for e in exc.details["errors"]]
        else:
            details = [ErrorDetail(field=k, message=str(v)) for k, v in exc.details.items() if v is not None]
    debug = {"exception_type": type(exc).__name__, "cause": repr(exc.cause) if exc.cause else None}
    return _respond(request, get_status_code(exc.code), exc.code, exc.message, details or None, debug)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    if exc.status_code in HTTP_STATUS_CODES:
        code = HTTP_STATUS_CODES[exc.status_code]
    elif exc.status_code < 500:
        code = ErrorCode.VALIDATION_BAD_REQUEST
    else:
        code = ErrorCode.INTERNAL_ERROR
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return _respond(request, exc.status_code, code, message, headers=getattr(exc, "headers", None))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        ErrorDetail(field=".".join(str(part) for part in error["loc"]), message=error["msg"], code=error["type"])
        for error in exc.errors()
    ]
    return _respond(request, 422, ErrorCode.VALIDATION_ERROR, "Request validation failed", details)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled exception: {type(exc).__name__}: {exc}", exc_info=True, path=request.url.path)
    debug = {"exception_type": type(exc).__name__, "traceback": traceback.format_exc()}
    return _respond(request, 500, ErrorCode.INTERNAL_ERROR, "Internal error", debug=debug)


def register_exception_handlers(app: FastAPI) -> None:
    # Starlette's signature expects Exception; narrower handlers are fine at runtime
    app.add_exception_handler(AppException, app_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(HTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, unhandled_exception_handler)


__all__ = [
    "app_exception_handler",
    "http_exception_handler",
    "register_exception_handlers",
    "unhandled_exception_handler",
    "validation_exception_handler",
]
