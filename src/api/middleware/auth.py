from __future__ import annotations

from typing import Annotated
from uuid import UUID

import asyncpg

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from api.dependencies import get_db
from api.middleware.request_context import update_request_context
from api.services.auth_service import AuthService
from core.constants import get_settings
from core.exceptions import AuthenticationError
from models.api_models import UserInfo
from models.error_models import ErrorCode

bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    db: Annotated[asyncpg.Pool, Depends(get_db)],
) -> UserInfo:
    """Authenticate incoming REST requests.

    Every failure, including a failing user lookup, is an ``AuthenticationError``.
    """
    settings = get_settings()
    auth = AuthService(db, settings)

    try:
        if credentials is None:
            if settings.allow_localhost_noauth and _is_localhost(request):
                user = await auth.get_default_user()
                if not user:
                    raise AuthenticationError(
                        message="Default user not found",
                        code=ErrorCode.AUTH_USER_NOT_FOUND,
                    )
                return _principal(auth, user)
            raise AuthenticationError(
                message="Authentication required",
                code=ErrorCode.AUTH_REQUIRED,
            )

        try:
            payload = auth.decode_access_token(credentials.credentials)
            user = await auth.get_user_by_id(UUID(payload["sub"]))
        except ValueError as exc:
            raise AuthenticationError(
                message="Invalid token",
                code=ErrorCode.AUTH_INVALID_TOKEN,
            ) from exc
    except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
        raise AuthenticationError(message="Could not verify credentials", cause=exc) from exc

    if not user:
        raise AuthenticationError(
            message="User not found",
            code=ErrorCode.AUTH_USER_NOT_FOUND,
        )

    return _principal(auth, user)


def _principal(auth: AuthService, user: asyncpg.Record) -> UserInfo:
    principal = UserInfo(**auth.user_payload(user))
    update_request_context(user_id=principal.id)
    return principal


def _is_localhost(request: Request) -> bool:
    """Check if the request originates from localhost."""
    host = request.client.host if request.client else ""
    return host in {"127.0.0.1", "localhost", "::1"}


CurrentUser = Annotated[UserInfo, Depends(get_current_user)]
