from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID

import asyncpg

from jose import JWTError, jwt

from core.constants import Settings, get_settings


class AuthService:
    """Validates JWT access tokens and looks up their users.

    Tokens are issued by the surrounding platform; this service only reads
    them. ``create_access_token`` exists for local tooling and tests.
    """

    def __init__(self, pool: asyncpg.Pool, settings: Settings | None = None):
        self.pool = pool
        self.settings = settings or get_settings()

    async def get_default_user(self) -> asyncpg.Record | None:
        """Retrieve the seeded local-development user."""
        return await self.get_user_by_email(self.settings.default_user_email)

    def decode_access_token(self, token: str) -> dict[str, Any]:
        """Decode and validate an access token.

        Raises:
            ValueError: If the token is malformed, expired, or not an access token
        """
        try:
            payload: dict[str, Any] = jwt.decode(
                token,
                self.settings.jwt_secret,
                algorithms=[self.settings.jwt_algorithm],
            )
        except JWTError as exc:
            raise ValueError("Invalid token") from exc

        if payload.get("type") != "access" or not payload.get("sub"):
            raise ValueError("Invalid token type")
        return payload

    def create_access_token(self, user_id: str, email: str, expires_in: timedelta = timedelta(hours=1)) -> str:
        payload = {
            "sub": user_id,
            "email": email,
            "type": "access",
            "exp": datetime.now(timezone.utc) + expires_in,
        }
        token: str = jwt.encode(payload, self.settings.jwt_secret, algorithm=self.settings.jwt_algorithm)
        return token

    async def get_user_by_email(self, email: str) -> asyncpg.Record | None:
        async with self.pool.acquire() as conn:
            return await conn.fetchrow(
                "SELECT id, email, display_name FROM users WHERE email = $1",
                email,
            )

    async def get_user_by_id(self, user_id: UUID) -> asyncpg.Record | None:
        async with self.pool.acquire() as conn:
            return await conn.fetchrow(
                "SELECT id, email, display_name FROM users WHERE id = $1",
                user_id,
            )

    def user_payload(self, user: asyncpg.Record) -> dict[str, Any]:
        return {
            "id": str(user["id"]),
            "email": user["email"],
            "display_name": user.get("display_name"),
        }
