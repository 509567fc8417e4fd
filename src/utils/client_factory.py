"""
HTTP and OpenAI client factory utilities.
Centralizes AsyncOpenAI and httpx client creation with consistent configuration.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx

from openai import AsyncOpenAI

if TYPE_CHECKING:
    from core.constants import Settings

DEFAULT_CONNECT_TIMEOUT = 30.0
DEFAULT_READ_TIMEOUT = 120.0
DEFAULT_WRITE_TIMEOUT = 30.0
DEFAULT_POOL_TIMEOUT = 30.0


def create_http_client(read_timeout: float | None = None) -> httpx.AsyncClient:
    """Create an HTTP client with timeouts suited to streaming responses.

    Args:
        read_timeout: Read timeout in seconds (default: 120s)
    """
    timeout = httpx.Timeout(
        connect=DEFAULT_CONNECT_TIMEOUT,
        read=read_timeout if read_timeout is not None else DEFAULT_READ_TIMEOUT,
        write=DEFAULT_WRITE_TIMEOUT,
        pool=DEFAULT_POOL_TIMEOUT,
    )
    return httpx.AsyncClient(timeout=timeout)


def create_openai_client(
    api_key: str,
    base_url: str | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> AsyncOpenAI:
    """Create AsyncOpenAI client with consistent configuration.

    Args:
        api_key: OpenAI or Azure OpenAI API key
        base_url: Optional base URL for Azure or custom endpoints
        http_client: Optional shared httpx client
    """
    kwargs: dict[str, Any] = {"api_key": api_key, "http_client": http_client}
    if base_url:
        kwargs["base_url"] = base_url
    return AsyncOpenAI(**kwargs)


def create_openai_client_from_settings(settings: Settings, http_client: httpx.AsyncClient | None = None) -> AsyncOpenAI:
    """Build the model client for the configured provider."""
    if settings.api_provider == "azure":
        return create_openai_client(
            settings.azure_openai_api_key or "",
            base_url=settings.azure_endpoint_str,
            http_client=http_client,
        )
    return create_openai_client(
        settings.openai_api_key or "",
        base_url=settings.openai_base_url,
        http_client=http_client,
    )
