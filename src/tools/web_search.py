"""
Web search tool.
Queries the configured search service (POST first, GET as fallback) and
returns a compact result list for the model to cite.
"""

from __future__ import annotations

from typing import Any

import httpx

from pydantic import BaseModel, Field

from core.constants import TOOL_SEARCH_WEB
from core.exceptions import ToolExecutionError
from tools.registry import ToolContext, ToolSpec
from utils.logger import logger

MAX_SEARCH_RESULTS = 8


class SearchWebArgs(BaseModel):
    query: str = Field(..., min_length=1, max_length=500, description="The search query")


async def _fetch(ctx: ToolContext, query: str) -> Any:
    url = ctx.settings.search_api_url
    if not url:
        raise ToolExecutionError(TOOL_SEARCH_WEB, "Web search is not configured")

    timeout = ctx.settings.search_timeout
    try:
        response = await ctx.http_client.post(url, json={"query": query}, timeout=timeout)
        if not response.is_success:
            logger.debug(f"Search POST returned {response.status_code}, retrying with GET")
            response = await ctx.http_client.get(url, params={"query": query}, timeout=timeout)
        response.raise_for_status()
        return response.json()
    except httpx.HTTPStatusError as exc:
        raise ToolExecutionError(
            TOOL_SEARCH_WEB, f"Search service returned {exc.response.status_code}", cause=exc
        ) from exc
    except (httpx.HTTPError, ValueError) as exc:
        raise ToolExecutionError(TOOL_SEARCH_WEB, f"Search service unavailable: {exc}", cause=exc) from exc


def normalize_results(payload: Any) -> list[dict[str, str]]:
    """Reduce a search response to ``{title, url, snippet}`` items; entries without a url are dropped."""
    items = payload.get("results", []) if isinstance(payload, dict) else payload
    if not isinstance(items, list):
        return []

    results = []
    for item in items:
        if not isinstance(item, dict) or not item.get("url"):
            continue
        results.append(
            {
                "title": str(item.get("title") or item["url"]),
                "url": str(item["url"]),
                "snippet": str(item.get("snippet") or item.get("content") or "")[:500],
            }
        )
        if len(results) >= MAX_SEARCH_RESULTS:
            break
    return results


async def search_web(args: SearchWebArgs, ctx: ToolContext) -> dict[str, Any]:
    payload = await _fetch(ctx, args.query)
    results = normalize_results(payload)
    logger.info(f"Web search returned {len(results)} results", func="search_web")
    return {"query": args.query, "results": results}


SEARCH_TOOL = ToolSpec(
    name=TOOL_SEARCH_WEB,
    description="Search the web for up-to-date information",
    args_model=SearchWebArgs,
    executor=search_web,
)
