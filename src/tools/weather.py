"""
Weather lookup tool.
Fetches the current forecast for a coordinate from the Open-Meteo API.
"""

from __future__ import annotations

from typing import Any

import httpx

from pydantic import BaseModel, Field

from core.constants import TOOL_GET_WEATHER
from core.exceptions import ToolExecutionError
from tools.registry import ToolContext, ToolSpec
from utils.logger import logger


class GetWeatherArgs(BaseModel):
    latitude: float = Field(..., ge=-90, le=90, strict=True, description="Latitude of the location")
    longitude: float = Field(..., ge=-180, le=180, strict=True, description="Longitude of the location")


async def get_weather(args: GetWeatherArgs, ctx: ToolContext) -> dict[str, Any]:
    """Return the raw forecast payload. No persistence, no sub-stream."""
    params = {
        "latitude": args.latitude,
        "longitude": args.longitude,
        "current": "temperature_2m",
        "hourly": "temperature_2m",
        "daily": "sunrise,sunset",
        "timezone": "auto",
    }
    try:
        response = await ctx.http_client.get(ctx.settings.weather_api_url, params=params)
        response.raise_for_status()
        payload: dict[str, Any] = response.json()
    except httpx.HTTPStatusError as exc:
        raise ToolExecutionError(
            TOOL_GET_WEATHER, f"Weather service returned {exc.response.status_code}", cause=exc
        ) from exc
    except (httpx.HTTPError, ValueError) as exc:
        raise ToolExecutionError(TOOL_GET_WEATHER, f"Weather service unavailable: {exc}", cause=exc) from exc

    logger.debug(f"Fetched weather for ({args.latitude}, {args.longitude})", func="get_weather")
    return payload


WEATHER_TOOL = ToolSpec(
    name=TOOL_GET_WEATHER,
    description="Get the current weather at a location",
    args_model=GetWeatherArgs,
    executor=get_weather,
)
