"""
Tools Module - Model-Callable Capabilities for Quill Chat
=========================================================

Each tool is a ``ToolSpec``: a name, a pydantic model for its arguments, and an
async executor ``(args, ctx) -> result``. The registry declares and validates;
the coordinator runs them.

Modules:
    registry: ToolSpec, ToolRegistry, and the per-invocation ToolContext
    coordinator: Validates and executes tool calls, turning failures into ToolError results
    weather: getWeather (Open-Meteo forecast)
    documents: createDocument and updateDocument (streamed drafting)
    suggestions: requestSuggestions (streamed, schema-constrained edits)
    web_search: searchWeb (search-enabled models only)

Streaming tools write to their own sub-stream (``tool:<call id>``) through
``ctx.substream()`` and return their final result; they never modify the
conversation.

Example:
    Building the registry and declaring a model's tools::

        from tools import build_default_registry

        registry = build_default_registry()
        declarations = registry.declarations(model_config.tools)
"""

from tools.coordinator import ToolCoordinator, ToolError, ToolResult
from tools.documents import CREATE_DOCUMENT_TOOL, UPDATE_DOCUMENT_TOOL
from tools.registry import ToolContext, ToolRegistry, ToolSpec
from tools.suggestions import SUGGESTIONS_TOOL
from tools.weather import WEATHER_TOOL
from tools.web_search import SEARCH_TOOL

DEFAULT_TOOLS: tuple[ToolSpec, ...] = (
    WEATHER_TOOL,
    CREATE_DOCUMENT_TOOL,
    UPDATE_DOCUMENT_TOOL,
    SUGGESTIONS_TOOL,
    SEARCH_TOOL,
)


def build_default_registry() -> ToolRegistry:
    """Registry with every built-in tool; models select a subset by name."""
    return ToolRegistry(DEFAULT_TOOLS)


__all__ = [
    "DEFAULT_TOOLS",
    "ToolContext",
    "ToolCoordinator",
    "ToolError",
    "ToolRegistry",
    "ToolResult",
    "ToolSpec",
    "build_default_registry",
]
