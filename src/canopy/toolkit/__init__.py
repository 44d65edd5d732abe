"""Agent toolkit: tool definitions, the tool executor, and web search."""

from canopy.toolkit.executor import ToolExecutor
from canopy.toolkit.models import ToolDefinition, ToolResult
from canopy.toolkit.search import (
    BraveProvider,
    SearchProvider,
    SearchTool,
    SerperProvider,
    TavilyProvider,
    get_search_provider,
    has_search_key,
)

__all__ = [
    "ToolDefinition",
    "ToolResult",
    "ToolExecutor",
    "SearchProvider",
    "SearchTool",
    "SerperProvider",
    "BraveProvider",
    "TavilyProvider",
    "get_search_provider",
    "has_search_key",
]
