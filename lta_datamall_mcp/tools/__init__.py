"""DataMall tools: catalog, credential resolution and dispatch."""

from lta_datamall_mcp.tools.credentials import resolve_credential
from lta_datamall_mcp.tools.dispatcher import ToolDispatcher, ToolResult
from lta_datamall_mcp.tools.registry import (
    TOOL_DEFINITIONS,
    TRAIN_LINES,
    ParameterSpec,
    ToolDefinition,
    ToolName,
    ToolRegistry,
    default_registry,
)

__all__ = [
    "TOOL_DEFINITIONS",
    "TRAIN_LINES",
    "ParameterSpec",
    "ToolDefinition",
    "ToolDispatcher",
    "ToolName",
    "ToolRegistry",
    "ToolResult",
    "default_registry",
    "resolve_credential",
]
