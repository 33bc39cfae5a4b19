"""MCP handler functions - registered on each per-session MCP server."""

import logging
from contextlib import nullcontext
from typing import Any, AsyncContextManager, List, Optional

from mcp import types as mcp_types
from mcp.server import Server as McpServer
from mcp.shared.exceptions import McpError

from lta_datamall_mcp.constants import SERVER_NAME, SERVER_VERSION
from lta_datamall_mcp.errors import (
    ConfigurationError,
    InvalidParameterError,
    ToolError,
    UnknownToolError,
    UpstreamUnreachableError,
)
from lta_datamall_mcp.server.session.models import MCPSession
from lta_datamall_mcp.tools.dispatcher import ToolDispatcher

logger = logging.getLogger(__name__)


def to_mcp_error(exc: Exception) -> McpError:
    """Map a dispatch failure to a JSON-RPC error."""
    if isinstance(exc, UnknownToolError):
        return McpError(
            mcp_types.ErrorData(code=mcp_types.METHOD_NOT_FOUND, message=str(exc))
        )
    if isinstance(exc, InvalidParameterError):
        return McpError(
            mcp_types.ErrorData(
                code=mcp_types.INVALID_PARAMS,
                message=str(exc),
                data={"parameter": exc.name, "reason": exc.reason},
            )
        )
    if isinstance(exc, UpstreamUnreachableError):
        return McpError(
            mcp_types.ErrorData(code=mcp_types.INTERNAL_ERROR, message=str(exc))
        )
    if isinstance(exc, ConfigurationError):
        return McpError(
            mcp_types.ErrorData(
                code=mcp_types.INTERNAL_ERROR,
                message=f"Server configuration error: {exc}",
            )
        )
    return McpError(mcp_types.ErrorData(code=mcp_types.INTERNAL_ERROR, message=str(exc)))


def register_handlers(
    mcp_server: McpServer,
    dispatcher: ToolDispatcher,
    *,
    credential: Optional[str],
    origin_address: Optional[str] = None,
    client_descriptor: Optional[str] = None,
    session: Optional[MCPSession] = None,
) -> None:
    """Register the tool handlers on *mcp_server*.

    Tool calls use *credential* as the upstream key and are attributed to
    *origin_address* / *client_descriptor* in analytics.  When *session* is
    given, calls are tracked as in flight on it so closing the session
    waits for them.
    """

    @mcp_server.list_tools()
    async def handle_list_tools() -> List[mcp_types.Tool]:
        logger.debug("Handling listTools request...")
        tools = dispatcher.registry.to_mcp_tools()
        logger.info("Returning %d tools", len(tools))
        return tools

    # Registered directly rather than through ``@call_tool()`` so that tool
    # errors surface as JSON-RPC errors instead of ``isError`` results.
    async def handle_call_tool(req: mcp_types.CallToolRequest) -> mcp_types.ServerResult:
        name = req.params.name
        arguments: dict[str, Any] = req.params.arguments or {}
        logger.debug("Handling callTool: name='%s'", name)

        guard: AsyncContextManager[Any] = session.track_call() if session is not None else nullcontext()
        async with guard:
            try:
                result = await dispatcher.invoke(
                    name,
                    arguments,
                    credential,
                    origin_address=origin_address,
                    client_descriptor=client_descriptor,
                )
            except (ToolError, ConfigurationError) as exc:
                logger.info("callTool '%s' failed: %s", name, exc)
                raise to_mcp_error(exc) from exc

        logger.info("callTool '%s' completed (isError=%s).", name, result.is_error)
        return mcp_types.ServerResult(result.to_call_tool_result())

    mcp_server.request_handlers[mcp_types.CallToolRequest] = handle_call_tool
    logger.debug("MCP protocol handlers registered on server instance.")


def build_mcp_server(
    dispatcher: ToolDispatcher,
    *,
    credential: Optional[str],
    origin_address: Optional[str] = None,
    client_descriptor: Optional[str] = None,
    session: Optional[MCPSession] = None,
) -> McpServer:
    """Create an MCP server instance with all handlers registered."""
    mcp_server: McpServer = McpServer(SERVER_NAME, version=SERVER_VERSION)
    register_handlers(
        mcp_server,
        dispatcher,
        credential=credential,
        origin_address=origin_address,
        client_descriptor=client_descriptor,
        session=session,
    )
    return mcp_server
