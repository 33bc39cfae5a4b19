"""Single-session MCP server over stdin/stdout."""

import logging

from mcp.server.stdio import stdio_server

from lta_datamall_mcp.config.schema import DatamallConfig
from lta_datamall_mcp.errors import ConfigurationError
from lta_datamall_mcp.runtime.service import DatamallService
from lta_datamall_mcp.server.handlers import build_mcp_server

logger = logging.getLogger(__name__)

STDIO_ORIGIN = "stdio"


async def run_stdio(config: DatamallConfig) -> None:
    """Serve one MCP session on stdio until the client disconnects.

    The default API key is the only credential on this surface.

    Raises:
        ConfigurationError: no default API key is configured.
    """
    if not config.upstream.api_key:
        raise ConfigurationError(
            "LTA_API_KEY environment variable (or upstream.api_key) is required for stdio mode."
        )

    service = DatamallService(config)
    await service.start()
    try:
        mcp_server = build_mcp_server(
            service.dispatcher,
            credential=config.upstream.api_key,
            origin_address=STDIO_ORIGIN,
            client_descriptor=STDIO_ORIGIN,
        )
        logger.info("Serving MCP over stdio.")
        async with stdio_server() as (read_stream, write_stream):
            await mcp_server.run(
                read_stream, write_stream, mcp_server.create_initialization_options()
            )
        logger.info("stdio client disconnected.")
    finally:
        await service.stop()
