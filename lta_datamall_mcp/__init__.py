"""
LTA DataMall MCP - Model Context Protocol server for Singapore LTA DataMall.

Exposes real-time transport queries (bus arrivals, train crowding, traffic
incidents, carpark availability, ...) as MCP tools over stdio or over a
session-multiplexed streamable HTTP endpoint, and keeps usage analytics.
"""

from lta_datamall_mcp.constants import SERVER_NAME, SERVER_VERSION

__version__ = SERVER_VERSION
__app_name__ = SERVER_NAME

__all__ = [
    "SERVER_NAME",
    "SERVER_VERSION",
    "__version__",
    "__app_name__",
]
