"""Configuration loading and validation for the LTA DataMall MCP server."""

from lta_datamall_mcp.config.loader import expand_env_vars, find_config_file, load_config
from lta_datamall_mcp.config.schema import (
    AnalyticsSettings,
    DatamallConfig,
    RemoteStoreSettings,
    ServerSettings,
    UpstreamSettings,
)

__all__ = [
    "AnalyticsSettings",
    "DatamallConfig",
    "RemoteStoreSettings",
    "ServerSettings",
    "UpstreamSettings",
    "expand_env_vars",
    "find_config_file",
    "load_config",
]
