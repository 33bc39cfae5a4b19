"""Shared constants for the LTA DataMall MCP server."""

SERVER_NAME = "lta-datamall-server"
SERVER_DISPLAY_NAME = "LTA DataMall MCP Server"
SERVER_VERSION = "1.0.0"
SERVER_DESCRIPTION = "Model Context Protocol server for Singapore LTA DataMall API"

# Network defaults
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8080

# HTTP surface paths
STREAMABLE_HTTP_PATH = "/mcp"
HEALTH_PATH = "/health"
ANALYTICS_PATH = "/analytics"
ANALYTICS_DASHBOARD_PATH = "/analytics/dashboard"
ANALYTICS_IMPORT_PATH = "/analytics/import"

# Session header and per-request credential override
MCP_SESSION_ID_HEADER = "mcp-session-id"
API_KEY_QUERY_PARAM = "apiKey"

# Upstream
DATAMALL_BASE_URL = "https://datamall2.mytransport.sg/ltaodataservice"
UPSTREAM_TIMEOUT = 30.0  # seconds
UPSTREAM_ERROR_PREFIX = "LTA API error"

# Analytics
RECENT_TOOL_CALLS_CAPACITY = 100
CLIENT_DESCRIPTOR_MAX_LEN = 100
ANALYTICS_SAVE_INTERVAL = 60.0  # seconds
DEFAULT_ANALYTICS_FILE = "data/analytics.json"
REMOTE_ANALYTICS_PATH = "mcp-analytics/mcp-ltadatamallsg"

# Logging defaults
LOG_DIR = "logs"
DEFAULT_LOG_LEVEL = "INFO"
