"""Session management for per-client MCP sessions."""

from lta_datamall_mcp.server.session.manager import SessionManager
from lta_datamall_mcp.server.session.models import MCPSession

__all__ = ["MCPSession", "SessionManager"]
