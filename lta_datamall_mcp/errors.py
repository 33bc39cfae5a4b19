"""Custom exception classes for the LTA DataMall MCP server."""

from typing import Optional


class DatamallBaseError(Exception):
    """Base class for all custom exceptions in the LTA DataMall MCP server."""

    pass


class ConfigurationError(DatamallBaseError):
    """Raised when configuration is invalid or a required setting is missing.

    Also raised when a tool is invoked while no upstream credential is
    available (neither a per-request override nor a process default).
    """

    pass


# ── Tool dispatch ────────────────────────────────────────────────────────


class ToolError(DatamallBaseError):
    """Base class for failures that prevent a tool invocation from producing a result."""

    pass


class UnknownToolError(ToolError):
    """Raised when a tool name is not present in the registry."""

    def __init__(self, tool_name: str):
        self.tool_name = tool_name
        super().__init__(f"Unknown tool: {tool_name}")


class InvalidParameterError(ToolError):
    """Raised when a tool parameter is missing, mistyped or outside its allowed values."""

    def __init__(self, name: str, reason: str):
        self.name = name
        self.reason = reason
        super().__init__(f"Invalid parameter '{name}': {reason}")


class UpstreamUnreachableError(ToolError):
    """
    Raised when the upstream API could not be reached at all
    (DNS failure, refused connection, timeout).
    """

    def __init__(self, message: str, url: Optional[str] = None, orig_exc: Optional[Exception] = None):
        self.url = url
        self.orig_exc = orig_exc

        full_msg = "Upstream unreachable"
        if url:
            full_msg += f" ({url})"
        full_msg += f": {message}"
        if orig_exc:
            full_msg += f" (original error: {type(orig_exc).__name__})"
        super().__init__(full_msg)


# ── Sessions ─────────────────────────────────────────────────────────────


class SessionError(DatamallBaseError):
    """Base class for session lifecycle errors."""

    pass


class NoActiveSessionError(SessionError):
    """Raised when a follow-up or termination message references an unknown session."""

    def __init__(self, session_id: Optional[str] = None):
        self.session_id = session_id
        if session_id:
            message = f"No active session with id '{session_id}'."
        else:
            message = "No active session."
        super().__init__(f"{message} Send a POST request without a session id first.")


class UnsupportedOperationError(SessionError):
    """Raised when a message cannot establish a session on this transport."""

    pass


# ── Persistence ──────────────────────────────────────────────────────────


class PersistenceUnavailableError(DatamallBaseError):
    """Raised by a persistence backend that cannot load or store analytics.

    Never fatal: callers fall back to the next backend or skip the write.
    """

    def __init__(self, backend: str, message: str, orig_exc: Optional[Exception] = None):
        self.backend = backend
        self.orig_exc = orig_exc
        super().__init__(f"Persistence backend '{backend}' unavailable: {message}")
