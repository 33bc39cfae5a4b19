"""Pydantic configuration models for the LTA DataMall MCP server.

Every section has defaults, so an empty (or absent) configuration file is
valid; the upstream API key is usually supplied through ``LTA_API_KEY``.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from lta_datamall_mcp.constants import (
    ANALYTICS_SAVE_INTERVAL,
    DATAMALL_BASE_URL,
    DEFAULT_ANALYTICS_FILE,
    DEFAULT_HOST,
    DEFAULT_PORT,
    RECENT_TOOL_CALLS_CAPACITY,
    REMOTE_ANALYTICS_PATH,
    UPSTREAM_TIMEOUT,
)


def _blank_to_none(v: Optional[str]) -> Optional[str]:
    """Treat empty strings and unexpanded ``${VAR}`` placeholders as unset."""
    if v is None:
        return None
    v = v.strip()
    if not v or (v.startswith("${") and v.endswith("}")):
        return None
    return v


# ── Server settings ─────────────────────────────────────────────────────


class ServerSettings(BaseModel):
    """HTTP server settings (host, port, CORS)."""

    host: str = DEFAULT_HOST
    port: int = Field(default=DEFAULT_PORT, ge=1, le=65535)
    cors_origins: List[str] = Field(
        default_factory=lambda: ["*"],
        description="Origins allowed to call the HTTP surface from a browser.",
    )


# ── Upstream ─────────────────────────────────────────────────────────────


class UpstreamSettings(BaseModel):
    """LTA DataMall upstream API settings."""

    base_url: str = Field(default=DATAMALL_BASE_URL, min_length=1)
    api_key: Optional[str] = Field(
        default=None,
        description="Default DataMall AccountKey. Also LTA_API_KEY env var.",
    )
    timeout: float = Field(
        default=UPSTREAM_TIMEOUT,
        gt=0,
        description="Upstream request timeout in seconds; expiry is reported as unreachable.",
    )

    @field_validator("base_url")
    @classmethod
    def _validate_url(cls, v: str) -> str:
        v = v.strip().rstrip("/")
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"URL '{v}' must start with http:// or https://")
        return v

    @field_validator("api_key")
    @classmethod
    def _normalise_api_key(cls, v: Optional[str]) -> Optional[str]:
        return _blank_to_none(v)


# ── Analytics ────────────────────────────────────────────────────────────


class RemoteStoreSettings(BaseModel):
    """Remote analytics store (Firebase Realtime Database REST API)."""

    enabled: Optional[bool] = Field(
        default=None,
        description="Enable the remote analytics store. Unset means enabled whenever a URL is set.",
    )
    url: Optional[str] = Field(
        default=None,
        description="Database URL. Also FIREBASE_DATABASE_URL env var.",
    )
    path: str = Field(default=REMOTE_ANALYTICS_PATH, min_length=1)
    auth_token: Optional[str] = Field(
        default=None,
        description="Database secret or access token. Also FIREBASE_AUTH_TOKEN env var.",
    )
    timeout: float = Field(default=10.0, gt=0)

    @field_validator("url")
    @classmethod
    def _validate_url(cls, v: Optional[str]) -> Optional[str]:
        v = _blank_to_none(v)
        if v is None:
            return None
        v = v.rstrip("/")
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"URL '{v}' must start with http:// or https://")
        return v

    @field_validator("path")
    @classmethod
    def _strip_path(cls, v: str) -> str:
        return v.strip().strip("/")

    @field_validator("auth_token")
    @classmethod
    def _normalise_token(cls, v: Optional[str]) -> Optional[str]:
        return _blank_to_none(v)

    @model_validator(mode="after")
    def _resolve_enabled(self) -> "RemoteStoreSettings":
        if self.enabled is None:
            self.enabled = self.url is not None
        return self

    @property
    def usable(self) -> bool:
        """``True`` when the store is enabled and has a URL to talk to."""
        return bool(self.enabled) and self.url is not None


class AnalyticsSettings(BaseModel):
    """Usage analytics and persistence settings."""

    history_capacity: int = Field(
        default=RECENT_TOOL_CALLS_CAPACITY,
        ge=1,
        description="Number of recent tool invocations kept in the rolling history.",
    )
    save_interval: float = Field(
        default=ANALYTICS_SAVE_INTERVAL,
        gt=0,
        description="Seconds between periodic analytics saves.",
    )
    local_file: str = Field(
        default=DEFAULT_ANALYTICS_FILE,
        min_length=1,
        description="Local JSON file for analytics. Also ANALYTICS_FILE env var.",
    )
    remote: RemoteStoreSettings = Field(default_factory=RemoteStoreSettings)
    import_token: Optional[str] = Field(
        default=None,
        description=(
            "Bearer token required by POST /analytics/import. "
            "Also ANALYTICS_IMPORT_TOKEN env var. Unset means the endpoint is open."
        ),
    )

    @field_validator("import_token")
    @classmethod
    def _normalise_import_token(cls, v: Optional[str]) -> Optional[str]:
        return _blank_to_none(v)


# ── Top-level config ────────────────────────────────────────────────────


class DatamallConfig(BaseModel):
    """Top-level validated configuration.

    Example::

        version: "1"
        server:
          port: 8080
        upstream:
          api_key: ${LTA_API_KEY}
        analytics:
          remote:
            enabled: true
            url: ${FIREBASE_DATABASE_URL}
    """

    version: str = "1"
    server: ServerSettings = Field(default_factory=ServerSettings)
    upstream: UpstreamSettings = Field(default_factory=UpstreamSettings)
    analytics: AnalyticsSettings = Field(default_factory=AnalyticsSettings)
