"""Pydantic response schemas for the HTTP surface."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class ErrorResponse(_CamelModel):
    error: str
    message: str
    hint: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


# ── GET / ────────────────────────────────────────────────────────────────


class ServerDescriptor(_CamelModel):
    name: str
    version: str
    description: str
    transport: str = "streamable-http"
    endpoints: Dict[str, str]
    tools: List[str]
    capabilities: Dict[str, bool] = Field(default_factory=lambda: {"tools": True})
    api_key_info: Dict[str, str] = Field(alias="apiKeyInfo")


# ── GET /health ──────────────────────────────────────────────────────────


class HealthResponse(_CamelModel):
    status: str = Field(description="healthy | starting | stopping | unhealthy")
    server: str
    version: str
    transport: str = "streamable-http"
    timestamp: str
    uptime_seconds: float = Field(alias="uptimeSeconds")
    active_sessions: int = Field(alias="activeSessions")
    default_key_configured: bool = Field(alias="defaultKeyConfigured")
    persistence: Dict[str, Any] = Field(default_factory=dict)


# ── POST /analytics/import ───────────────────────────────────────────────


class ImportResponse(_CamelModel):
    status: str = "merged"
    total_requests: int = Field(alias="totalRequests")
    total_tool_calls: int = Field(alias="totalToolCalls")
    last_updated: Optional[int] = Field(default=None, alias="lastUpdated")
