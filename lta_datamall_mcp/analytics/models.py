"""Pydantic models for usage analytics.

Field names are snake_case in Python and camelCase on the wire (the JSON
served by ``/analytics`` and stored by the persistence layer).
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt, ValidationError

logger = logging.getLogger(__name__)

_ALIASED = ConfigDict(populate_by_name=True)


class ToolInvocationRecord(BaseModel):
    """One entry of the rolling tool-call history.  Never mutated after creation."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    tool: str
    timestamp: str
    client_ip: str = Field(default="unknown", alias="clientIp")
    user_agent: str = Field(default="unknown", alias="userAgent")


class AnalyticsSnapshot(BaseModel):
    """Point-in-time copy of every counter and the recent tool-call history."""

    model_config = _ALIASED

    server_start_time: str = Field(alias="serverStartTime")
    total_requests: int = Field(default=0, alias="totalRequests")
    total_tool_calls: int = Field(default=0, alias="totalToolCalls")
    requests_by_method: Dict[str, int] = Field(default_factory=dict, alias="requestsByMethod")
    requests_by_endpoint: Dict[str, int] = Field(default_factory=dict, alias="requestsByEndpoint")
    tool_calls: Dict[str, int] = Field(default_factory=dict, alias="toolCalls")
    recent_tool_calls: List[ToolInvocationRecord] = Field(
        default_factory=list, alias="recentToolCalls"
    )
    clients_by_ip: Dict[str, int] = Field(default_factory=dict, alias="clientsByIp")
    clients_by_user_agent: Dict[str, int] = Field(
        default_factory=dict, alias="clientsByUserAgent"
    )
    hourly_requests: Dict[str, int] = Field(default_factory=dict, alias="hourlyRequests")
    last_updated: Optional[int] = Field(
        default=None,
        alias="lastUpdated",
        description="Epoch milliseconds of the last tracked event.",
    )

    def to_json_dict(self) -> Dict[str, Any]:
        """camelCase, JSON-ready dict (the persisted layout)."""
        return self.model_dump(by_alias=True, mode="json")

    @classmethod
    def rehydrate(cls, data: Any, *, server_start_time: str) -> "AnalyticsSnapshot":
        """Build a snapshot from stored JSON without ever failing.

        Missing or malformed fields fall back to their zero value; bad map
        entries and history records are dropped one by one.
        """
        if not isinstance(data, dict):
            logger.warning("Stored analytics is not an object (%s); starting from zero.", type(data).__name__)
            data = {}
        last_updated = _coerce_count(data.get("lastUpdated"))
        return cls(
            server_start_time=server_start_time,
            total_requests=_coerce_count(data.get("totalRequests")) or 0,
            total_tool_calls=_coerce_count(data.get("totalToolCalls")) or 0,
            requests_by_method=_coerce_counter_map(data.get("requestsByMethod")),
            requests_by_endpoint=_coerce_counter_map(data.get("requestsByEndpoint")),
            tool_calls=_coerce_counter_map(data.get("toolCalls")),
            recent_tool_calls=_coerce_records(data.get("recentToolCalls")),
            clients_by_ip=_coerce_counter_map(data.get("clientsByIp")),
            clients_by_user_agent=_coerce_counter_map(data.get("clientsByUserAgent")),
            hourly_requests=_coerce_counter_map(data.get("hourlyRequests")),
            last_updated=last_updated,
        )


class AnalyticsDelta(BaseModel):
    """Partial snapshot folded into the aggregator by ``merge``.

    Every field is optional; absent fields leave the aggregator untouched.
    Unknown keys (``serverStartTime``, ``uptimeSeconds``, ...) are ignored so
    the output of ``GET /analytics`` can be imported as-is.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    total_requests: Optional[NonNegativeInt] = Field(default=None, alias="totalRequests")
    total_tool_calls: Optional[NonNegativeInt] = Field(default=None, alias="totalToolCalls")
    requests_by_method: Optional[Dict[str, NonNegativeInt]] = Field(
        default=None, alias="requestsByMethod"
    )
    requests_by_endpoint: Optional[Dict[str, NonNegativeInt]] = Field(
        default=None, alias="requestsByEndpoint"
    )
    tool_calls: Optional[Dict[str, NonNegativeInt]] = Field(default=None, alias="toolCalls")
    recent_tool_calls: Optional[List[ToolInvocationRecord]] = Field(
        default=None, alias="recentToolCalls"
    )
    clients_by_ip: Optional[Dict[str, NonNegativeInt]] = Field(default=None, alias="clientsByIp")
    clients_by_user_agent: Optional[Dict[str, NonNegativeInt]] = Field(
        default=None, alias="clientsByUserAgent"
    )
    hourly_requests: Optional[Dict[str, NonNegativeInt]] = Field(
        default=None, alias="hourlyRequests"
    )

    @classmethod
    def from_snapshot(cls, snapshot: AnalyticsSnapshot) -> "AnalyticsDelta":
        return cls.model_validate(snapshot.to_json_dict())


# ── Lenient coercion helpers ─────────────────────────────────────────────


def _coerce_count(value: Any) -> Optional[int]:
    """Non-negative integer from *value*, or ``None`` if it is not one."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, float) and value.is_integer() and value >= 0:
        return int(value)
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return None


def _coerce_counter_map(value: Any) -> Dict[str, int]:
    if not isinstance(value, dict):
        return {}
    result: Dict[str, int] = {}
    for key, raw in value.items():
        count = _coerce_count(raw)
        if count is not None:
            result[str(key)] = count
    return result


def _coerce_records(value: Any) -> List[ToolInvocationRecord]:
    # Firebase returns arrays with gaps as objects keyed by index
    if isinstance(value, dict):
        items = [value[k] for k in sorted(value, key=lambda k: int(k) if str(k).isdigit() else -1)]
    elif isinstance(value, list):
        items = value
    else:
        return []
    records: List[ToolInvocationRecord] = []
    for item in items:
        try:
            records.append(ToolInvocationRecord.model_validate(item))
        except ValidationError:
            logger.debug("Dropping malformed tool-call record: %r", item)
    return records
