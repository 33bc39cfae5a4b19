"""Process-wide usage counters and rolling tool-call history.

All state lives behind :class:`AnalyticsAggregator`; callers only see
copies via :meth:`AnalyticsAggregator.snapshot`.  Every mutator takes the
same lock, so increments are never lost even when called from a worker
thread.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter, deque
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Mapping, Optional, Union

from lta_datamall_mcp.analytics.models import (
    AnalyticsDelta,
    AnalyticsSnapshot,
    ToolInvocationRecord,
)
from lta_datamall_mcp.constants import CLIENT_DESCRIPTOR_MAX_LEN, RECENT_TOOL_CALLS_CAPACITY

logger = logging.getLogger(__name__)

UNKNOWN = "unknown"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def iso_timestamp(dt: datetime) -> str:
    """``2025-01-31T08:15:00.000Z`` style UTC timestamp."""
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def hour_bucket(dt: datetime) -> str:
    """Hourly counter key, e.g. ``2025-01-31T08`` (UTC)."""
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H")


def truncate_descriptor(descriptor: Optional[str]) -> str:
    if not descriptor:
        return UNKNOWN
    return descriptor[:CLIENT_DESCRIPTOR_MAX_LEN]


class AnalyticsAggregator:
    """Counts requests and tool calls for the lifetime of the process.

    Parameters
    ----------
    history_capacity:
        Size of the rolling tool-call history; the oldest record is
        evicted once it is full.
    started_at:
        Server start time (defaults to now).  Uptime is derived from it.
    clock:
        Returns the current aware UTC datetime (injectable for tests).
    """

    def __init__(
        self,
        history_capacity: int = RECENT_TOOL_CALLS_CAPACITY,
        *,
        started_at: Optional[datetime] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if history_capacity < 1:
            raise ValueError("history_capacity must be at least 1")
        self._lock = threading.Lock()
        self._clock = clock
        self._started_at = started_at or clock()
        self._history_capacity = history_capacity

        self._total_requests = 0
        self._total_tool_calls = 0
        self._requests_by_method: Counter[str] = Counter()
        self._requests_by_endpoint: Counter[str] = Counter()
        self._tool_calls: Counter[str] = Counter()
        self._recent: Deque[ToolInvocationRecord] = deque(maxlen=history_capacity)
        self._clients_by_ip: Counter[str] = Counter()
        self._clients_by_user_agent: Counter[str] = Counter()
        self._hourly_requests: Counter[str] = Counter()
        self._last_updated: Optional[int] = None

    # ── Properties ───────────────────────────────────────────────────

    @property
    def started_at(self) -> datetime:
        return self._started_at

    @property
    def history_capacity(self) -> int:
        return self._history_capacity

    def uptime_seconds(self) -> float:
        """Seconds since server start, computed on every read."""
        return (self._clock() - self._started_at).total_seconds()

    # ── Recording ────────────────────────────────────────────────────

    def record_request(
        self,
        method: str,
        endpoint: str,
        origin_address: Optional[str],
        client_descriptor: Optional[str],
    ) -> None:
        """Count one inbound HTTP request."""
        now = self._clock()
        with self._lock:
            self._total_requests += 1
            self._requests_by_method[method.upper()] += 1
            self._requests_by_endpoint[endpoint] += 1
            self._clients_by_ip[origin_address or UNKNOWN] += 1
            self._clients_by_user_agent[truncate_descriptor(client_descriptor)] += 1
            self._hourly_requests[hour_bucket(now)] += 1
            self._touch(now)

    def record_tool_call(
        self,
        tool_name: str,
        origin_address: Optional[str],
        client_descriptor: Optional[str],
    ) -> None:
        """Count one dispatched tool call and append it to the history."""
        now = self._clock()
        record = ToolInvocationRecord(
            tool=tool_name,
            timestamp=iso_timestamp(now),
            client_ip=origin_address or UNKNOWN,
            user_agent=truncate_descriptor(client_descriptor),
        )
        with self._lock:
            self._total_tool_calls += 1
            self._tool_calls[tool_name] += 1
            self._recent.append(record)
            self._touch(now)

    # ── Read-out ─────────────────────────────────────────────────────

    def snapshot(self) -> AnalyticsSnapshot:
        """Return a copy of the current state; mutating it has no effect here."""
        with self._lock:
            return AnalyticsSnapshot(
                server_start_time=iso_timestamp(self._started_at),
                total_requests=self._total_requests,
                total_tool_calls=self._total_tool_calls,
                requests_by_method=dict(self._requests_by_method),
                requests_by_endpoint=dict(self._requests_by_endpoint),
                tool_calls=dict(self._tool_calls),
                recent_tool_calls=list(self._recent),
                clients_by_ip=dict(self._clients_by_ip),
                clients_by_user_agent=dict(self._clients_by_user_agent),
                hourly_requests=dict(self._hourly_requests),
                last_updated=self._last_updated,
            )

    # ── Bulk updates ─────────────────────────────────────────────────

    def merge(self, delta: Union[AnalyticsDelta, AnalyticsSnapshot, Mapping[str, Any]]) -> None:
        """Fold *delta* additively into the current state.

        Scalar counters are summed and counter maps are merged key by key;
        history records are appended (oldest evicted past capacity).  Fields
        missing from *delta* are left alone.  Re-submitting the same delta
        counts it twice.

        Raises ``pydantic.ValidationError`` if a mapping *delta* is invalid.
        """
        if isinstance(delta, AnalyticsSnapshot):
            delta = AnalyticsDelta.from_snapshot(delta)
        elif not isinstance(delta, AnalyticsDelta):
            delta = AnalyticsDelta.model_validate(delta)

        now = self._clock()
        with self._lock:
            if delta.total_requests is not None:
                self._total_requests += delta.total_requests
            if delta.total_tool_calls is not None:
                self._total_tool_calls += delta.total_tool_calls
            for mine, theirs in (
                (self._requests_by_method, delta.requests_by_method),
                (self._requests_by_endpoint, delta.requests_by_endpoint),
                (self._tool_calls, delta.tool_calls),
                (self._clients_by_ip, delta.clients_by_ip),
                (self._clients_by_user_agent, delta.clients_by_user_agent),
                (self._hourly_requests, delta.hourly_requests),
            ):
                if theirs:
                    for key, count in theirs.items():
                        mine[key] += count
            if delta.recent_tool_calls:
                self._recent.extend(delta.recent_tool_calls)
            self._touch(now)
        logger.info(
            "Merged analytics delta (+%d requests, +%d tool calls).",
            delta.total_requests or 0,
            delta.total_tool_calls or 0,
        )

    def restore(self, snapshot: AnalyticsSnapshot) -> None:
        """Replace all counters with *snapshot* (used once at startup).

        The server start time is kept; only the most recent
        ``history_capacity`` history records survive.
        """
        with self._lock:
            self._total_requests = snapshot.total_requests
            self._total_tool_calls = snapshot.total_tool_calls
            self._requests_by_method = Counter(snapshot.requests_by_method)
            self._requests_by_endpoint = Counter(snapshot.requests_by_endpoint)
            self._tool_calls = Counter(snapshot.tool_calls)
            self._recent = deque(snapshot.recent_tool_calls, maxlen=self._history_capacity)
            self._clients_by_ip = Counter(snapshot.clients_by_ip)
            self._clients_by_user_agent = Counter(snapshot.clients_by_user_agent)
            self._hourly_requests = Counter(snapshot.hourly_requests)
            self._last_updated = snapshot.last_updated
        logger.info(
            "Analytics restored: %d requests, %d tool calls, %d recent call(s).",
            snapshot.total_requests,
            snapshot.total_tool_calls,
            len(self._recent),
        )

    # ── Internal ─────────────────────────────────────────────────────

    def _touch(self, now: datetime) -> None:
        self._last_updated = int(now.timestamp() * 1000)
