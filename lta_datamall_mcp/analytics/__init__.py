"""Usage analytics: aggregation, persistence and read-out."""

from lta_datamall_mcp.analytics.aggregator import AnalyticsAggregator
from lta_datamall_mcp.analytics.models import (
    AnalyticsDelta,
    AnalyticsSnapshot,
    ToolInvocationRecord,
)
from lta_datamall_mcp.analytics.persistence import (
    AnalyticsPersistence,
    LocalFileStore,
    RemoteStore,
    restore_key,
    sanitize_key,
)

__all__ = [
    "AnalyticsAggregator",
    "AnalyticsDelta",
    "AnalyticsPersistence",
    "AnalyticsSnapshot",
    "LocalFileStore",
    "RemoteStore",
    "ToolInvocationRecord",
    "restore_key",
    "sanitize_key",
]
