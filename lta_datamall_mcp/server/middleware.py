"""Request tracking middleware.

Records every inbound HTTP request (method, path, origin address, client
descriptor) in the analytics aggregator before it is routed.
"""

import logging
from typing import Optional

from starlette.requests import HTTPConnection
from starlette.types import ASGIApp, Receive, Scope, Send

from lta_datamall_mcp.analytics.aggregator import AnalyticsAggregator

logger = logging.getLogger(__name__)


def client_address(conn: HTTPConnection) -> Optional[str]:
    """Origin address of a request: first ``X-Forwarded-For`` hop, else the peer address."""
    forwarded = conn.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if conn.client is not None:
        return conn.client.host
    return None


class RequestTrackingMiddleware:
    """Pure ASGI middleware that counts every HTTP request.

    Usage::

        Middleware(RequestTrackingMiddleware, analytics=aggregator)
    """

    def __init__(self, app: ASGIApp, analytics: AnalyticsAggregator) -> None:
        self.app = app
        self._analytics = analytics

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http":
            conn = HTTPConnection(scope)
            self._analytics.record_request(
                scope["method"],
                scope.get("path", "/"),
                client_address(conn),
                conn.headers.get("user-agent"),
            )
        await self.app(scope, receive, send)
