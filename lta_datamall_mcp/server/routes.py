"""Plain HTTP routes: server descriptor, health check and analytics read-out."""

import hmac
import json
import logging
from datetime import datetime, timezone
from typing import Optional

from pydantic import ValidationError
from starlette.requests import Request
from starlette.responses import HTMLResponse, JSONResponse
from starlette.routing import Route

from lta_datamall_mcp.analytics.aggregator import iso_timestamp
from lta_datamall_mcp.analytics.dashboard import render_dashboard
from lta_datamall_mcp.constants import (
    ANALYTICS_DASHBOARD_PATH,
    ANALYTICS_IMPORT_PATH,
    ANALYTICS_PATH,
    API_KEY_QUERY_PARAM,
    HEALTH_PATH,
    SERVER_DESCRIPTION,
    SERVER_DISPLAY_NAME,
    SERVER_NAME,
    SERVER_VERSION,
    STREAMABLE_HTTP_PATH,
)
from lta_datamall_mcp.runtime.models import ServiceState
from lta_datamall_mcp.runtime.service import DatamallService
from lta_datamall_mcp.server.schemas import (
    ErrorResponse,
    HealthResponse,
    ImportResponse,
    ServerDescriptor,
)

logger = logging.getLogger(__name__)

_HEALTH_BY_STATE = {
    ServiceState.PENDING: "starting",
    ServiceState.STARTING: "starting",
    ServiceState.RUNNING: "healthy",
    ServiceState.STOPPING: "stopping",
    ServiceState.STOPPED: "stopping",
    ServiceState.ERROR: "unhealthy",
}


# ── Helpers ──────────────────────────────────────────────────────────────


def _get_service(request: Request) -> DatamallService:
    """Retrieve the DatamallService instance from app state."""
    service: Optional[DatamallService] = getattr(request.app.state, "service", None)
    if service is None:
        raise RuntimeError("DatamallService not found on app.state")
    return service


def _error_json(error: str, message: str, status_code: int = 500, **extra: object) -> JSONResponse:
    body = ErrorResponse(error=error, message=message, details=dict(extra) or None)
    return JSONResponse(body.to_json_dict(), status_code=status_code)


def _bearer_matches(request: Request, token: str) -> bool:
    auth_header = request.headers.get("authorization", "")
    if not auth_header.startswith("Bearer "):
        return False
    return hmac.compare_digest(auth_header[7:], token)


# ── GET / ────────────────────────────────────────────────────────────────


async def handle_root(request: Request) -> JSONResponse:
    """Describe the server, its endpoints and its tools."""
    service = _get_service(request)
    resp = ServerDescriptor(
        name=SERVER_DISPLAY_NAME,
        version=SERVER_VERSION,
        description=SERVER_DESCRIPTION,
        endpoints={
            "mcp": STREAMABLE_HTTP_PATH,
            "health": HEALTH_PATH,
            "analytics": ANALYTICS_PATH,
            "dashboard": ANALYTICS_DASHBOARD_PATH,
        },
        tools=service.dispatcher.registry.names(),
        api_key_info={
            "default": "configured" if service.default_api_key else "not configured",
            "override": (
                f"Append ?{API_KEY_QUERY_PARAM}=<your DataMall AccountKey> to the "
                f"{STREAMABLE_HTTP_PATH} URL to use your own key for the session."
            ),
        },
    )
    return JSONResponse(resp.to_json_dict())


# ── GET /health ──────────────────────────────────────────────────────────


async def handle_health(request: Request) -> JSONResponse:
    """Liveness check, returns 200 while the process serves requests."""
    service = _get_service(request)
    svc_status = service.get_status()
    resp = HealthResponse(
        status=_HEALTH_BY_STATE[svc_status.state],
        server=SERVER_NAME,
        version=SERVER_VERSION,
        timestamp=iso_timestamp(datetime.now(timezone.utc)),
        uptime_seconds=svc_status.uptime_seconds,
        active_sessions=svc_status.active_sessions,
        default_key_configured=svc_status.default_key_configured,
        persistence=svc_status.persistence,
    )
    return JSONResponse(resp.to_json_dict())


# ── GET /analytics ───────────────────────────────────────────────────────


async def handle_analytics(request: Request) -> JSONResponse:
    """Full analytics snapshot plus current uptime."""
    service = _get_service(request)
    body = service.analytics.snapshot().to_json_dict()
    body["uptimeSeconds"] = round(service.analytics.uptime_seconds(), 3)
    return JSONResponse(body)


# ── GET /analytics/dashboard ─────────────────────────────────────────────


async def handle_dashboard(request: Request) -> HTMLResponse:
    """Human-readable rendering of the analytics snapshot."""
    service = _get_service(request)
    html = render_dashboard(service.analytics.snapshot(), service.analytics.uptime_seconds())
    return HTMLResponse(html)


# ── POST /analytics/import ───────────────────────────────────────────────


async def handle_import(request: Request) -> JSONResponse:
    """Merge an analytics delta additively into the live counters."""
    service = _get_service(request)
    token = service.config.analytics.import_token
    if token is not None and not _bearer_matches(request, token):
        logger.warning("Rejected analytics import from %s: bad or missing token.", request.client)
        return JSONResponse(
            ErrorResponse(error="unauthorized", message="Invalid bearer token.").to_json_dict(),
            status_code=401,
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        return _error_json("bad_request", f"Request body is not valid JSON: {exc}", 400)
    if not isinstance(payload, dict):
        return _error_json("bad_request", "Request body must be a JSON object.", 400)

    try:
        service.analytics.merge(payload)
    except ValidationError as exc:
        return _error_json(
            "bad_request",
            f"Analytics delta failed validation ({exc.error_count()} error(s)).",
            400,
            errors=[
                {"loc": ".".join(str(p) for p in err["loc"]), "msg": err["msg"]}
                for err in exc.errors()
            ],
        )

    snapshot = service.analytics.snapshot()
    logger.info(
        "Analytics delta merged: totals now %d request(s), %d tool call(s).",
        snapshot.total_requests,
        snapshot.total_tool_calls,
    )
    resp = ImportResponse(
        total_requests=snapshot.total_requests,
        total_tool_calls=snapshot.total_tool_calls,
        last_updated=snapshot.last_updated,
    )
    return JSONResponse(resp.to_json_dict())


# ── Route table ──────────────────────────────────────────────────────────

routes = [
    Route("/", endpoint=handle_root, methods=["GET"]),
    Route(HEALTH_PATH, endpoint=handle_health, methods=["GET"]),
    Route(ANALYTICS_PATH, endpoint=handle_analytics, methods=["GET"]),
    Route(ANALYTICS_DASHBOARD_PATH, endpoint=handle_dashboard, methods=["GET"]),
    Route(ANALYTICS_IMPORT_PATH, endpoint=handle_import, methods=["POST"]),
]
