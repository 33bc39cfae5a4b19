"""Streamable HTTP transport endpoint for ``/mcp``.

Routing rules for each exchange:

* no session header + POST carrying an ``initialize`` request: resolve a
  credential, open a session and hand the exchange to its channel;
* no session header otherwise: 400, only ``initialize`` opens a session;
* unknown session id: 404;
* known id + DELETE: close the session (waiting for in-flight tool calls);
* known id otherwise: hand the exchange to that session's channel.

A session whose opening exchange the channel does not accept (non-2xx or
no ``mcp-session-id`` in the response) is closed before the request ends.
"""

import json
import logging
from typing import Any, Optional

from starlette.datastructures import Headers
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import Message, Receive, Scope, Send

from lta_datamall_mcp.constants import API_KEY_QUERY_PARAM, MCP_SESSION_ID_HEADER
from lta_datamall_mcp.display.logging_config import secret_redaction_filter
from lta_datamall_mcp.errors import NoActiveSessionError, UnsupportedOperationError
from lta_datamall_mcp.runtime.service import DatamallService
from lta_datamall_mcp.server.middleware import client_address
from lta_datamall_mcp.server.schemas import ErrorResponse
from lta_datamall_mcp.tools.credentials import resolve_credential

logger = logging.getLogger(__name__)


def _error_json(error: str, message: str, status_code: int, hint: str = "") -> JSONResponse:
    body = ErrorResponse(error=error, message=message, hint=hint or None)
    return JSONResponse(body.to_json_dict(), status_code=status_code)


def is_initialize_request(body: bytes) -> bool:
    """``True`` if *body* is a single JSON-RPC ``initialize`` request."""
    try:
        payload: Any = json.loads(body)
    except ValueError:
        return False
    return (
        isinstance(payload, dict)
        and payload.get("method") == "initialize"
        and "id" in payload
    )


def _replay(body: bytes, receive: Receive) -> Receive:
    """A ``receive`` that yields the already-read *body* once, then defers."""
    sent = False

    async def replay() -> Message:
        nonlocal sent
        if not sent:
            sent = True
            return {"type": "http.request", "body": body, "more_body": False}
        return await receive()

    return replay


class _ResponseWatch:
    """Wraps ``send`` and records whether the channel accepted the session."""

    def __init__(self, send: Send) -> None:
        self._send = send
        self.status: Optional[int] = None
        self.session_header: Optional[str] = None

    async def __call__(self, message: Message) -> None:
        if message["type"] == "http.response.start":
            self.status = message["status"]
            self.session_header = Headers(raw=message.get("headers", [])).get(MCP_SESSION_ID_HEADER)
        await self._send(message)

    @property
    def accepted(self) -> bool:
        return self.status is not None and 200 <= self.status < 300 and bool(self.session_header)


class StreamableHTTPEndpoint:
    """ASGI endpoint that multiplexes MCP sessions over ``/mcp``."""

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope, receive)
        service: DatamallService = request.app.state.service
        sessions = service.sessions
        session_id = request.headers.get(MCP_SESSION_ID_HEADER)
        logger.debug(
            "Streamable HTTP %s (session=%s) from %s",
            request.method,
            session_id or "-",
            client_address(request),
        )

        try:
            if session_id is None:
                await self._open_and_serve(request, service, scope, receive, send)
                return

            if request.method == "DELETE":
                sessions.get(session_id)
                await sessions.close(session_id)
                await Response(status_code=200)(scope, receive, send)
                return

            await sessions.handle_request(session_id, scope, receive, send)

        except UnsupportedOperationError as exc:
            logger.info("Rejected %s on /mcp: %s", request.method, exc)
            response = _error_json("bad_request", str(exc), status_code=400)
            await response(scope, receive, send)
        except NoActiveSessionError as exc:
            logger.info("Rejected %s on /mcp: %s", request.method, exc)
            response = _error_json("session_not_found", str(exc), status_code=404)
            await response(scope, receive, send)

    async def _open_and_serve(
        self,
        request: Request,
        service: DatamallService,
        scope: Scope,
        receive: Receive,
        send: Send,
    ) -> None:
        sessions = service.sessions
        if request.method != "POST":
            raise UnsupportedOperationError(
                f"{request.method} requests cannot establish a session. "
                "Send a POST with an initialize request first."
            )
        if not sessions.accepting:
            response = _error_json("service_unavailable", "Server is shutting down.", status_code=503)
            await response(scope, receive, send)
            return

        body = await request.body()
        if not is_initialize_request(body):
            raise UnsupportedOperationError(
                f"Missing {MCP_SESSION_ID_HEADER} header. Only an initialize request "
                "may be sent without a session."
            )

        override = request.query_params.get(API_KEY_QUERY_PARAM)
        credential = resolve_credential(override, service.default_api_key)
        if credential is None:
            logger.error("Session request rejected: no LTA API key available.")
            response = _error_json(
                "configuration_error",
                "Server configuration error: No LTA API key available.",
                status_code=500,
                hint=(
                    f"Pass your DataMall AccountKey as ?{API_KEY_QUERY_PARAM}=... "
                    "or set LTA_API_KEY on the server."
                ),
            )
            await response(scope, receive, send)
            return

        from_request = credential != service.default_api_key
        if from_request:
            secret_redaction_filter.register(credential)
        session = await sessions.open(
            credential=credential,
            credential_source="request" if from_request else "default",
            origin_address=client_address(request),
            client_descriptor=request.headers.get("user-agent"),
        )

        watch = _ResponseWatch(send)
        try:
            await sessions.handle_request(session.id, scope, _replay(body, receive), watch)
        finally:
            if not watch.accepted:
                logger.info(
                    "Session %s discarded: channel answered %s to its opening request.",
                    session.id,
                    watch.status,
                )
                await sessions.close(session.id)
