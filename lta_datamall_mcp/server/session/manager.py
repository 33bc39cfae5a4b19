"""Session lifecycle management.

Each live session owns one streamable HTTP channel and one MCP server task
reading from it.  The manager is the only holder of those channels: callers
address sessions by id and the manager routes exchanges, closes channels and
forgets ids.  A closed id is never reused; new sessions always get a fresh
random id.

State per session::

    absent ──open()──► active ──close() / channel ends / TTL──► closed
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from mcp.server import Server as McpServer
from mcp.server.streamable_http import StreamableHTTPServerTransport

from lta_datamall_mcp.errors import NoActiveSessionError, UnsupportedOperationError
from lta_datamall_mcp.server.session.models import MCPSession

logger = logging.getLogger(__name__)

_DEFAULT_CLEANUP_INTERVAL: float = 60.0  # seconds between cleanup sweeps
_DEFAULT_CLOSE_GRACE: float = 5.0  # seconds to let in-flight tool calls finish

ServerFactory = Callable[[MCPSession], McpServer]
ChannelFactory = Callable[[str], Any]


def _default_channel_factory(session_id: str) -> StreamableHTTPServerTransport:
    return StreamableHTTPServerTransport(mcp_session_id=session_id)


def _new_session_id() -> str:
    return uuid4().hex


@dataclass(eq=False)
class _LiveSession:
    session: MCPSession
    channel: Any
    task: Optional["asyncio.Task[None]"] = field(default=None)


class SessionManager:
    """Owns the mapping from session id to live channel.

    Parameters
    ----------
    server_factory:
        Builds the MCP server that serves one session.
    channel_factory:
        Builds the transport channel for a new session id.  Defaults to the
        MCP SDK's ``StreamableHTTPServerTransport``.
    default_ttl:
        Idle time-to-live for sessions, in seconds.
    cleanup_interval:
        How often (in seconds) the cleanup loop runs.
    close_grace:
        How long :meth:`close` waits for in-flight tool calls.
    id_factory:
        Generates session ids.
    """

    def __init__(
        self,
        server_factory: ServerFactory,
        *,
        channel_factory: ChannelFactory = _default_channel_factory,
        default_ttl: float = 1800.0,
        cleanup_interval: float = _DEFAULT_CLEANUP_INTERVAL,
        close_grace: float = _DEFAULT_CLOSE_GRACE,
        id_factory: Callable[[], str] = _new_session_id,
    ) -> None:
        self._server_factory = server_factory
        self._channel_factory = channel_factory
        self._default_ttl = default_ttl
        self._cleanup_interval = cleanup_interval
        self._close_grace = close_grace
        self._id_factory = id_factory

        self._live: Dict[str, _LiveSession] = {}
        self._creation_lock = asyncio.Lock()
        self._accepting = True
        self._cleanup_task: Optional[asyncio.Task[None]] = None

    # ── Lifecycle ────────────────────────────────────────────────────

    def start(self) -> None:
        """Start the background cleanup loop."""
        self._accepting = True
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(self._cleanup_loop(), name="session-cleanup")
            logger.info(
                "Session cleanup started (interval=%.0fs, default_ttl=%.0fs).",
                self._cleanup_interval,
                self._default_ttl,
            )

    async def stop(self) -> None:
        """Refuse new sessions, cancel the cleanup task and close every session."""
        self._accepting = False
        if self._cleanup_task is not None and not self._cleanup_task.done():
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None
        ids = list(self._live)
        await asyncio.gather(*(self.close(sid) for sid in ids))
        logger.info("SessionManager stopped. Closed %d session(s).", len(ids))

    # ── Session CRUD ─────────────────────────────────────────────────

    async def open(
        self,
        *,
        credential: str,
        credential_source: str = "default",
        origin_address: Optional[str] = None,
        client_descriptor: Optional[str] = None,
        transport_type: str = "streamable_http",
    ) -> MCPSession:
        """Create a session under a fresh id and start serving it.

        Returns once the channel is connected and the id is registered.

        Raises:
            UnsupportedOperationError: the manager is shutting down.
            RuntimeError: the channel failed before it was connected.
        """
        if not self._accepting:
            raise UnsupportedOperationError("Server is shutting down; no new sessions are accepted.")

        async with self._creation_lock:
            session_id = self._id_factory()
            while session_id in self._live:
                logger.warning("Session id collision on %s; regenerating.", session_id)
                session_id = self._id_factory()

            session = MCPSession(
                id=session_id,
                credential=credential,
                credential_source=credential_source,
                origin_address=origin_address,
                client_descriptor=client_descriptor,
                transport_type=transport_type,
                ttl=self._default_ttl,
            )
            live = _LiveSession(session=session, channel=self._channel_factory(session_id))
            server = self._server_factory(session)

            connected = asyncio.Event()
            live.task = asyncio.create_task(
                self._serve(live, server, connected), name=f"mcp-session-{session_id[:8]}"
            )
            waiter = asyncio.ensure_future(connected.wait())
            await asyncio.wait({waiter, live.task}, return_when=asyncio.FIRST_COMPLETED)
            if not connected.is_set() or live.task.done():
                waiter.cancel()
                session.closed = True
                raise RuntimeError(f"Channel for session {session_id} ended before it was connected.")

            self._live[session_id] = live

        logger.info(
            "Session created: id=%s transport=%s origin=%s key=%s",
            session_id,
            transport_type,
            origin_address,
            credential_source,
        )
        return session

    def get(self, session_id: str) -> MCPSession:
        """Return the live session for *session_id*.

        Raises :class:`NoActiveSessionError` if there is none.
        """
        return self._lookup(session_id).session

    async def handle_request(self, session_id: str, scope: Any, receive: Any, send: Any) -> None:
        """Hand one HTTP exchange to the session's channel.

        Raises :class:`NoActiveSessionError` (before touching any channel)
        if *session_id* is not live.
        """
        live = self._lookup(session_id)
        live.session.touch()
        await live.channel.handle_request(scope, receive, send)

    async def close(self, session_id: str) -> bool:
        """Close a session.  Returns ``True`` if it was live.

        Closing an unknown or already-closed id is a no-op.
        """
        live = self._live.pop(session_id, None)
        if live is None:
            logger.debug("close(%s): no such live session.", session_id)
            return False
        await self._shutdown(live)
        logger.info("Session closed: %s", session_id)
        return True

    # ── Queries ──────────────────────────────────────────────────────

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._live

    @property
    def accepting(self) -> bool:
        return self._accepting

    @property
    def active_count(self) -> int:
        return len(self._live)

    def list_sessions(self) -> List[Dict[str, Any]]:
        """Return session summaries for diagnostics."""
        return [live.session.to_dict() for live in self._live.values()]

    # ── Internal ─────────────────────────────────────────────────────

    def _lookup(self, session_id: str) -> _LiveSession:
        live = self._live.get(session_id)
        if live is None:
            raise NoActiveSessionError(session_id)
        return live

    async def _serve(self, live: _LiveSession, server: McpServer, connected: asyncio.Event) -> None:
        """Run the MCP server over the session channel until either side closes."""
        session_id = live.session.id
        try:
            async with live.channel.connect() as (read_stream, write_stream):
                connected.set()
                await server.run(read_stream, write_stream, server.create_initialization_options())
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("MCP server for session %s failed.", session_id)
        finally:
            live.session.closed = True
            # Only forget the id if it still points at this channel.
            if self._live.get(session_id) is live:
                del self._live[session_id]
                logger.info("Session %s ended by its channel.", session_id)

    async def _shutdown(self, live: _LiveSession) -> None:
        session = live.session
        session.closed = True
        if not await session.wait_idle(self._close_grace):
            logger.warning(
                "Session %s closing with %d tool call(s) still in flight.",
                session.id,
                session.inflight_calls,
            )
        try:
            if not getattr(live.channel, "is_terminated", False):
                await live.channel.terminate()
        except Exception:
            logger.warning("Error terminating channel for session %s.", session.id, exc_info=True)
        task = live.task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _cleanup_loop(self) -> None:
        """Periodically close sessions that have been idle past their TTL."""
        try:
            while True:
                await asyncio.sleep(self._cleanup_interval)
                expired = [sid for sid, live in self._live.items() if live.session.expired]
                for sid in expired:
                    await self.close(sid)
                if expired:
                    logger.info(
                        "Session cleanup: closed %d expired session(s), %d remaining.",
                        len(expired),
                        len(self._live),
                    )
        except asyncio.CancelledError:
            logger.debug("Session cleanup loop cancelled.")
