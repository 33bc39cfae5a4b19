"""Session data model for per-client MCP sessions."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from time import monotonic
from typing import Any, AsyncIterator, Dict, Optional


@dataclass
class MCPSession:
    """A logical client connection bound to one upstream credential.

    The credential is resolved once, when the session is created, and is
    used for every tool call made on the session.  The transport channel
    itself is held by :class:`~lta_datamall_mcp.server.session.SessionManager`
    and never exposed here.
    """

    id: str
    credential: str = field(repr=False)
    credential_source: str = "default"
    """``"request"`` when supplied via ``?apiKey=``, else ``"default"``."""

    origin_address: Optional[str] = None
    client_descriptor: Optional[str] = None
    transport_type: str = "streamable_http"

    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    last_active: float = field(default_factory=monotonic)
    """Monotonic timestamp of last client activity."""

    ttl: float = 1800.0
    """Idle time-to-live in seconds (default: 30 minutes)."""

    closed: bool = False

    _inflight: int = field(default=0, init=False, repr=False)
    _idle: asyncio.Event = field(default_factory=asyncio.Event, init=False, repr=False)

    def __post_init__(self) -> None:
        self._idle.set()

    @property
    def expired(self) -> bool:
        """``True`` if the session has been idle longer than its TTL."""
        return self._inflight == 0 and (monotonic() - self.last_active) > self.ttl

    @property
    def age_seconds(self) -> float:
        return (datetime.now(timezone.utc) - self.created_at).total_seconds()

    @property
    def idle_seconds(self) -> float:
        return monotonic() - self.last_active

    @property
    def inflight_calls(self) -> int:
        return self._inflight

    def touch(self) -> None:
        """Update *last_active* to the current monotonic time."""
        self.last_active = monotonic()

    @asynccontextmanager
    async def track_call(self) -> AsyncIterator[None]:
        """Mark a tool call as in flight for the duration of the block."""
        self._inflight += 1
        self._idle.clear()
        self.touch()
        try:
            yield
        finally:
            self._inflight -= 1
            self.touch()
            if self._inflight == 0:
                self._idle.set()

    async def wait_idle(self, timeout: float) -> bool:
        """Wait until no tool call is in flight.  Returns ``False`` on timeout."""
        try:
            await asyncio.wait_for(self._idle.wait(), timeout)
            return True
        except asyncio.TimeoutError:
            return False

    def to_dict(self) -> Dict[str, Any]:
        """Serialise the session for diagnostics (never includes the credential)."""
        return {
            "id": self.id,
            "transport_type": self.transport_type,
            "credential_source": self.credential_source,
            "origin_address": self.origin_address,
            "created_at": self.created_at.isoformat(),
            "age_seconds": round(self.age_seconds, 1),
            "idle_seconds": round(self.idle_seconds, 1),
            "inflight_calls": self._inflight,
            "ttl": self.ttl,
            "expired": self.expired,
        }
