"""DataMall runtime service - lifecycle management with a state machine.

DatamallService owns the analytics aggregator, its persistence, the tool
dispatcher and the session manager, and runs the startup/shutdown
sequence for them.  It does not know about HTTP routes or stdio; the
Starlette lifespan and the stdio runner both drive it.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from mcp.server import Server as McpServer

from lta_datamall_mcp.analytics.aggregator import AnalyticsAggregator, iso_timestamp
from lta_datamall_mcp.analytics.persistence import (
    AnalyticsPersistence,
    LocalFileStore,
    RemoteStore,
)
from lta_datamall_mcp.config.schema import AnalyticsSettings, DatamallConfig
from lta_datamall_mcp.display.logging_config import secret_redaction_filter
from lta_datamall_mcp.runtime.models import ServiceState, ServiceStatus, is_valid_transition
from lta_datamall_mcp.server.handlers import build_mcp_server
from lta_datamall_mcp.server.session import MCPSession, SessionManager
from lta_datamall_mcp.server.session.manager import ChannelFactory, _default_channel_factory
from lta_datamall_mcp.tools.dispatcher import ToolDispatcher
from lta_datamall_mcp.tools.registry import ToolRegistry, default_registry

logger = logging.getLogger(__name__)


class _InvalidStateTransition(Exception):
    """Raised internally when an illegal state transition is attempted."""

    def __init__(self, current: ServiceState, target: ServiceState) -> None:
        super().__init__(f"Invalid state transition: {current.value} → {target.value}")
        self.current = current
        self.target = target


def build_persistence(settings: AnalyticsSettings) -> AnalyticsPersistence:
    """Create the persistence layer described by *settings*."""
    remote: Optional[RemoteStore] = None
    url = settings.remote.url
    if settings.remote.enabled and url is not None:
        remote = RemoteStore(
            url,
            path=settings.remote.path,
            auth_token=settings.remote.auth_token,
            timeout=settings.remote.timeout,
        )
    elif settings.remote.enabled:
        logger.warning("Remote analytics store enabled but no URL configured; using local file only.")
    return AnalyticsPersistence(
        LocalFileStore(settings.local_file),
        remote,
        save_interval=settings.save_interval,
    )


class DatamallService:
    """Manages the lifecycle of the DataMall MCP server components.

    State machine::

        PENDING ─► STARTING ─► RUNNING ─► STOPPING ─► STOPPED
                       │                      ▲
                       └──────► ERROR ────────┘

    Usage::

        service = DatamallService(config)
        await service.start()
        # ... serve requests ...
        await service.stop()

    Components can be injected for tests; anything not given is built
    from *config*.
    """

    def __init__(
        self,
        config: DatamallConfig,
        *,
        registry: ToolRegistry = default_registry,
        analytics: Optional[AnalyticsAggregator] = None,
        dispatcher: Optional[ToolDispatcher] = None,
        persistence: Optional[AnalyticsPersistence] = None,
        channel_factory: ChannelFactory = _default_channel_factory,
    ) -> None:
        self._config = config
        self._state: ServiceState = ServiceState.PENDING
        self._started_at: Optional[datetime] = None
        self._error_message: Optional[str] = None

        self._analytics = analytics or AnalyticsAggregator(
            history_capacity=config.analytics.history_capacity
        )
        self._persistence = persistence or build_persistence(config.analytics)
        self._dispatcher = dispatcher or ToolDispatcher(
            registry,
            self._analytics,
            base_url=config.upstream.base_url,
            timeout=config.upstream.timeout,
        )
        self._sessions = SessionManager(self.build_session_server, channel_factory=channel_factory)

        logger.info("DatamallService initialized (state=%s).", self._state.value)

    # ── Properties ───────────────────────────────────────────────────

    @property
    def state(self) -> ServiceState:
        return self._state

    @property
    def config(self) -> DatamallConfig:
        return self._config

    @property
    def analytics(self) -> AnalyticsAggregator:
        return self._analytics

    @property
    def persistence(self) -> AnalyticsPersistence:
        return self._persistence

    @property
    def dispatcher(self) -> ToolDispatcher:
        return self._dispatcher

    @property
    def sessions(self) -> SessionManager:
        return self._sessions

    @property
    def default_api_key(self) -> Optional[str]:
        """The process-wide DataMall key, if one is configured."""
        return self._config.upstream.api_key

    @property
    def is_running(self) -> bool:
        return self._state == ServiceState.RUNNING

    # ── State machine ────────────────────────────────────────────────

    def _transition(self, target: ServiceState) -> None:
        if not is_valid_transition(self._state, target):
            raise _InvalidStateTransition(self._state, target)
        old = self._state
        self._state = target
        logger.debug("Service state: %s → %s", old.value, target.value)

    # ── Lifecycle ────────────────────────────────────────────────────

    async def start(self) -> None:
        """Restore persisted analytics and start the background loops.

        A persistence backend that cannot be read never fails startup; the
        service starts with empty analytics instead.
        """
        self._transition(ServiceState.STARTING)
        try:
            for secret in (self._config.upstream.api_key, self._config.analytics.remote.auth_token):
                if secret:
                    secret_redaction_filter.register(secret)

            snapshot = await self._persistence.load(
                server_start_time=iso_timestamp(self._analytics.started_at)
            )
            if snapshot is not None:
                self._analytics.restore(snapshot)

            self._persistence.start(self._analytics)
            self._sessions.start()
        except Exception as exc:
            self._error_message = f"{type(exc).__name__}: {exc}"
            self._transition(ServiceState.ERROR)
            logger.exception("Service startup failed: %s", exc)
            raise

        self._started_at = datetime.now(timezone.utc)
        self._transition(ServiceState.RUNNING)
        if not self.default_api_key:
            logger.warning(
                "No default LTA DataMall API key configured. "
                "Clients must pass ?apiKey= when opening a session."
            )
        logger.info("DatamallService running.")

    async def stop(self) -> None:
        """Close sessions, flush analytics and release HTTP clients.

        Safe to call from any state; a service that never started is a no-op.
        """
        if self._state in (ServiceState.PENDING, ServiceState.STOPPED, ServiceState.STOPPING):
            logger.debug("stop() called in state %s; nothing to do.", self._state.value)
            return

        self._transition(ServiceState.STOPPING)
        logger.info("DatamallService stopping...")
        try:
            await self._sessions.stop()
            await self._persistence.stop(self._analytics)
            await self._dispatcher.aclose()
        except Exception as exc:
            self._error_message = f"{type(exc).__name__}: {exc}"
            self._transition(ServiceState.ERROR)
            logger.exception("Error during service shutdown: %s", exc)
            raise
        self._transition(ServiceState.STOPPED)
        logger.info("DatamallService stopped.")

    # ── Sessions ─────────────────────────────────────────────────────

    def build_session_server(self, session: MCPSession) -> McpServer:
        """Build the MCP server for one session, bound to its credential and origin."""
        return build_mcp_server(
            self._dispatcher,
            credential=session.credential,
            origin_address=session.origin_address,
            client_descriptor=session.client_descriptor,
            session=session,
        )

    # ── Status ───────────────────────────────────────────────────────

    def get_status(self) -> ServiceStatus:
        return ServiceStatus(
            state=self._state,
            uptime_seconds=round(self._analytics.uptime_seconds(), 3),
            active_sessions=self._sessions.active_count,
            default_key_configured=self.default_api_key is not None,
            persistence=self._persistence.status(),
            error_message=self._error_message,
        )
