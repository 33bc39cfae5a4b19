"""Runtime state models for the DataMall service."""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ServiceState(str, Enum):
    """Lifecycle states for the DataMall service.

    Valid transitions:
        PENDING  → STARTING
        STARTING → RUNNING | ERROR
        RUNNING  → STOPPING
        STOPPING → STOPPED | ERROR
        ERROR    → STOPPING (cleanup after a failed start)
    """

    PENDING = "pending"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    ERROR = "error"


_VALID_TRANSITIONS: Dict[ServiceState, frozenset[ServiceState]] = {
    ServiceState.PENDING: frozenset({ServiceState.STARTING}),
    ServiceState.STARTING: frozenset({ServiceState.RUNNING, ServiceState.ERROR}),
    ServiceState.RUNNING: frozenset({ServiceState.STOPPING}),
    ServiceState.STOPPING: frozenset({ServiceState.STOPPED, ServiceState.ERROR}),
    ServiceState.STOPPED: frozenset(),
    ServiceState.ERROR: frozenset({ServiceState.STOPPING}),
}


def is_valid_transition(current: ServiceState, target: ServiceState) -> bool:
    """Check whether a state transition is allowed."""
    return target in _VALID_TRANSITIONS.get(current, frozenset())


class ServiceStatus(BaseModel):
    """Point-in-time view of the service, used by ``/health``."""

    state: ServiceState
    uptime_seconds: float = 0.0
    active_sessions: int = 0
    default_key_configured: bool = False
    persistence: Dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None
