"""Runtime service layer - owns the long-lived components and their lifecycle."""

from lta_datamall_mcp.runtime.models import ServiceState, ServiceStatus
from lta_datamall_mcp.runtime.service import DatamallService

__all__ = ["DatamallService", "ServiceState", "ServiceStatus"]
