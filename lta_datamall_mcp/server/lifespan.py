"""Application lifespan management - startup and shutdown sequences.

Provides the Starlette ``lifespan`` async context manager that drives the
:class:`~lta_datamall_mcp.runtime.DatamallService` stored on ``app.state``.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from starlette.applications import Starlette

from lta_datamall_mcp.constants import SERVER_NAME, SERVER_VERSION
from lta_datamall_mcp.errors import ConfigurationError
from lta_datamall_mcp.runtime.service import DatamallService

logger = logging.getLogger(__name__)


@asynccontextmanager
async def app_lifespan(app: Starlette) -> AsyncIterator[None]:
    """Start the service before serving and stop it on shutdown."""
    app_s = app.state
    service: DatamallService = app_s.service
    logger.info("Server '%s' v%s startup sequence started...", SERVER_NAME, SERVER_VERSION)
    logger.info("Actual log file: %s", getattr(app_s, "actual_log_file", "(not configured)"))

    startup_ok = False
    try:
        await service.start()
        startup_ok = True
        logger.info("Lifespan startup phase completed successfully.")
        yield
    except ConfigurationError as e_cfg:
        logger.exception("Configuration error: %s", e_cfg)
        raise
    except Exception as e_exc:
        if not startup_ok:
            logger.exception("Unexpected error during lifespan startup: %s", e_exc)
        raise
    finally:
        logger.info("Server '%s' shutdown sequence started...", SERVER_NAME)
        await service.stop()
        logger.info(
            "Server '%s' shutdown sequence completed (%s).",
            SERVER_NAME,
            "normal" if startup_ok else "after failed startup",
        )
