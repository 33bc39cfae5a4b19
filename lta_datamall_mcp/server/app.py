"""Starlette ASGI application factory."""

import logging
from typing import Optional

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.routing import Route

from lta_datamall_mcp.config.loader import find_config_file, load_config
from lta_datamall_mcp.config.schema import DatamallConfig
from lta_datamall_mcp.constants import MCP_SESSION_ID_HEADER, SERVER_NAME, STREAMABLE_HTTP_PATH
from lta_datamall_mcp.runtime.service import DatamallService
from lta_datamall_mcp.server.lifespan import app_lifespan
from lta_datamall_mcp.server.middleware import RequestTrackingMiddleware
from lta_datamall_mcp.server.routes import routes
from lta_datamall_mcp.server.transport import StreamableHTTPEndpoint

logger = logging.getLogger(__name__)


def create_app(
    config: Optional[DatamallConfig] = None,
    *,
    service: Optional[DatamallService] = None,
) -> Starlette:
    """Create and return the Starlette ASGI application.

    *config* defaults to the discovered config file plus environment;
    *service* defaults to one built from *config*.
    """
    if config is None:
        config = service.config if service is not None else load_config(find_config_file())
    if service is None:
        service = DatamallService(config)

    application = Starlette(
        lifespan=app_lifespan,
        routes=[
            *routes,
            Route(
                STREAMABLE_HTTP_PATH,
                endpoint=StreamableHTTPEndpoint(),
                methods=["GET", "POST", "DELETE"],
            ),
        ],
        middleware=[
            Middleware(
                CORSMiddleware,
                allow_origins=config.server.cors_origins,
                allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
                allow_headers=["*"],
                expose_headers=[MCP_SESSION_ID_HEADER],
            ),
            Middleware(RequestTrackingMiddleware, analytics=service.analytics),
        ],
    )
    application.state.service = service
    logger.info(
        "Starlette ASGI app '%s' created. Streamable HTTP on %s, CORS origins %s",
        SERVER_NAME,
        STREAMABLE_HTTP_PATH,
        config.server.cors_origins,
    )
    return application
