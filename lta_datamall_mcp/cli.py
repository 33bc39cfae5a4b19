"""CLI argument parsing and main entry point.

Provides two modes of operation:

* ``lta-datamall-mcp server`` - run the streamable HTTP server under Uvicorn.
* ``lta-datamall-mcp stdio``  - serve a single MCP session on stdin/stdout.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from typing import Optional

import uvicorn

from lta_datamall_mcp.config.loader import find_config_file, load_config
from lta_datamall_mcp.constants import (
    DEFAULT_LOG_LEVEL,
    SERVER_NAME,
    SERVER_VERSION,
)
from lta_datamall_mcp.display.logging_config import setup_logging
from lta_datamall_mcp.errors import ConfigurationError

module_logger = logging.getLogger(__name__)

uvicorn_svr_inst: Optional[uvicorn.Server] = None


# ── ``lta-datamall-mcp server`` ──────────────────────────────────────────


async def _run_server(
    host: Optional[str],
    port: Optional[int],
    log_lvl_cli: str,
    config_path: Optional[str] = None,
) -> None:
    """Async main for the HTTP server subcommand."""
    global uvicorn_svr_inst

    log_fpath, cfg_log_lvl = setup_logging(log_lvl_cli)
    module_logger.info(
        "---- %s v%s starting (file log level: %s) ----",
        SERVER_NAME,
        SERVER_VERSION,
        cfg_log_lvl,
    )

    config = load_config(config_path or find_config_file())
    # Command-line flags win over file and environment.
    if host is not None:
        config.server.host = host
    if port is not None:
        config.server.port = port

    from lta_datamall_mcp.server.app import create_app

    app = create_app(config)
    app.state.actual_log_file = log_fpath

    uvicorn_cfg = uvicorn.Config(
        app=app,
        host=config.server.host,
        port=config.server.port,
        log_config=None,
        log_level=cfg_log_lvl.lower() if cfg_log_lvl == "DEBUG" else "warning",
    )
    uvicorn_svr_inst = uvicorn.Server(uvicorn_cfg)

    module_logger.info(
        "Preparing to start Uvicorn server: http://%s:%s", config.server.host, config.server.port
    )
    try:
        await uvicorn_svr_inst.serve()
    except Exception as e_serve:
        module_logger.exception("Unexpected error while running Uvicorn server: %s", e_serve)
        raise
    finally:
        module_logger.info("%s has shut down or is shutting down.", SERVER_NAME)


def _cmd_server(args: argparse.Namespace) -> None:
    """Entry-point for ``lta-datamall-mcp server``."""

    def _shutdown_handler(sig: int, frame: object) -> None:
        module_logger.info("%s received, shutting down gracefully...", signal.Signals(sig).name)
        if uvicorn_svr_inst is not None:
            uvicorn_svr_inst.should_exit = True

    signal.signal(signal.SIGINT, _shutdown_handler)
    signal.signal(signal.SIGTERM, _shutdown_handler)

    try:
        asyncio.run(
            _run_server(
                host=args.host,
                port=args.port,
                log_lvl_cli=args.log_level,
                config_path=args.config,
            )
        )
    except ConfigurationError as e_cfg:
        module_logger.error("Configuration error: %s", e_cfg)
        print(f"Configuration error: {e_cfg}", file=sys.stderr)
        sys.exit(2)
    except KeyboardInterrupt:
        module_logger.info("%s main program interrupted by KeyboardInterrupt.", SERVER_NAME)
    except Exception as e_fatal:
        module_logger.exception(
            "%s main program encountered an uncaught fatal error: %s",
            SERVER_NAME,
            e_fatal,
        )
        sys.exit(1)
    finally:
        module_logger.info("%s application finished.", SERVER_NAME)


# ── ``lta-datamall-mcp stdio`` ───────────────────────────────────────────


def _cmd_stdio(args: argparse.Namespace) -> None:
    """Entry-point for ``lta-datamall-mcp stdio``."""
    # stdout carries the protocol; logs go to the file only.
    setup_logging(args.log_level, quiet=True)

    from lta_datamall_mcp.server.stdio import run_stdio

    try:
        config = load_config(args.config or find_config_file())
        asyncio.run(run_stdio(config))
    except ConfigurationError as e_cfg:
        module_logger.error("Configuration error: %s", e_cfg)
        print(f"Configuration error: {e_cfg}", file=sys.stderr)
        sys.exit(2)
    except KeyboardInterrupt:
        module_logger.info("stdio session interrupted by KeyboardInterrupt.")


def _build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser with server/stdio subcommands."""
    parser = argparse.ArgumentParser(
        description=f"{SERVER_NAME} v{SERVER_VERSION}",
    )
    parser.add_argument("--version", action="version", version=f"{SERVER_NAME} {SERVER_VERSION}")

    subparsers = parser.add_subparsers(dest="command")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--log-level",
        type=str,
        default=DEFAULT_LOG_LEVEL.lower(),
        choices=["debug", "info", "warning", "error", "critical"],
        help=f"Set file logging level (default: {DEFAULT_LOG_LEVEL.lower()})",
    )
    common.add_argument(
        "--config",
        type=str,
        default=None,
        metavar="PATH",
        help="Path to configuration file (YAML). Default: $LTA_MCP_CONFIG or ./config.yaml",
    )

    # ── server ──────────────────────────────────────────────────
    sp_server = subparsers.add_parser(
        "server",
        parents=[common],
        help="Run the streamable HTTP server (Uvicorn)",
    )
    sp_server.add_argument(
        "--host",
        type=str,
        default=None,
        help="Host address (default: config, $HOST, or 0.0.0.0)",
    )
    sp_server.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port (default: config, $PORT, or 8080)",
    )
    sp_server.set_defaults(func=_cmd_server)

    # ── stdio ───────────────────────────────────────────────────
    sp_stdio = subparsers.add_parser(
        "stdio",
        parents=[common],
        help="Serve one MCP session over stdin/stdout",
    )
    sp_stdio.set_defaults(func=_cmd_stdio)

    return parser


def main() -> None:
    """Program entry point: parse arguments and dispatch to subcommand."""
    parser = _build_parser()
    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(1)
    else:
        args.func(args)
