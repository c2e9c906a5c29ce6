# S5Gate
# Copyright (C) 2025 Phoenix Link (Pty) Ltd. All Rights Reserved.
#
# This file is part of S5Gate.
#
# S5Gate is dual-licensed:
#
# 1. Open Source: GNU Affero General Public License v3.0 (AGPL-3.0)
# 2. Commercial: Available from Phoenix Link (Pty) Ltd
#
# Contributions require a signed CLA. See COPYRIGHT.md and CLA.md.
"""Gateway CLI entry point.

Starts the control API and brings up the direct-mode relay.

Usage:
    s5gate [--config PATH] [--host HOST] [--port PORT] [--log-level LEVEL]
"""

from __future__ import annotations

import argparse
import logging

import uvicorn

from s5gate import __version__
from s5gate.api.app import create_app
from s5gate.catalog.catalog import EndpointCatalog
from s5gate.config import load_config
from s5gate.log import setup_logging
from s5gate.proxy.controller import ProxyController

logger = logging.getLogger("s5gate.server")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="s5gate",
        description="S5Gate -- SOCKS5 gateway with switchable tunnel egress",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: $S5GATE_CONFIG or /run/s5gate/config.yaml)",
    )
    parser.add_argument(
        "--host",
        default=None,
        help="API listen address (overrides config, default: 0.0.0.0)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="API listen port (overrides config, default: $PORT or 8080)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    """Entry point for the gateway server."""
    args = build_parser().parse_args(argv)

    config = load_config(args.config)
    if args.host is not None:
        config.web_host = args.host
    if args.port is not None:
        config.web_port = args.port

    setup_logging(args.log_level, config.log_dir)

    controller = ProxyController(config)
    catalog = EndpointCatalog(config)
    app = create_app(controller, catalog)

    logger.info("=" * 60)
    logger.info("S5Gate %s", __version__)
    logger.info("=" * 60)
    logger.info("  Web UI: http://%s:%d", config.web_host, config.web_port)
    logger.info("  SOCKS5 (direct): port %d via %s", config.socks5_port, config.default_interface)
    logger.info(
        "  SOCKS5 (tunnel): port %d via %s", config.tunnel_socks5_port, config.tunnel_interface
    )
    logger.info("  Auth: %s", config.socks5_user)
    logger.info("=" * 60)

    controller.start()
    try:
        # uvicorn owns SIGINT/SIGTERM and returns once it has drained
        uvicorn.run(app, host=config.web_host, port=config.web_port, log_level="warning")
    finally:
        logger.info("Shutting down")
        try:
            controller.shutdown()
        finally:
            catalog.close()


if __name__ == "__main__":
    main()
