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
"""FastAPI application factory.

The controller and catalog are built once by the caller and stored on
``app.state``; routes pick them up through dependencies.
"""

from __future__ import annotations

import logging
import time

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from s5gate import __version__
from s5gate.api.routes import router
from s5gate.catalog.catalog import EndpointCatalog
from s5gate.errors import GatewayError
from s5gate.proxy.controller import ProxyController

logger = logging.getLogger("s5gate.api.app")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every API request with method, path, status, and latency."""

    async def dispatch(self, request: Request, call_next):
        start = time.time()
        response = await call_next(request)
        latency_ms = int((time.time() - start) * 1000)
        if request.url.path != "/api/status":
            logger.info(
                "%s %s -> %d",
                request.method,
                request.url.path,
                response.status_code,
                extra={"fields": {"latency_ms": latency_ms}},
            )
        return response


async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": str(exc)},
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("%s %s crashed: %s", request.method, request.url.path, exc, exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": f"Internal error: {exc}"},
    )


def create_app(controller: ProxyController, catalog: EndpointCatalog) -> FastAPI:
    app = FastAPI(
        title="S5Gate API",
        description="SOCKS5 gateway control API",
        version=__version__,
    )
    app.state.controller = controller
    app.state.catalog = catalog
    app.add_middleware(RequestLoggingMiddleware)
    app.add_exception_handler(GatewayError, gateway_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
    app.include_router(router)
    return app
