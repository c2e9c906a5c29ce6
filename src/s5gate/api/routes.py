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
"""Gateway control API routes.

Provides endpoints for:
  - Session status and Direct/Tunneled transitions
  - The grouped remote node list and its cache state
  - Live relay connections and the client blacklist
  - Client-facing relay credentials

Handlers are plain ``def``: every operation behind them shells out and
may block for seconds, so they run on the threadpool.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from s5gate.catalog.catalog import EndpointCatalog
from s5gate.proxy.controller import ProxyController

logger = logging.getLogger("s5gate.api.routes")

router = APIRouter(prefix="/api", tags=["gateway"])

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class ConnectRequest(BaseModel):
    server: dict[str, Any]
    config_base64: str = Field(alias="configBase64", min_length=1)


class IPRequest(BaseModel):
    ip: str


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def get_controller(request: Request) -> ProxyController:
    return request.app.state.controller


def get_catalog(request: Request) -> EndpointCatalog:
    return request.app.state.catalog


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


@router.get("/status")
def get_status(controller: ProxyController = Depends(get_controller)) -> dict:
    """Session intent plus live tunnel probes."""
    return {"success": True, "status": controller.status()}


@router.post("/connect")
def connect(
    body: ConnectRequest,
    controller: ProxyController = Depends(get_controller),
) -> dict:
    """Switch egress to the tunnel through ``body.server``."""
    state = controller.connect(body.server, body.config_base64)
    return {"success": True, "session": state.to_dict()}


@router.post("/disconnect")
def disconnect(controller: ProxyController = Depends(get_controller)) -> dict:
    """Return to direct egress."""
    state = controller.disconnect()
    return {"success": True, "session": state.to_dict()}


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


@router.get("/servers")
def list_servers(
    refresh: bool = False,
    catalog: EndpointCatalog = Depends(get_catalog),
) -> dict:
    """Grouped node list; ``?refresh=true`` forces a fetch (rate limited)."""
    return {"success": True, **catalog.list_servers(force_refresh=refresh).to_dict()}


@router.get("/cache-status")
def cache_status(catalog: EndpointCatalog = Depends(get_catalog)) -> dict:
    return {"success": True, **catalog.cache_status()}


# ---------------------------------------------------------------------------
# Clients
# ---------------------------------------------------------------------------


@router.get("/connections")
def list_connections(controller: ProxyController = Depends(get_controller)) -> dict:
    return {"success": True, **controller.list_connections()}


@router.get("/blacklist")
def list_blacklist(controller: ProxyController = Depends(get_controller)) -> dict:
    return {"success": True, "blacklist": controller.list_blacklist()}


@router.post("/block")
def block_ip(body: IPRequest, controller: ProxyController = Depends(get_controller)) -> dict:
    result = controller.block_ip(body.ip)
    logger.info("Blocked client %s", result["ip"])
    return result


@router.post("/unblock")
def unblock_ip(body: IPRequest, controller: ProxyController = Depends(get_controller)) -> dict:
    result = controller.unblock_ip(body.ip)
    logger.info("Unblocked client %s", result["ip"])
    return result


@router.get("/socks5-config")
def socks5_config(controller: ProxyController = Depends(get_controller)) -> dict:
    """Relay ports and credentials for client setup."""
    return {"success": True, "config": controller.config.relay_credentials()}
