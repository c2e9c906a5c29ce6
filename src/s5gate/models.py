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
"""Data model shared by the controller, the catalog and the API."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from s5gate.errors import InvalidServer


class Mode(Enum):
    DIRECT = "direct"
    TUNNELED = "tunneled"


@dataclass(frozen=True)
class Endpoint:
    """One remote node from the catalog."""

    host_name: str
    ip: str
    score: int = 0
    ping: int = 9999  # ms, 9999 = unreachable/unknown
    speed_bps: int = 0
    country_long: str = ""
    country_short: str = ""
    num_sessions: int = 0
    uptime_millis: int = 0
    total_users: int = 0
    total_traffic: int = 0
    log_policy: str = ""
    operator: str = ""
    message: str = ""
    config_blob: str = ""  # base64 tunnel config, opaque here

    @property
    def uptime_days(self) -> int:
        return self.uptime_millis // 86_400_000

    @property
    def uptime_hours(self) -> int:
        return (self.uptime_millis % 86_400_000) // 3_600_000

    @property
    def speed_mbps(self) -> str:
        return f"{self.speed_bps / 1_000_000:.2f}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "hostName": self.host_name,
            "ip": self.ip,
            "score": self.score,
            "ping": self.ping,
            "speed": self.speed_bps,
            "speedMbps": self.speed_mbps,
            "countryLong": self.country_long,
            "countryShort": self.country_short,
            "numVpnSessions": self.num_sessions,
            "uptime": self.uptime_millis,
            "uptimeDays": self.uptime_days,
            "uptimeHours": self.uptime_hours,
            "totalUsers": self.total_users,
            "totalTraffic": self.total_traffic,
            "logType": self.log_policy,
            "operator": self.operator,
            "message": self.message,
            "configBase64": self.config_blob,
        }


@dataclass(frozen=True)
class ServerRef:
    """Identity snapshot of an endpoint, kept for the active session.

    Decoupled from ``Endpoint`` so a catalog refresh can never change what
    the session reports about the node it is connected to.
    """

    host_name: str
    ip: str
    country_long: str = ""
    country_short: str = ""
    uptime_days: int = 0
    uptime_hours: int = 0

    @classmethod
    def coerce(cls, server: ServerRef | Endpoint | Mapping[str, Any]) -> ServerRef:
        """Build a ServerRef from an Endpoint, a ServerRef or a request dict."""
        if isinstance(server, ServerRef):
            return server
        if isinstance(server, Endpoint):
            return cls(
                host_name=server.host_name,
                ip=server.ip,
                country_long=server.country_long,
                country_short=server.country_short,
                uptime_days=server.uptime_days,
                uptime_hours=server.uptime_hours,
            )
        if isinstance(server, Mapping):
            def pick(camel: str, snake: str, default: Any = "") -> Any:
                return server.get(camel, server.get(snake, default))

            try:
                uptime_days = int(pick("uptimeDays", "uptime_days", 0) or 0)
                uptime_hours = int(pick("uptimeHours", "uptime_hours", 0) or 0)
            except (TypeError, ValueError) as exc:
                raise InvalidServer(f"Invalid server uptime: {exc}") from exc
            return cls(
                host_name=str(pick("hostName", "host_name")),
                ip=str(pick("ip", "ip")),
                country_long=str(pick("countryLong", "country_long")),
                country_short=str(pick("countryShort", "country_short")),
                uptime_days=uptime_days,
                uptime_hours=uptime_hours,
            )
        raise InvalidServer(f"Cannot build ServerRef from {type(server).__name__}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "hostName": self.host_name,
            "ip": self.ip,
            "countryLong": self.country_long,
            "countryShort": self.country_short,
            "uptimeDays": self.uptime_days,
            "uptimeHours": self.uptime_hours,
        }


@dataclass(frozen=True)
class CountryGroup:
    """Endpoints of one country. Shared between cache and callers, so immutable."""

    country_long: str
    country_short: str
    servers: tuple[Endpoint, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "servers", tuple(self.servers))

    def to_dict(self) -> dict[str, Any]:
        return {
            "countryLong": self.country_long,
            "countryShort": self.country_short,
            "servers": [s.to_dict() for s in self.servers],
        }


@dataclass(frozen=True)
class SessionState:
    """Last-known intent of the controller.

    ``active_server`` is set iff ``mode`` is TUNNELED. Replaced wholesale
    on every transition, never mutated in place.
    """

    mode: Mode = Mode.DIRECT
    active_server: ServerRef | None = None
    connected_at: datetime | None = None
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode.value,
            "server": self.active_server.to_dict() if self.active_server else None,
            "connectedAt": self.connected_at.isoformat() if self.connected_at else None,
            "error": self.last_error,
        }
