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
"""Catalog payload parsing and grouping.

The upstream returns CSV-ish text::

    *vpn_servers
    #HostName,IP,Score,Ping,Speed,CountryLong,CountryShort,NumVpnSessions,Uptime,...
    public-vpn-1,1.2.3.4,123,12,45000000,Japan,JP,10,90000000,...,<base64 ovpn>
    *

Fields are positional, so the ``#`` header is skipped rather than used.
"""

from __future__ import annotations

import base64
import binascii
import logging
from collections.abc import Iterable

from s5gate.errors import ConfigDecodeError
from s5gate.models import CountryGroup, Endpoint

logger = logging.getLogger("s5gate.catalog.parser")

MIN_FIELDS = 14
UNKNOWN_COUNTRY = "Unknown"
UNKNOWN_COUNTRY_CODE = "??"
UNREACHABLE_PING = 9999


def _to_int(value: str, default: int = 0) -> int:
    try:
        return int(value.strip())
    except ValueError:
        return default


def parse_row(line: str) -> Endpoint | None:
    """Parse one data row; None if it is short or lacks IP/config."""
    fields = line.split(",")
    if len(fields) < MIN_FIELDS:
        return None

    def get(idx: int) -> str:
        return fields[idx].strip() if idx < len(fields) else ""

    endpoint = Endpoint(
        host_name=get(0),
        ip=get(1),
        score=_to_int(get(2)),
        ping=_to_int(get(3), UNREACHABLE_PING),
        speed_bps=_to_int(get(4)),
        country_long=get(5),
        country_short=get(6),
        num_sessions=_to_int(get(7)),
        uptime_millis=_to_int(get(8)),
        total_users=_to_int(get(9)),
        total_traffic=_to_int(get(10)),
        log_policy=get(11),
        operator=get(12),
        message=get(13),
        config_blob=get(14),
    )
    if not endpoint.ip or not endpoint.config_blob:
        return None
    return endpoint


def parse_endpoints(raw: str) -> list[Endpoint]:
    """Parse the full payload, dropping markers, the header and bad rows."""
    endpoints: list[Endpoint] = []
    dropped = 0
    for line in raw.splitlines():
        line = line.strip()
        if not line or line.startswith("*") or line.startswith("#"):
            continue
        endpoint = parse_row(line)
        if endpoint is None:
            dropped += 1
            continue
        endpoints.append(endpoint)
    if dropped:
        logger.debug("Dropped %d unusable catalog rows", dropped)
    return endpoints


def group_by_country(endpoints: Iterable[Endpoint], home_country: str = "JP") -> list[CountryGroup]:
    """Bucket endpoints by country.

    Inside a bucket: longest uptime first. Buckets: the home country
    first, then by descending size.
    """
    buckets: dict[str, list[Endpoint]] = {}
    codes: dict[str, str] = {}
    for endpoint in endpoints:
        name = endpoint.country_long or UNKNOWN_COUNTRY
        if name not in buckets:
            buckets[name] = []
            codes[name] = endpoint.country_short or UNKNOWN_COUNTRY_CODE
        buckets[name].append(endpoint)

    groups = [
        CountryGroup(
            country_long=name,
            country_short=codes[name],
            servers=sorted(members, key=lambda e: e.uptime_millis, reverse=True),
        )
        for name, members in buckets.items()
    ]

    home = home_country.upper()
    return sorted(
        groups,
        key=lambda g: (g.country_short.upper() != home, -len(g.servers)),
    )


def decode_tunnel_config(blob: str) -> str:
    """Decode a base64 tunnel config into text.

    Raises:
        ConfigDecodeError: not base64, not UTF-8, or empty.
    """
    if not blob or not blob.strip():
        raise ConfigDecodeError("Tunnel config is empty")
    try:
        text = base64.b64decode(blob.strip(), validate=False).decode("utf-8")
    except (binascii.Error, ValueError) as exc:
        raise ConfigDecodeError(f"Tunnel config is not valid base64 text: {exc}") from exc
    if not text.strip():
        raise ConfigDecodeError("Tunnel config decodes to nothing")
    return text
