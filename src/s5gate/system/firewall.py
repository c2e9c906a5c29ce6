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
"""Packet-filter adapter -- per-source-IP drop rules on the relay ports.

Only one rule shape exists:

    iptables -A INPUT -s <ip> -p tcp --dport <port> -j DROP

Rules are checked with ``-C`` before being added so re-applying the
blacklist at startup never stacks duplicates.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from s5gate.config import GatewayConfig
from s5gate.errors import FilterRuleError
from s5gate.system.executor import CommandResult, CommandRunner

logger = logging.getLogger("s5gate.system.firewall")

_MAPPED_V4_PREFIX = "::ffff:"


def _split_endpoint(token: str) -> tuple[str, str] | None:
    """Split ``ss`` address tokens: ``1.2.3.4:80``, ``[::1]:80``, ``*:*``."""
    if ":" not in token:
        return None
    host, _, port = token.rpartition(":")
    if not host or not (port.isdigit() or port == "*"):
        return None
    host = host.strip("[]")
    if host.startswith(_MAPPED_V4_PREFIX) and "." in host:
        host = host[len(_MAPPED_V4_PREFIX):]
    return host, port


class FirewallAdapter:
    """Issues ``iptables`` and ``ss`` commands for the relay ports."""

    def __init__(self, runner: CommandRunner, config: GatewayConfig) -> None:
        self._runner = runner
        self._config = config

    def _iptables(self, action: str, ip: str, port: int) -> CommandResult:
        return self._runner.run(
            "iptables",
            (action, "INPUT", "-s", ip, "-p", "tcp", "--dport", str(port), "-j", "DROP"),
            timeout=self._config.command_timeout,
        )

    def has_drop_rule(self, ip: str, port: int) -> bool:
        return self._iptables("-C", ip, port).ok

    def add_drop_rule(self, ip: str, ports: Iterable[int]) -> None:
        """Drop TCP from ``ip`` on every port; no-op where already present."""
        failures = []
        for port in ports:
            if self.has_drop_rule(ip, port):
                continue
            result = self._iptables("-A", ip, port)
            if not result.ok:
                failures.append(result.describe())
        if failures:
            raise FilterRuleError(f"Failed to block {ip}: " + "; ".join(failures))
        logger.info("Blocked IP %s", ip)

    def remove_drop_rule(self, ip: str, ports: Iterable[int]) -> None:
        """Delete the drop rule for ``ip`` on every port where it exists."""
        failures = []
        for port in ports:
            if not self.has_drop_rule(ip, port):
                continue
            result = self._iptables("-D", ip, port)
            if not result.ok:
                failures.append(result.describe())
        if failures:
            raise FilterRuleError(f"Failed to unblock {ip}: " + "; ".join(failures))
        logger.info("Unblocked IP %s", ip)

    def established_peers(self, ports: Iterable[int]) -> list[tuple[str, str]]:
        """Return ``(peer_ip, peer_port)`` for established TCP on ``ports``.

        Read-only. A failing ``ss`` yields an empty list.
        """
        ports = list(ports)
        if not ports:
            return []
        expr = " or ".join(f"sport = :{p}" for p in ports)
        result = self._runner.run(
            "ss",
            ("-tn", "state", "established", f"( {expr} )"),
            timeout=self._config.command_timeout,
        )
        if not result.ok:
            logger.warning("Connection query failed: %s", result.describe())
            return []

        peers: list[tuple[str, str]] = []
        for line in result.stdout.splitlines()[1:]:  # skip header row
            endpoints = [ep for ep in map(_split_endpoint, line.split()) if ep]
            # Local address comes first, peer second
            if len(endpoints) >= 2:
                peers.append(endpoints[1])
        return peers
