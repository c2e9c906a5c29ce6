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
"""Route adapter -- default-gateway capture and bypass routing.

While the tunnel is up it owns the default route. Bypass routes keep three
kinds of traffic on the original gateway:

  - replies from the direct-mode relay (policy table keyed on its source IP)
  - the catalog's own servers (so the node list stays reachable)
  - private ranges (so LAN clients keep reaching the relay)
"""

from __future__ import annotations

import ipaddress
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

from s5gate.config import GatewayConfig
from s5gate.errors import RouteMutationError
from s5gate.system.executor import CommandResult, CommandRunner

logger = logging.getLogger("s5gate.system.routes")

_MAX_PARALLEL_ROUTES = 8


@dataclass(frozen=True)
class GatewayRecord:
    """The pre-tunnel default gateway."""

    address: str
    interface: str
    captured_at: float


def _is_ip(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


def _token_after(tokens: list[str], key: str) -> str:
    """``ip`` output is keyword/value pairs: return the value after ``key``."""
    if key in tokens:
        idx = tokens.index(key) + 1
        if idx < len(tokens):
            return tokens[idx]
    return ""


class RouteAdapter:
    """Issues ``ip route`` / ``ip rule`` / ``ip link`` commands."""

    def __init__(self, runner: CommandRunner, config: GatewayConfig) -> None:
        self._runner = runner
        self._config = config
        self._gateway: GatewayRecord | None = None
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    @property
    def gateway(self) -> GatewayRecord | None:
        return self._gateway

    def _ip(self, *args: str) -> CommandResult:
        return self._runner.run("ip", args, timeout=self._config.command_timeout)

    def default_gateway(self) -> tuple[str, str]:
        """Return ``(address, interface)`` of the current default route."""
        result = self._ip("route", "show", "default")
        if not result.ok:
            raise RouteMutationError(f"Default route query failed: {result.describe()}")

        for line in result.stdout.splitlines():
            tokens = line.split()
            if not tokens or tokens[0] != "default":
                continue
            address = _token_after(tokens, "via")
            if address:
                return address, _token_after(tokens, "dev")
        raise RouteMutationError("No default gateway found")

    def interface_address(self, interface: str) -> str:
        """First IPv4 address configured on ``interface``."""
        result = self._ip("-4", "-o", "addr", "show", "dev", interface)
        if result.ok:
            for line in result.stdout.splitlines():
                cidr = _token_after(line.split(), "inet")
                if cidr:
                    return cidr.split("/", 1)[0]
        raise RouteMutationError(f"No IPv4 address on {interface}")

    def link_exists(self, interface: str) -> bool:
        return self._ip("link", "show", interface).ok

    def resolve_host(self, hostname: str) -> list[str]:
        """Resolve ``hostname`` through the system resolver; empty on failure."""
        result = self._runner.run(
            "getent", ("hosts", hostname), timeout=self._config.command_timeout
        )
        if not result.ok:
            logger.warning("Could not resolve %s: %s", hostname, result.describe())
            return []
        addresses = []
        for line in result.stdout.splitlines():
            tokens = line.split()
            if tokens and _is_ip(tokens[0]) and tokens[0] not in addresses:
                addresses.append(tokens[0])
        return addresses

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def capture_gateway(self) -> GatewayRecord:
        """Resolve the pre-tunnel gateway once; later calls reuse it.

        Never re-resolved afterwards, so a live tunnel's gateway can't
        be captured by mistake.
        """
        with self._lock:
            if self._gateway is None:
                address, interface = self.default_gateway()
                self._gateway = GatewayRecord(
                    address=address,
                    interface=interface or self._config.default_interface,
                    captured_at=time.time(),
                )
                logger.info(
                    "Saved original gateway %s",
                    address,
                    extra={"fields": {"dev": self._gateway.interface}},
                )
            return self._gateway

    def install_bypass_routes(self, extra_hosts: list[str] | None = None) -> int:
        """Install the policy table and static bypass routes.

        Static route commands run concurrently; all of them are joined
        before the step is considered done. Returns the number of routes.
        """
        gateway = self._gateway
        if gateway is None:
            raise RouteMutationError("Gateway not captured; cannot install bypass routes")

        self._install_policy_route(gateway)

        hosts: list[str] = []
        for host in [*self._config.catalog_bypass_hosts, *(extra_hosts or [])]:
            if _is_ip(host) and host not in hosts:
                hosts.append(host)
        destinations = list(self._config.private_networks) + [f"{h}/32" for h in hosts]

        logger.info(
            "Setting up bypass routes via %s",
            gateway.address,
            extra={"fields": {"routes": len(destinations)}},
        )
        with ThreadPoolExecutor(max_workers=_MAX_PARALLEL_ROUTES) as pool:
            results = list(
                pool.map(
                    lambda dest: self._ip("route", "replace", dest, "via", gateway.address),
                    destinations,
                )
            )

        failures = [r.describe() for r in results if not r.ok]
        if failures:
            raise RouteMutationError("Bypass route install failed: " + "; ".join(failures))
        return len(destinations)

    def _install_policy_route(self, gateway: GatewayRecord) -> None:
        """Route traffic sourced from the direct interface via the old gateway."""
        table = str(self._config.policy_table)
        source = self.interface_address(self._config.default_interface)

        rules = self._ip("rule", "show")
        if not (rules.ok and f"from {source} lookup {table}" in rules.stdout):
            added = self._ip("rule", "add", "from", source, "table", table)
            if not added.ok:
                raise RouteMutationError(f"Policy rule failed: {added.describe()}")

        route = self._ip(
            "route", "replace", "default",
            "via", gateway.address,
            "dev", self._config.default_interface,
            "table", table,
        )
        if not route.ok:
            raise RouteMutationError(f"Policy route failed: {route.describe()}")
