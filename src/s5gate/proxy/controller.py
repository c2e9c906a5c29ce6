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
"""Proxy session controller -- Direct <-> Tunneled state machine.

Owns the session state and the blacklist, and drives the route adapter,
the firewall adapter and both supervisors. One instance per process,
built at startup and handed to whatever serves the API.

Transitions (``connect``/``disconnect``) are serialized by a single lock
held for the whole transition; ``status``, ``list_connections`` and
blacklist reads never take it.
"""

from __future__ import annotations

import ipaddress
import logging
import threading
from collections import Counter
from collections.abc import Mapping
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from s5gate.catalog.parser import decode_tunnel_config
from s5gate.config import GatewayConfig
from s5gate.errors import FilterRuleError, GatewayError, InvalidAddress
from s5gate.models import Endpoint, Mode, ServerRef, SessionState
from s5gate.proxy.blacklist import BlacklistStore
from s5gate.proxy.relay import RelaySupervisor
from s5gate.proxy.tunnel import TunnelSupervisor
from s5gate.system.executor import CommandRunner
from s5gate.system.firewall import FirewallAdapter
from s5gate.system.routes import RouteAdapter

logger = logging.getLogger("s5gate.proxy.controller")

CIPHER_DIRECTIVE = "data-ciphers"
CIPHER_SHIM = (
    "# Added for compatibility\n"
    "data-ciphers AES-256-GCM:AES-128-GCM:AES-128-CBC:CHACHA20-POLY1305\n"
    "data-ciphers-fallback AES-128-CBC\n"
)


def prepare_tunnel_config(blob: str) -> str:
    """Decode a catalog config blob and make sure it negotiates a cipher.

    Older servers omit ``data-ciphers``; current clients then refuse to
    connect, so a permissive list is prepended. Otherwise untouched.
    """
    text = decode_tunnel_config(blob)
    if CIPHER_DIRECTIVE not in text:
        text = CIPHER_SHIM + text
    return text


def _validate_ip(ip: str) -> str:
    try:
        return str(ipaddress.ip_address(str(ip).strip()))
    except ValueError:
        raise InvalidAddress(f"Invalid IP address: {ip!r}") from None


class ProxyController:
    """Switches the relay's egress between the host interface and a tunnel."""

    def __init__(
        self,
        config: GatewayConfig,
        runner: CommandRunner | None = None,
        routes: RouteAdapter | None = None,
        firewall: FirewallAdapter | None = None,
        tunnel: TunnelSupervisor | None = None,
        direct_relay: RelaySupervisor | None = None,
        tunnel_relay: RelaySupervisor | None = None,
        blacklist: BlacklistStore | None = None,
    ) -> None:
        self.config = config
        runner = runner or CommandRunner(default_timeout=config.command_timeout)
        self._routes = routes or RouteAdapter(runner, config)
        self._firewall = firewall or FirewallAdapter(runner, config)
        self._tunnel = tunnel or TunnelSupervisor(
            runner,
            interface=config.tunnel_interface,
            link_probe=lambda: self._routes.link_exists(config.tunnel_interface),
            stop_grace=config.tunnel_stop_grace,
            command_timeout=config.command_timeout,
        )
        self._direct_relay = direct_relay or RelaySupervisor(
            runner,
            config.direct_relay_config_path,
            config.relay_template_path,
            settle_delay=config.relay_settle_delay,
            startup_delay=config.relay_startup_delay,
            command_timeout=config.command_timeout,
        )
        self._tunnel_relay = tunnel_relay or RelaySupervisor(
            runner,
            config.tunnel_relay_config_path,
            config.relay_template_path,
            settle_delay=config.relay_settle_delay,
            startup_delay=config.relay_startup_delay,
            command_timeout=config.command_timeout,
        )
        self._blacklist = blacklist or BlacklistStore(config.blacklist_path)

        self._state = SessionState()
        self._transition_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------
    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def tunnel(self) -> TunnelSupervisor:
        return self._tunnel

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> None:
        """Process startup: reconcile the blacklist, bring up the direct relay."""
        self.apply_blacklist_at_startup()
        try:
            self._direct_relay.restart(self.config.socks5_port, self.config.default_interface)
        except GatewayError as exc:
            logger.error("Direct relay failed to start: %s", exc)

    def shutdown(self) -> None:
        """Abort any pending link poll and tear the tunnel down."""
        self._tunnel.cancel()
        with self._transition_lock:
            if self._state.mode is Mode.TUNNELED or self._tunnel.is_running():
                self._teardown_quietly()
            self._state = SessionState()

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------
    def connect(
        self,
        server: ServerRef | Endpoint | Mapping[str, Any],
        tunnel_config_blob: str,
    ) -> SessionState:
        """Switch to Tunneled mode through ``server``.

        On any failure ``last_error`` is set, whatever this call started is
        torn down (best-effort) and the error propagates; ``mode`` keeps its
        previous value.
        """
        with self._transition_lock:
            self._state = replace(self._state, last_error=None)
            spawned = False
            ref: ServerRef | None = None
            try:
                ref = ServerRef.coerce(server)
                self._routes.capture_gateway()

                if self._tunnel.is_running():
                    logger.info("Stopping current tunnel connection")
                    self._tunnel.stop()
                    self._tunnel_relay.stop()

                text = prepare_tunnel_config(tunnel_config_blob)
                config_path = self._write_tunnel_config(text)
                logger.info(
                    "Wrote tunnel config for %s",
                    ref.host_name,
                    extra={"fields": {"ip": ref.ip}},
                )

                self._tunnel.start(config_path)
                spawned = True
                self._tunnel.poll_until_link_up(
                    attempts=self.config.tunnel_connect_attempts,
                    interval=self.config.tunnel_poll_interval,
                )

                resolved = self._routes.resolve_host(self.config.catalog_hostname)
                self._routes.install_bypass_routes(resolved)
                self._tunnel_relay.restart(
                    self.config.tunnel_socks5_port, self.config.tunnel_interface
                )
            except Exception as exc:
                self._state = replace(self._state, last_error=str(exc))
                logger.error(
                    "Connect to %s failed: %s",
                    ref.host_name if ref else "<invalid server>",
                    exc,
                )
                if spawned:
                    self._teardown_quietly()
                raise

            self._state = SessionState(
                mode=Mode.TUNNELED,
                active_server=ref,
                connected_at=datetime.now(timezone.utc),
                last_error=None,
            )
            logger.info(
                "Connected to %s (%s)",
                ref.host_name,
                ref.country_long,
                extra={"fields": {"ip": ref.ip}},
            )
            return self._state

    def disconnect(self) -> SessionState:
        """Return to Direct mode. A no-op when already Direct."""
        with self._transition_lock:
            if self._state.mode is Mode.DIRECT and not self._tunnel.is_running():
                self._state = SessionState()
                return self._state

            self._tunnel.stop()
            self._tunnel_relay.stop()
            self._state = SessionState()
            logger.info("Switched to direct mode")
            return self._state

    def _write_tunnel_config(self, text: str) -> Path:
        path = Path(self.config.tunnel_config_path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text, encoding="utf-8")
        except OSError as exc:
            raise GatewayError(f"Failed to write tunnel config {path}: {exc}") from exc
        return path

    def _teardown_quietly(self) -> None:
        """Stop tunnel and tunnel relay; never raises."""
        steps = (("tunnel", self._tunnel.stop), ("tunnel relay", self._tunnel_relay.stop))
        for name, step in steps:
            try:
                step()
            except Exception as exc:
                logger.warning("Teardown of %s failed: %s", name, exc)

    # ------------------------------------------------------------------
    # Probes
    # ------------------------------------------------------------------
    def status(self) -> dict[str, Any]:
        """Session intent plus live probes.

        The probe fields are ground truth; ``session`` is last-known
        intent and may disagree (e.g. the tunnel client crashed).
        """
        return {
            "session": self._state.to_dict(),
            "tunnelProcessRunning": self._tunnel.is_running(),
            "tunnelLinkUp": self._tunnel.link_up(),
            "tunnelPhase": self._tunnel.phase,
            "defaultInterface": self.config.default_interface,
        }

    def list_connections(self) -> dict[str, Any]:
        """Established client connections on both relay ports, by source IP."""
        peers = self._firewall.established_peers(self.config.relay_ports)
        counts = Counter(ip for ip, _port in peers)
        clients = [
            {"ip": ip, "connections": n}
            for ip, n in sorted(counts.items(), key=lambda item: (-item[1], item[0]))
        ]
        return {"count": len(peers), "clients": clients}

    # ------------------------------------------------------------------
    # Blacklist
    # ------------------------------------------------------------------
    def block_ip(self, ip: str) -> dict[str, Any]:
        """Blacklist ``ip`` and drop its traffic on both relay ports.

        The persisted set is updated first and kept even if the filter
        rule fails (the failure is raised after).
        """
        ip = _validate_ip(ip)
        self._blacklist.add(ip)
        self._firewall.add_drop_rule(ip, self.config.relay_ports)
        return {"success": True, "ip": ip}

    def unblock_ip(self, ip: str) -> dict[str, Any]:
        ip = _validate_ip(ip)
        self._blacklist.remove(ip)
        self._firewall.remove_drop_rule(ip, self.config.relay_ports)
        return {"success": True, "ip": ip}

    def list_blacklist(self) -> list[str]:
        return self._blacklist.items()

    def apply_blacklist_at_startup(self) -> int:
        """Load the persisted blacklist and install a rule per entry.

        Per-entry failures are logged and skipped. Returns how many
        entries were applied.
        """
        applied = 0
        for ip in sorted(self._blacklist.load()):
            try:
                self._firewall.add_drop_rule(ip, self.config.relay_ports)
                applied += 1
            except FilterRuleError as exc:
                logger.error("Blacklist entry %s not applied: %s", ip, exc)
        if applied:
            logger.info("Applied %d block rules", applied)
        return applied
