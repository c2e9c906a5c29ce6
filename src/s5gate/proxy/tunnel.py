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
"""Tunnel supervisor -- OpenVPN client process and link readiness.

The client is spawned detached and readiness is a poll for its network
interface. Phases::

    not_started -> starting -> link_up
                            -> timed_out
                            -> cancelled
    (any) -> stopped

The poll waits on an Event, so ``cancel()`` from another thread ends it
at the next tick instead of after the full budget.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from pathlib import Path

from s5gate.errors import TunnelTimeout
from s5gate.system.executor import CommandRunner

logger = logging.getLogger("s5gate.proxy.tunnel")

TUNNEL_BINARY = "openvpn"

_PHASE_NOT_STARTED = "not_started"
_PHASE_STARTING = "starting"
_PHASE_LINK_UP = "link_up"
_PHASE_TIMED_OUT = "timed_out"
_PHASE_CANCELLED = "cancelled"
_PHASE_STOPPED = "stopped"


class TunnelSupervisor:
    """Starts, watches and stops the tunnel client."""

    def __init__(
        self,
        runner: CommandRunner,
        interface: str = "tun0",
        link_probe: Callable[[], bool] | None = None,
        stop_grace: float = 2.0,
        command_timeout: float = 10.0,
    ) -> None:
        self._runner = runner
        self.interface = interface
        self._link_probe = link_probe or self._probe_link
        self.stop_grace = stop_grace
        self.command_timeout = command_timeout
        self._phase = _PHASE_NOT_STARTED
        self._cancel = threading.Event()

    @property
    def phase(self) -> str:
        return self._phase

    def _probe_link(self) -> bool:
        return self._runner.run(
            "ip", ("link", "show", self.interface), timeout=self.command_timeout
        ).ok

    def link_up(self) -> bool:
        return self._link_probe()

    def is_running(self) -> bool:
        return self._runner.run(
            "pgrep", ("-x", TUNNEL_BINARY), timeout=self.command_timeout
        ).ok

    def start(self, config_path: Path | str) -> None:
        """Spawn the tunnel client against ``config_path``."""
        self._cancel.clear()
        self._runner.spawn_detached(TUNNEL_BINARY, ("--config", str(config_path)))
        self._phase = _PHASE_STARTING

    def poll_until_link_up(self, attempts: int = 30, interval: float = 1.0) -> int:
        """Wait for the tunnel interface; return the attempt it appeared on.

        Raises:
            TunnelTimeout: budget exhausted or poll cancelled.
        """
        for attempt in range(1, attempts + 1):
            if self._cancel.wait(interval):
                self._phase = _PHASE_CANCELLED
                raise TunnelTimeout("Tunnel connection cancelled")
            if self._link_probe():
                self._phase = _PHASE_LINK_UP
                logger.info(
                    "Tunnel link %s up",
                    self.interface,
                    extra={"fields": {"attempt": attempt}},
                )
                return attempt

        self._phase = _PHASE_TIMED_OUT
        logger.warning("Tunnel link %s not up after %d attempts", self.interface, attempts)
        raise TunnelTimeout(f"Tunnel connection timeout ({attempts} attempts)")

    def cancel(self) -> None:
        """Abort an in-flight ``poll_until_link_up``."""
        self._cancel.set()

    def stop(self) -> None:
        """SIGTERM any tunnel client, then wait the grace period.

        Best-effort and idempotent; exit is not verified.
        """
        self._cancel.set()
        result = self._runner.run(
            "pkill", ("-SIGTERM", "-x", TUNNEL_BINARY), timeout=self.command_timeout
        )
        if result.exit_code not in (0, 1):
            logger.warning("Tunnel stop failed: %s", result.describe())
        time.sleep(self.stop_grace)
        self._phase = _PHASE_STOPPED
