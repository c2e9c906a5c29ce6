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
"""Relay supervisor -- (re)starts the Dante SOCKS5 daemon.

Each supervisor owns one rendered config file; stopping matches on that
path, so the direct-mode and tunnel-mode relays never kill each other.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from string import Template

from s5gate.errors import ProcessSpawnError
from s5gate.system.executor import CommandRunner

logger = logging.getLogger("s5gate.proxy.relay")

RELAY_BINARY = "danted"

# Used when no template exists on disk
DEFAULT_TEMPLATE = """\
logoutput: stderr
internal: 0.0.0.0 port = ${SOCKS5_PORT}
external: ${EXTERNAL_INTERFACE}
socksmethod: username
user.privileged: root
user.unprivileged: nobody

client pass {
    from: 0.0.0.0/0 to: 0.0.0.0/0
    log: error
}

socks pass {
    from: 0.0.0.0/0 to: 0.0.0.0/0
    log: error
}
"""


class RelaySupervisor:
    """Renders a relay config and restarts the daemon against it."""

    def __init__(
        self,
        runner: CommandRunner,
        config_path: Path | str,
        template_path: Path | str | None = None,
        settle_delay: float = 0.5,
        startup_delay: float = 0.5,
        command_timeout: float = 10.0,
    ) -> None:
        self._runner = runner
        self.config_path = Path(config_path)
        self.template_path = Path(template_path) if template_path else None
        self.settle_delay = settle_delay
        self.startup_delay = startup_delay
        self.command_timeout = command_timeout

    @property
    def _pattern(self) -> str:
        return f"{RELAY_BINARY} -f {self.config_path}"

    def render(self, port: int, egress: str) -> str:
        if self.template_path and self.template_path.exists():
            try:
                template = self.template_path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                raise ProcessSpawnError(
                    f"Failed to read relay template {self.template_path}: {exc}"
                ) from exc
        else:
            template = DEFAULT_TEMPLATE
        return Template(template).safe_substitute(
            SOCKS5_PORT=str(port),
            EXTERNAL_INTERFACE=egress,
        )

    def restart(self, port: int, egress: str) -> None:
        """Write a fresh config and (re)launch the relay on ``port``/``egress``.

        Does not check that the relay accepts connections.

        Raises:
            ProcessSpawnError: the template or config file could not be
                read or written, or the daemon failed to launch.
        """
        rendered = self.render(port, egress)
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            self.config_path.write_text(rendered, encoding="utf-8")
        except OSError as exc:
            raise ProcessSpawnError(
                f"Failed to write relay config {self.config_path}: {exc}"
            ) from exc

        self.stop()
        time.sleep(self.settle_delay)
        self._runner.spawn_detached(RELAY_BINARY, ("-f", str(self.config_path)))
        time.sleep(self.startup_delay)
        logger.info(
            "Relay restarted on port %d via %s",
            port,
            egress,
            extra={"fields": {"config": str(self.config_path)}},
        )

    def stop(self) -> None:
        """Stop the relay bound to this config. Idempotent."""
        result = self._runner.run("pkill", ("-f", self._pattern), timeout=self.command_timeout)
        # pkill exits 1 when nothing matched
        if result.exit_code not in (0, 1):
            logger.warning("Relay stop failed: %s", result.describe())

    def is_running(self) -> bool:
        return self._runner.run("pgrep", ("-f", self._pattern), timeout=self.command_timeout).ok
