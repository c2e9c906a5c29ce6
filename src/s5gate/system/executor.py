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
"""Command executor -- the single seam between the gateway and the OS.

Everything that touches routes, the packet filter or processes goes
through ``CommandRunner`` so tests can swap in a recorder and never
mutate the real host.
"""

from __future__ import annotations

import logging
import subprocess
import time
from collections.abc import Sequence
from dataclasses import dataclass

from s5gate.errors import ProcessSpawnError

logger = logging.getLogger("s5gate.system.executor")

DEFAULT_TIMEOUT = 10.0


@dataclass
class CommandResult:
    """Outcome of one external command."""

    command: str = ""
    stdout: str = ""
    stderr: str = ""
    exit_code: int = -1
    duration_seconds: float = 0.0
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out

    def describe(self) -> str:
        if self.timed_out:
            return f"{self.command}: timed out"
        detail = self.stderr.strip() or self.stdout.strip()
        return f"{self.command}: exit {self.exit_code}" + (f" ({detail})" if detail else "")


class CommandRunner:
    """Runs short-lived commands with a timeout and spawns detached daemons."""

    def __init__(self, default_timeout: float = DEFAULT_TIMEOUT) -> None:
        self.default_timeout = default_timeout

    def run(
        self,
        command: str,
        args: Sequence[str] = (),
        timeout: float | None = None,
    ) -> CommandResult:
        """Run ``command args...`` and capture its output.

        Never raises for a failing command: a non-zero exit, a missing
        binary or a timeout all come back as a ``CommandResult`` with
        ``ok == False``.
        """
        argv = [command, *args]
        line = " ".join(argv)
        limit = timeout if timeout is not None else self.default_timeout
        start = time.monotonic()

        try:
            proc = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                timeout=limit,
            )
        except subprocess.TimeoutExpired:
            logger.warning("Command timed out after %.1fs: %s", limit, line)
            return CommandResult(
                command=line,
                exit_code=-1,
                duration_seconds=time.monotonic() - start,
                timed_out=True,
            )
        except (FileNotFoundError, PermissionError) as exc:
            logger.error("Command could not be executed: %s -- %s", line, exc)
            return CommandResult(
                command=line,
                stderr=str(exc),
                exit_code=127,
                duration_seconds=time.monotonic() - start,
            )

        result = CommandResult(
            command=line,
            stdout=proc.stdout or "",
            stderr=proc.stderr or "",
            exit_code=proc.returncode,
            duration_seconds=time.monotonic() - start,
        )
        logger.debug(
            "%s -> %d",
            line,
            result.exit_code,
            extra={"fields": {"duration_ms": int(result.duration_seconds * 1000)}},
        )
        return result

    def spawn_detached(self, command: str, args: Sequence[str] = ()) -> int:
        """Start a long-running daemon that outlives this call.

        Returns the child PID. The gateway never waits on it; liveness is
        probed later by name.
        """
        argv = [command, *args]
        try:
            proc = subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as exc:
            raise ProcessSpawnError(f"Failed to launch {command}: {exc}") from exc
        logger.info("Spawned %s (pid %d)", " ".join(argv), proc.pid)
        return proc.pid
