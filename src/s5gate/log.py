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
"""
S5Gate -- Live Logger

Every controller transition, relay restart, filter change and catalog
fetch is written to a rotating log file operators can tail.

LOG LOCATION:
    /run/s5gate/logs/s5gate.log      (current)
    /run/s5gate/logs/s5gate.log.1    (previous rotation)

USAGE:
    from s5gate.log import setup_logging
    setup_logging("INFO", log_dir="/run/s5gate/logs")
    logger = logging.getLogger("s5gate.proxy.controller")
    logger.info("Connected to %s", host, extra={"fields": {"ip": ip}})
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path

MAX_LOG_FILE_BYTES = 10 * 1024 * 1024  # 10 MB per file
LOG_BACKUP_COUNT = 5
LOG_FILE_NAME = "s5gate.log"


class GatewayLogFormatter(logging.Formatter):
    """
    Format: TIMESTAMP | LEVEL | COMPONENT | MESSAGE | {structured fields}

    Example:
    2026-02-09T17:30:45.123Z | INFO  | controller   | Connected to public-vpn-1 | ip="1.2.3.4"
    2026-02-09T17:30:46.501Z | ERROR | firewall     | Failed to block 5.6.7.8 | port=1080
    """

    LEVEL_WIDTH = 5
    COMPONENT_WIDTH = 12

    def format(self, record: logging.LogRecord) -> str:
        now = datetime.fromtimestamp(record.created, tz=timezone.utc)
        ts = now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"

        level = "WARN" if record.levelname == "WARNING" else record.levelname
        component = record.name.rsplit(".", 1)[-1]
        message = record.getMessage()

        fields = getattr(record, "fields", {})
        field_str = ""
        if fields:
            parts = []
            for k, v in fields.items():
                if isinstance(v, str):
                    parts.append(f'{k}="{v}"')
                elif isinstance(v, float):
                    parts.append(f"{k}={v:.3f}")
                else:
                    parts.append(f"{k}={v}")
            field_str = " | " + " ".join(parts)

        line = (
            f"{ts} | {level:<{self.LEVEL_WIDTH}} | "
            f"{component:<{self.COMPONENT_WIDTH}} | {message}{field_str}"
        )
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(level: str = "INFO", log_dir: str | Path | None = None) -> logging.Logger:
    """Configure the ``s5gate`` logger tree.

    Console output always goes to stderr. When ``log_dir`` is given (and
    writable) a rotating file handler is added too. Safe to call more than
    once; previous handlers are replaced.
    """
    root = logging.getLogger("s5gate")
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.propagate = False
    root.handlers.clear()

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(GatewayLogFormatter())
    root.addHandler(stderr_handler)

    if log_dir:
        try:
            path = Path(log_dir)
            path.mkdir(parents=True, exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                str(path / LOG_FILE_NAME),
                maxBytes=MAX_LOG_FILE_BYTES,
                backupCount=LOG_BACKUP_COUNT,
                encoding="utf-8",
            )
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(GatewayLogFormatter())
            root.addHandler(file_handler)
        except OSError as exc:
            root.warning(
                "File logging disabled: %s", exc, extra={"fields": {"log_dir": str(log_dir)}}
            )

    return root
