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
"""Persisted IP blacklist.

The set on disk is the source of truth for who is blocked; the packet
filter is reconciled against it (at startup and on every change).

File format: a JSON array of IP strings, order irrelevant.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path

from s5gate.errors import GatewayError

logger = logging.getLogger("s5gate.proxy.blacklist")


class BlacklistStore:
    """Thread-safe set of blocked IPs backed by a JSON file."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._ips: set[str] = set()
        self._lock = threading.Lock()

    def load(self) -> set[str]:
        """Replace the in-memory set with the file contents."""
        ips: set[str] = set()
        if self.path.exists():
            try:
                data = json.loads(self.path.read_text(encoding="utf-8"))
                if isinstance(data, list):
                    ips = {str(ip) for ip in data if str(ip).strip()}
                else:
                    logger.warning("Blacklist file %s is not a list -- ignoring", self.path)
            except (OSError, json.JSONDecodeError) as exc:
                logger.error("Failed to load blacklist: %s", exc)
        with self._lock:
            self._ips = ips
        logger.info("Loaded %d blacklisted IPs", len(ips))
        return set(ips)

    def _save_locked(self) -> None:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(sorted(self._ips)), encoding="utf-8")
            os.replace(tmp, self.path)
        except OSError as exc:
            raise GatewayError(f"Failed to persist blacklist to {self.path}: {exc}") from exc

    def add(self, ip: str) -> bool:
        """Add and persist. Returns False if it was already present.

        Raises GatewayError if the file cannot be written; the set is then
        left as it was.
        """
        with self._lock:
            if ip in self._ips:
                return False
            self._ips.add(ip)
            try:
                self._save_locked()
            except GatewayError:
                self._ips.discard(ip)
                raise
        return True

    def remove(self, ip: str) -> bool:
        """Remove and persist. Returns False if it was not present."""
        with self._lock:
            if ip not in self._ips:
                return False
            self._ips.discard(ip)
            try:
                self._save_locked()
            except GatewayError:
                self._ips.add(ip)
                raise
        return True

    def items(self) -> list[str]:
        with self._lock:
            return sorted(self._ips)

    def __contains__(self, ip: object) -> bool:
        with self._lock:
            return ip in self._ips

    def __len__(self) -> int:
        with self._lock:
            return len(self._ips)
