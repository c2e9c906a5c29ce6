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
"""Error kinds raised by the gateway core.

Every externally exposed operation either returns a payload or raises one
of these. The API layer turns them into a single error message string.
"""

from __future__ import annotations


class GatewayError(Exception):
    """Base class for all gateway failures."""

    status_code: int = 500


class ConfigDecodeError(GatewayError):
    """Tunnel config payload could not be decoded."""

    status_code = 400


class TunnelTimeout(GatewayError):
    """Tunnel link never came up within the polling budget."""

    status_code = 504


class ProcessSpawnError(GatewayError):
    """Relay or tunnel binary failed to launch."""


class RouteMutationError(GatewayError):
    """An OS routing mutation (or the query it depends on) failed."""


class FilterRuleError(GatewayError):
    """Adding or removing a packet-filter rule failed."""


class FetchError(GatewayError):
    """Upstream catalog unreachable or returned a non-200 response."""

    status_code = 502


class ParseError(GatewayError):
    """Catalog payload did not contain any usable rows."""

    status_code = 502


class RateLimited(GatewayError):
    """Forced refresh requested before the minimum interval elapsed.

    Raised by the refresh gate; the catalog turns it into a
    ``rateLimited=True`` result instead of propagating it.
    """

    status_code = 429

    def __init__(self, wait_seconds: int) -> None:
        super().__init__(f"Please wait {wait_seconds}s before refreshing again")
        self.wait_seconds = wait_seconds


class InvalidAddress(GatewayError, ValueError):
    """A malformed IP address was passed to block/unblock."""

    status_code = 400


class InvalidServer(GatewayError, ValueError):
    """A server description could not be turned into a node reference."""

    status_code = 400
