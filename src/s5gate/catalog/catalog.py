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
"""Remote endpoint catalog -- fetch, parse, group and cache the node list.

Two independent clocks gate the upstream fetch:

  - freshness TTL: a non-forced call inside it is served from cache
  - minimum refresh interval: a forced call inside it (measured from the
    last *attempt*, successful or not) is answered from cache with
    ``rate_limited=True`` and never touches the network

A failed fetch never changes the cache; the error goes to the caller.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import httpx

from s5gate.config import GatewayConfig
from s5gate.errors import FetchError, GatewayError, ParseError, RateLimited
from s5gate.models import CountryGroup
from s5gate.catalog.parser import group_by_country, parse_endpoints

logger = logging.getLogger("s5gate.catalog.catalog")


@dataclass
class RefreshGate:
    """TTL + minimum-refresh-interval comparisons over explicit timestamps."""

    ttl: float = 600.0
    min_interval: float = 120.0
    last_attempt_at: float | None = None

    def is_fresh(self, fetched_at: float | None, now: float) -> bool:
        return fetched_at is not None and (now - fetched_at) < self.ttl

    def allows_fetch(self, now: float) -> bool:
        return self.last_attempt_at is None or (now - self.last_attempt_at) >= self.min_interval

    def wait_seconds(self, now: float) -> int:
        """Seconds until the next forced refresh is allowed."""
        if self.last_attempt_at is None:
            return 0
        return max(0, math.ceil(self.min_interval - (now - self.last_attempt_at)))

    def check(self, now: float) -> None:
        """Raise RateLimited if a fetch now would be too soon."""
        if not self.allows_fetch(now):
            raise RateLimited(self.wait_seconds(now))

    def record_attempt(self, now: float) -> None:
        self.last_attempt_at = now


@dataclass(frozen=True)
class CatalogCache:
    """One successful fetch. Replaced wholesale, never edited."""

    groups: tuple[CountryGroup, ...]
    fetched_at: float
    fetch_count: int

    @property
    def total_servers(self) -> int:
        return sum(len(g.servers) for g in self.groups)


@dataclass
class CatalogResult:
    """What ``list_servers`` hands back."""

    groups: list[CountryGroup] = field(default_factory=list)
    from_cache: bool = False
    cache_age: int = 0
    next_refresh_in: int = 0
    rate_limited: bool = False
    message: str = ""

    @property
    def total_servers(self) -> int:
        return sum(len(g.servers) for g in self.groups)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "totalCountries": len(self.groups),
            "totalServers": self.total_servers,
            "groups": [g.to_dict() for g in self.groups],
            "fromCache": self.from_cache,
            "cacheAge": self.cache_age,
            "nextRefreshIn": self.next_refresh_in,
        }
        if self.rate_limited:
            data["rateLimited"] = True
            data["message"] = self.message
        return data


def http_fetcher(
    url: str,
    client: httpx.Client,
    timeout: float = 30.0,
) -> Callable[[], str]:
    """Build the default upstream fetch function over ``client``.

    The caller owns ``client`` and closes it.
    """

    def _fetch() -> str:
        try:
            response = client.get(url, timeout=timeout)
        except httpx.HTTPError as exc:
            raise FetchError(f"Catalog unreachable: {exc}") from exc
        if response.status_code != 200:
            raise FetchError(f"Catalog returned HTTP {response.status_code}")
        return response.text

    return _fetch


class EndpointCatalog:
    """Cached view of the upstream node list."""

    def __init__(
        self,
        config: GatewayConfig | None = None,
        fetcher: Callable[[], str] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        config = config or GatewayConfig()
        self.url = config.catalog_url
        self.home_country = config.home_country
        # Only set when the catalog built its own HTTP client
        self._client: httpx.Client | None = None
        if fetcher is None:
            self._client = httpx.Client(timeout=config.catalog_timeout, follow_redirects=True)
            fetcher = http_fetcher(config.catalog_url, self._client, config.catalog_timeout)
        self._fetch = fetcher
        self._clock = clock
        self._gate = RefreshGate(ttl=config.catalog_ttl, min_interval=config.catalog_min_refresh)
        self._cache: CatalogCache | None = None
        # Guards the gate check, the attempt timestamp and the fetch together
        self._fetch_lock = threading.Lock()

    @property
    def cache(self) -> CatalogCache | None:
        return self._cache

    def close(self) -> None:
        """Release the HTTP client, if this catalog created one."""
        if self._client is not None:
            self._client.close()

    def _from_cache(self, cache: CatalogCache, now: float) -> CatalogResult:
        return CatalogResult(
            groups=list(cache.groups),
            from_cache=True,
            cache_age=int(now - cache.fetched_at),
            next_refresh_in=self._gate.wait_seconds(now),
        )

    def list_servers(self, force_refresh: bool = False) -> CatalogResult:
        """Grouped node list, honoring the TTL and the refresh gate.

        Raises:
            FetchError: upstream unreachable or non-200 (cache untouched).
            ParseError: payload held no usable rows (cache untouched).
        """
        cache, now = self._cache, self._clock()
        if not force_refresh and cache and self._gate.is_fresh(cache.fetched_at, now):
            return self._from_cache(cache, now)

        with self._fetch_lock:
            now = self._clock()
            cache = self._cache

            # Another caller may have refreshed while we waited for the lock
            if not force_refresh and cache and self._gate.is_fresh(cache.fetched_at, now):
                return self._from_cache(cache, now)

            try:
                if force_refresh:
                    self._gate.check(now)
            except RateLimited as limited:
                result = self._from_cache(cache, now) if cache else CatalogResult(from_cache=True)
                result.rate_limited = True
                result.next_refresh_in = limited.wait_seconds
                result.message = str(limited)
                logger.info(
                    "Forced refresh rate limited",
                    extra={"fields": {"wait_s": limited.wait_seconds}},
                )
                return result

            self._gate.record_attempt(now)
            logger.info("Fetching server list from %s", self.url)
            try:
                raw = self._fetch()
            except GatewayError:
                raise
            except Exception as exc:
                raise FetchError(f"Catalog fetch failed: {exc}") from exc

            endpoints = parse_endpoints(raw)
            if not endpoints:
                raise ParseError("Catalog payload contained no usable servers")
            groups = group_by_country(endpoints, self.home_country)

            fresh = CatalogCache(
                groups=tuple(groups),
                fetched_at=now,
                fetch_count=(cache.fetch_count if cache else 0) + 1,
            )
            self._cache = fresh
            logger.info(
                "Fetched %d servers from %d countries",
                fresh.total_servers,
                len(fresh.groups),
            )
            return CatalogResult(
                groups=list(fresh.groups),
                from_cache=False,
                cache_age=0,
                next_refresh_in=self._gate.wait_seconds(now),
            )

    def cache_status(self) -> dict[str, Any]:
        now = self._clock()
        cache = self._cache
        return {
            "hasCachedData": cache is not None,
            "cacheAge": int(now - cache.fetched_at) if cache else None,
            "cacheTTL": int(self._gate.ttl),
            "minRefreshInterval": int(self._gate.min_interval),
            "nextRefreshIn": self._gate.wait_seconds(now),
            "totalFetches": cache.fetch_count if cache else 0,
        }
