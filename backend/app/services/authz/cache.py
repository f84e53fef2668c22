"""
Permission cache - bounded, TTL-limited map in front of the PermissionResolver.

Entries are keyed by (identity, network). The network part is None for
grants without an IP allow list and the matched CIDR for IP-gated grants,
so a network-scoped decision is never served to a request from another
network. NoGrant results are cached like grants, except network_mismatch
which only holds for the request that produced it.

The map is guarded by a threading.Lock that is never held across an await.
Only this class mutates the map; writers go through invalidate() and
invalidate_all().
"""
from __future__ import annotations

import asyncio
import logging
import threading
from contextlib import suppress
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from ...auth.permission_registry import PERMISSION_KEYS
from ...domain.authorization import (
    EffectivePermissionSet,
    Identity,
    NoGrant,
    NoGrantReason,
    RequestContext,
    Resolution,
)
from .resolver import PermissionResolver, match_network

logger = logging.getLogger("photoapp.authz.cache")

CacheKey = tuple[Identity, Optional[str]]
Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class CacheEntry:
    identity: Identity
    resolution: Resolution
    computed_at: datetime
    ttl_expires_at: datetime

    def is_live(self, now: datetime) -> bool:
        return now < self.ttl_expires_at


class PermissionCache:
    def __init__(
        self,
        resolver: PermissionResolver,
        *,
        ttl_seconds: int = 300,
        max_size: int = 1000,
        sweep_interval_seconds: int = 300,
        expiry_guard_seconds: int = 5,
        clock: Clock | None = None,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be greater than 0")
        if max_size <= 0:
            raise ValueError("max_size must be greater than 0")
        self._resolver = resolver
        self._ttl = timedelta(seconds=ttl_seconds)
        self._max_size = max_size
        self._sweep_interval = sweep_interval_seconds
        self._expiry_guard = timedelta(seconds=expiry_guard_seconds)
        self._clock = clock or utcnow

        self._lock = threading.Lock()
        self._entries: dict[CacheKey, CacheEntry] = {}
        # Allow lists learned from resolutions, used to pick the lookup key
        self._networks: dict[Identity, frozenset[str]] = {}
        self._generations: dict[Identity, int] = {}
        self._epoch = 0

        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._sweep_task: asyncio.Task[None] | None = None

    @property
    def resolver(self) -> PermissionResolver:
        return self._resolver

    async def get(self, identity: Identity, ctx: RequestContext | None = None) -> Resolution:
        """Return the cached resolution for identity or resolve and store it.

        Raises:
            StoreUnavailableError: On a miss when the role store cannot answer
        """
        now = self._clock()
        ctx = ctx or RequestContext(now=now)

        # Entry timestamps follow the cache clock; ctx.now only drives grant expiry
        with self._lock:
            key = self._lookup_key(identity, ctx.source_ip)
            if key is not None:
                entry = self._entries.get(key)
                if entry is not None:
                    problem = self._corruption(entry, key, now)
                    if problem is not None:
                        logger.warning(
                            "[AUTHZ] cache_corruption identity=%s reason=%s",
                            identity,
                            problem,
                        )
                        del self._entries[key]
                    elif entry.is_live(now):
                        self._hits += 1
                        return entry.resolution
                    else:
                        del self._entries[key]
            self._misses += 1
            token = self._token(identity)

        resolution = await self._resolver.resolve(identity, ctx)
        self._store(identity, resolution, self._clock(), token)
        return resolution

    def invalidate(self, identity: Identity) -> None:
        with self._lock:
            self._generations[identity] = self._generations.get(identity, 0) + 1
            self._networks.pop(identity, None)
            for key in [key for key in self._entries if key[0] == identity]:
                del self._entries[key]
        logger.debug("[AUTHZ] cache_invalidated identity=%s", identity)

    def invalidate_all(self) -> None:
        with self._lock:
            self._epoch += 1
            self._generations.clear()
            self._networks.clear()
            self._entries.clear()
        logger.info("[AUTHZ] cache_flushed")

    def sweep(self) -> int:
        """Remove expired entries; returns how many were dropped."""
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if not entry.is_live(now)]
            for key in expired:
                del self._entries[key]
        logger.debug("[AUTHZ] cache_sweep removed=%d", len(expired))
        return len(expired)

    def stats(self) -> dict[str, Any]:
        now = self._clock()
        with self._lock:
            total = len(self._entries)
            valid = sum(1 for entry in self._entries.values() if entry.is_live(now))
            return {
                "total": total,
                "valid": valid,
                "expired": total - valid,
                "max_size": self._max_size,
                "ttl": int(self._ttl.total_seconds()),
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
            }

    async def start(self) -> None:
        """Start the periodic sweep task."""
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def stop(self) -> None:
        """Stop the periodic sweep task."""
        if self._sweep_task is None:
            return
        self._sweep_task.cancel()
        with suppress(asyncio.CancelledError):
            await self._sweep_task
        self._sweep_task = None

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            self.sweep()

    def _lookup_key(self, identity: Identity, source_ip: str | None) -> CacheKey | None:
        networks = self._networks.get(identity)
        if not networks:
            return (identity, None)
        network = match_network(source_ip, networks)
        if network is None:
            return None
        return (identity, network)

    def _token(self, identity: Identity) -> tuple[int, int]:
        return (self._epoch, self._generations.get(identity, 0))

    def _corruption(self, entry: Any, key: CacheKey, now: datetime) -> str | None:
        if not isinstance(entry, CacheEntry):
            return "malformed_entry"
        if not isinstance(entry.resolution, (EffectivePermissionSet, NoGrant)):
            return "malformed_resolution"
        if entry.identity != key[0] or entry.resolution.identity != key[0]:
            return "identity_mismatch"
        if entry.computed_at > now:
            return "computed_at_in_future"
        permissions = entry.resolution.permissions
        if not isinstance(permissions, frozenset) or not permissions <= PERMISSION_KEYS:
            return "malformed_permissions"
        return None

    def _ttl_expires_at(self, resolution: Resolution, computed_at: datetime) -> datetime:
        ttl_expires_at = computed_at + self._ttl
        if resolution.expires_at is not None:
            ttl_expires_at = min(ttl_expires_at, resolution.expires_at - self._expiry_guard)
        return ttl_expires_at

    def _store(
        self,
        identity: Identity,
        resolution: Resolution,
        computed_at: datetime,
        token: tuple[int, int],
    ) -> None:
        if isinstance(resolution, NoGrant) and resolution.reason == NoGrantReason.NETWORK_MISMATCH:
            with self._lock:
                if self._token(identity) == token:
                    self._networks[identity] = resolution.ip_allow_list
            return

        ttl_expires_at = self._ttl_expires_at(resolution, computed_at)
        if ttl_expires_at <= computed_at:
            logger.debug(
                "[AUTHZ] cache_skip identity=%s reason=expires_within_guard", identity
            )
            return

        key: CacheKey = (identity, resolution.network)
        entry = CacheEntry(
            identity=identity,
            resolution=resolution,
            computed_at=computed_at,
            ttl_expires_at=ttl_expires_at,
        )

        with self._lock:
            if self._token(identity) != token:
                logger.debug(
                    "[AUTHZ] cache_skip identity=%s reason=invalidated_during_resolve",
                    identity,
                )
                return
            if resolution.ip_allow_list:
                self._networks[identity] = resolution.ip_allow_list
            else:
                self._networks.pop(identity, None)
            if key not in self._entries and len(self._entries) >= self._max_size:
                self._evict_oldest()
            self._entries[key] = entry

    def _evict_oldest(self) -> None:
        oldest_key = min(self._entries, key=lambda key: self._entries[key].computed_at)
        del self._entries[oldest_key]
        self._evictions += 1
        logger.debug("[AUTHZ] cache_evicted identity=%s", oldest_key[0])
