"""Process-wide authorization runtime.

Lifecycle mirrors the Redis singleton in app.infrastructure.redis:
- UNINITIALIZED -> INITIALIZED (via init_authorization)
- INITIALIZED -> CLOSED (via close_authorization)
- CLOSED -> INITIALIZED (via init_authorization - allows restart)

Tests build their own AuthorizationRuntime with build_runtime() instead of
touching the singleton.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum, auto

from ...config import Settings
from ...domain.ports.role_store import RoleStoreFactory
from ...infrastructure.redis import RedisClient
from .audit import AuditLog
from .cache import Clock, PermissionCache
from .guard import AuthorizationGuard
from .invalidation import InvalidationBroadcaster
from .resolver import PermissionResolver
from .role_admin import RoleAdministration

logger = logging.getLogger("photoapp.authz.runtime")


class _AuthorizationLifecycleState(Enum):
    UNINITIALIZED = auto()
    INITIALIZED = auto()
    CLOSED = auto()


@dataclass
class AuthorizationRuntime:
    resolver: PermissionResolver
    cache: PermissionCache
    guard: AuthorizationGuard
    audit_log: AuditLog
    role_admin: RoleAdministration
    broadcaster: InvalidationBroadcaster | None = None

    async def start(self) -> None:
        await self.cache.start()
        if self.broadcaster is not None:
            await self.broadcaster.start()

    async def stop(self) -> None:
        if self.broadcaster is not None:
            await self.broadcaster.stop()
        await self.cache.stop()

    async def flush_cache(self) -> None:
        self.cache.invalidate_all()
        if self.broadcaster is not None:
            await self.broadcaster.publish_all()


def build_runtime(
    settings: Settings,
    store_factory: RoleStoreFactory,
    *,
    redis_client: RedisClient | None = None,
    clock: Clock | None = None,
) -> AuthorizationRuntime:
    timeout = settings.authz_store_timeout_seconds
    resolver = PermissionResolver(store_factory, timeout_seconds=timeout)
    cache = PermissionCache(
        resolver,
        ttl_seconds=settings.authz_cache_ttl_seconds,
        max_size=settings.authz_cache_max_size,
        sweep_interval_seconds=settings.authz_cache_sweep_seconds,
        expiry_guard_seconds=settings.authz_expiry_guard_seconds,
        clock=clock,
    )
    guard = AuthorizationGuard(cache)
    audit_log = AuditLog(store_factory, timeout_seconds=timeout)

    broadcaster = None
    if settings.authz_invalidation_channel and redis_client is not None:
        broadcaster = InvalidationBroadcaster(
            redis_client, settings.authz_invalidation_channel, cache
        )

    role_admin = RoleAdministration(
        resolver=resolver,
        cache=cache,
        guard=guard,
        audit_log=audit_log,
        store_factory=store_factory,
        timeout_seconds=timeout,
        clock=clock,
        broadcaster=broadcaster,
    )
    return AuthorizationRuntime(
        resolver=resolver,
        cache=cache,
        guard=guard,
        audit_log=audit_log,
        role_admin=role_admin,
        broadcaster=broadcaster,
    )


_runtime: AuthorizationRuntime | None = None
_runtime_state: _AuthorizationLifecycleState = _AuthorizationLifecycleState.UNINITIALIZED
_runtime_lock: asyncio.Lock = asyncio.Lock()


async def init_authorization(
    settings: Settings,
    store_factory: RoleStoreFactory,
    *,
    redis_client: RedisClient | None = None,
) -> AuthorizationRuntime:
    """Build and start the process-wide runtime. Idempotent."""
    global _runtime, _runtime_state

    async with _runtime_lock:
        if _runtime_state == _AuthorizationLifecycleState.INITIALIZED:
            assert _runtime is not None
            return _runtime

        runtime = build_runtime(settings, store_factory, redis_client=redis_client)
        await runtime.start()
        _runtime = runtime
        _runtime_state = _AuthorizationLifecycleState.INITIALIZED
        logger.info(
            "[AUTHZ] runtime_started ttl=%s max_size=%s broadcast=%s",
            settings.authz_cache_ttl_seconds,
            settings.authz_cache_max_size,
            runtime.broadcaster is not None,
        )
        return runtime


async def close_authorization() -> None:
    """Stop the sweep and subscriber tasks. Idempotent."""
    global _runtime, _runtime_state

    async with _runtime_lock:
        if _runtime_state != _AuthorizationLifecycleState.INITIALIZED:
            return
        if _runtime is not None:
            await _runtime.stop()
            _runtime = None
        _runtime_state = _AuthorizationLifecycleState.CLOSED
        logger.info("[AUTHZ] runtime_stopped")


def get_authorization() -> AuthorizationRuntime:
    """
    Raises:
        RuntimeError: If the runtime is not initialized or already closed
    """
    if _runtime_state != _AuthorizationLifecycleState.INITIALIZED or _runtime is None:
        raise RuntimeError(
            f"Authorization runtime not available (state: {_runtime_state.name}). "
            "Call init_authorization() first."
        )
    return _runtime


def _reset_for_testing() -> None:
    global _runtime, _runtime_lock, _runtime_state
    _runtime = None
    _runtime_state = _AuthorizationLifecycleState.UNINITIALIZED
    _runtime_lock = asyncio.Lock()
