"""
Authorization guard - the single enforcement point for capability checks.

Every protected action asks the guard. The guard reads the PermissionCache
and never mutates the cache or the role store. A resolver failure is a
denial with reason "authorization_unavailable", distinct from "forbidden",
so callers can retry or surface a service error.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from ...auth.permission_registry import validate_permission_key
from ...domain.authorization import Identity, RequestContext, Resolution
from ...errors import StoreUnavailableError
from .cache import PermissionCache

logger = logging.getLogger("photoapp.authz.guard")

REASON_GRANTED = "granted"
REASON_SUPER_ADMIN = "super_admin"
REASON_FORBIDDEN = "forbidden"
REASON_NO_GRANT = "no_grant"
REASON_UNAVAILABLE = "authorization_unavailable"


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str
    resolution: Resolution | None = None

    @property
    def unavailable(self) -> bool:
        return self.reason == REASON_UNAVAILABLE


Check = Callable[[Identity, RequestContext], Awaitable[Decision]]


class AuthorizationGuard:
    def __init__(self, cache: PermissionCache):
        self._cache = cache

    def require_permission(self, key: str) -> Check:
        """Build a check for one permission key.

        Raises:
            ValueError: If key is not a registered permission
        """
        validate_permission_key(key)

        async def check(identity: Identity, ctx: RequestContext) -> Decision:
            resolution = await self._lookup(identity, ctx)
            if resolution is None:
                return Decision(allowed=False, reason=REASON_UNAVAILABLE)
            if resolution.is_super_admin:
                return Decision(allowed=True, reason=REASON_SUPER_ADMIN, resolution=resolution)
            if key in resolution.permissions:
                return Decision(allowed=True, reason=REASON_GRANTED, resolution=resolution)
            reason = REASON_NO_GRANT if resolution.tier is None else REASON_FORBIDDEN
            logger.info(
                "[AUTHZ] denied identity=%s permission=%s reason=%s", identity, key, reason
            )
            return Decision(allowed=False, reason=reason, resolution=resolution)

        return check

    def require_super_admin(self) -> Check:
        async def check(identity: Identity, ctx: RequestContext) -> Decision:
            resolution = await self._lookup(identity, ctx)
            if resolution is None:
                return Decision(allowed=False, reason=REASON_UNAVAILABLE)
            if resolution.is_super_admin:
                return Decision(allowed=True, reason=REASON_SUPER_ADMIN, resolution=resolution)
            reason = REASON_NO_GRANT if resolution.tier is None else REASON_FORBIDDEN
            logger.info(
                "[AUTHZ] denied identity=%s permission=super_admin reason=%s", identity, reason
            )
            return Decision(allowed=False, reason=reason, resolution=resolution)

        return check

    async def _lookup(self, identity: Identity, ctx: RequestContext) -> Resolution | None:
        try:
            return await self._cache.get(identity, ctx)
        except StoreUnavailableError:
            logger.error("[AUTHZ] fail_closed identity=%s reason=%s", identity, REASON_UNAVAILABLE)
            return None
