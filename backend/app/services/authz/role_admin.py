"""
Role administration - the only writer of admin grants.

Every mutation runs in this order:
1. Target-relationship rule against the target's stored grant, read fresh
   from the role store (never from the cache)
2. Guard check: the actor must pass require_super_admin()
3. Permission set validation against the registry and the tier
4. Grant write and audit append inside one role store unit, then commit
5. Cache invalidation for the target, then the optional broadcast

A failure anywhere before the commit leaves no grant change and no audit
record behind.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Iterable, TypeVar

from sqlalchemy.exc import IntegrityError

from ...auth import permission_registry as registry
from ...domain.authorization import Grant, Identity, RequestContext
from ...domain.ports.role_store import RoleStore, RoleStoreFactory
from ...errors import (
    ConflictError,
    InvalidPermissionSetError,
    NotFoundError,
    StoreUnavailableError,
    TargetProtectedError,
    UnauthorizedError,
    ValidationError,
)
from .audit import AuditLog, AuditRecord
from .cache import Clock, PermissionCache, utcnow
from .guard import AuthorizationGuard, Decision
from .resolver import STORE_FAILURES, PermissionResolver, select_current_grant

logger = logging.getLogger("photoapp.authz.role_admin")

T = TypeVar("T")

UPDATABLE_FIELDS = frozenset({
    "tier",
    "explicit_permissions",
    "active",
    "expires_at",
    "ip_allow_list",
})


@dataclass(frozen=True)
class GrantConstraints:
    active: bool = True
    expires_at: datetime | None = None
    ip_allow_list: frozenset[str] = frozenset()


class RoleAdministration:
    def __init__(
        self,
        *,
        resolver: PermissionResolver,
        cache: PermissionCache,
        guard: AuthorizationGuard,
        audit_log: AuditLog,
        store_factory: RoleStoreFactory,
        timeout_seconds: float = 2.0,
        clock: Clock | None = None,
        broadcaster: Any | None = None,
    ):
        self._resolver = resolver
        self._cache = cache
        self._guard = guard
        self._audit_log = audit_log
        self._store_factory = store_factory
        self._timeout = timeout_seconds
        self._clock = clock or utcnow
        self._broadcaster = broadcaster

    async def create_grant(
        self,
        actor: Identity,
        target: Identity,
        tier: registry.Tier | str,
        permissions: Iterable[str] = (),
        constraints: GrantConstraints | None = None,
        *,
        ctx: RequestContext | None = None,
        reason: str | None = None,
    ) -> Grant:
        ctx = ctx or RequestContext(now=self._clock())
        constraints = constraints or GrantConstraints()

        self._raise_for(await self._guard.require_super_admin()(actor, ctx), actor)
        tier = self._parse_tier(tier)
        explicit = self._validated_permissions(tier, permissions)

        async def mutate(store: RoleStore) -> Grant:
            if await store.list_grants_for(target):
                raise ConflictError(f"Identity '{target}' already has a grant")
            row = await store.add_grant(
                identity=target,
                tier=tier.value,
                explicit_permissions=explicit,
                active=constraints.active,
                expires_at=constraints.expires_at,
                ip_allow_list=sorted(constraints.ip_allow_list) or None,
                created_by=actor,
                created_at=ctx.now,
            )
            grant = Grant.from_record(row)
            await self._audit_log.append_in(
                store,
                AuditRecord(
                    actor=actor,
                    target_identity=target,
                    action="create",
                    before_state=None,
                    after_state=grant.to_snapshot(),
                    reason=reason,
                    timestamp=ctx.now,
                ),
            )
            return grant

        grant = await self._run_unit(target, "create", mutate)
        logger.info(
            "[AUTHZ] grant_created actor=%s target=%s tier=%s", actor, target, tier.value
        )
        return grant

    async def update_grant(
        self,
        actor: Identity,
        target: Identity,
        changes: dict[str, Any],
        *,
        ctx: RequestContext | None = None,
        reason: str | None = None,
    ) -> Grant:
        ctx = ctx or RequestContext(now=self._clock())
        unknown = sorted(set(changes) - UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown grant fields: {', '.join(unknown)}")
        if not changes:
            raise ValidationError("No changes supplied")

        await self._enforce_target_relationship(actor, target, ctx)
        self._raise_for(await self._guard.require_super_admin()(actor, ctx), actor)

        async def mutate(store: RoleStore) -> Grant:
            row = select_current_grant(target, await store.list_grants_for(target))
            if row is None:
                raise NotFoundError(f"Identity '{target}' has no grant")
            before = Grant.from_record(row)

            tier = self._parse_tier(changes.get("tier", before.tier))
            explicit = self._validated_permissions(
                tier, changes.get("explicit_permissions", before.explicit_permissions)
            )
            values: dict[str, Any] = {
                "tier": tier.value,
                "explicit_permissions": explicit,
                "updated_by": actor,
                "updated_at": ctx.now,
            }
            if "active" in changes:
                values["active"] = bool(changes["active"])
            if "expires_at" in changes:
                values["expires_at"] = changes["expires_at"]
            if "ip_allow_list" in changes:
                values["ip_allow_list"] = sorted(changes["ip_allow_list"] or ()) or None

            after = Grant.from_record(await store.update_grant(row, values))
            await self._audit_log.append_in(
                store,
                AuditRecord(
                    actor=actor,
                    target_identity=target,
                    action="update",
                    before_state=before.to_snapshot(),
                    after_state=after.to_snapshot(),
                    reason=reason,
                    timestamp=ctx.now,
                ),
            )
            return after

        grant = await self._run_unit(target, "update", mutate)
        logger.info(
            "[AUTHZ] grant_updated actor=%s target=%s fields=%s",
            actor,
            target,
            ",".join(sorted(changes)),
        )
        return grant

    async def revoke_grant(
        self,
        actor: Identity,
        target: Identity,
        reason: str | None = None,
        *,
        ctx: RequestContext | None = None,
    ) -> Grant:
        ctx = ctx or RequestContext(now=self._clock())

        await self._enforce_target_relationship(actor, target, ctx)
        self._raise_for(await self._guard.require_super_admin()(actor, ctx), actor)

        async def mutate(store: RoleStore) -> Grant:
            row = select_current_grant(target, await store.list_grants_for(target))
            if row is None:
                raise NotFoundError(f"Identity '{target}' has no grant")
            before = Grant.from_record(row)
            await store.delete_grants_for(target)
            await self._audit_log.append_in(
                store,
                AuditRecord(
                    actor=actor,
                    target_identity=target,
                    action="revoke",
                    before_state=before.to_snapshot(),
                    after_state=None,
                    reason=reason,
                    timestamp=ctx.now,
                ),
            )
            return before

        revoked = await self._run_unit(target, "revoke", mutate)
        logger.info("[AUTHZ] grant_revoked actor=%s target=%s", actor, target)
        return revoked

    async def get_grant(self, identity: Identity) -> Grant | None:
        return await self._resolver.load_grant(identity)

    async def list_grants(self, limit: int = 100, offset: int = 0) -> list[Grant]:
        async def read() -> list[Grant]:
            async with self._store_factory() as store:
                rows = await store.list_grants(limit, offset)
                return [Grant.from_record(row) for row in rows]

        try:
            return await asyncio.wait_for(read(), timeout=self._timeout)
        except STORE_FAILURES as exc:
            logger.error("[AUTHZ] store_unavailable operation=list_grants error=%s", exc)
            raise StoreUnavailableError() from exc

    async def _enforce_target_relationship(
        self, actor: Identity, target: Identity, ctx: RequestContext
    ) -> None:
        """Only a super_admin may modify or revoke a super_admin grant.

        Both sides are read from the role store so a just-promoted target or
        a just-demoted actor is seen immediately.
        """
        target_grant = await self._resolver.load_grant(target)
        if target_grant is None or target_grant.tier != registry.Tier.SUPER_ADMIN:
            return
        actor_state = await self._resolver.resolve(actor, ctx)
        if not actor_state.is_super_admin:
            logger.warning(
                "[AUTHZ] target_protected actor=%s target=%s", actor, target
            )
            raise TargetProtectedError(
                f"Only a super_admin may modify the grant of '{target}'"
            )

    async def _run_unit(
        self,
        target: Identity,
        operation: str,
        mutate: Callable[[RoleStore], Awaitable[T]],
    ) -> T:
        async def run() -> T:
            async with self._store_factory() as store:
                try:
                    result = await mutate(store)
                    await store.commit()
                except BaseException:
                    await store.rollback()
                    raise
                return result

        try:
            result = await asyncio.wait_for(run(), timeout=self._timeout)
        except IntegrityError as exc:
            logger.warning(
                "[AUTHZ] grant_conflict operation=%s target=%s error=%s",
                operation,
                target,
                exc.orig,
            )
            await self._invalidate(target)
            if operation == "create":
                raise ConflictError(
                    f"Identity '{target}' already has a grant"
                ) from exc
            raise ConflictError(f"Grant for '{target}' was changed concurrently") from exc
        except STORE_FAILURES as exc:
            logger.error(
                "[AUTHZ] store_unavailable operation=%s target=%s error=%s",
                operation,
                target,
                exc,
            )
            # Commit outcome unknown
            await self._invalidate(target)
            raise StoreUnavailableError() from exc

        await self._invalidate(target)
        return result

    async def _invalidate(self, target: Identity) -> None:
        self._cache.invalidate(target)
        if self._broadcaster is not None:
            await self._broadcaster.publish(target)

    @staticmethod
    def _raise_for(decision: Decision, actor: Identity) -> None:
        if decision.allowed:
            return
        if decision.unavailable:
            raise StoreUnavailableError()
        raise UnauthorizedError(f"'{actor}' may not manage admin grants")

    @staticmethod
    def _parse_tier(tier: registry.Tier | str) -> registry.Tier:
        try:
            return registry.parse_tier(tier)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

    @staticmethod
    def _validated_permissions(tier: registry.Tier, permissions: Iterable[str]) -> list[str]:
        keys = sorted(set(permissions))
        errors = registry.validate_permissions_for_tier(tier, keys)
        if errors:
            raise InvalidPermissionSetError(details=errors)
        return keys
