"""
Permission resolver - computes the effective authorization state of an identity.

Given (grant, now, source_ip) the result is deterministic. The resolver
always reads the role store; caching is the PermissionCache's job.

Fail-closed: any store failure or timeout raises StoreUnavailableError.
A NoGrant result is returned only when the store positively answered.
"""
from __future__ import annotations

import asyncio
import ipaddress
import logging
from typing import Iterable

from sqlalchemy.exc import SQLAlchemyError

from ...auth import permission_registry as registry
from ...domain.authorization import (
    EffectivePermissionSet,
    Grant,
    Identity,
    NoGrant,
    NoGrantReason,
    RequestContext,
    Resolution,
)
from ...domain.ports.role_store import GrantData, RoleStoreFactory
from ...errors import StoreUnavailableError

logger = logging.getLogger("photoapp.authz.resolver")

STORE_FAILURES = (SQLAlchemyError, OSError, asyncio.TimeoutError)


def match_network(source_ip: str | None, allow_list: Iterable[str]) -> str | None:
    """Return the first allow-list entry containing source_ip, or None."""
    if not source_ip:
        return None
    try:
        address = ipaddress.ip_address(source_ip)
    except ValueError:
        logger.warning("[AUTHZ] unparsable_source_ip value=%r", source_ip)
        return None
    for entry in sorted(allow_list):
        try:
            network = ipaddress.ip_network(entry, strict=False)
        except ValueError:
            logger.warning("[AUTHZ] invalid_allow_list_entry value=%r", entry)
            continue
        if address.version == network.version and address in network:
            return entry
    return None


def compute_permissions(tier: registry.Tier, explicit: Iterable[str]) -> frozenset[str]:
    """inherited(tier) ∪ granular explicit keys ∪ legacy expansion.

    Legacy names themselves never appear in the result, so a grant listing
    'manageUsers' resolves exactly like one listing the users.* keys.
    """
    if tier == registry.Tier.SUPER_ADMIN:
        return registry.PERMISSION_KEYS
    return registry.inherited_permissions(tier) | registry.expand_legacy(explicit)


def select_current_grant(identity: Identity, records: list[GrantData]) -> GrantData | None:
    """Pick the single grant for identity; newest created_at wins on duplicates."""
    if not records:
        return None
    ordered = sorted(records, key=lambda record: record.created_at, reverse=True)
    if len(ordered) > 1:
        logger.warning(
            "[AUTHZ] duplicate_grants identity=%s count=%d kept_created_at=%s",
            identity,
            len(ordered),
            ordered[0].created_at.isoformat(),
        )
    return ordered[0]


def evaluate_grant(grant: Grant | None, identity: Identity, ctx: RequestContext) -> Resolution:
    if grant is None:
        return NoGrant(identity=identity, reason=NoGrantReason.ABSENT, resolved_at=ctx.now)
    if not grant.active:
        return NoGrant(identity=identity, reason=NoGrantReason.INACTIVE, resolved_at=ctx.now)
    if grant.is_expired(ctx.now):
        return NoGrant(identity=identity, reason=NoGrantReason.EXPIRED, resolved_at=ctx.now)

    network = None
    if grant.ip_allow_list:
        network = match_network(ctx.source_ip, grant.ip_allow_list)
        if network is None:
            return NoGrant(
                identity=identity,
                reason=NoGrantReason.NETWORK_MISMATCH,
                resolved_at=ctx.now,
                ip_allow_list=grant.ip_allow_list,
            )

    return EffectivePermissionSet(
        identity=identity,
        tier=grant.tier,
        permissions=compute_permissions(grant.tier, grant.explicit_permissions),
        resolved_at=ctx.now,
        expires_at=grant.expires_at,
        network=network,
        ip_allow_list=grant.ip_allow_list,
    )


class PermissionResolver:
    def __init__(self, store_factory: RoleStoreFactory, *, timeout_seconds: float = 2.0):
        self._store_factory = store_factory
        self._timeout = timeout_seconds

    async def load_grant(self, identity: Identity) -> Grant | None:
        """Read the current grant for identity straight from the role store.

        Raises:
            StoreUnavailableError: On store error or timeout
        """
        try:
            records = await asyncio.wait_for(self._fetch(identity), timeout=self._timeout)
        except STORE_FAILURES as exc:
            logger.error(
                "[AUTHZ] store_unavailable identity=%s error=%s", identity, exc
            )
            raise StoreUnavailableError() from exc

        record = select_current_grant(identity, records)
        return Grant.from_record(record) if record is not None else None

    async def resolve(self, identity: Identity, ctx: RequestContext | None = None) -> Resolution:
        ctx = ctx or RequestContext()
        grant = await self.load_grant(identity)
        return evaluate_grant(grant, identity, ctx)

    async def _fetch(self, identity: Identity) -> list[GrantData]:
        async with self._store_factory() as store:
            return await store.list_grants_for(identity)
