"""
Out-of-band creation of the first super_admin grant.

Every grant mutation through the API needs a super_admin actor, so the very
first one has to be created here. The grant and its audit record (actor
"system:bootstrap") are written in one transaction.

Refuses to run when an active super_admin grant already exists or when the
identity already holds a grant; use the admin API from then on.

Usage:
    python -m scripts.bootstrap_super_admin <identity> [--reason TEXT]
"""
import argparse
import asyncio
import os
import sys
from datetime import datetime, timezone

# Add parent directory to path to import app modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.auth.permission_registry import Tier
from app.domain.authorization import Grant
from app.domain.ports.role_store import RoleStoreFactory
from app.errors import ConflictError
from app.services.authz.audit import AuditLog, AuditRecord

BOOTSTRAP_ACTOR = "system:bootstrap"
_PAGE_SIZE = 100


async def _has_active_super_admin(store, now: datetime) -> bool:
    offset = 0
    while True:
        rows = await store.list_grants(_PAGE_SIZE, offset)
        for row in rows:
            grant = Grant.from_record(row)
            if grant.tier == Tier.SUPER_ADMIN and grant.active and not grant.is_expired(now):
                return True
        if len(rows) < _PAGE_SIZE:
            return False
        offset += _PAGE_SIZE


async def bootstrap_super_admin(
    store_factory: RoleStoreFactory,
    identity: str,
    *,
    reason: str | None = None,
    now: datetime | None = None,
) -> Grant:
    """
    Raises:
        ConflictError: If an active super_admin exists or identity has a grant
    """
    now = now or datetime.now(timezone.utc)
    audit_log = AuditLog(store_factory)

    async with store_factory() as store:
        try:
            if await _has_active_super_admin(store, now):
                raise ConflictError("An active super_admin grant already exists")
            if await store.list_grants_for(identity):
                raise ConflictError(f"Identity '{identity}' already has a grant")

            row = await store.add_grant(
                identity=identity,
                tier=Tier.SUPER_ADMIN.value,
                explicit_permissions=[],
                active=True,
                expires_at=None,
                ip_allow_list=None,
                created_by=BOOTSTRAP_ACTOR,
                created_at=now,
            )
            grant = Grant.from_record(row)
            await audit_log.append_in(
                store,
                AuditRecord(
                    actor=BOOTSTRAP_ACTOR,
                    target_identity=identity,
                    action="create",
                    before_state=None,
                    after_state=grant.to_snapshot(),
                    reason=reason or "bootstrap",
                    timestamp=now,
                ),
            )
            await store.commit()
        except BaseException:
            await store.rollback()
            raise

    return grant


async def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Create the first super_admin grant")
    parser.add_argument("identity")
    parser.add_argument("--reason", default=None)
    args = parser.parse_args(argv)

    from app.crud.role_store import sql_role_store_factory
    from app.database import AsyncSessionLocal, engine

    try:
        grant = await bootstrap_super_admin(
            sql_role_store_factory(AsyncSessionLocal), args.identity, reason=args.reason
        )
    except ConflictError as exc:
        print(f"  ERROR: {exc.message}")
        return 1
    finally:
        await engine.dispose()

    print(f"  ✓ Created super_admin grant for '{grant.identity}'")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
