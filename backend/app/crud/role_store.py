from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, AsyncContextManager, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from ..models.admin_grant import AdminGrant
from ..models.grant_audit_log import GrantAuditLog
from .admin_grant import AdminGrantRepository
from .audit_log import GrantAuditLogRepository


class SqlRoleStore:
    """RoleStore over a single AsyncSession.

    Grant rows and audit rows share the session transaction, so a grant write
    is never committed without its audit record.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.grants = AdminGrantRepository(session)
        self.audit = GrantAuditLogRepository(session)

    async def list_grants_for(self, identity: str) -> list[AdminGrant]:
        return await self.grants.list_for_identity(identity)

    async def list_grants(self, limit: int, offset: int) -> list[AdminGrant]:
        return await self.grants.list_all(limit=limit, offset=offset)

    async def add_grant(self, **fields: Any) -> AdminGrant:
        return await self.grants.add(**fields)

    async def update_grant(self, grant: AdminGrant, changes: dict[str, Any]) -> AdminGrant:
        return await self.grants.update(grant, changes)

    async def delete_grants_for(self, identity: str) -> int:
        return await self.grants.delete_for_identity(identity)

    async def append_audit(self, **fields: Any) -> GrantAuditLog:
        return await self.audit.append(**fields)

    async def query_audit(
        self,
        *,
        actor: str | None = None,
        target_identity: str | None = None,
        action: str | None = None,
        from_date: datetime | None = None,
        to_date: datetime | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[GrantAuditLog]:
        return await self.audit.list_by_filters(
            actor=actor,
            target_identity=target_identity,
            action=action,
            from_date=from_date,
            to_date=to_date,
            limit=limit,
            offset=offset,
        )

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()


def sql_role_store_factory(
    session_factory: Callable[[], AsyncContextManager[AsyncSession]],
) -> Callable[[], AsyncContextManager[SqlRoleStore]]:
    @asynccontextmanager
    async def factory() -> AsyncIterator[SqlRoleStore]:
        async with session_factory() as session:
            yield SqlRoleStore(session)

    return factory
