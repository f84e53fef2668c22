from datetime import datetime
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.admin_grant import AdminGrant


class AdminGrantRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(
        self,
        *,
        identity: str,
        tier: str,
        explicit_permissions: list[str],
        active: bool,
        expires_at: datetime | None,
        ip_allow_list: list[str] | None,
        created_by: str | None,
        created_at: datetime,
    ) -> AdminGrant:
        grant = AdminGrant(
            identity=identity,
            tier=tier,
            explicit_permissions=explicit_permissions,
            active=active,
            expires_at=expires_at,
            ip_allow_list=ip_allow_list,
            created_by=created_by,
            created_at=created_at,
            updated_by=created_by,
            updated_at=created_at,
        )
        self.session.add(grant)
        await self.session.flush()
        return grant

    async def list_for_identity(self, identity: str) -> list[AdminGrant]:
        result = await self.session.execute(
            select(AdminGrant)
            .where(AdminGrant.identity == identity)
            .order_by(AdminGrant.created_at.desc())
        )
        return list(result.scalars().all())

    async def list_all(self, limit: int = 100, offset: int = 0) -> list[AdminGrant]:
        result = await self.session.execute(
            select(AdminGrant)
            .order_by(AdminGrant.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def update(self, grant: AdminGrant, changes: dict[str, Any]) -> AdminGrant:
        for field, value in changes.items():
            setattr(grant, field, value)
        await self.session.flush()
        return grant

    async def delete_for_identity(self, identity: str) -> int:
        result = await self.session.execute(
            delete(AdminGrant).where(AdminGrant.identity == identity)
        )
        await self.session.flush()
        return result.rowcount or 0
