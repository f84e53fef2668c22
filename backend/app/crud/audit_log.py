from datetime import datetime
from typing import Any

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.grant_audit_log import GrantAuditLog


class GrantAuditLogRepository:
    """Insert and read access to grant_audit_logs. There is no update or delete."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def append(
        self,
        *,
        actor: str,
        target_identity: str,
        action: str,
        before_state: dict[str, Any] | None,
        after_state: dict[str, Any] | None,
        reason: str | None,
        created_at: datetime,
    ) -> GrantAuditLog:
        record = GrantAuditLog(
            actor=actor,
            target_identity=target_identity,
            action=action,
            before_state=before_state,
            after_state=after_state,
            reason=reason,
            created_at=created_at,
        )
        self.session.add(record)
        await self.session.flush()
        return record

    async def list_by_filters(
        self,
        actor: str | None = None,
        target_identity: str | None = None,
        action: str | None = None,
        from_date: datetime | None = None,
        to_date: datetime | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[GrantAuditLog]:
        query = select(GrantAuditLog)

        conditions = []
        if actor is not None:
            conditions.append(GrantAuditLog.actor == actor)
        if target_identity is not None:
            conditions.append(GrantAuditLog.target_identity == target_identity)
        if action is not None:
            conditions.append(GrantAuditLog.action == action)
        if from_date is not None:
            conditions.append(GrantAuditLog.created_at >= from_date)
        if to_date is not None:
            conditions.append(GrantAuditLog.created_at <= to_date)

        if conditions:
            query = query.where(and_(*conditions))

        query = (
            query.order_by(GrantAuditLog.created_at.desc(), GrantAuditLog.id.desc())
            .limit(limit)
            .offset(offset)
        )

        result = await self.session.execute(query)
        return list(result.scalars().all())
