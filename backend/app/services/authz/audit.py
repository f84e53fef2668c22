from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from ...domain.ports.role_store import AuditRecordData, RoleStore, RoleStoreFactory
from ...errors import StoreUnavailableError
from ...models.grant_audit_log import AUDIT_ACTIONS
from .resolver import STORE_FAILURES

logger = logging.getLogger("photoapp.authz.audit")


@dataclass(frozen=True)
class AuditRecord:
    actor: str
    target_identity: str
    action: str
    before_state: dict[str, Any] | None
    after_state: dict[str, Any] | None
    reason: str | None
    timestamp: datetime

    def __post_init__(self) -> None:
        if self.action not in AUDIT_ACTIONS:
            raise ValueError(
                f"Invalid audit action '{self.action}'. "
                f"Must be one of: {', '.join(AUDIT_ACTIONS)}"
            )


@dataclass(frozen=True)
class AuditFilter:
    actor: str | None = None
    target_identity: str | None = None
    action: str | None = None
    from_date: datetime | None = None
    to_date: datetime | None = None
    limit: int = 100
    offset: int = 0


class AuditLog:
    """Append-only log of grant mutations.

    append_in() writes inside a caller's role store unit so the grant change
    and its record commit together. append() is a standalone unit of its own.
    There is no update or delete.
    """

    def __init__(self, store_factory: RoleStoreFactory, *, timeout_seconds: float = 2.0):
        self._store_factory = store_factory
        self._timeout = timeout_seconds

    async def append_in(self, store: RoleStore, record: AuditRecord) -> uuid.UUID:
        row = await store.append_audit(
            actor=record.actor,
            target_identity=record.target_identity,
            action=record.action,
            before_state=record.before_state,
            after_state=record.after_state,
            reason=record.reason,
            created_at=record.timestamp,
        )
        return row.id

    async def append(self, record: AuditRecord) -> uuid.UUID:
        """
        Raises:
            StoreUnavailableError: If the record could not be persisted
        """
        try:
            return await asyncio.wait_for(self._append(record), timeout=self._timeout)
        except STORE_FAILURES as exc:
            logger.error(
                "[AUDIT] append_failed target=%s action=%s error=%s",
                record.target_identity,
                record.action,
                exc,
            )
            raise StoreUnavailableError() from exc

    async def query(self, audit_filter: AuditFilter | None = None) -> list[AuditRecordData]:
        """Matching records, newest first."""
        audit_filter = audit_filter or AuditFilter()
        try:
            return await asyncio.wait_for(self._query(audit_filter), timeout=self._timeout)
        except STORE_FAILURES as exc:
            logger.error("[AUDIT] query_failed error=%s", exc)
            raise StoreUnavailableError() from exc

    async def _append(self, record: AuditRecord) -> uuid.UUID:
        async with self._store_factory() as store:
            try:
                record_id = await self.append_in(store, record)
                await store.commit()
            except BaseException:
                await store.rollback()
                raise
            return record_id

    async def _query(self, audit_filter: AuditFilter) -> list[AuditRecordData]:
        async with self._store_factory() as store:
            return await store.query_audit(
                actor=audit_filter.actor,
                target_identity=audit_filter.target_identity,
                action=audit_filter.action,
                from_date=audit_filter.from_date,
                to_date=audit_filter.to_date,
                limit=audit_filter.limit,
                offset=audit_filter.offset,
            )
