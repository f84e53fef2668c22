from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, AsyncContextManager, Callable, Protocol


class GrantData(Protocol):
    id: uuid.UUID
    identity: str
    tier: str
    explicit_permissions: list[str]
    active: bool
    expires_at: datetime | None
    ip_allow_list: list[str] | None
    created_by: str | None
    created_at: datetime
    updated_by: str | None
    updated_at: datetime


class AuditRecordData(Protocol):
    id: uuid.UUID
    actor: str
    target_identity: str
    action: str
    before_state: dict[str, Any] | None
    after_state: dict[str, Any] | None
    reason: str | None
    created_at: datetime


class RoleStore(Protocol):
    """One unit of work over grant rows and their audit trail.

    Writes made through one RoleStore become visible together on commit() and
    are discarded together on rollback().
    """

    async def list_grants_for(self, identity: str) -> list[GrantData]:
        """All rows for identity, newest created_at first."""
        ...

    async def list_grants(self, limit: int, offset: int) -> list[GrantData]:
        ...

    async def add_grant(
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
    ) -> GrantData:
        ...

    async def update_grant(self, grant: GrantData, changes: dict[str, Any]) -> GrantData:
        ...

    async def delete_grants_for(self, identity: str) -> int:
        ...

    async def append_audit(
        self,
        *,
        actor: str,
        target_identity: str,
        action: str,
        before_state: dict[str, Any] | None,
        after_state: dict[str, Any] | None,
        reason: str | None,
        created_at: datetime,
    ) -> AuditRecordData:
        ...

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
    ) -> list[AuditRecordData]:
        """Matching records, newest first."""
        ...

    async def commit(self) -> None:
        ...

    async def rollback(self) -> None:
        ...


RoleStoreFactory = Callable[[], AsyncContextManager[RoleStore]]
