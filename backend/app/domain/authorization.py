from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union

from ..auth.permission_registry import Tier

Identity = str


@dataclass(frozen=True)
class RequestContext:
    """Per-request inputs the resolver needs besides the identity."""

    source_ip: str | None = None
    now: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class Grant:
    """Immutable snapshot of one persisted admin grant."""

    identity: Identity
    tier: Tier
    explicit_permissions: frozenset[str]
    active: bool
    expires_at: datetime | None
    ip_allow_list: frozenset[str]
    created_by: str | None
    created_at: datetime
    updated_by: str | None
    updated_at: datetime

    @classmethod
    def from_record(cls, record: Any) -> "Grant":
        """Build a snapshot from a role store row (ORM object or fake)."""
        return cls(
            identity=record.identity,
            tier=Tier(record.tier),
            explicit_permissions=frozenset(record.explicit_permissions or ()),
            active=bool(record.active),
            expires_at=record.expires_at,
            ip_allow_list=frozenset(record.ip_allow_list or ()),
            created_by=record.created_by,
            created_at=record.created_at,
            updated_by=record.updated_by,
            updated_at=record.updated_at,
        )

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now > self.expires_at

    def to_snapshot(self) -> dict[str, Any]:
        return {
            "identity": self.identity,
            "tier": self.tier.value,
            "explicit_permissions": sorted(self.explicit_permissions),
            "active": self.active,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "ip_allow_list": sorted(self.ip_allow_list),
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat(),
            "updated_by": self.updated_by,
            "updated_at": self.updated_at.isoformat(),
        }


class NoGrantReason(str, Enum):
    ABSENT = "absent"
    INACTIVE = "inactive"
    EXPIRED = "expired"
    NETWORK_MISMATCH = "network_mismatch"


@dataclass(frozen=True)
class EffectivePermissionSet:
    """Resolved, point-in-time authorization state. Derived, never stored."""

    identity: Identity
    tier: Tier
    permissions: frozenset[str]
    resolved_at: datetime
    expires_at: datetime | None = None
    # Matched allow-list entry; None when the grant is not network-scoped
    network: str | None = None
    ip_allow_list: frozenset[str] = frozenset()

    @property
    def is_admin(self) -> bool:
        return self.tier >= Tier.ADMIN

    @property
    def is_super_admin(self) -> bool:
        return self.tier == Tier.SUPER_ADMIN

    def allows(self, key: str) -> bool:
        return self.is_super_admin or key in self.permissions


@dataclass(frozen=True)
class NoGrant:
    """Empty-privilege baseline: no applicable grant for this identity."""

    identity: Identity
    reason: NoGrantReason
    resolved_at: datetime
    ip_allow_list: frozenset[str] = frozenset()

    tier = None
    network = None
    expires_at = None
    permissions = frozenset()
    is_admin = False
    is_super_admin = False

    def allows(self, key: str) -> bool:
        return False


Resolution = Union[EffectivePermissionSet, NoGrant]


def project_admin_flags(resolution: Resolution) -> dict[str, Any]:
    """Read-only convenience projection for presentation layers.

    The result is advisory; callers must never persist it or use it in place
    of a guard check.
    """
    return {
        "is_admin": resolution.is_admin,
        "is_super_admin": resolution.is_super_admin,
        "tier": resolution.tier.value if resolution.tier is not None else None,
        "permissions": sorted(resolution.permissions),
        "resolved_at": resolution.resolved_at,
    }
