"""
Admin schemas for grant management and authorization introspection.
"""
import ipaddress
from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import AfterValidator, AwareDatetime, BaseModel, ConfigDict, Field, field_validator

TierName = Literal["moderator", "admin", "super_admin"]


def normalize_cidrs(values: list[str] | None) -> list[str] | None:
    """Validate allow-list entries; single addresses become /32 or /128 networks."""
    if values is None:
        return None
    normalized: set[str] = set()
    for value in values:
        try:
            normalized.add(str(ipaddress.ip_network(value.strip(), strict=False)))
        except ValueError as exc:
            raise ValueError(f"Invalid CIDR '{value}'") from exc
    return sorted(normalized)


CidrList = Annotated[list[str] | None, AfterValidator(normalize_cidrs)]


class GrantCreate(BaseModel):
    identity: str = Field(..., min_length=1, max_length=255)
    tier: TierName
    permissions: list[str] = Field(default_factory=list)
    active: bool = True
    expires_at: AwareDatetime | None = None
    ip_allow_list: CidrList = None
    reason: str | None = Field(None, max_length=1000)


class GrantUpdate(BaseModel):
    """Partial update. Only fields present in the request body are applied,
    so an explicit null clears expires_at or ip_allow_list."""

    tier: TierName | None = None
    permissions: list[str] | None = None
    active: bool | None = None
    expires_at: AwareDatetime | None = None
    ip_allow_list: CidrList = None
    reason: str | None = Field(None, max_length=1000)

    def to_changes(self) -> dict[str, Any]:
        data = self.model_dump(exclude_unset=True, exclude={"reason"})
        if "permissions" in data:
            data["explicit_permissions"] = data.pop("permissions")
        # tier, permissions and active cannot be cleared
        for field in ("tier", "explicit_permissions", "active"):
            if field in data and data[field] is None:
                del data[field]
        return data


class RevokeRequest(BaseModel):
    reason: str | None = Field(None, max_length=1000)


class GrantRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    identity: str
    tier: str
    explicit_permissions: list[str]
    active: bool
    expires_at: datetime | None
    ip_allow_list: list[str]
    created_by: str | None
    created_at: datetime
    updated_by: str | None
    updated_at: datetime

    @field_validator("tier", mode="before")
    @classmethod
    def _tier_value(cls, value: Any) -> str:
        return getattr(value, "value", value)

    @field_validator("explicit_permissions", "ip_allow_list", mode="before")
    @classmethod
    def _sorted(cls, value: Any) -> list[str]:
        return sorted(value or ())


class EffectivePermissionsRead(BaseModel):
    """Advisory projection. Protected actions re-check through the guard."""

    identity: str
    is_admin: bool
    is_super_admin: bool
    tier: str | None
    permissions: list[str]
    resolved_at: datetime


class PermissionCategoryRead(BaseModel):
    category: str
    permissions: list[str]


class PermissionRegistryRead(BaseModel):
    legacy_map_version: int
    categories: list[PermissionCategoryRead]
    tiers: dict[str, str]


class CacheStatsRead(BaseModel):
    total: int
    valid: int
    expired: int
    max_size: int
    ttl: int
    hits: int
    misses: int
    evictions: int
