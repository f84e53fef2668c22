import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, CheckConstraint, DateTime, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, validates

from ..auth.permission_registry import TIERS_ASCENDING
from .base import Base

_TIER_VALUES = tuple(tier.value for tier in TIERS_ASCENDING)


class AdminGrant(Base):
    __tablename__ = "admin_grants"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    identity: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False, index=True
    )
    tier: Mapped[str] = mapped_column(String(32), nullable=False)
    explicit_permissions: Mapped[list[str]] = mapped_column(
        JSON, nullable=False, default=list
    )
    active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default="true", default=True
    )
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    ip_allow_list: Mapped[list[str] | None] = mapped_column(JSON)  # CIDR strings
    created_by: Mapped[str | None] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_by: Mapped[str | None] = mapped_column(String(255))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint(
            "tier IN ('moderator', 'admin', 'super_admin')",
            name="valid_admin_tier",
        ),
    )

    @validates("tier")
    def validate_tier(self, key: str, value: str) -> str:
        if value not in _TIER_VALUES:
            raise ValueError(
                f"Invalid tier '{value}'. Must be one of: {', '.join(_TIER_VALUES)}"
            )
        return value
