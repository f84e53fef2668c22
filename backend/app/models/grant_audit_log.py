import uuid
from datetime import datetime

from sqlalchemy import JSON, CheckConstraint, DateTime, String, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, validates

from .base import Base

AUDIT_ACTIONS = ("create", "update", "revoke")


class GrantAuditLog(Base):
    """Append-only trail of grant mutations. Rows are never updated or deleted."""

    __tablename__ = "grant_audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    actor: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    target_identity: Mapped[str] = mapped_column(
        String(255), nullable=False, index=True
    )
    action: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    before_state: Mapped[dict | None] = mapped_column(JSON)
    after_state: Mapped[dict | None] = mapped_column(JSON)
    reason: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )

    __table_args__ = (
        CheckConstraint(
            "action IN ('create', 'update', 'revoke')",
            name="valid_grant_audit_action",
        ),
    )

    @validates("action")
    def validate_action(self, key: str, value: str) -> str:
        if value not in AUDIT_ACTIONS:
            raise ValueError(
                f"Invalid audit action '{value}'. Must be one of: {', '.join(AUDIT_ACTIONS)}"
            )
        return value
