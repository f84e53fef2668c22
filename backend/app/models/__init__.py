from .base import Base
from .admin_grant import AdminGrant
from .grant_audit_log import GrantAuditLog

__all__ = [
    "Base",
    "AdminGrant",
    "GrantAuditLog",
]
