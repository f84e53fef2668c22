from .audit import AuditFilter, AuditLog, AuditRecord
from .cache import PermissionCache
from .guard import AuthorizationGuard, Decision
from .resolver import PermissionResolver
from .role_admin import GrantConstraints, RoleAdministration
from .runtime import (
    AuthorizationRuntime,
    build_runtime,
    close_authorization,
    get_authorization,
    init_authorization,
)

__all__ = [
    "AuditFilter",
    "AuditLog",
    "AuditRecord",
    "AuthorizationGuard",
    "AuthorizationRuntime",
    "Decision",
    "GrantConstraints",
    "PermissionCache",
    "PermissionResolver",
    "RoleAdministration",
    "build_runtime",
    "close_authorization",
    "get_authorization",
    "init_authorization",
]
