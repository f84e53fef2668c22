"""
Admin router - grant management and authorization introspection.

Read endpoints are gated through require_permission / require_super_admin.
Mutations are gated inside RoleAdministration itself, which evaluates the
target-relationship rule before the guard so a protected target reports
TARGET_PROTECTED rather than a generic denial.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from app.admin.dependencies import require_permission, require_super_admin
from app.auth import permission_registry as registry
from app.dependencies import (
    get_authorization_runtime,
    get_current_identity,
    get_request_context,
)
from app.domain.authorization import Identity, RequestContext, project_admin_flags
from app.errors import NotFoundError, StoreUnavailableError, UnauthorizedError
from app.schemas.audit_log import AuditLogFilter, AuditRecordRead
from app.schemas.grant import (
    CacheStatsRead,
    EffectivePermissionsRead,
    GrantCreate,
    GrantRead,
    GrantUpdate,
    PermissionCategoryRead,
    PermissionRegistryRead,
    RevokeRequest,
)
from app.services.authz.audit import AuditFilter
from app.services.authz.role_admin import GrantConstraints
from app.services.authz.runtime import AuthorizationRuntime

router = APIRouter(
    prefix="/admin",
    tags=["admin-authz"],
)


@router.get("/permissions", response_model=PermissionRegistryRead)
async def list_permissions(
    _: Identity = Depends(require_permission("admins.view")),
) -> PermissionRegistryRead:
    """Registry grouped by display category. Categories carry no authorization meaning."""
    return PermissionRegistryRead(
        legacy_map_version=registry.LEGACY_MAP_VERSION,
        categories=[
            PermissionCategoryRead(category=name, permissions=sorted(keys))
            for name, keys in registry.PERMISSION_CATEGORIES.items()
        ],
        tiers={tier.value: registry.tier_description(tier) for tier in registry.TIERS_ASCENDING},
    )


@router.get("/me/permissions", response_model=EffectivePermissionsRead)
async def my_permissions(
    identity: Identity = Depends(get_current_identity),
    ctx: RequestContext = Depends(get_request_context),
    runtime: AuthorizationRuntime = Depends(get_authorization_runtime),
) -> EffectivePermissionsRead:
    """Advisory only; every protected action is re-checked by the guard."""
    resolution = await runtime.cache.get(identity, ctx)
    return EffectivePermissionsRead(identity=identity, **project_admin_flags(resolution))


@router.get("/roles", response_model=list[GrantRead])
async def list_grants(
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    _: Identity = Depends(require_permission("admins.view")),
    runtime: AuthorizationRuntime = Depends(get_authorization_runtime),
) -> list[GrantRead]:
    grants = await runtime.role_admin.list_grants(limit=limit, offset=offset)
    return [GrantRead.model_validate(grant) for grant in grants]


@router.get("/roles/{identity}", response_model=GrantRead)
async def get_grant(
    identity: str,
    actor: Identity = Depends(get_current_identity),
    ctx: RequestContext = Depends(get_request_context),
    runtime: AuthorizationRuntime = Depends(get_authorization_runtime),
) -> GrantRead:
    # Reading one's own grant is a relationship rule, not a capability
    if identity != actor:
        decision = await runtime.guard.require_permission("admins.view")(actor, ctx)
        if decision.unavailable:
            raise StoreUnavailableError()
        if not decision.allowed:
            raise UnauthorizedError(details={"required": "admins.view", "reason": decision.reason})

    grant = await runtime.role_admin.get_grant(identity)
    if grant is None:
        raise NotFoundError(f"Identity '{identity}' has no grant")
    return GrantRead.model_validate(grant)


@router.post("/roles", response_model=GrantRead, status_code=status.HTTP_201_CREATED)
async def create_grant(
    payload: GrantCreate,
    actor: Identity = Depends(get_current_identity),
    ctx: RequestContext = Depends(get_request_context),
    runtime: AuthorizationRuntime = Depends(get_authorization_runtime),
) -> GrantRead:
    grant = await runtime.role_admin.create_grant(
        actor,
        payload.identity,
        payload.tier,
        payload.permissions,
        GrantConstraints(
            active=payload.active,
            expires_at=payload.expires_at,
            ip_allow_list=frozenset(payload.ip_allow_list or ()),
        ),
        ctx=ctx,
        reason=payload.reason,
    )
    return GrantRead.model_validate(grant)


@router.put("/roles/{identity}", response_model=GrantRead)
async def update_grant(
    identity: str,
    payload: GrantUpdate,
    actor: Identity = Depends(get_current_identity),
    ctx: RequestContext = Depends(get_request_context),
    runtime: AuthorizationRuntime = Depends(get_authorization_runtime),
) -> GrantRead:
    grant = await runtime.role_admin.update_grant(
        actor, identity, payload.to_changes(), ctx=ctx, reason=payload.reason
    )
    return GrantRead.model_validate(grant)


@router.delete("/roles/{identity}", response_model=GrantRead)
async def revoke_grant(
    identity: str,
    payload: RevokeRequest | None = None,
    actor: Identity = Depends(get_current_identity),
    ctx: RequestContext = Depends(get_request_context),
    runtime: AuthorizationRuntime = Depends(get_authorization_runtime),
) -> GrantRead:
    """Revoke the grant; the response is the grant as it was before revocation."""
    reason = payload.reason if payload is not None else None
    revoked = await runtime.role_admin.revoke_grant(actor, identity, reason, ctx=ctx)
    return GrantRead.model_validate(revoked)


@router.get("/audit", response_model=list[AuditRecordRead])
async def query_audit(
    filters: AuditLogFilter = Depends(),
    _: Identity = Depends(require_permission("system.viewLogs")),
    runtime: AuthorizationRuntime = Depends(get_authorization_runtime),
) -> list[AuditRecordRead]:
    records = await runtime.audit_log.query(AuditFilter(**filters.model_dump()))
    return [AuditRecordRead.model_validate(record) for record in records]


@router.get("/cache/stats", response_model=CacheStatsRead)
async def cache_stats(
    _: Identity = Depends(require_super_admin()),
    runtime: AuthorizationRuntime = Depends(get_authorization_runtime),
) -> CacheStatsRead:
    return CacheStatsRead(**runtime.cache.stats())


@router.post("/cache/flush")
async def flush_cache(
    _: Identity = Depends(require_super_admin()),
    runtime: AuthorizationRuntime = Depends(get_authorization_runtime),
) -> dict[str, str]:
    await runtime.flush_cache()
    return {"status": "flushed"}
