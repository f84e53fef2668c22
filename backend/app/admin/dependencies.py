"""
Admin dependencies - FastAPI adapters over the AuthorizationGuard.

These hold no authorization logic of their own. Each one asks the guard and
translates its decision:
- allowed -> the acting identity is returned to the endpoint
- authorization_unavailable -> 503 with Retry-After
- anything else -> 403
"""
from __future__ import annotations

from typing import Awaitable, Callable

from fastapi import Depends

from app.auth.permission_registry import validate_permission_key
from app.dependencies import (
    get_authorization_runtime,
    get_current_identity,
    get_request_context,
)
from app.domain.authorization import Identity, RequestContext
from app.errors import StoreUnavailableError, UnauthorizedError
from app.services.authz.guard import Check, Decision
from app.services.authz.runtime import AuthorizationRuntime

Dependency = Callable[..., Awaitable[Identity]]


def _enforce(decision: Decision, required: str) -> None:
    if decision.allowed:
        return
    if decision.unavailable:
        raise StoreUnavailableError()
    raise UnauthorizedError(details={"required": required, "reason": decision.reason})


def _guarded(required: str, build_check: Callable[[AuthorizationRuntime], Check]) -> Dependency:
    async def dependency(
        identity: Identity = Depends(get_current_identity),
        ctx: RequestContext = Depends(get_request_context),
        runtime: AuthorizationRuntime = Depends(get_authorization_runtime),
    ) -> Identity:
        decision = await build_check(runtime)(identity, ctx)
        _enforce(decision, required)
        return identity

    return dependency


def require_permission(key: str) -> Dependency:
    """
    Raises:
        ValueError: At import time when key is not a registered permission
    """
    validate_permission_key(key)
    return _guarded(key, lambda runtime: runtime.guard.require_permission(key))


def require_super_admin() -> Dependency:
    return _guarded("super_admin", lambda runtime: runtime.guard.require_super_admin())
