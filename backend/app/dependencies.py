from fastapi import HTTPException, Request, status

from .crud.role_store import sql_role_store_factory
from .database import AsyncSessionLocal
from .domain.authorization import Identity, RequestContext
from .domain.ports.role_store import RoleStoreFactory
from .services.authz.runtime import AuthorizationRuntime, get_authorization


def get_role_store_factory() -> RoleStoreFactory:
    return sql_role_store_factory(AsyncSessionLocal)


def get_authorization_runtime() -> AuthorizationRuntime:
    return get_authorization()


async def get_current_identity(request: Request) -> Identity:
    """The identity verified upstream by the session layer."""
    identity = getattr(request.state, "identity", None)
    if not isinstance(identity, str) or not identity:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated"
        )
    return identity


async def get_request_context(request: Request) -> RequestContext:
    source_ip = request.client.host if request.client is not None else None
    return RequestContext(source_ip=source_ip)
