import asyncio
from contextlib import asynccontextmanager
from datetime import timedelta

import pytest

from app.auth import permission_registry as registry
from app.domain.authorization import (
    EffectivePermissionSet,
    NoGrant,
    NoGrantReason,
    RequestContext,
    project_admin_flags,
)
from app.errors import StoreUnavailableError
from app.services.authz.resolver import PermissionResolver, match_network
from tests.authz_helpers import T0, FakeRoleStoreBackend, store_error


def _resolver(backend: FakeRoleStoreBackend, timeout: float = 1.0) -> PermissionResolver:
    return PermissionResolver(backend.factory(), timeout_seconds=timeout)


@pytest.mark.anyio
async def test_absent_grant_resolves_to_no_grant(backend) -> None:
    result = await _resolver(backend).resolve("nobody", RequestContext(now=T0))

    assert isinstance(result, NoGrant)
    assert result.reason == NoGrantReason.ABSENT
    assert result.permissions == frozenset()
    assert not result.is_admin
    assert not result.allows("dashboard.view")


@pytest.mark.anyio
async def test_inactive_grant_contributes_nothing(backend) -> None:
    backend.seed("u1", "admin", ["users.edit"], active=False)

    result = await _resolver(backend).resolve("u1", RequestContext(now=T0))

    assert isinstance(result, NoGrant)
    assert result.reason == NoGrantReason.INACTIVE


@pytest.mark.anyio
async def test_expiry_is_checked_against_request_time(backend) -> None:
    backend.seed("u1", "admin", expires_at=T0 + timedelta(hours=1))
    resolver = _resolver(backend)

    at_expiry = await resolver.resolve("u1", RequestContext(now=T0 + timedelta(hours=1)))
    after = await resolver.resolve("u1", RequestContext(now=T0 + timedelta(hours=1, seconds=1)))

    assert isinstance(at_expiry, EffectivePermissionSet)
    assert isinstance(after, NoGrant)
    assert after.reason == NoGrantReason.EXPIRED


@pytest.mark.anyio
async def test_moderator_resolution_combines_baseline_and_explicit(backend) -> None:
    backend.seed("u1", "moderator", ["favorites.manage"])

    result = await _resolver(backend).resolve("u1", RequestContext(now=T0))

    assert isinstance(result, EffectivePermissionSet)
    assert result.permissions == {"dashboard.view", "favorites.manage"}
    assert not result.is_admin
    assert not result.is_super_admin
    assert result.resolved_at == T0


@pytest.mark.anyio
async def test_super_admin_always_gets_full_registry(backend) -> None:
    backend.seed("root", "super_admin", ["favorites.manage"])

    result = await _resolver(backend).resolve("root", RequestContext(now=T0))

    assert result.is_super_admin
    assert result.is_admin
    assert result.permissions == registry.PERMISSION_KEYS


@pytest.mark.anyio
async def test_admin_set_is_superset_of_moderator_set(backend) -> None:
    explicit = ["images.moderate", "system.viewLogs"]
    backend.seed("mod", "moderator", explicit)
    backend.seed("adm", "admin", explicit)
    resolver = _resolver(backend)

    moderator = await resolver.resolve("mod", RequestContext(now=T0))
    admin = await resolver.resolve("adm", RequestContext(now=T0))

    assert moderator.permissions < admin.permissions
    assert admin.is_admin


@pytest.mark.anyio
async def test_legacy_key_matches_equivalent_granular_grant(backend) -> None:
    backend.seed("legacy", "admin", ["manageUsers"])
    backend.seed("granular", "admin", sorted(registry.USER_PERMISSIONS))
    resolver = _resolver(backend)

    legacy = await resolver.resolve("legacy", RequestContext(now=T0))
    granular = await resolver.resolve("granular", RequestContext(now=T0))

    assert legacy.permissions == granular.permissions
    assert "manageUsers" not in legacy.permissions


@pytest.mark.anyio
async def test_duplicate_grants_newest_wins(backend, caplog) -> None:
    backend.seed("u1", "moderator", created_at=T0 - timedelta(days=2))
    backend.seed("u1", "admin", created_at=T0 - timedelta(days=1))

    with caplog.at_level("WARNING", logger="photoapp.authz.resolver"):
        result = await _resolver(backend).resolve("u1", RequestContext(now=T0))

    assert result.tier == registry.Tier.ADMIN
    assert "duplicate_grants" in caplog.text


@pytest.mark.anyio
async def test_ip_allow_list_matching(backend) -> None:
    backend.seed("u1", "admin", ip_allow_list=["10.0.0.0/8", "192.168.1.0/24"])
    resolver = _resolver(backend)

    inside = await resolver.resolve("u1", RequestContext(source_ip="10.1.2.3", now=T0))
    outside = await resolver.resolve("u1", RequestContext(source_ip="8.8.8.8", now=T0))
    missing = await resolver.resolve("u1", RequestContext(source_ip=None, now=T0))

    assert isinstance(inside, EffectivePermissionSet)
    assert inside.network == "10.0.0.0/8"
    assert isinstance(outside, NoGrant)
    assert outside.reason == NoGrantReason.NETWORK_MISMATCH
    assert outside.ip_allow_list == {"10.0.0.0/8", "192.168.1.0/24"}
    assert isinstance(missing, NoGrant)


def test_match_network_handles_bad_input() -> None:
    assert match_network("not-an-ip", ["10.0.0.0/8"]) is None
    assert match_network("10.0.0.1", ["garbage", "10.0.0.0/8"]) == "10.0.0.0/8"
    assert match_network("::1", ["127.0.0.0/8"]) is None
    assert match_network("::1", ["::1/128"]) == "::1/128"


@pytest.mark.anyio
async def test_store_error_fails_closed(backend) -> None:
    backend.seed("root", "super_admin")
    backend.read_error = store_error()

    with pytest.raises(StoreUnavailableError):
        await _resolver(backend).resolve("root", RequestContext(now=T0))


@pytest.mark.anyio
async def test_store_timeout_fails_closed() -> None:
    @asynccontextmanager
    async def slow_factory():
        await asyncio.sleep(1)
        yield None

    resolver = PermissionResolver(slow_factory, timeout_seconds=0.01)

    with pytest.raises(StoreUnavailableError):
        await resolver.resolve("u1", RequestContext(now=T0))


@pytest.mark.anyio
async def test_admin_flags_projection_is_derived(backend) -> None:
    backend.seed("u1", "admin")

    result = await _resolver(backend).resolve("u1", RequestContext(now=T0))
    flags = project_admin_flags(result)

    assert flags["is_admin"] is True
    assert flags["is_super_admin"] is False
    assert flags["tier"] == "admin"
    assert flags["permissions"] == ["dashboard.view", "dashboard.viewAnalytics"]
