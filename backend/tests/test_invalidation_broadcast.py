import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from app.services.authz.invalidation import ALL_IDENTITIES, InvalidationBroadcaster
from app.services.authz.runtime import build_runtime
from tests.authz_helpers import make_settings

CHANNEL = "authz:invalidate"


def _redis_client() -> MagicMock:
    client = MagicMock()
    client.publish = AsyncMock(return_value=1)
    return client


@pytest.fixture
def redis_client() -> MagicMock:
    return _redis_client()


@pytest.fixture
def broadcaster(runtime, redis_client) -> InvalidationBroadcaster:
    return InvalidationBroadcaster(redis_client, CHANNEL, runtime.cache, origin="proc-a")


@pytest.mark.anyio
async def test_publish_sends_origin_and_identity(broadcaster, redis_client) -> None:
    await broadcaster.publish("u1")

    channel, payload = redis_client.publish.await_args.args
    assert channel == CHANNEL
    assert json.loads(payload) == {"origin": "proc-a", "identity": "u1"}


@pytest.mark.anyio
async def test_publish_failure_is_logged_not_raised(broadcaster, redis_client, caplog) -> None:
    redis_client.publish.side_effect = RedisConnectionError("down")

    with caplog.at_level("WARNING", logger="photoapp.authz.invalidation"):
        await broadcaster.publish_all()

    assert "broadcast_failed" in caplog.text


@pytest.mark.anyio
async def test_message_from_other_process_invalidates(runtime, backend, broadcaster) -> None:
    backend.seed("u1", "admin")
    backend.seed("u2", "admin")
    await runtime.cache.get("u1")
    await runtime.cache.get("u2")

    broadcaster.handle_message(json.dumps({"origin": "proc-b", "identity": "u1"}))

    assert set(runtime.cache._entries) == {("u2", None)}


@pytest.mark.anyio
async def test_own_messages_are_ignored(runtime, backend, broadcaster) -> None:
    backend.seed("u1", "admin")
    await runtime.cache.get("u1")

    broadcaster.handle_message(json.dumps({"origin": "proc-a", "identity": "u1"}))

    assert ("u1", None) in runtime.cache._entries


@pytest.mark.anyio
async def test_wildcard_message_flushes_cache(runtime, backend, broadcaster) -> None:
    backend.seed("u1", "admin")
    await runtime.cache.get("u1")

    broadcaster.handle_message(json.dumps({"origin": "proc-b", "identity": ALL_IDENTITIES}))

    assert runtime.cache._entries == {}


@pytest.mark.parametrize("data", ["not json", json.dumps({"identity": "u1"}), None])
def test_malformed_messages_are_dropped(broadcaster, caplog, data) -> None:
    with caplog.at_level("WARNING", logger="photoapp.authz.invalidation"):
        broadcaster.handle_message(data)

    assert "broadcast_malformed" in caplog.text


@pytest.mark.anyio
async def test_role_admin_broadcasts_after_mutation(backend, clock, ctx) -> None:
    redis_client = _redis_client()
    backend.seed("root", "super_admin")
    runtime = build_runtime(
        make_settings(authz_invalidation_channel=CHANNEL),
        backend.factory(),
        redis_client=redis_client,
        clock=clock,
    )

    await runtime.role_admin.create_grant("root", "u2", "moderator", ctx=ctx())
    await runtime.flush_cache()

    payloads = [json.loads(call.args[1]) for call in redis_client.publish.await_args_list]
    assert [payload["identity"] for payload in payloads] == ["u2", ALL_IDENTITIES]
    assert {payload["origin"] for payload in payloads} == {runtime.broadcaster.origin}
