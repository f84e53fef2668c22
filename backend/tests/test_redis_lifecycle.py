"""Redis singleton lifecycle.

from_url() only builds a connection pool, so none of these tests need a
running server.
"""

import asyncio

import pytest

from app.infrastructure import redis

REDIS_URL = "redis://localhost:6379/0"


@pytest.fixture(autouse=True)
def _fresh_singleton():
    redis._reset_for_testing()
    yield
    redis._reset_for_testing()


@pytest.mark.anyio
async def test_init_is_idempotent() -> None:
    first = await redis.init_redis(REDIS_URL)
    second = await redis.init_redis(REDIS_URL)

    assert first is second
    assert redis._redis_state == redis._RedisLifecycleState.INITIALIZED
    await redis.close_redis()


@pytest.mark.anyio
async def test_close_is_idempotent_and_safe_without_init() -> None:
    await redis.close_redis()
    assert redis._redis_state == redis._RedisLifecycleState.UNINITIALIZED

    await redis.init_redis(REDIS_URL)
    await redis.close_redis()
    await redis.close_redis()

    assert redis._redis_state == redis._RedisLifecycleState.CLOSED
    assert redis._redis_client is None


@pytest.mark.anyio
async def test_get_redis_outside_initialized_state_raises() -> None:
    with pytest.raises(RuntimeError, match="not available.*UNINITIALIZED"):
        redis.get_redis()

    client = await redis.init_redis(REDIS_URL)
    assert redis.get_redis() is client
    await redis.close_redis()

    with pytest.raises(RuntimeError, match="not available.*CLOSED"):
        redis.get_redis()


@pytest.mark.anyio
async def test_restart_after_close_builds_new_client() -> None:
    first = await redis.init_redis(REDIS_URL)
    await redis.close_redis()
    second = await redis.init_redis(REDIS_URL)

    assert second is not first
    assert redis.get_redis() is second
    await redis.close_redis()


@pytest.mark.anyio
async def test_concurrent_init_creates_one_client() -> None:
    clients = await asyncio.gather(*(redis.init_redis(REDIS_URL) for _ in range(10)))

    assert all(client is clients[0] for client in clients)
    await asyncio.gather(*(redis.close_redis() for _ in range(10)))
    assert redis._redis_state == redis._RedisLifecycleState.CLOSED
