"""Redis pub/sub transport for cross-process cache invalidation.

Only invalidation messages travel through Redis. Grants and resolved
permissions are never stored there; the role store is the single source
of truth.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum, auto

from redis.asyncio import Redis as AsyncRedis, from_url as async_from_url
from redis.asyncio.client import PubSub

logger = logging.getLogger("photoapp.redis")


class _RedisLifecycleState(Enum):
    """UNINITIALIZED -> INITIALIZED -> CLOSED, and CLOSED -> INITIALIZED on restart.

    init_redis() and close_redis() are idempotent; get_redis() raises
    outside INITIALIZED.
    """
    UNINITIALIZED = auto()
    INITIALIZED = auto()
    CLOSED = auto()


class RedisClient:
    def __init__(self, redis_url: str) -> None:
        self._redis_url = redis_url
        self._redis: AsyncRedis | None = None

    async def connect(self) -> None:
        """Create the connection pool. Connections are opened lazily."""
        if self._redis is None:
            self._redis = async_from_url(
                self._redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            logger.info("[REDIS] pool_created")

    async def disconnect(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            logger.info("[REDIS] pool_closed")

    async def _ensure_connected(self) -> AsyncRedis:
        if self._redis is None:
            await self.connect()
        assert self._redis is not None
        return self._redis

    async def publish(self, channel: str, message: str) -> int:
        """Returns the number of subscribers that received the message."""
        redis = await self._ensure_connected()
        return int(await redis.publish(channel, message))

    async def subscribe(self, channel: str) -> PubSub:
        """Open a PubSub subscribed to channel. The caller owns and closes it."""
        redis = await self._ensure_connected()
        pubsub = redis.pubsub(ignore_subscribe_messages=True)
        await pubsub.subscribe(channel)
        return pubsub


# Process-wide client, created in the lifespan rather than at import.
# _redis_lock serialises init and close.
_redis_client: RedisClient | None = None
_redis_state: _RedisLifecycleState = _RedisLifecycleState.UNINITIALIZED
_redis_lock: asyncio.Lock = asyncio.Lock()


async def init_redis(redis_url: str) -> RedisClient:
    """Create the process client, or return the existing one.

    A closed client is replaced by a fresh one, so the app can restart
    within one process.
    """
    global _redis_client, _redis_state

    async with _redis_lock:
        if _redis_state == _RedisLifecycleState.INITIALIZED:
            assert _redis_client is not None
            return _redis_client

        logger.info("[REDIS] init previous_state=%s", _redis_state.name)
        client = RedisClient(redis_url)
        await client.connect()
        _redis_client = client
        _redis_state = _RedisLifecycleState.INITIALIZED
        return client


async def close_redis() -> None:
    """Close the process client. A no-op unless it is initialized."""
    global _redis_client, _redis_state

    async with _redis_lock:
        if _redis_state != _RedisLifecycleState.INITIALIZED:
            return

        if _redis_client is not None:
            await _redis_client.disconnect()
            _redis_client = None
        _redis_state = _RedisLifecycleState.CLOSED


def get_redis() -> RedisClient:
    """
    Raises:
        RuntimeError: If the client is not initialized or already closed
    """
    if _redis_state != _RedisLifecycleState.INITIALIZED or _redis_client is None:
        raise RuntimeError(
            f"Redis client not available (state: {_redis_state.name}). "
            "Call init_redis() first."
        )
    return _redis_client


def _reset_for_testing() -> None:
    """Drop the singleton without closing it. Tests only."""
    global _redis_client, _redis_lock, _redis_state
    _redis_client = None
    _redis_state = _RedisLifecycleState.UNINITIALIZED
    _redis_lock = asyncio.Lock()
