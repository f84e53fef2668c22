"""
Cross-process cache invalidation over Redis pub/sub.

Without a channel configured each process relies on its cache TTL for
changes made elsewhere. With one, every local invalidation is published
as {"origin": <process id>, "identity": <identity or "*">} and every
process applies messages from other origins to its own cache.

Publishing is best effort: the local cache has already been invalidated
when publish() runs, so a Redis failure is logged and never raised.
"""
from __future__ import annotations

import asyncio
import json
import logging
import uuid
from contextlib import suppress
from typing import Any

from redis.asyncio.client import PubSub
from redis.exceptions import RedisError

from ...infrastructure.redis import RedisClient
from .cache import PermissionCache

logger = logging.getLogger("photoapp.authz.invalidation")

ALL_IDENTITIES = "*"


class InvalidationBroadcaster:
    def __init__(
        self,
        redis_client: RedisClient,
        channel: str,
        cache: PermissionCache,
        *,
        origin: str | None = None,
    ) -> None:
        self._redis = redis_client
        self._channel = channel
        self._cache = cache
        self.origin = origin or uuid.uuid4().hex[:12]
        self._pubsub: PubSub | None = None
        self._task: asyncio.Task[None] | None = None

    async def publish(self, identity: str) -> None:
        payload = json.dumps({"origin": self.origin, "identity": identity})
        try:
            await self._redis.publish(self._channel, payload)
        except (RedisError, OSError) as exc:
            logger.warning(
                "[AUTHZ] broadcast_failed channel=%s identity=%s error=%s",
                self._channel,
                identity,
                exc,
            )

    async def publish_all(self) -> None:
        await self.publish(ALL_IDENTITIES)

    def handle_message(self, data: Any) -> None:
        """Apply one received message to the local cache."""
        try:
            message = json.loads(data)
            origin = message["origin"]
            identity = message["identity"]
        except (TypeError, ValueError, KeyError) as exc:
            logger.warning("[AUTHZ] broadcast_malformed data=%r error=%s", data, exc)
            return

        if origin == self.origin:
            return
        if identity == ALL_IDENTITIES:
            self._cache.invalidate_all()
        else:
            self._cache.invalidate(str(identity))
        logger.debug("[AUTHZ] broadcast_applied origin=%s identity=%s", origin, identity)

    async def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._pubsub = await self._redis.subscribe(self._channel)
        self._task = asyncio.create_task(self._listen(self._pubsub))
        logger.info("[AUTHZ] broadcast_subscribed channel=%s origin=%s", self._channel, self.origin)

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            with suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        if self._pubsub is not None:
            try:
                await self._pubsub.unsubscribe(self._channel)
                await self._pubsub.aclose()
            except (RedisError, OSError) as exc:
                logger.warning("[AUTHZ] broadcast_close_failed error=%s", exc)
            self._pubsub = None

    async def _listen(self, pubsub: PubSub) -> None:
        try:
            async for message in pubsub.listen():
                if message.get("type") == "message":
                    self.handle_message(message.get("data"))
        except (RedisError, OSError) as exc:
            # Remote changes now only reach this process through the TTL
            logger.error("[AUTHZ] broadcast_listener_stopped error=%s", exc)
