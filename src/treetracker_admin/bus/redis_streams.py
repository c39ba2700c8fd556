"""Redis Streams message channel.

Each payload is appended to a single stream with ``XADD``. The entry id
Redis returns is the acknowledgment: once it exists the message is durable
in Redis and visible to every consumer group reading the stream.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from treetracker_admin.core.errors import PublishError
from treetracker_admin.core.models import PublishReceipt

logger = logging.getLogger(__name__)


class RedisStreamsChannel:
    """Production channel backed by a Redis Stream."""

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        stream: str = "verify-capture-processed",
        max_stream_length: int = 10_000,
        client: aioredis.Redis | None = None,
    ) -> None:
        self._redis_url = redis_url
        self._stream = stream
        self._max_len = max_stream_length
        self._redis: aioredis.Redis | None = client
        self._owns_client = client is None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Connect to Redis (no-op when a client was injected)."""
        if self._redis is None:
            self._redis = aioredis.from_url(
                self._redis_url, decode_responses=True
            )
            logger.info("Redis channel connected, stream=%s", self._stream)

    async def stop(self) -> None:
        """Close the Redis connection if this channel opened it."""
        if self._redis is not None and self._owns_client:
            await self._redis.aclose()
            self._redis = None

    # ------------------------------------------------------------------
    # Publish
    # ------------------------------------------------------------------

    async def publish(self, payload: dict[str, Any]) -> PublishReceipt:
        """Append *payload* to the stream.

        Raises:
            PublishError: If the channel is not started or Redis rejects
                the write.
        """
        if self._redis is None:
            raise PublishError("RedisStreamsChannel not started")

        fields = {
            "_type": str(payload.get("type", "")),
            "_data": json.dumps(payload, default=str),
        }
        try:
            msg_id = await self._redis.xadd(
                self._stream, fields, maxlen=self._max_len, approximate=True
            )
        except RedisError as exc:
            logger.warning("XADD to %s failed: %s", self._stream, exc)
            raise PublishError(f"Redis publish to {self._stream} failed: {exc}") from exc

        if isinstance(msg_id, bytes):
            msg_id = msg_id.decode()
        return PublishReceipt(
            acknowledged=msg_id is not None,
            message_id=msg_id,
            channel=self._stream,
        )
