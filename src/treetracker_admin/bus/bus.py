"""Message channel factory.

Creates the appropriate channel implementation based on configuration.
"""

from __future__ import annotations

from treetracker_admin.core.config import MessagingConfig
from treetracker_admin.core.enums import MessagingBackend

from .memory_bus import MemoryMessageChannel
from .redis_streams import RedisStreamsChannel


def create_message_channel(
    config: MessagingConfig,
) -> MemoryMessageChannel | RedisStreamsChannel:
    """Create a message channel for the configured backend.

    - MEMORY: MemoryMessageChannel (no external deps, keeps history)
    - REDIS: RedisStreamsChannel (durable, consumer groups downstream)
    """
    if config.backend == MessagingBackend.MEMORY:
        return MemoryMessageChannel(name=config.stream)
    return RedisStreamsChannel(
        redis_url=config.redis_url,
        stream=config.stream,
        max_stream_length=config.max_stream_length,
    )
