"""Outbound message channels for domain events.

``MemoryMessageChannel`` for tests and local runs, ``RedisStreamsChannel``
for deployments; :func:`create_message_channel` picks one from config.
"""

from treetracker_admin.bus.bus import create_message_channel

__all__ = ["create_message_channel"]
