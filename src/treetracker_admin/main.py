"""Application bootstrap.

Wires stores, the message channel, and services together for the
configured storage and messaging backends.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from .bus.bus import create_message_channel
from .core.config import Settings
from .core.enums import StorageBackend
from .core.interfaces import (
    IDomainEventStore,
    IMessageChannel,
    IOrganizationDirectory,
    ITreeStore,
)
from .services.trees import TreeQueryService
from .services.verification import TreeUpdateWorkflow
from .storage.memory import InMemoryDatabase, InMemoryDomainEventStore, InMemoryTreeStore

logger = logging.getLogger(__name__)


@dataclass
class AppComponents:
    tree_store: ITreeStore
    event_store: IDomainEventStore
    organizations: IOrganizationDirectory
    channel: IMessageChannel
    workflow: TreeUpdateWorkflow
    queries: TreeQueryService
    engine: Any = None  # AsyncEngine when backed by Postgres

    async def start(self) -> None:
        await self.channel.start()

    async def stop(self) -> None:
        await self.channel.stop()
        if self.engine is not None:
            from .storage.postgres.connection import dispose

            await dispose(self.engine)


def assemble(
    settings: Settings,
    tree_store: ITreeStore,
    event_store: IDomainEventStore,
    organizations: IOrganizationDirectory,
    channel: IMessageChannel,
    engine: Any = None,
) -> AppComponents:
    """Build the services on top of already-constructed stores and channel."""
    workflow = TreeUpdateWorkflow(
        tree_store,
        event_store,
        channel,
        publishing_enabled=settings.enable_verification_publishing,
    )
    queries = TreeQueryService(tree_store, organizations, settings.api)
    return AppComponents(
        tree_store=tree_store,
        event_store=event_store,
        organizations=organizations,
        channel=channel,
        workflow=workflow,
        queries=queries,
        engine=engine,
    )


def build_memory_components(
    settings: Settings, db: InMemoryDatabase | None = None,
) -> AppComponents:
    db = db or InMemoryDatabase()
    trees = InMemoryTreeStore(db)
    return assemble(
        settings,
        tree_store=trees,
        event_store=InMemoryDomainEventStore(db),
        organizations=trees,
        channel=create_message_channel(settings.messaging),
    )


async def build_components(settings: Settings) -> AppComponents:
    """Construct components for the configured backends."""
    settings.validate_runtime()

    if settings.storage_backend == StorageBackend.MEMORY:
        logger.info("Using in-memory storage")
        return build_memory_components(settings)

    from .storage.postgres.connection import init_database
    from .storage.postgres.stores import (
        PostgresDomainEventStore,
        PostgresOrganizationDirectory,
        PostgresTreeStore,
    )

    engine, session_factory = await init_database(settings.database)
    return assemble(
        settings,
        tree_store=PostgresTreeStore(session_factory),
        event_store=PostgresDomainEventStore(session_factory),
        organizations=PostgresOrganizationDirectory(session_factory),
        channel=create_message_channel(settings.messaging),
        engine=engine,
    )
