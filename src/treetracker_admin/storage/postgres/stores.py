"""Postgres-backed implementations of the store protocols.

:class:`SessionScope` is the transaction handle handed out by
:meth:`PostgresTreeStore.begin_transaction`; every store call that takes
part in the same unit of work receives it explicitly. Calls made without a
scope run in a short session of their own.

SQLAlchemy errors are wrapped into :class:`StoreReadError` /
:class:`StoreWriteError`; :class:`RecordNotFoundError` passes through.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from treetracker_admin.core.enums import DomainEventStatus, IsolationLevel
from treetracker_admin.core.errors import StoreReadError, StoreWriteError
from treetracker_admin.core.filters import TreeQuery
from treetracker_admin.core.models import DomainEvent, Tree

from .connection import begin_transaction, get_session
from .repos import DomainEventRepo, OrganizationRepo, TreeRepo

logger = logging.getLogger(__name__)


class SessionScope:
    """Transaction scope wrapping one :class:`AsyncSession`."""

    def __init__(self, session: AsyncSession, isolation_level: IsolationLevel) -> None:
        self.session = session
        self.isolation_level = isolation_level
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def ensure_open(self) -> None:
        if self._closed:
            raise StoreWriteError("Transaction already finished")

    async def commit(self) -> None:
        self.ensure_open()
        try:
            await self.session.commit()
        except SQLAlchemyError as e:
            raise StoreWriteError(f"Commit failed: {e}", cause=e) from e
        finally:
            await self._close()

    async def rollback(self) -> None:
        if self._closed:
            return
        try:
            await self.session.rollback()
        except SQLAlchemyError as e:
            logger.warning("Rollback failed: %s", e)
            raise StoreWriteError(f"Rollback failed: {e}", cause=e) from e
        finally:
            await self._close()

    async def _close(self) -> None:
        self._closed = True
        await self.session.close()


def _session_of(tx: Any) -> AsyncSession:
    if not isinstance(tx, SessionScope):
        raise TypeError(f"Expected SessionScope, got {type(tx).__name__}")
    tx.ensure_open()
    return tx.session


# ---------------------------------------------------------------------------
# Trees
# ---------------------------------------------------------------------------

class PostgresTreeStore:
    """Tree store over a session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def begin_transaction(
        self, isolation_level: IsolationLevel = IsolationLevel.READ_COMMITTED,
    ) -> SessionScope:
        try:
            session = await begin_transaction(self._session_factory, isolation_level)
        except SQLAlchemyError as e:
            raise StoreWriteError(f"Failed to begin transaction: {e}", cause=e) from e
        return SessionScope(session, isolation_level)

    async def find_by_id(
        self,
        tree_id: int,
        *,
        tx: SessionScope | None = None,
        include_tags: bool = False,
    ) -> Tree:
        try:
            if tx is not None:
                return await TreeRepo(_session_of(tx)).get_tree(
                    tree_id, include_tags=include_tags,
                )
            async with get_session(self._session_factory) as session:
                return await TreeRepo(session).get_tree(tree_id, include_tags=include_tags)
        except SQLAlchemyError as e:
            logger.error("Failed to load tree %s: %s", tree_id, e)
            raise StoreReadError(f"Failed to load tree {tree_id}: {e}", cause=e) from e

    async def apply_update(
        self, tree_id: int, changes: dict[str, Any], tx: SessionScope,
    ) -> None:
        try:
            await TreeRepo(_session_of(tx)).update_tree(tree_id, changes)
        except SQLAlchemyError as e:
            logger.error("Failed to update tree %s: %s", tree_id, e)
            raise StoreWriteError(f"Failed to update tree {tree_id}: {e}", cause=e) from e

    async def find(self, query: TreeQuery) -> list[Tree]:
        try:
            async with get_session(self._session_factory) as session:
                return await TreeRepo(session).find_trees(query)
        except SQLAlchemyError as e:
            raise StoreReadError(f"Tree query failed: {e}", cause=e) from e

    async def count(self, query: TreeQuery) -> int:
        try:
            async with get_session(self._session_factory) as session:
                return await TreeRepo(session).count_trees(query)
        except SQLAlchemyError as e:
            raise StoreReadError(f"Tree count failed: {e}", cause=e) from e

    async def near(
        self, lat: float, lon: float, radius_m: float, limit: int,
    ) -> list[Tree]:
        try:
            async with get_session(self._session_factory) as session:
                return await TreeRepo(session).find_near(lat, lon, radius_m, limit)
        except SQLAlchemyError as e:
            raise StoreReadError(f"Near query failed: {e}", cause=e) from e


class PostgresOrganizationDirectory:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def entity_ids_for_organization(self, organization_id: int) -> list[int]:
        try:
            async with get_session(self._session_factory) as session:
                return await OrganizationRepo(session).get_descendant_entity_ids(
                    organization_id,
                )
        except SQLAlchemyError as e:
            raise StoreReadError(
                f"Failed to resolve organization {organization_id}: {e}", cause=e,
            ) from e

    async def planter_ids_for_entities(self, entity_ids: list[int]) -> list[int]:
        try:
            async with get_session(self._session_factory) as session:
                return await OrganizationRepo(session).get_planter_ids(entity_ids)
        except SQLAlchemyError as e:
            raise StoreReadError(f"Failed to load planters: {e}", cause=e) from e


# ---------------------------------------------------------------------------
# Domain events
# ---------------------------------------------------------------------------

class PostgresDomainEventStore:
    """Event-log store over a session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create(self, event: DomainEvent, tx: SessionScope) -> None:
        try:
            await DomainEventRepo(_session_of(tx)).save_event(event)
        except SQLAlchemyError as e:
            logger.error("Failed to insert domain event %s: %s", event.id, e)
            raise StoreWriteError(f"Failed to insert domain event: {e}", cause=e) from e

    async def update_status_by_id(
        self, event_id: str, status: DomainEventStatus,
    ) -> None:
        try:
            async with get_session(self._session_factory) as session:
                await DomainEventRepo(session).update_status(event_id, status)
        except SQLAlchemyError as e:
            raise StoreWriteError(
                f"Failed to update domain event {event_id}: {e}", cause=e,
            ) from e

    async def get(self, event_id: str) -> DomainEvent | None:
        try:
            async with get_session(self._session_factory) as session:
                return await DomainEventRepo(session).get_event(event_id)
        except SQLAlchemyError as e:
            raise StoreReadError(f"Failed to load domain event {event_id}: {e}", cause=e) from e
