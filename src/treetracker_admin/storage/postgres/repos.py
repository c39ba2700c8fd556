"""Repository pattern for async database operations.

Each repository encapsulates query logic for a single aggregate root.
All methods accept an :class:`AsyncSession` obtained from
:func:`treetracker_admin.storage.postgres.connection.get_session` or
:func:`~treetracker_admin.storage.postgres.connection.begin_transaction`;
repositories never commit.

Conversion helpers translate between core domain models
(:mod:`treetracker_admin.core.models`) and ORM records.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Sequence

from sqlalchemy import select, text, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from treetracker_admin.core.enums import DomainEventStatus
from treetracker_admin.core.errors import RecordNotFoundError
from treetracker_admin.core.filters import TreeQuery
from treetracker_admin.core.ids import utc_now
from treetracker_admin.core.models import DomainEvent, Tree, TreeTag

from .filters import tree_count, tree_select
from .models import (
    DomainEventRecord,
    EntityRelationshipRecord,
    PlanterRecord,
    TreeRecord,
)

logger = logging.getLogger(__name__)

_NEAR_CLAUSE = text(
    "ST_DWithin("
    "CAST(ST_SetSRID(ST_MakePoint(trees.lon, trees.lat), 4326) AS geography), "
    "CAST(ST_SetSRID(ST_MakePoint(:lon, :lat), 4326) AS geography), "
    ":radius)"
)


# ---------------------------------------------------------------------------
# Conversion helpers
# ---------------------------------------------------------------------------

_TREE_FIELDS = tuple(f for f in Tree.model_fields if f != "tree_tags")


def _record_to_tree(record: TreeRecord, *, include_tags: bool = False) -> Tree:
    """Convert an ORM :class:`TreeRecord` to a core :class:`Tree`."""
    data: dict[str, Any] = {name: getattr(record, name) for name in _TREE_FIELDS}
    if include_tags:
        data["tree_tags"] = [
            TreeTag(id=link.id, tree_id=link.tree_id, tag_id=link.tag_id)
            for link in record.tree_tags
        ]
    return Tree(**data)


def _event_to_record(event: DomainEvent) -> DomainEventRecord:
    """Convert a core :class:`DomainEvent` to an ORM :class:`DomainEventRecord`."""
    return DomainEventRecord(
        id=uuid.UUID(event.id),
        payload=event.payload,
        status=event.status.value,
        created_at=event.created_at,
        updated_at=event.updated_at,
    )


def _record_to_event(record: DomainEventRecord) -> DomainEvent:
    """Convert an ORM :class:`DomainEventRecord` back to a core :class:`DomainEvent`."""
    return DomainEvent(
        id=str(record.id),
        payload=record.payload,
        status=DomainEventStatus(record.status),
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


# ---------------------------------------------------------------------------
# TreeRepo
# ---------------------------------------------------------------------------

class TreeRepo:
    """Repository for :class:`TreeRecord` queries and updates."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_tree(self, tree_id: int, *, include_tags: bool = False) -> Tree:
        """Retrieve a tree by id.

        Raises:
            RecordNotFoundError: If no such tree exists.
        """
        stmt = select(TreeRecord).where(TreeRecord.id == tree_id)
        if include_tags:
            stmt = stmt.options(selectinload(TreeRecord.tree_tags))
        result = await self._session.execute(stmt)
        record = result.scalar_one_or_none()
        if record is None:
            raise RecordNotFoundError("Tree", tree_id)
        return _record_to_tree(record, include_tags=include_tags)

    async def update_tree(self, tree_id: int, changes: dict[str, Any]) -> None:
        """Write *changes* to one tree row.

        Raises:
            RecordNotFoundError: If no row was updated.
        """
        stmt = (
            update(TreeRecord)
            .where(TreeRecord.id == tree_id)
            .values(**changes, time_updated=utc_now())
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            raise RecordNotFoundError("Tree", tree_id)
        logger.debug("Updated tree %s columns=%s", tree_id, sorted(changes))

    async def find_trees(self, query: TreeQuery) -> list[Tree]:
        result = await self._session.execute(tree_select(query))
        records: Sequence[TreeRecord] = result.scalars().all()
        return [_record_to_tree(r) for r in records]

    async def count_trees(self, query: TreeQuery) -> int:
        result = await self._session.execute(tree_count(query))
        return int(result.scalar_one())

    async def find_near(
        self, lat: float, lon: float, radius_m: float, limit: int,
    ) -> list[Tree]:
        """Trees within *radius_m* metres of (*lat*, *lon*). Requires PostGIS."""
        stmt = (
            select(TreeRecord)
            .where(_NEAR_CLAUSE.bindparams(lat=lat, lon=lon, radius=radius_m))
            .order_by(TreeRecord.id.asc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return [_record_to_tree(r) for r in result.scalars().all()]


# ---------------------------------------------------------------------------
# DomainEventRepo
# ---------------------------------------------------------------------------

class DomainEventRepo:
    """Repository for :class:`DomainEventRecord` persistence."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def save_event(self, event: DomainEvent) -> DomainEventRecord:
        record = _event_to_record(event)
        self._session.add(record)
        await self._session.flush()
        logger.debug("Inserted domain event %s status=%s", event.id, event.status.value)
        return record

    async def update_status(self, event_id: str, status: DomainEventStatus) -> None:
        """Set *status* and bump ``updated_at``.

        Raises:
            RecordNotFoundError: If the event does not exist.
        """
        stmt = (
            update(DomainEventRecord)
            .where(DomainEventRecord.id == uuid.UUID(event_id))
            .values(status=status.value, updated_at=utc_now())
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            raise RecordNotFoundError("DomainEvent", event_id)

    async def get_event(self, event_id: str) -> DomainEvent | None:
        stmt = select(DomainEventRecord).where(
            DomainEventRecord.id == uuid.UUID(event_id),
        )
        result = await self._session.execute(stmt)
        record = result.scalar_one_or_none()
        if record is None:
            return None
        return _record_to_event(record)


# ---------------------------------------------------------------------------
# OrganizationRepo
# ---------------------------------------------------------------------------

class OrganizationRepo:
    """Organization hierarchy queries over ``entity_relationship`` / ``planter``."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_descendant_entity_ids(self, organization_id: int) -> list[int]:
        """The organization itself plus every entity nested below it."""
        descendants = (
            select(EntityRelationshipRecord.child_id.label("entity_id"))
            .where(EntityRelationshipRecord.parent_id == organization_id)
            .cte("descendants", recursive=True)
        )
        parent = descendants.alias("parent")
        descendants = descendants.union(
            select(EntityRelationshipRecord.child_id).join(
                parent, EntityRelationshipRecord.parent_id == parent.c.entity_id,
            )
        )
        result = await self._session.execute(select(descendants.c.entity_id))
        ids = {organization_id, *result.scalars().all()}
        return sorted(ids)

    async def get_planter_ids(self, entity_ids: list[int]) -> list[int]:
        if not entity_ids:
            return []
        stmt = (
            select(PlanterRecord.id)
            .where(PlanterRecord.organization_id.in_(entity_ids))
            .order_by(PlanterRecord.id)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())
