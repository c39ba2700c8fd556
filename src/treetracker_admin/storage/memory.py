"""In-memory tree and domain-event stores.

No external dependencies. Used by the test suite and for running the API
locally without Postgres (``storage_backend = "memory"``).

Transactions stage their writes and apply them all at once on ``commit()``;
a rolled-back transaction leaves no trace. Reads through a transaction see
committed state plus the transaction's own pending writes.
"""

from __future__ import annotations

import logging
import math
import re
from collections import defaultdict
from typing import Any

from treetracker_admin.core.enums import DomainEventStatus, IsolationLevel
from treetracker_admin.core.errors import RecordNotFoundError, StoreWriteError
from treetracker_admin.core.filters import (
    Comparison,
    Condition,
    Conjunction,
    OrderBy,
    TREE_PROPERTIES,
    TreeQuery,
)
from treetracker_admin.core.ids import utc_now
from treetracker_admin.core.models import DomainEvent, Tree, TreeTag

logger = logging.getLogger(__name__)

_EARTH_RADIUS_M = 6_371_008.8
_UPDATABLE = frozenset(TREE_PROPERTIES.values()) - {"id", "uuid", "time_created"}


class InMemoryDatabase:
    """Shared backing state for the in-memory stores."""

    def __init__(self) -> None:
        self.trees: dict[int, Tree] = {}
        self.tree_tags: list[TreeTag] = []
        self.events: dict[str, DomainEvent] = {}
        self.entity_children: dict[int, set[int]] = defaultdict(set)
        self.planter_organizations: dict[int, int | None] = {}

    # ------------------------------------------------------------------
    # Seeding helpers
    # ------------------------------------------------------------------

    def add_tree(self, tree: Tree) -> Tree:
        self.trees[tree.id] = tree
        return tree

    def tag_tree(self, tree_id: int, tag_id: int) -> TreeTag:
        link = TreeTag(id=len(self.tree_tags) + 1, tree_id=tree_id, tag_id=tag_id)
        self.tree_tags.append(link)
        return link

    def add_relationship(self, parent_id: int, child_id: int) -> None:
        self.entity_children[parent_id].add(child_id)

    def add_planter(self, planter_id: int, organization_id: int | None) -> None:
        self.planter_organizations[planter_id] = organization_id

    def tags_for(self, tree_id: int) -> list[TreeTag]:
        return [link for link in self.tree_tags if link.tree_id == tree_id]


class InMemoryTransaction:
    """Transaction scope over an :class:`InMemoryDatabase`."""

    def __init__(
        self,
        db: InMemoryDatabase,
        isolation_level: IsolationLevel = IsolationLevel.READ_COMMITTED,
    ) -> None:
        self._db = db
        self.isolation_level = isolation_level
        self.tree_changes: dict[int, dict[str, Any]] = {}
        self.new_events: list[DomainEvent] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def ensure_open(self) -> None:
        if self._closed:
            raise StoreWriteError("Transaction already finished")

    async def commit(self) -> None:
        self.ensure_open()
        now = utc_now()
        for tree_id, changes in self.tree_changes.items():
            current = self._db.trees[tree_id]
            self._db.trees[tree_id] = current.model_copy(
                update={**changes, "time_updated": now},
            )
        for event in self.new_events:
            self._db.events[event.id] = event
        self._closed = True
        logger.debug(
            "Committed %d tree update(s), %d event(s)",
            len(self.tree_changes),
            len(self.new_events),
        )

    async def rollback(self) -> None:
        self.tree_changes.clear()
        self.new_events.clear()
        self._closed = True


# ---------------------------------------------------------------------------
# Tree store
# ---------------------------------------------------------------------------

class InMemoryTreeStore:
    """Tree store and organization directory over an :class:`InMemoryDatabase`."""

    def __init__(self, db: InMemoryDatabase) -> None:
        self._db = db

    async def begin_transaction(
        self, isolation_level: IsolationLevel = IsolationLevel.READ_COMMITTED,
    ) -> InMemoryTransaction:
        return InMemoryTransaction(self._db, isolation_level)

    async def find_by_id(
        self,
        tree_id: int,
        *,
        tx: InMemoryTransaction | None = None,
        include_tags: bool = False,
    ) -> Tree:
        tree = self._db.trees.get(tree_id)
        if tree is None:
            raise RecordNotFoundError("Tree", tree_id)
        if tx is not None and tree_id in tx.tree_changes:
            tree = tree.model_copy(update=tx.tree_changes[tree_id])
        if include_tags:
            tree = tree.model_copy(update={"tree_tags": self._db.tags_for(tree_id)})
        return tree

    async def apply_update(
        self, tree_id: int, changes: dict[str, Any], tx: InMemoryTransaction,
    ) -> None:
        tx.ensure_open()
        if tree_id not in self._db.trees:
            raise RecordNotFoundError("Tree", tree_id)
        unknown = set(changes) - _UPDATABLE
        if unknown:
            raise StoreWriteError(f"Cannot update tree columns {sorted(unknown)}")
        tx.tree_changes.setdefault(tree_id, {}).update(changes)

    async def find(self, query: TreeQuery) -> list[Tree]:
        rows = self._select(query)
        rows = _sort(rows, query.order)
        end = None if query.limit is None else query.offset + query.limit
        return rows[query.offset:end]

    async def count(self, query: TreeQuery) -> int:
        return len(self._select(query))

    async def near(
        self, lat: float, lon: float, radius_m: float, limit: int,
    ) -> list[Tree]:
        hits = [
            tree for tree in sorted(self._db.trees.values(), key=lambda t: t.id)
            if tree.lat is not None and tree.lon is not None
            and _haversine_m(lat, lon, tree.lat, tree.lon) <= radius_m
        ]
        return hits[:limit]

    # -- organization directory -------------------------------------------

    async def entity_ids_for_organization(self, organization_id: int) -> list[int]:
        seen = {organization_id}
        frontier = [organization_id]
        while frontier:
            parent = frontier.pop()
            for child in self._db.entity_children.get(parent, ()):
                if child not in seen:
                    seen.add(child)
                    frontier.append(child)
        return sorted(seen)

    async def planter_ids_for_entities(self, entity_ids: list[int]) -> list[int]:
        wanted = set(entity_ids)
        return sorted(
            planter_id
            for planter_id, org_id in self._db.planter_organizations.items()
            if org_id in wanted
        )

    # -- helpers -----------------------------------------------------------

    def _select(self, query: TreeQuery) -> list[Tree]:
        if query.organization_id is not None:
            raise ValueError("organizationId must be expanded before querying the store")

        rows = []
        for tree in self._db.trees.values():
            row = tree.model_dump()
            if query.condition is not None and not matches(query.condition, row):
                continue
            if query.tag is not None:
                tag_ids = {link.tag_id for link in self._db.tags_for(tree.id)}
                if query.tag.tag_id is None and tag_ids:
                    continue
                if query.tag.tag_id is not None and query.tag.tag_id not in tag_ids:
                    continue
            rows.append(tree)
        return rows


# ---------------------------------------------------------------------------
# Domain event store
# ---------------------------------------------------------------------------

class InMemoryDomainEventStore:
    def __init__(self, db: InMemoryDatabase) -> None:
        self._db = db

    async def create(self, event: DomainEvent, tx: InMemoryTransaction) -> None:
        tx.ensure_open()
        tx.new_events.append(event)

    async def update_status_by_id(
        self, event_id: str, status: DomainEventStatus,
    ) -> None:
        event = self._db.events.get(event_id)
        if event is None:
            raise RecordNotFoundError("DomainEvent", event_id)
        self._db.events[event_id] = event.model_copy(
            update={"status": status, "updated_at": utc_now()},
        )

    async def get(self, event_id: str) -> DomainEvent | None:
        return self._db.events.get(event_id)

    def all(self) -> list[DomainEvent]:
        """All committed events in insertion order. For testing."""
        return list(self._db.events.values())


# ---------------------------------------------------------------------------
# Condition evaluation
# ---------------------------------------------------------------------------

def matches(condition: Condition, row: dict[str, Any]) -> bool:
    """Evaluate *condition* against a row with SQL-like NULL handling."""
    if isinstance(condition, Conjunction):
        results = (matches(c, row) for c in condition.clauses)
        return all(results) if condition.op == "and" else any(results)
    return _compare(condition, row.get(condition.column))


def _compare(cmp: Comparison, value: Any) -> bool:
    op, operand = cmp.op, cmp.value
    if op == "eq":
        return value is None if operand is None else value == operand
    if op == "neq":
        return value is not None if operand is None else (value is not None and value != operand)
    if value is None:
        return False
    if op == "gt":
        return value > operand
    if op == "gte":
        return value >= operand
    if op == "lt":
        return value < operand
    if op == "lte":
        return value <= operand
    if op == "inq":
        return value in operand
    if op == "nin":
        return value not in operand
    if op == "between":
        return operand[0] <= value <= operand[1]
    if op in ("like", "nlike", "ilike", "nilike"):
        flags = re.IGNORECASE if op in ("ilike", "nilike") else 0
        hit = re.fullmatch(_like_to_regex(operand), str(value), flags) is not None
        return hit if op in ("like", "ilike") else not hit
    raise ValueError(f"Unsupported operator {op!r}")


def _like_to_regex(pattern: str) -> str:
    out = []
    for ch in pattern:
        if ch == "%":
            out.append(".*")
        elif ch == "_":
            out.append(".")
        else:
            out.append(re.escape(ch))
    return "".join(out)


def _sort(rows: list[Tree], order: tuple[OrderBy, ...]) -> list[Tree]:
    """Sort like Postgres: NULLS LAST ascending, NULLS FIRST descending."""
    rows = sorted(rows, key=lambda t: t.id)
    for clause in reversed(order):
        present = [t for t in rows if getattr(t, clause.column) is not None]
        missing = [t for t in rows if getattr(t, clause.column) is None]
        present.sort(key=lambda t: getattr(t, clause.column), reverse=clause.descending)
        rows = missing + present if clause.descending else present + missing
    return rows


def _haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlmb = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    return 2 * _EARTH_RADIUS_M * math.asin(math.sqrt(a))
