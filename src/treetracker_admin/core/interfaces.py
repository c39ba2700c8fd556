"""Protocol interfaces for the admin API.

Module boundaries are defined here as Protocol classes so the workflow
and the HTTP layer can run against Postgres, Redis, or in-memory doubles.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from .enums import DomainEventStatus, IsolationLevel
from .filters import TreeQuery
from .models import DomainEvent, PublishReceipt, Tree


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------

@runtime_checkable
class ITransactionScope(Protocol):
    """Handle for one atomic unit of work.

    Passed explicitly to every store operation that must take part in the
    same transaction. ``rollback()`` after a failed ``commit()`` is allowed.
    """

    async def commit(self) -> None: ...

    async def rollback(self) -> None: ...


# ---------------------------------------------------------------------------
# Record store
# ---------------------------------------------------------------------------

@runtime_checkable
class ITreeStore(Protocol):
    """Reads and writes of tree records."""

    async def begin_transaction(
        self, isolation_level: IsolationLevel = IsolationLevel.READ_COMMITTED,
    ) -> ITransactionScope: ...

    async def find_by_id(
        self,
        tree_id: int,
        *,
        tx: ITransactionScope | None = None,
        include_tags: bool = False,
    ) -> Tree: ...

    async def apply_update(
        self, tree_id: int, changes: dict[str, Any], tx: ITransactionScope,
    ) -> None: ...

    async def find(self, query: TreeQuery) -> list[Tree]: ...

    async def count(self, query: TreeQuery) -> int: ...

    async def near(
        self, lat: float, lon: float, radius_m: float, limit: int,
    ) -> list[Tree]: ...


@runtime_checkable
class IOrganizationDirectory(Protocol):
    """Organization hierarchy lookups used to expand ``organizationId``."""

    async def entity_ids_for_organization(self, organization_id: int) -> list[int]: ...

    async def planter_ids_for_entities(self, entity_ids: list[int]) -> list[int]: ...


# ---------------------------------------------------------------------------
# Event-log store
# ---------------------------------------------------------------------------

@runtime_checkable
class IDomainEventStore(Protocol):
    """Durable log of domain events and their publish status."""

    async def create(self, event: DomainEvent, tx: ITransactionScope) -> None: ...

    async def update_status_by_id(
        self, event_id: str, status: DomainEventStatus,
    ) -> None: ...

    async def get(self, event_id: str) -> DomainEvent | None: ...


# ---------------------------------------------------------------------------
# Message channel
# ---------------------------------------------------------------------------

@runtime_checkable
class IMessageChannel(Protocol):
    """Outbound message channel.

    ``publish`` returns a receipt; implementations raise
    :class:`~treetracker_admin.core.errors.PublishError` on failure.
    """

    async def publish(self, payload: dict[str, Any]) -> PublishReceipt: ...

    async def start(self) -> None: ...

    async def stop(self) -> None: ...
