"""Tree update workflow with verification event publishing.

Applies a partial tree update inside a READ COMMITTED transaction. When the
update approves or rejects a capture, a ``VerifyCaptureProcessed`` domain
event is written to the event log in the *same* transaction, and published
to the message channel only after the commit succeeded:

    begin → load → [insert event (raised)] → update tree → commit
          → [publish → mark event sent]

Publishing is best effort. A failed or unacknowledged publish leaves the
event ``raised`` for an out-of-band sweep; the caller's update has already
succeeded and is never failed retroactively.

Two concurrent updates of one tree may both read the same prior state and
both raise an event. No locking is applied beyond the isolation level.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from treetracker_admin.core.enums import DomainEventStatus, IsolationLevel
from treetracker_admin.core.errors import PublishError, StoreError
from treetracker_admin.core.interfaces import (
    IDomainEventStore,
    IMessageChannel,
    ITreeStore,
)
from treetracker_admin.core.models import (
    DomainEvent,
    Tree,
    TreeUpdate,
    VerifyCaptureProcessed,
)
from treetracker_admin.observability import metrics

logger = logging.getLogger(__name__)


def should_raise_event(stored: Tree, update: TreeUpdate) -> bool:
    """Decide whether *update* is a verification-state transition.

    True when the update rejects a still-active capture
    (``approved=false, active=false`` against stored ``active=true``) or
    flips ``approved`` in any direction, including to or from unset.
    Fields the update does not supply are not compared.
    """
    just_rejected = (
        update.sets("approved") and update.approved is False
        and update.sets("active") and update.active is False
        and stored.active
    )
    approval_changed = update.sets("approved") and stored.approved != update.approved
    return bool(just_rejected or approval_changed)


def build_verification_event(stored: Tree, update: TreeUpdate) -> DomainEvent:
    """Build the ``raised`` event describing *update* applied to *stored*."""
    message = VerifyCaptureProcessed(
        id=stored.uuid,
        reference_id=stored.id,
        approved=update.approved,
        rejection_reason=update.rejection_reason,
    )
    return DomainEvent(payload=message.to_payload())


@dataclass(frozen=True)
class TreeUpdateResult:
    tree_id: int
    event: DomainEvent | None = None
    published: bool = False


class TreeUpdateWorkflow:
    """Update a tree and, when needed, raise and publish its verification event.

    Args:
        tree_store: Record store; also opens the transaction.
        event_store: Event log sharing the tree store's transactions.
        channel: Outbound message channel.
        publishing_enabled: Feature flag. When False the update still runs
            but no event is raised or published.
    """

    def __init__(
        self,
        tree_store: ITreeStore,
        event_store: IDomainEventStore,
        channel: IMessageChannel,
        *,
        publishing_enabled: bool = False,
    ) -> None:
        self._trees = tree_store
        self._events = event_store
        self._channel = channel
        self._publishing_enabled = publishing_enabled

    @property
    def publishing_enabled(self) -> bool:
        return self._publishing_enabled

    async def update_tree(self, tree_id: int, update: TreeUpdate) -> TreeUpdateResult:
        """Run the workflow for one tree.

        Raises:
            RecordNotFoundError: The tree does not exist (nothing written).
            StoreReadError: Loading the tree failed (nothing written).
            StoreWriteError: Writing or committing failed (rolled back).
        """
        start = time.perf_counter()
        tx = await self._trees.begin_transaction(IsolationLevel.READ_COMMITTED)
        event: DomainEvent | None = None
        try:
            stored = await self._trees.find_by_id(tree_id, tx=tx)

            if self._publishing_enabled and should_raise_event(stored, update):
                event = build_verification_event(stored, update)
                await self._events.create(event, tx)
                metrics.record_event_raised(event.payload["type"])
                logger.info(
                    "Raised VerifyCaptureProcessed event=%s tree=%s approved=%s",
                    event.id,
                    tree_id,
                    update.approved,
                )

            await self._trees.apply_update(tree_id, update.changes(), tx)
            await tx.commit()
        except Exception:
            try:
                await tx.rollback()
            except StoreError as rollback_exc:
                logger.error("Rollback failed for tree %s update: %s", tree_id, rollback_exc)
            metrics.record_tree_update("failed")
            raise

        metrics.record_tree_update("committed", time.perf_counter() - start)
        logger.info("Updated tree %s fields=%s", tree_id, sorted(update.changes()))

        if event is None:
            return TreeUpdateResult(tree_id=tree_id)
        published = await self.publish_event(event)
        return TreeUpdateResult(tree_id=tree_id, event=event, published=published)

    async def publish_event(self, event: DomainEvent) -> bool:
        """Publish a committed event and mark it ``sent`` on acknowledgment.

        Returns True only when the event reached ``sent``. Failures are
        logged, never raised.
        """
        try:
            receipt = await self._channel.publish(event.payload)
        except PublishError as exc:
            logger.warning("Publish failed for event %s, left raised: %s", event.id, exc)
            metrics.record_publish_result("publish_failed")
            return False

        if not receipt.acknowledged:
            logger.warning("Publish of event %s not acknowledged, left raised", event.id)
            metrics.record_publish_result("not_acknowledged")
            return False

        try:
            await self._events.update_status_by_id(event.id, DomainEventStatus.SENT)
        except StoreError as exc:
            logger.error(
                "Event %s published as %s but status update failed: %s",
                event.id,
                receipt.message_id,
                exc,
            )
            metrics.record_publish_result("status_update_failed")
            return False

        metrics.record_publish_result("sent")
        logger.info("Event %s sent as message %s", event.id, receipt.message_id)
        return True
