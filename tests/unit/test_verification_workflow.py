"""Tests for the tree update workflow (``services/verification.py``).

Covers:
- Event decision rule on the documented reject / approval-flip cases.
- Feature flag off: update applied, nothing raised or published.
- Atomicity: forced write / commit failures leave no event and no update.
- Post-commit publish: ack → ``sent`` once; failure / no-ack → stays ``raised``.
"""

from __future__ import annotations

import pytest
from prometheus_client import REGISTRY

from treetracker_admin.bus.memory_bus import MemoryMessageChannel
from treetracker_admin.core.enums import DomainEventStatus, IsolationLevel
from treetracker_admin.core.errors import (
    RecordNotFoundError,
    StoreReadError,
    StoreWriteError,
)
from treetracker_admin.core.models import PublishReceipt, Tree, TreeUpdate
from treetracker_admin.services.verification import (
    TreeUpdateWorkflow,
    build_verification_event,
    should_raise_event,
)
from treetracker_admin.storage.memory import (
    InMemoryDomainEventStore,
    InMemoryTransaction,
    InMemoryTreeStore,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _tree(tree_id: int, **overrides) -> Tree:
    fields = {"uuid": f"uuid-{tree_id}", "active": True, **overrides}
    return Tree(id=tree_id, **fields)


def _update(**fields) -> TreeUpdate:
    return TreeUpdate(**fields)


class _FailingUpdateStore(InMemoryTreeStore):
    async def apply_update(self, tree_id, changes, tx):
        raise StoreWriteError("disk full")


class _FailingLoadStore(InMemoryTreeStore):
    async def find_by_id(self, tree_id, *, tx=None, include_tags=False):
        raise StoreReadError("connection reset")


class _FailingCommitTransaction(InMemoryTransaction):
    async def commit(self):
        raise StoreWriteError("commit failed")


class _FailingCommitStore(InMemoryTreeStore):
    async def begin_transaction(self, isolation_level=IsolationLevel.READ_COMMITTED):
        return _FailingCommitTransaction(self._db, isolation_level)


class _FailingRollbackTransaction(InMemoryTransaction):
    async def rollback(self):
        await super().rollback()
        raise StoreWriteError("Rollback failed: connection lost")


class _FailingRollbackStore(InMemoryTreeStore):
    async def begin_transaction(self, isolation_level=IsolationLevel.READ_COMMITTED):
        return _FailingRollbackTransaction(self._db, isolation_level)


class _RecordingStore(InMemoryTreeStore):
    def __init__(self, db):
        super().__init__(db)
        self.isolation_levels = []

    async def begin_transaction(self, isolation_level=IsolationLevel.READ_COMMITTED):
        self.isolation_levels.append(isolation_level)
        return await super().begin_transaction(isolation_level)


class _FailingStatusEventStore(InMemoryDomainEventStore):
    async def update_status_by_id(self, event_id, status):
        raise StoreWriteError("status update lost")


# ===========================================================================
# Decision rule
# ===========================================================================


class TestShouldRaiseEvent:
    def test_reject_active_unverified_tree(self):
        stored = _tree(1, active=True, approved=None)
        assert should_raise_event(stored, _update(approved=False, active=False))

    def test_reject_active_approved_tree(self):
        stored = _tree(1, active=True, approved=True)
        assert should_raise_event(stored, _update(approved=False, active=False))

    def test_reject_when_already_rejected_but_still_active(self):
        stored = _tree(1, active=True, approved=False)
        assert should_raise_event(stored, _update(approved=False, active=False))

    def test_approve_unverified_tree(self):
        stored = _tree(1, approved=None)
        assert should_raise_event(stored, _update(approved=True, active=True))

    def test_unapprove_tree(self):
        stored = _tree(1, approved=True)
        assert should_raise_event(stored, _update(approved=None))

    def test_same_approval_no_event(self):
        stored = _tree(1, approved=True)
        assert not should_raise_event(stored, _update(approved=True, active=True))

    def test_rejecting_inactive_rejected_tree_no_event(self):
        stored = _tree(1, active=False, approved=False)
        assert not should_raise_event(stored, _update(approved=False, active=False))

    def test_update_without_approval_field_no_event(self):
        stored = _tree(1, approved=True)
        assert not should_raise_event(stored, _update(species_id=4, note="checked"))

    def test_deactivate_without_approval_no_event(self):
        stored = _tree(1, active=True, approved=None)
        assert not should_raise_event(stored, _update(active=False))


class TestBuildVerificationEvent:
    def test_payload_fields(self):
        stored = _tree(12, uuid="abc-uuid", active=True, approved=None)
        event = build_verification_event(
            stored, _update(active=False, approved=False, rejection_reason="pest"),
        )

        assert event.status == DomainEventStatus.RAISED
        assert event.payload["type"] == "VerifyCaptureProcessed"
        assert event.payload["id"] == "abc-uuid"
        assert event.payload["reference_id"] == 12
        assert event.payload["approved"] is False
        assert event.payload["rejection_reason"] == "pest"
        assert event.payload["created_at"].endswith("Z")

    def test_each_event_gets_fresh_id(self):
        stored = _tree(1)
        a = build_verification_event(stored, _update(approved=True))
        b = build_verification_event(stored, _update(approved=True))
        assert a.id != b.id


# ===========================================================================
# Workflow: happy paths
# ===========================================================================


class TestWorkflowRaisesEvent:
    @pytest.mark.asyncio
    async def test_reject_example(self, workflow, seeded_db, channel, event_store):
        """stored {active, approved=null} + reject with reason → raised then sent."""
        result = await workflow.update_tree(
            1, _update(active=False, approved=False, rejection_reason="pest"),
        )

        assert result.event is not None
        assert result.event.status == DomainEventStatus.RAISED
        assert result.event.payload["approved"] is False
        assert result.event.payload["rejection_reason"] == "pest"
        assert result.published is True

        tree = seeded_db.trees[1]
        assert tree.active is False
        assert tree.approved is False
        assert tree.rejection_reason == "pest"

        events = event_store.all()
        assert len(events) == 1
        assert events[0].status == DomainEventStatus.SENT
        assert channel.published == [result.event.payload]

    @pytest.mark.asyncio
    async def test_approve_publishes_once(self, workflow, channel, event_store):
        result = await workflow.update_tree(2, _update(approved=True, active=True))

        assert result.published is True
        assert channel.attempts == 1
        assert [e.status for e in event_store.all()] == [DomainEventStatus.SENT]

    @pytest.mark.asyncio
    async def test_runs_at_read_committed(self, seeded_db, event_store, channel):
        store = _RecordingStore(seeded_db)
        wf = TreeUpdateWorkflow(store, event_store, channel, publishing_enabled=True)

        await wf.update_tree(1, _update(note="ok"))

        assert store.isolation_levels == [IsolationLevel.READ_COMMITTED]

    @pytest.mark.asyncio
    async def test_publish_happens_after_commit(self, seeded_db, tree_store, event_store):
        observed = {}

        class _ObservingChannel(MemoryMessageChannel):
            async def publish(self, payload):
                event = event_store.all()[0]
                observed["event_status"] = event.status
                observed["tree_approved"] = seeded_db.trees[3].approved
                return await super().publish(payload)

        wf = TreeUpdateWorkflow(
            tree_store, event_store, _ObservingChannel(), publishing_enabled=True,
        )
        await wf.update_tree(3, _update(approved=False, active=False))

        assert observed == {
            "event_status": DomainEventStatus.RAISED,
            "tree_approved": False,
        }


class TestWorkflowNoEvent:
    @pytest.mark.asyncio
    async def test_unrelated_field_update(self, workflow, seeded_db, channel, event_store):
        result = await workflow.update_tree(5, _update(species_id=9, morphology="seedling"))

        assert result.event is None
        assert result.published is False
        assert seeded_db.trees[5].species_id == 9
        assert seeded_db.trees[5].morphology == "seedling"
        assert event_store.all() == []
        assert channel.attempts == 0

    @pytest.mark.asyncio
    async def test_same_approval(self, workflow, channel, event_store):
        result = await workflow.update_tree(3, _update(approved=True, active=True))

        assert result.event is None
        assert event_store.all() == []
        assert channel.attempts == 0

    @pytest.mark.asyncio
    async def test_flag_off_still_updates(self, tree_store, event_store, channel, seeded_db):
        wf = TreeUpdateWorkflow(tree_store, event_store, channel, publishing_enabled=False)

        result = await wf.update_tree(
            1, _update(active=False, approved=False, rejection_reason="dead"),
        )

        assert result.event is None
        assert seeded_db.trees[1].approved is False
        assert seeded_db.trees[1].rejection_reason == "dead"
        assert event_store.all() == []
        assert channel.attempts == 0

    @pytest.mark.asyncio
    async def test_omitted_fields_untouched(self, workflow, seeded_db):
        await workflow.update_tree(4, _update(note="second look"))

        tree = seeded_db.trees[4]
        assert tree.note == "second look"
        assert tree.rejection_reason == "blurry"
        assert tree.active is False


# ===========================================================================
# Workflow: failures before / at commit
# ===========================================================================


class TestWorkflowAtomicity:
    @pytest.mark.asyncio
    async def test_write_failure_leaves_no_event(self, seeded_db, event_store, channel):
        wf = TreeUpdateWorkflow(
            _FailingUpdateStore(seeded_db), event_store, channel, publishing_enabled=True,
        )

        with pytest.raises(StoreWriteError, match="disk full"):
            await wf.update_tree(1, _update(active=False, approved=False))

        assert event_store.all() == []
        assert seeded_db.trees[1].active is True
        assert seeded_db.trees[1].approved is None
        assert channel.attempts == 0

    @pytest.mark.asyncio
    async def test_commit_failure_leaves_no_event(self, seeded_db, event_store, channel):
        wf = TreeUpdateWorkflow(
            _FailingCommitStore(seeded_db), event_store, channel, publishing_enabled=True,
        )

        with pytest.raises(StoreWriteError, match="commit failed"):
            await wf.update_tree(2, _update(approved=True))

        assert event_store.all() == []
        assert seeded_db.trees[2].approved is None
        assert channel.attempts == 0

    @pytest.mark.asyncio
    async def test_load_failure_aborts(self, seeded_db, event_store, channel):
        wf = TreeUpdateWorkflow(
            _FailingLoadStore(seeded_db), event_store, channel, publishing_enabled=True,
        )

        with pytest.raises(StoreReadError):
            await wf.update_tree(1, _update(approved=True))

        assert event_store.all() == []
        assert seeded_db.trees[1].approved is None

    @pytest.mark.asyncio
    async def test_missing_tree(self, workflow, event_store, channel):
        with pytest.raises(RecordNotFoundError):
            await workflow.update_tree(999, _update(approved=True))

        assert event_store.all() == []
        assert channel.attempts == 0

    @pytest.mark.asyncio
    async def test_rollback_failure_keeps_original_error(
        self, seeded_db, event_store, channel, caplog,
    ):
        wf = TreeUpdateWorkflow(
            _FailingRollbackStore(seeded_db), event_store, channel, publishing_enabled=True,
        )

        with pytest.raises(RecordNotFoundError):
            await wf.update_tree(999, _update(approved=True))

        assert "Rollback failed for tree 999" in caplog.text
        assert event_store.all() == []

    @pytest.mark.asyncio
    async def test_rollback_failure_after_write_error(self, seeded_db, event_store, channel):
        class _BothFail(_FailingRollbackStore):
            async def apply_update(self, tree_id, changes, tx):
                raise StoreWriteError("disk full")

        wf = TreeUpdateWorkflow(
            _BothFail(seeded_db), event_store, channel, publishing_enabled=True,
        )

        with pytest.raises(StoreWriteError, match="disk full"):
            await wf.update_tree(1, _update(active=False, approved=False))

        assert seeded_db.trees[1].active is True
        assert event_store.all() == []


# ===========================================================================
# Workflow: publish outcomes
# ===========================================================================


class TestWorkflowPublishOutcomes:
    @pytest.mark.asyncio
    async def test_publish_failure_keeps_raised(self, tree_store, event_store, seeded_db):
        channel = MemoryMessageChannel(fail_with=ConnectionError("broker down"))
        wf = TreeUpdateWorkflow(tree_store, event_store, channel, publishing_enabled=True)

        result = await wf.update_tree(1, _update(active=False, approved=False))

        assert result.published is False
        assert seeded_db.trees[1].approved is False
        assert [e.status for e in event_store.all()] == [DomainEventStatus.RAISED]
        assert channel.attempts == 1

    @pytest.mark.asyncio
    async def test_no_ack_keeps_raised(self, tree_store, event_store):
        channel = MemoryMessageChannel(acknowledge=False)
        wf = TreeUpdateWorkflow(tree_store, event_store, channel, publishing_enabled=True)

        result = await wf.update_tree(2, _update(approved=True))

        assert result.published is False
        assert [e.status for e in event_store.all()] == [DomainEventStatus.RAISED]
        assert len(channel.published) == 1

    @pytest.mark.asyncio
    async def test_status_update_failure_is_swallowed(self, tree_store, seeded_db, channel):
        events = _FailingStatusEventStore(seeded_db)
        wf = TreeUpdateWorkflow(tree_store, events, channel, publishing_enabled=True)

        result = await wf.update_tree(2, _update(approved=True))

        assert result.published is False
        assert len(channel.published) == 1
        assert [e.status for e in events.all()] == [DomainEventStatus.RAISED]

    @pytest.mark.asyncio
    async def test_ack_marks_sent_exactly_once(self, tree_store, seeded_db, channel):
        calls = []

        class _CountingEventStore(InMemoryDomainEventStore):
            async def update_status_by_id(self, event_id, status):
                calls.append((event_id, status))
                await super().update_status_by_id(event_id, status)

        events = _CountingEventStore(seeded_db)
        wf = TreeUpdateWorkflow(tree_store, events, channel, publishing_enabled=True)

        result = await wf.update_tree(1, _update(approved=True))

        assert calls == [(result.event.id, DomainEventStatus.SENT)]

    @pytest.mark.asyncio
    async def test_republish_of_raised_event(self, tree_store, event_store):
        """A later publish_event call can move a stranded event to sent."""
        channel = MemoryMessageChannel(acknowledge=False)
        wf = TreeUpdateWorkflow(tree_store, event_store, channel, publishing_enabled=True)
        result = await wf.update_tree(1, _update(approved=True))
        assert (await event_store.get(result.event.id)).status == DomainEventStatus.RAISED

        channel.acknowledge = True
        assert await wf.publish_event(result.event) is True
        assert (await event_store.get(result.event.id)).status == DomainEventStatus.SENT

    @pytest.mark.asyncio
    async def test_receipt_model(self):
        receipt = await MemoryMessageChannel(name="x").publish({"type": "t"})
        assert receipt == PublishReceipt(acknowledged=True, message_id="x-1", channel="x")


class TestWorkflowMetrics:
    @staticmethod
    def _published(result: str) -> float:
        return REGISTRY.get_sample_value(
            "treetracker_domain_events_published_total", {"result": result},
        ) or 0.0

    @pytest.mark.asyncio
    async def test_sent_and_failed_counted(self, tree_store, event_store):
        sent_before = self._published("sent")
        failed_before = self._published("publish_failed")

        ok = TreeUpdateWorkflow(
            tree_store, event_store, MemoryMessageChannel(), publishing_enabled=True,
        )
        await ok.update_tree(1, _update(approved=True))
        broken = TreeUpdateWorkflow(
            tree_store,
            event_store,
            MemoryMessageChannel(fail_with=ConnectionError("down")),
            publishing_enabled=True,
        )
        await broken.update_tree(2, _update(approved=True))

        assert self._published("sent") == sent_before + 1
        assert self._published("publish_failed") == failed_before + 1
