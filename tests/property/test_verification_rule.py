"""Property tests: verification event rule and update atomicity.

For arbitrary stored verification state and arbitrary partial updates:

- An update that does not supply ``approved`` never raises an event.
- An update supplying a different ``approved`` always raises one.
- After a successful run, exactly one committed event exists iff the rule
  fired, and it is ``sent`` (memory channel always acknowledges).
- After a forced write failure, neither the tree nor the event log changed.
"""

import asyncio

import pytest
from hypothesis import given, settings, strategies as st

from treetracker_admin.bus.memory_bus import MemoryMessageChannel
from treetracker_admin.core.enums import DomainEventStatus
from treetracker_admin.core.errors import StoreWriteError
from treetracker_admin.core.models import Tree, TreeUpdate
from treetracker_admin.services.verification import (
    TreeUpdateWorkflow,
    should_raise_event,
)
from treetracker_admin.storage.memory import (
    InMemoryDatabase,
    InMemoryDomainEventStore,
    InMemoryTreeStore,
)

_tristate = st.sampled_from([None, True, False])

stored_trees = st.builds(
    Tree,
    id=st.just(1),
    uuid=st.just("uuid-1"),
    active=st.booleans(),
    approved=_tristate,
)

updates = st.fixed_dictionaries(
    {},
    optional={
        "active": st.booleans(),
        "approved": _tristate,
        "rejection_reason": st.one_of(st.none(), st.text(max_size=20)),
        "species_id": st.one_of(st.none(), st.integers(min_value=1, max_value=500)),
        "note": st.one_of(st.none(), st.text(max_size=20)),
    },
).map(lambda fields: TreeUpdate(**fields))


class _BrokenWriteStore(InMemoryTreeStore):
    async def apply_update(self, tree_id, changes, tx):
        raise StoreWriteError("forced")


def _workflow(db, store_cls=InMemoryTreeStore):
    events = InMemoryDomainEventStore(db)
    channel = MemoryMessageChannel()
    wf = TreeUpdateWorkflow(store_cls(db), events, channel, publishing_enabled=True)
    return wf, events, channel


@given(stored=stored_trees, update=updates)
@settings(max_examples=200)
def test_no_event_without_approved(stored, update):
    if not update.sets("approved"):
        assert not should_raise_event(stored, update)


@given(stored=stored_trees, update=updates)
@settings(max_examples=200)
def test_approval_flip_always_raises(stored, update):
    if update.sets("approved") and update.approved != stored.approved:
        assert should_raise_event(stored, update)


@given(stored=stored_trees, update=updates)
@settings(max_examples=100)
def test_committed_event_iff_rule_fires(stored, update):
    db = InMemoryDatabase()
    db.add_tree(stored)
    wf, events, channel = _workflow(db)

    result = asyncio.run(wf.update_tree(1, update))

    expected = should_raise_event(stored, update)
    assert (result.event is not None) == expected
    assert len(events.all()) == (1 if expected else 0)
    assert len(channel.published) == (1 if expected else 0)
    if expected:
        assert events.all()[0].status == DomainEventStatus.SENT
        assert events.all()[0].payload["approved"] == update.approved

    for field, value in update.changes().items():
        assert getattr(db.trees[1], field) == value


@given(stored=stored_trees, update=updates)
@settings(max_examples=100)
def test_write_failure_changes_nothing(stored, update):
    db = InMemoryDatabase()
    db.add_tree(stored)
    wf, events, channel = _workflow(db, _BrokenWriteStore)

    with pytest.raises(StoreWriteError):
        asyncio.run(wf.update_tree(1, update))

    assert db.trees[1] == stored
    assert events.all() == []
    assert channel.attempts == 0
