"""Shared fixtures for the treetracker-admin-api test suite."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from hypothesis import HealthCheck, settings

from treetracker_admin.bus.memory_bus import MemoryMessageChannel
from treetracker_admin.core.config import Settings
from treetracker_admin.core.enums import StorageBackend
from treetracker_admin.core.models import Tree
from treetracker_admin.services.trees import TreeQueryService
from treetracker_admin.services.verification import TreeUpdateWorkflow
from treetracker_admin.storage.memory import (
    InMemoryDatabase,
    InMemoryDomainEventStore,
    InMemoryTreeStore,
)

# The first run builds Hypothesis' Unicode charmap cache, which can trip the
# input-generation speed health check; it is environmental, not a test issue.
settings.register_profile("default", suppress_health_check=[HealthCheck.too_slow])
settings.load_profile("default")

BASE_TIME = datetime(2021, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_tree(tree_id: int, **overrides) -> Tree:
    """Build a Tree with sensible defaults; ``time_created`` grows with id."""
    defaults = dict(
        id=tree_id,
        uuid=f"00000000-0000-4000-8000-{tree_id:012d}",
        time_created=BASE_TIME + timedelta(hours=tree_id),
        time_updated=BASE_TIME + timedelta(hours=tree_id),
        lat=-3.0 + tree_id * 0.001,
        lon=37.0,
        active=True,
        approved=None,
    )
    defaults.update(overrides)
    return Tree(**defaults)


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

@pytest.fixture
def memory_db() -> InMemoryDatabase:
    """Empty in-memory database."""
    return InMemoryDatabase()


@pytest.fixture
def seeded_db() -> InMemoryDatabase:
    """Five trees, two tags, and a small organization hierarchy.

    Organizations: 100 → 101 → 102.  Planter 7 belongs to 101.
    Trees:
      1 planted for org 100, tagged 1
      2 planted for org 102, tagged 1 and 2
      3 planted by planter 7, untagged, approved
      4 unaffiliated, untagged, rejected (inactive)
      5 unaffiliated, tagged 2
    """
    db = InMemoryDatabase()
    db.add_tree(make_tree(1, planting_organization_id=100))
    db.add_tree(make_tree(2, planting_organization_id=102))
    db.add_tree(make_tree(3, planter_id=7, approved=True))
    db.add_tree(make_tree(4, active=False, approved=False, rejection_reason="blurry"))
    db.add_tree(make_tree(5, note="near the river"))
    db.tag_tree(1, 1)
    db.tag_tree(2, 1)
    db.tag_tree(2, 2)
    db.tag_tree(5, 2)
    db.add_relationship(100, 101)
    db.add_relationship(101, 102)
    db.add_planter(7, 101)
    db.add_planter(8, None)
    return db


@pytest.fixture
def tree_store(seeded_db) -> InMemoryTreeStore:
    return InMemoryTreeStore(seeded_db)


@pytest.fixture
def event_store(seeded_db) -> InMemoryDomainEventStore:
    return InMemoryDomainEventStore(seeded_db)


# ---------------------------------------------------------------------------
# Messaging and services
# ---------------------------------------------------------------------------

@pytest.fixture
def channel() -> MemoryMessageChannel:
    return MemoryMessageChannel(name="test")


@pytest.fixture
def workflow(tree_store, event_store, channel) -> TreeUpdateWorkflow:
    """Workflow with verification publishing enabled."""
    return TreeUpdateWorkflow(
        tree_store, event_store, channel, publishing_enabled=True,
    )


@pytest.fixture
def queries(tree_store) -> TreeQueryService:
    return TreeQueryService(tree_store, tree_store)


@pytest.fixture
def memory_settings() -> Settings:
    return Settings(
        storage_backend=StorageBackend.MEMORY,
        enable_verification_publishing=True,
    )
