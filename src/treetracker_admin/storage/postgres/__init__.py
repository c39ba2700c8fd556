"""Postgres persistence: ORM models, repositories, and store implementations."""

from treetracker_admin.storage.postgres.stores import (
    PostgresDomainEventStore,
    PostgresOrganizationDirectory,
    PostgresTreeStore,
    SessionScope,
)

__all__ = [
    "PostgresDomainEventStore",
    "PostgresOrganizationDirectory",
    "PostgresTreeStore",
    "SessionScope",
]
