"""SQLAlchemy ORM models for the treetracker database.

Table and column names follow the existing treetracker schema
(``trees``, ``tree_tag``, ``domain_event``, ...), so the service can run
against a production database as well as one created by
:func:`~treetracker_admin.storage.postgres.connection.create_all`.

Relationships:
    TreeRecord 1--* TreeTagRecord *--1 TagRecord
    EntityRecord 1--* EntityRelationshipRecord (parent_id / child_id)
    PlanterRecord *--1 EntityRecord (organization_id)
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    relationship,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_uuid() -> uuid.UUID:
    return uuid.uuid4()


# ---------------------------------------------------------------------------
# Declarative base
# ---------------------------------------------------------------------------

class Base(DeclarativeBase):
    """Shared declarative base for all ORM models."""

    pass


# ---------------------------------------------------------------------------
# Trees and tags
# ---------------------------------------------------------------------------

class TreeRecord(Base):
    """A tree capture. ``approved`` is NULL until a verifier acts on it."""

    __tablename__ = "trees"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    uuid: Mapped[str | None] = mapped_column(String(64), unique=True, nullable=True)
    time_created: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(),
    )
    time_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, server_default=func.now(),
    )
    planter_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("planter.id"), nullable=True,
    )
    planter_identifier: Mapped[str | None] = mapped_column(String(128), nullable=True)
    device_identifier: Mapped[str | None] = mapped_column(String(128), nullable=True)
    planting_organization_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("entity.id"), nullable=True,
    )
    image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    lon: Mapped[float | None] = mapped_column(Float, nullable=True)
    gps_accuracy: Mapped[int | None] = mapped_column(Integer, nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    approved: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(String(64), nullable=True)
    species_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    morphology: Mapped[str | None] = mapped_column(String(32), nullable=True)
    age: Mapped[str | None] = mapped_column(String(32), nullable=True)
    capture_approval_tag: Mapped[str | None] = mapped_column(String(32), nullable=True)
    token_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    tree_tags: Mapped[list[TreeTagRecord]] = relationship(
        "TreeTagRecord", back_populates="tree", lazy="raise",
    )

    __table_args__ = (
        Index("ix_trees_planter_id", "planter_id"),
        Index("ix_trees_planting_organization_id", "planting_organization_id"),
        Index("ix_trees_time_created", "time_created"),
        Index("ix_trees_active_approved", "active", "approved"),
    )

    def __repr__(self) -> str:
        return (
            f"<TreeRecord(id={self.id!r}, active={self.active!r}, "
            f"approved={self.approved!r})>"
        )


class TagRecord(Base):
    __tablename__ = "tag"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tag_name: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    public: Mapped[bool] = mapped_column(Boolean, default=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True)


class TreeTagRecord(Base):
    __tablename__ = "tree_tag"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tree_id: Mapped[int] = mapped_column(Integer, ForeignKey("trees.id"), nullable=False)
    tag_id: Mapped[int] = mapped_column(Integer, ForeignKey("tag.id"), nullable=False)

    tree: Mapped[TreeRecord] = relationship("TreeRecord", back_populates="tree_tags")

    __table_args__ = (
        Index("ix_tree_tag_tree_id", "tree_id"),
        Index("ix_tree_tag_tag_id", "tag_id"),
    )


# ---------------------------------------------------------------------------
# Organizations and planters
# ---------------------------------------------------------------------------

class EntityRecord(Base):
    """Person or organization. Organizations nest via EntityRelationshipRecord."""

    __tablename__ = "entity"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    type: Mapped[str | None] = mapped_column(String(1), nullable=True)  # "o" | "p"
    name: Mapped[str | None] = mapped_column(String(256), nullable=True)


class EntityRelationshipRecord(Base):
    __tablename__ = "entity_relationship"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    parent_id: Mapped[int] = mapped_column(Integer, ForeignKey("entity.id"), nullable=False)
    child_id: Mapped[int] = mapped_column(Integer, ForeignKey("entity.id"), nullable=False)
    type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    role: Mapped[str | None] = mapped_column(String(64), nullable=True)

    __table_args__ = (
        Index("ix_entity_relationship_parent_id", "parent_id"),
    )


class PlanterRecord(Base):
    __tablename__ = "planter"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    first_name: Mapped[str | None] = mapped_column(String(64), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(64), nullable=True)
    organization_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("entity.id"), nullable=True,
    )

    __table_args__ = (
        Index("ix_planter_organization_id", "organization_id"),
    )


# ---------------------------------------------------------------------------
# DomainEventRecord
# ---------------------------------------------------------------------------

class DomainEventRecord(Base):
    """Outbox row for an event raised inside a tree update transaction.

    Inserted as ``raised`` in the same transaction as the tree write and
    moved to ``sent`` once the message channel acknowledges it.
    """

    __tablename__ = "domain_event"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=_new_uuid,
    )
    payload: Mapped[dict] = mapped_column(JSONB, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="raised")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(),
    )

    __table_args__ = (
        Index("ix_domain_event_status", "status"),
        Index("ix_domain_event_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<DomainEventRecord(id={self.id!r}, status={self.status!r})>"
