"""Initial schema: trees, tags, organizations, planters, domain events.

Revision ID: 001_initial
Revises: None
Create Date: 2024-01-01 00:00:00.000000
"""
from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB, UUID

revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Entities (people and organizations)
    op.create_table(
        "entity",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("type", sa.String(1), nullable=True),
        sa.Column("name", sa.String(256), nullable=True),
    )

    op.create_table(
        "entity_relationship",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("parent_id", sa.Integer, sa.ForeignKey("entity.id"), nullable=False),
        sa.Column("child_id", sa.Integer, sa.ForeignKey("entity.id"), nullable=False),
        sa.Column("type", sa.String(64), nullable=True),
        sa.Column("role", sa.String(64), nullable=True),
    )
    op.create_index("ix_entity_relationship_parent_id", "entity_relationship", ["parent_id"])

    op.create_table(
        "planter",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("first_name", sa.String(64), nullable=True),
        sa.Column("last_name", sa.String(64), nullable=True),
        sa.Column("organization_id", sa.Integer, sa.ForeignKey("entity.id"), nullable=True),
    )
    op.create_index("ix_planter_organization_id", "planter", ["organization_id"])

    # Trees
    op.create_table(
        "trees",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("uuid", sa.String(64), nullable=True, unique=True),
        sa.Column("time_created", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("time_updated", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("planter_id", sa.Integer, sa.ForeignKey("planter.id"), nullable=True),
        sa.Column("planter_identifier", sa.String(128), nullable=True),
        sa.Column("device_identifier", sa.String(128), nullable=True),
        sa.Column("planting_organization_id", sa.Integer, sa.ForeignKey("entity.id"), nullable=True),
        sa.Column("image_url", sa.Text, nullable=True),
        sa.Column("lat", sa.Float, nullable=True),
        sa.Column("lon", sa.Float, nullable=True),
        sa.Column("gps_accuracy", sa.Integer, nullable=True),
        sa.Column("note", sa.Text, nullable=True),
        sa.Column("active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("approved", sa.Boolean, nullable=True),
        sa.Column("rejection_reason", sa.String(64), nullable=True),
        sa.Column("species_id", sa.Integer, nullable=True),
        sa.Column("morphology", sa.String(32), nullable=True),
        sa.Column("age", sa.String(32), nullable=True),
        sa.Column("capture_approval_tag", sa.String(32), nullable=True),
        sa.Column("token_id", sa.String(64), nullable=True),
    )
    op.create_index("ix_trees_planter_id", "trees", ["planter_id"])
    op.create_index("ix_trees_planting_organization_id", "trees", ["planting_organization_id"])
    op.create_index("ix_trees_time_created", "trees", ["time_created"])
    op.create_index("ix_trees_active_approved", "trees", ["active", "approved"])

    # Tags
    op.create_table(
        "tag",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("tag_name", sa.String(128), nullable=False, unique=True),
        sa.Column("public", sa.Boolean, server_default=sa.true()),
        sa.Column("active", sa.Boolean, server_default=sa.true()),
    )

    op.create_table(
        "tree_tag",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("tree_id", sa.Integer, sa.ForeignKey("trees.id"), nullable=False),
        sa.Column("tag_id", sa.Integer, sa.ForeignKey("tag.id"), nullable=False),
    )
    op.create_index("ix_tree_tag_tree_id", "tree_tag", ["tree_id"])
    op.create_index("ix_tree_tag_tag_id", "tree_tag", ["tag_id"])

    # Domain event outbox
    op.create_table(
        "domain_event",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("payload", JSONB, nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="raised"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_domain_event_status", "domain_event", ["status"])
    op.create_index("ix_domain_event_created_at", "domain_event", ["created_at"])


def downgrade() -> None:
    op.drop_table("domain_event")
    op.drop_table("tree_tag")
    op.drop_table("tag")
    op.drop_table("trees")
    op.drop_table("planter")
    op.drop_table("entity_relationship")
    op.drop_table("entity")
