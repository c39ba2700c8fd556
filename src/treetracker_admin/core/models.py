"""Core domain models used across the admin API.

Field names are snake_case in Python; the HTTP surface speaks camelCase
through aliases, matching the column names clients already send in filters.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .enums import DomainEventStatus, EventType
from .ids import iso_timestamp, new_id, utc_now


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Trees
# ---------------------------------------------------------------------------

class TreeTag(_CamelModel):
    """Link between a tree and a tag."""

    id: int
    tree_id: int
    tag_id: int


class Tree(_CamelModel):
    """A tree capture as stored in the ``trees`` table."""

    id: int
    uuid: str | None = None
    time_created: datetime | None = None
    time_updated: datetime | None = None
    planter_id: int | None = None
    planter_identifier: str | None = None
    device_identifier: str | None = None
    planting_organization_id: int | None = None
    image_url: str | None = None
    lat: float | None = None
    lon: float | None = None
    gps_accuracy: int | None = None
    note: str | None = None
    active: bool = True
    approved: bool | None = None  # None: not yet verified
    rejection_reason: str | None = None
    species_id: int | None = None
    morphology: str | None = None
    age: str | None = None
    capture_approval_tag: str | None = None
    token_id: str | None = None
    tree_tags: list[TreeTag] | None = None  # Only populated by single lookups


class TreeUpdate(_CamelModel):
    """Partial update of the mutable tree fields.

    Only fields present in the request body are written. An explicit
    ``null`` is a write of NULL, not an omission, except for ``active``
    which is NOT NULL and rejects ``null``.
    """

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="forbid",
    )

    active: bool = True
    approved: bool | None = None
    rejection_reason: str | None = None
    species_id: int | None = None
    morphology: str | None = None
    age: str | None = None
    capture_approval_tag: str | None = None
    note: str | None = None

    def sets(self, field: str) -> bool:
        """True if *field* was supplied by the caller."""
        return field in self.model_fields_set

    def changes(self) -> dict[str, Any]:
        """Column → value for every supplied field."""
        return self.model_dump(exclude_unset=True)


class TreeCount(BaseModel):
    count: int


# ---------------------------------------------------------------------------
# Domain events
# ---------------------------------------------------------------------------

class VerifyCaptureProcessed(BaseModel):
    """Published when a capture is approved or rejected.

    ``id`` carries the tree's external UUID; ``reference_id`` its row id.
    """

    id: str | None
    reference_id: int
    type: str = EventType.VERIFY_CAPTURE_PROCESSED.value
    approved: bool | None
    rejection_reason: str | None = None
    created_at: str = Field(default_factory=iso_timestamp)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class DomainEvent(BaseModel):
    """Durable record of an event awaiting (or past) publication."""

    id: str = Field(default_factory=new_id)
    payload: dict[str, Any]
    status: DomainEventStatus = DomainEventStatus.RAISED
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


# ---------------------------------------------------------------------------
# Messaging
# ---------------------------------------------------------------------------

class PublishReceipt(BaseModel):
    """Result of a publish attempt.

    ``acknowledged`` is True only once the broker has accepted the message.
    """

    acknowledged: bool
    message_id: str | None = None
    channel: str = ""
