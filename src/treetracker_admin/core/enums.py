"""Enumerations used across the admin API."""

from enum import Enum


class DomainEventStatus(str, Enum):
    RAISED = "raised"
    SENT = "sent"


class IsolationLevel(str, Enum):
    """Transaction isolation levels, valued as PostgreSQL spells them."""

    READ_UNCOMMITTED = "READ UNCOMMITTED"
    READ_COMMITTED = "READ COMMITTED"
    REPEATABLE_READ = "REPEATABLE READ"
    SERIALIZABLE = "SERIALIZABLE"


class StorageBackend(str, Enum):
    POSTGRES = "postgres"
    MEMORY = "memory"


class MessagingBackend(str, Enum):
    MEMORY = "memory"
    REDIS = "redis"


class EventType(str, Enum):
    VERIFY_CAPTURE_PROCESSED = "VerifyCaptureProcessed"
