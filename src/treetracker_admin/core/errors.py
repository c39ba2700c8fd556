"""Custom exception hierarchy for the admin API."""


class AdminApiError(Exception):
    """Base exception for all admin API errors."""


# --- Configuration ---
class ConfigError(AdminApiError):
    """Invalid or missing configuration."""


# --- Query input ---
class FilterError(AdminApiError):
    """Malformed filter or where clause (unknown property, bad operator, bad JSON)."""


# --- Storage ---
class StoreError(AdminApiError):
    """Base for record store and event-log store failures.

    Backend-specific exceptions are wrapped and kept on ``cause``.
    """

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class RecordNotFoundError(StoreError):
    """Requested record does not exist."""

    def __init__(self, model: str, record_id: object) -> None:
        self.model = model
        self.record_id = record_id
        super().__init__(f"{model} {record_id} not found")


class StoreReadError(StoreError):
    """A load or query against the store failed."""


class StoreWriteError(StoreError):
    """A write, commit, or rollback against the store failed."""


# --- Messaging ---
class MessagingError(AdminApiError):
    """Message channel error."""


class PublishError(MessagingError):
    """Publishing a message failed or was not accepted by the broker."""
