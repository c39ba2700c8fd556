"""In-memory message channel for testing and local development.

No external dependencies. Every publish is recorded in the history.
The channel can be told to fail or to withhold acknowledgment so callers'
failure paths can be exercised.
"""

from __future__ import annotations

import itertools
import logging
from typing import Any

from treetracker_admin.core.errors import PublishError
from treetracker_admin.core.models import PublishReceipt

logger = logging.getLogger(__name__)


class MemoryMessageChannel:
    """In-memory channel. Safe within a single asyncio event loop."""

    def __init__(
        self,
        name: str = "memory",
        *,
        acknowledge: bool = True,
        fail_with: Exception | None = None,
    ) -> None:
        self._name = name
        self.acknowledge = acknowledge
        self.fail_with = fail_with
        self._history: list[dict[str, Any]] = []
        self._attempts = 0
        self._sequence = itertools.count(1)
        self._running = False

    async def start(self) -> None:
        self._running = True

    async def stop(self) -> None:
        self._running = False

    async def publish(self, payload: dict[str, Any]) -> PublishReceipt:
        """Record *payload*; raise or withhold ack when so configured."""
        self._attempts += 1
        if self.fail_with is not None:
            logger.warning("Memory channel %s failing publish: %s", self._name, self.fail_with)
            raise PublishError(str(self.fail_with)) from self.fail_with

        self._history.append(payload)
        if not self.acknowledge:
            return PublishReceipt(acknowledged=False, channel=self._name)
        return PublishReceipt(
            acknowledged=True,
            message_id=f"{self._name}-{next(self._sequence)}",
            channel=self._name,
        )

    # ------------------------------------------------------------------
    # Testing helpers
    # ------------------------------------------------------------------

    @property
    def published(self) -> list[dict[str, Any]]:
        """Payloads accepted so far (snapshot)."""
        return list(self._history)

    @property
    def attempts(self) -> int:
        """Publish calls made, including failed ones."""
        return self._attempts

    def clear_history(self) -> None:
        self._history.clear()
        self._attempts = 0
