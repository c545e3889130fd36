"""
User-facing notifications for load-shedding transitions.

Each notification is logged and published as JSON
(``{"level", "message", "ts"}``) on the notification channel, where the
dashboard shows it as a toast. Delivery is best-effort: a failed publish
is logged and never raised, and nothing waits for an acknowledgement.

CHANGELOG:
- 2026-10-05: Initial creation (STORY-008)

TODO:
- None
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from controller.src.store import DocumentStore

logger = logging.getLogger(__name__)


class NotificationLevel(str, Enum):
    WARNING = "warning"
    SUCCESS = "success"


class Notifier:
    """Publishes notifications to the dashboard.

    Args:
        store: The realtime document store used for publishing.
        channel: Notification channel name.
    """

    def __init__(self, store: DocumentStore, *, channel: str = "notifications") -> None:
        self._store = store
        self._channel = channel

    async def warning(self, message: str) -> None:
        """Publish a warning notification (shedding activated)."""
        logger.warning(message)
        await self._publish(NotificationLevel.WARNING, message)

    async def success(self, message: str) -> None:
        """Publish a success notification (shedding cleared)."""
        logger.info(message)
        await self._publish(NotificationLevel.SUCCESS, message)

    async def _publish(self, level: NotificationLevel, message: str) -> None:
        payload = json.dumps(
            {
                "level": level.value,
                "message": message,
                "ts": datetime.now(tz=UTC).isoformat(),
            }
        )
        try:
            await self._store.publish(self._channel, payload)
        except Exception:
            logger.warning("Failed to publish %s notification", level.value, exc_info=True)
