from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Protocol

from frontdesk.services.exceptions import ErrorCode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notification:
    level: str
    title: str
    message: str
    code: Optional[ErrorCode] = None
    persistent: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class Notifier(Protocol):
    def notify(self, notification: Notification) -> None: ...

    def dismiss(self, code: ErrorCode) -> None: ...


_LEVELS = {
    "success": logging.INFO,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class LoggingNotifier:
    """Writes notifications to the log and keeps the most recent ones."""

    def __init__(self, history: int = 50) -> None:
        self._history = history
        self.recent: List[Notification] = []

    def notify(self, notification: Notification) -> None:
        logger.log(
            _LEVELS.get(notification.level, logging.INFO),
            "%s: %s%s",
            notification.title,
            notification.message,
            f" [{notification.code.value}]" if notification.code else "",
        )
        self.recent.append(notification)
        del self.recent[: -self._history]

    def persistent(self) -> List[Notification]:
        return [item for item in self.recent if item.persistent]

    def dismiss(self, code: ErrorCode) -> None:
        """Clear persistent notifications raised for ``code``."""

        kept = [item for item in self.recent if not (item.persistent and item.code is code)]
        if len(kept) != len(self.recent):
            logger.debug("Dismissed %s notification(s) for %s", len(self.recent) - len(kept), code.value)
        self.recent = kept
