"""
Transient user notifications.

Mutations and persistence problems produce a short message for the user,
either a success or an error. Only the most recent one is shown, and it goes
away after a few seconds. Every notification is also logged.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

SUCCESS = "success"
ERROR = "error"

DEFAULT_TIMEOUT = 3.0


@dataclass
class Notification:
    """A message for the user."""
    message: str
    type: str = SUCCESS
    created: float = field(default_factory=time.monotonic)

    @property
    def is_error(self) -> bool:
        return self.type == ERROR

    def expired(self, timeout: float, now: float | None = None) -> bool:
        if now is None:
            now = time.monotonic()
        return now - self.created >= timeout

    def to_dict(self) -> dict[str, str]:
        return {"message": self.message, "type": self.type}


class Notifier:
    """Holds the latest notification until it expires."""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT):
        self.timeout = timeout
        self._latest: Notification | None = None

    def success(self, message: str) -> Notification:
        logger.info("%s", message)
        return self._set(Notification(message, SUCCESS))

    def error(self, message: str) -> Notification:
        logger.warning("%s", message)
        return self._set(Notification(message, ERROR))

    def _set(self, notification: Notification) -> Notification:
        self._latest = notification
        return notification

    @property
    def current(self) -> Notification | None:
        """The latest notification, or None once it has expired."""
        if self._latest is not None and self._latest.expired(self.timeout):
            self._latest = None
        return self._latest

    def pop(self) -> Notification | None:
        """Return the current notification and clear it."""
        notification = self.current
        self._latest = None
        return notification
