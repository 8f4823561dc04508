"""Notification dispatchers used to tell winners about their prize."""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class NotificationDispatcher(Protocol):
    """Fire-and-forget channel to a user.

    Implementations may raise on delivery failure; callers log and carry on.
    """

    def notify(self, user_id: int, winner_id: int, message: str) -> None: ...


class LoggingDispatcher:
    """Dispatcher that only writes the message to the log."""

    def __init__(self, level: int = logging.INFO) -> None:
        self.level = level

    def notify(self, user_id: int, winner_id: int, message: str) -> None:
        logger.log(
            self.level, f"Notify user {user_id} about winner {winner_id}: {message}"
        )


__all__ = ["LoggingDispatcher", "NotificationDispatcher"]
