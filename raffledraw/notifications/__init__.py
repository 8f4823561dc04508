from .api import NotificationClient
from .dispatcher import LoggingDispatcher, NotificationDispatcher

__all__ = ["LoggingDispatcher", "NotificationClient", "NotificationDispatcher"]
