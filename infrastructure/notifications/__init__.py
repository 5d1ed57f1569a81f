from .dispatcher import DatabaseNotificationDispatcher

__all__ = ["DatabaseNotificationDispatcher"]
