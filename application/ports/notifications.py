"""
Notification dispatcher port. Fire-and-forget from the caller's point of view.
"""
from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class NotificationDispatcher(Protocol):

    async def notify(
        self,
        user_id: str,
        event: str,
        payload: dict[str, Any],
        idempotency_key: str,
    ) -> bool:
        """Deliver once per idempotency key; returns False for duplicates."""
        ...
