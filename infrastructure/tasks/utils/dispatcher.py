"""Keeps Celery out of the notification adapter's import surface."""
from __future__ import annotations

from typing import Optional


class TaskDispatcher:
    def send_push_notification(
        self,
        *,
        user_id: str,
        title: str,
        body: str,
        action_url: Optional[str] = None,
        idempotency_key: str = "",
    ) -> None:
        """Queue push delivery for a notification row that is already stored."""
        from ..tasks.notifications import deliver_push

        # eager in development/test
        deliver_push.delay(
            user_id=user_id,
            title=title,
            body=body,
            action_url=action_url,
            idempotency_key=idempotency_key,
        )
