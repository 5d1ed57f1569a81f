"""
In-app notification dispatcher backed by the notifications table.

The unique idempotency key makes delivery exactly-once per key; push
fan-out is queued only for newly created rows.
"""
from __future__ import annotations

from typing import Any, Callable, Optional

from kombu.exceptions import OperationalError

from core.logging_config import get_logger
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.notification.entity import Notification
from infrastructure.tasks.utils.dispatcher import TaskDispatcher


logger = get_logger(__name__)


class DatabaseNotificationDispatcher:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        tasks: Optional[TaskDispatcher] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self._tasks = tasks

    async def notify(self, user_id: str, event: str, payload: dict[str, Any], idempotency_key: str) -> bool:
        notification = Notification(
            id=None,
            user_id=user_id,
            event=event,
            title=str(payload.get("title") or event),
            body=str(payload.get("body") or ""),
            idempotency_key=idempotency_key,
            action_url=payload.get("action_url"),
            payload=payload,
        )
        async with self._uow_factory() as uow:
            created = await uow.notification_repository.create_once(notification)

        if not created:
            logger.debug("notification_duplicate", user_id=user_id, idempotency_key=idempotency_key)
            return False

        logger.info("notification_created", user_id=user_id, notification_event=event)
        if self._tasks is not None:
            try:
                self._tasks.send_push_notification(
                    user_id=user_id,
                    title=notification.title,
                    body=notification.body,
                    action_url=notification.action_url,
                    idempotency_key=idempotency_key,
                )
            except OperationalError as exc:
                # 站内通知已落库，推送失败不影响结果
                logger.warning("push_enqueue_failed", user_id=user_id, error=str(exc))
        return True
