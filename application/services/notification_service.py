"""
Post-commit notification dispatch.

Services collect domain events while they work and hand them over here only
after their writes are committed. Delivery failures are logged and swallowed:
notifications never decide the outcome of a booking operation.
"""
from __future__ import annotations

from dataclasses import asdict
from typing import Any, Iterable, Optional

from application.ports.notifications import NotificationDispatcher
from core.i18n import t
from core.logging_config import get_logger
from domain.booking.events import BookingEvent


logger = get_logger(__name__)

_ACTION_URLS = {
    "booking.requested": "/dashboard/provider/bookings/{booking_id}",
    "booking.paid": "/dashboard/provider/bookings/{booking_id}",
    "booking.completed": "/dashboard/provider/earnings",
}


def _event_params(event: BookingEvent) -> dict[str, Any]:
    data = asdict(event)
    data.pop("occurred_at", None)
    return {k: v for k, v in data.items() if isinstance(v, (str, int, bool)) or v is None}


class NotificationService:
    def __init__(self, dispatcher: Optional[NotificationDispatcher]) -> None:
        self.dispatcher = dispatcher

    async def publish(self, events: Iterable[BookingEvent]) -> int:
        """Dispatch booking events; returns how many were newly delivered."""
        delivered = 0
        for event in events:
            params = _event_params(event)
            url = _ACTION_URLS.get(event.name, "/dashboard/bookings/{booking_id}").format(**params)
            payload = {
                "title": t(f"notify.{event.name}.title"),
                "body": t(f"notify.{event.name}.body", **params),
                "action_url": url,
                "booking_id": event.booking_id,
            }
            if await self.notify(event.recipient_user_id, event.name, payload, event.dedupe_key()):
                delivered += 1
        return delivered

    async def notify(self, user_id: str, event: str, payload: dict[str, Any], idempotency_key: str) -> bool:
        if self.dispatcher is None or not user_id:
            return False
        try:
            return await self.dispatcher.notify(user_id, event, payload, idempotency_key)
        except Exception as exc:
            logger.warning(
                "notification_dispatch_failed",
                user_id=user_id,
                notification_event=event,
                idempotency_key=idempotency_key,
                error=str(exc),
            )
            return False

    async def notify_template(self, user_id: str, event: str, template: str, idempotency_key: str, **extra: Any) -> bool:
        payload = {"title": t(f"{template}.title"), "body": t(f"{template}.body"), **extra}
        return await self.notify(user_id, event, payload, idempotency_key)
