import pytest
from kombu.exceptions import OperationalError

from application.services.notification_service import NotificationService
from domain.booking.events import BookingAccepted
from infrastructure.notifications import DatabaseNotificationDispatcher


class _RecordingTasks:
    def __init__(self, fail=False):
        self.pushes = []
        self.fail = fail

    def send_push_notification(self, **kwargs):
        if self.fail:
            raise OperationalError("broker unreachable")
        self.pushes.append(kwargs)


@pytest.mark.asyncio
async def test_notification_stored_once_per_key(uow_factory):
    tasks = _RecordingTasks()
    dispatcher = DatabaseNotificationDispatcher(uow_factory, tasks)
    payload = {"title": "Booking accepted", "body": "Pay now", "action_url": "/dashboard/bookings/bkg_1"}

    assert await dispatcher.notify("user_1", "booking.accepted", payload, "booking.accepted:bkg_1:user_1") is True
    assert await dispatcher.notify("user_1", "booking.accepted", payload, "booking.accepted:bkg_1:user_1") is False

    async with uow_factory(readonly=True) as uow:
        stored = await uow.notification_repository.list_for_user("user_1")
    assert len(stored) == 1
    assert stored[0].title == "Booking accepted"
    assert stored[0].action_url == "/dashboard/bookings/bkg_1"
    assert len(tasks.pushes) == 1
    assert tasks.pushes[0]["idempotency_key"] == "booking.accepted:bkg_1:user_1"


@pytest.mark.asyncio
async def test_broker_outage_does_not_lose_notification(uow_factory):
    dispatcher = DatabaseNotificationDispatcher(uow_factory, _RecordingTasks(fail=True))

    assert await dispatcher.notify("user_2", "kyc.status_changed", {"title": "Identity verified"}, "identity:e1:user_2")

    async with uow_factory(readonly=True) as uow:
        assert len(await uow.notification_repository.list_for_user("user_2")) == 1


@pytest.mark.asyncio
async def test_service_renders_event_text(uow_factory):
    service = NotificationService(DatabaseNotificationDispatcher(uow_factory))

    delivered = await service.publish([BookingAccepted("bkg_9", "user_3"), BookingAccepted("bkg_9", "user_3")])

    assert delivered == 1
    async with uow_factory(readonly=True) as uow:
        (stored,) = await uow.notification_repository.list_for_user("user_3")
    assert stored.title == "Booking accepted"
    assert stored.action_url == "/dashboard/bookings/bkg_9"
    assert stored.payload["booking_id"] == "bkg_9"


@pytest.mark.asyncio
async def test_dispatch_failures_are_swallowed():
    class _Broken:
        async def notify(self, *args, **kwargs):
            raise RuntimeError("db down")

    service = NotificationService(_Broken())
    assert await service.notify("user_4", "booking.paid", {}, "k") is False
