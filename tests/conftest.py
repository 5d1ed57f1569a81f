"""Pytest bootstrap configuration.

Ensure mandatory environment variables are set before test collection
and module imports that depend on application settings.
"""
import os

# Mandatory secret key for settings validation
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DEBUG", "false")

import functools
import json
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from application.dtos.payments import (
    ConnectAccount,
    RefundResult,
    TransferResult,
    WebhookEvent,
)
from application.services.idempotency import IdempotencyGuard
from application.services.notification_service import NotificationService
from domain.booking.entity import Booking, BookingStatus
from domain.common.config import PlatformConfig
from domain.common.exceptions import WebhookSecretMissingException, WebhookSignatureException
from domain.provider.entity import Provider, Service
from infrastructure.idempotency.sql_store import SQLAlchemyIdempotencyStore
from infrastructure.models import Base
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


class StubProcessor:
    """In-memory payment processor; transfer/refund ids derive from the idempotency key."""

    provider = "stripe"

    def __init__(self):
        self.transfers = []
        self.refunds = []
        self.transfer_error: Optional[Exception] = None
        self.refund_error: Optional[Exception] = None
        self.refund_status = "succeeded"
        self.accounts = {}
        self.ledger_refs = {}

    async def create_transfer(self, req):
        self.transfers.append(req)
        if self.transfer_error is not None:
            raise self.transfer_error
        return TransferResult(
            id=f"tr_{req.idempotency_key}",
            status="paid",
            destination_payment=f"py_{req.idempotency_key}",
        )

    async def create_refund(self, req):
        self.refunds.append(req)
        if self.refund_error is not None:
            raise self.refund_error
        return RefundResult(id=f"re_{len(self.refunds)}", status=self.refund_status)

    async def retrieve_account(self, account_id):
        return self.accounts.get(account_id) or ConnectAccount(id=account_id)

    async def list_payout_ledger_refs(self, payout_id, account_id):
        return list(self.ledger_refs.get(payout_id, []))

    def parse_webhook(self, headers, body, *, secret):
        if not secret:
            raise WebhookSecretMissingException("stub")
        if headers.get("stripe-signature") != "valid":
            raise WebhookSignatureException("stub", "signature_mismatch")
        payload = json.loads(body)
        return WebhookEvent(
            id=payload["id"],
            type=payload["type"],
            provider=self.provider,
            data=payload.get("data") or {},
            account=payload.get("account"),
        )


class RecordingDispatcher:
    """Notification dispatcher that keeps every delivery in memory."""

    def __init__(self):
        self.sent = []
        self._keys = set()

    async def notify(self, user_id, event, payload, idempotency_key):
        if idempotency_key in self._keys:
            return False
        self._keys.add(idempotency_key)
        self.sent.append(
            {"user_id": user_id, "event": event, "payload": payload, "idempotency_key": idempotency_key}
        )
        return True

    def events_for(self, user_id):
        return [n["event"] for n in self.sent if n["user_id"] == user_id]


CUSTOMER = "user_customer"
PROVIDER_USER = "user_provider"
PROVIDER_ID = "prov_1"
SERVICE_ID = "svc_1"


class Seeder:
    def __init__(self, uow_factory):
        self.uow_factory = uow_factory

    async def provider(self, provider_id=PROVIDER_ID, user_id=PROVIDER_USER, **fields) -> Provider:
        fields.setdefault("connect_account_id", "acct_1")
        fields.setdefault("charges_enabled", True)
        fields.setdefault("payouts_enabled", True)
        async with self.uow_factory() as uow:
            return await uow.provider_repository.create(Provider(id=provider_id, user_id=user_id, **fields))

    async def service(self, provider_id=PROVIDER_ID, service_id=SERVICE_ID, price=11500, **fields) -> Service:
        async with self.uow_factory() as uow:
            return await uow.service_repository.create(
                Service(id=service_id, provider_id=provider_id, title="Lawn mowing", price=price, **fields)
            )

    async def marketplace(self, **provider_fields):
        provider = await self.provider(**provider_fields)
        service = await self.service(provider_id=provider.id)
        return provider, service

    async def booking(
        self,
        status=BookingStatus.PENDING,
        *,
        booking_id=None,
        customer_id=CUSTOMER,
        provider_id=PROVIDER_ID,
        service_id=SERVICE_ID,
        price=11500,
        scheduled_date=None,
        payment_intent_id=None,
    ) -> Booking:
        if scheduled_date is None:
            scheduled_date = datetime.now(timezone.utc) + timedelta(days=3)
        async with self.uow_factory() as uow:
            return await uow.booking_repository.create(
                Booking(
                    id=booking_id,
                    customer_id=customer_id,
                    provider_id=provider_id,
                    service_id=service_id,
                    status=status,
                    price_at_booking=price,
                    scheduled_date=scheduled_date,
                    payment_intent_id=payment_intent_id,
                )
            )

    async def get_booking(self, booking_id):
        async with self.uow_factory(readonly=True) as uow:
            return await uow.booking_repository.get_by_id(booking_id)

    async def get_earnings(self, booking_id):
        async with self.uow_factory(readonly=True) as uow:
            return await uow.earnings_repository.get_by_booking(booking_id)

    async def get_provider(self, provider_id=PROVIDER_ID):
        async with self.uow_factory(readonly=True) as uow:
            return await uow.provider_repository.get_by_id(provider_id)

    async def refunds(self, booking_id):
        async with self.uow_factory(readonly=True) as uow:
            return await uow.refund_repository.list_by_booking(booking_id)


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'settlement.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(bind=engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def uow_factory(session_factory):
    return functools.partial(SQLAlchemyUnitOfWork, session_factory)


@pytest.fixture
def seed(uow_factory):
    return Seeder(uow_factory)


@pytest.fixture
def idempotency_store(session_factory):
    return SQLAlchemyIdempotencyStore(session_factory)


@pytest.fixture
def guard(idempotency_store):
    return IdempotencyGuard(idempotency_store)


@pytest.fixture
def processor():
    return StubProcessor()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def notifications(dispatcher):
    return NotificationService(dispatcher)


@pytest.fixture
def config():
    return PlatformConfig(fee_bps=1000, currency="nzd", payout_max_attempts=3)
