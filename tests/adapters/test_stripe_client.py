import json

import pytest


stripe = pytest.importorskip("stripe")

from application.dtos.payments import RefundRequest, TransferRequest  # noqa: E402
from application.ports.payment_gateway import ProcessorError  # noqa: E402
from domain.common.exceptions import WebhookSecretMissingException, WebhookSignatureException  # noqa: E402
from infrastructure.external.payments.stripe_client import StripeClient, prorate  # noqa: E402


@pytest.fixture
def client():
    return StripeClient("sk_test_123")


def test_prorate_rounds_half_up():
    assert prorate(1150, 5750, 11500) == 575
    assert prorate(1, 1, 2) == 1
    assert prorate(100, 10, 0) == 0


@pytest.mark.asyncio
async def test_create_transfer_passes_idempotency_key(client, monkeypatch):
    calls = []

    class _FakeTransfer:
        @staticmethod
        def create(**kwargs):
            calls.append(kwargs)
            return {"id": "tr_1", "reversed": False, "destination_payment": {"id": "py_1"}}

    monkeypatch.setattr(stripe, "Transfer", _FakeTransfer)

    result = await client.create_transfer(
        TransferRequest(amount=10350, currency="NZD", destination_account="acct_1", idempotency_key="payout_earn_1")
    )

    assert result.id == "tr_1"
    assert result.status == "succeeded"
    assert result.destination_payment == "py_1"
    assert calls[0]["idempotency_key"] == "payout_earn_1"
    assert calls[0]["currency"] == "nzd"
    assert calls[0]["destination"] == "acct_1"


@pytest.mark.asyncio
async def test_sdk_errors_become_processor_errors(client, monkeypatch):
    class _FakeTransfer:
        @staticmethod
        def create(**kwargs):
            raise stripe.InvalidRequestError("Insufficient funds", param="amount", code="balance_insufficient")

    monkeypatch.setattr(stripe, "Transfer", _FakeTransfer)

    with pytest.raises(ProcessorError) as exc:
        await client.create_transfer(
            TransferRequest(amount=100, destination_account="acct_1", idempotency_key="payout_earn_2")
        )
    assert exc.value.is_balance_insufficient
    assert exc.value.retryable is False


@pytest.mark.asyncio
async def test_connection_errors_are_retried(client, monkeypatch):
    attempts = []

    class _FlakyAccount:
        @staticmethod
        def retrieve(account_id):
            attempts.append(account_id)
            if len(attempts) == 1:
                raise stripe.APIConnectionError("connection reset")
            return {"id": account_id, "charges_enabled": True, "payouts_enabled": True, "metadata": {"providerId": "prov_1"}}

    monkeypatch.setattr(stripe, "Account", _FlakyAccount)

    account = await client.retrieve_account("acct_1")

    assert len(attempts) == 2
    assert account.payouts_enabled is True
    assert account.metadata == {"providerId": "prov_1"}


@pytest.mark.asyncio
async def test_refund_reverses_transfer_and_prorates_fee(client, monkeypatch):
    refund_params = {}

    class _FakeIntent:
        @staticmethod
        def retrieve(payment_intent_id):
            return {"id": payment_intent_id, "latest_charge": "ch_1"}

    class _FakeCharge:
        @staticmethod
        def retrieve(charge_id, expand=None):
            assert expand == ["transfer"]
            return {"id": charge_id, "amount": 11500, "application_fee_amount": 1150, "transfer": {"id": "tr_1", "amount": 10350}}

    class _FakeRefund:
        @staticmethod
        def create(**kwargs):
            refund_params.update(kwargs)
            return {"id": "re_1", "status": "pending"}

    monkeypatch.setattr(stripe, "PaymentIntent", _FakeIntent)
    monkeypatch.setattr(stripe, "Charge", _FakeCharge)
    monkeypatch.setattr(stripe, "Refund", _FakeRefund)

    result = await client.create_refund(
        RefundRequest(payment_reference="pi_1", amount=5750, idempotency_key="booking:cancel:u1:bkg_1:refund")
    )

    assert refund_params["reverse_transfer"] is True
    assert refund_params["refund_application_fee"] is True
    assert refund_params["idempotency_key"] == "booking:cancel:u1:bkg_1:refund"
    assert result.status == "pending"
    assert result.platform_fee_refunded == 575
    assert result.provider_amount_refunded == 5175


@pytest.mark.asyncio
async def test_payout_ledger_refs_skip_payout_row(client, monkeypatch):
    seen = {}

    class _Page:
        def auto_paging_iter(self):
            yield {"type": "payout", "source": "po_1"}
            yield {"type": "payment", "source": "py_1"}
            yield {"type": "transfer", "source": {"id": "py_2"}}

    class _FakeBalanceTransaction:
        @staticmethod
        def list(**kwargs):
            seen.update(kwargs)
            return _Page()

    monkeypatch.setattr(stripe, "BalanceTransaction", _FakeBalanceTransaction)

    refs = await client.list_payout_ledger_refs("po_1", "acct_1")

    assert refs == ["py_1", "py_2"]
    assert seen["payout"] == "po_1"
    assert seen["stripe_account"] == "acct_1"


def test_parse_webhook(client, monkeypatch):
    class _FakeWebhook:
        @staticmethod
        def construct_event(payload, sig_header, secret, tolerance=None):
            return {}

    monkeypatch.setattr(stripe, "Webhook", _FakeWebhook)
    body = json.dumps(
        {"id": "evt_1", "type": "account.updated", "account": "acct_1", "data": {"object": {"id": "acct_1"}}}
    ).encode()

    evt = client.parse_webhook({"stripe-signature": "t=1,v1=abc"}, body, secret="whsec_test")

    assert evt.id == "evt_1"
    assert evt.type == "account.updated"
    assert evt.account == "acct_1"
    assert evt.object == {"id": "acct_1"}


def test_parse_webhook_rejects_bad_signature(client, monkeypatch):
    class _FakeWebhook:
        @staticmethod
        def construct_event(payload, sig_header, secret, tolerance=None):
            raise stripe.SignatureVerificationError("No signatures found", sig_header)

    monkeypatch.setattr(stripe, "Webhook", _FakeWebhook)

    with pytest.raises(WebhookSignatureException) as exc:
        client.parse_webhook({"Stripe-Signature": "bogus"}, b"{}", secret="whsec_test")
    assert exc.value.details["reason"] == "signature_mismatch"

    with pytest.raises(WebhookSignatureException) as exc:
        client.parse_webhook({}, b"{}", secret="whsec_test")
    assert exc.value.details["reason"] == "missing_signature_header"

    with pytest.raises(WebhookSecretMissingException):
        client.parse_webhook({"Stripe-Signature": "t=1"}, b"{}", secret=None)


def test_factory_returns_none_without_key(monkeypatch):
    from core.settings import payment_settings
    from infrastructure.external.payments import get_payment_processor

    monkeypatch.setattr(payment_settings.stripe, "secret_key", None)
    assert get_payment_processor() is None

    monkeypatch.setattr(payment_settings.stripe, "secret_key", "sk_test_456")
    assert isinstance(get_payment_processor(), StripeClient)
