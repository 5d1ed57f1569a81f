"""
Payment processor DTOs (Pydantic v2) used at application boundaries.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel, Field, field_validator


class TransferRequest(BaseModel):
    amount: int = Field(gt=0)
    currency: str = "nzd"
    destination_account: str
    idempotency_key: str
    transfer_group: Optional[str] = None
    metadata: dict[str, str] = Field(default_factory=dict)

    @field_validator("currency")
    @classmethod
    def _lower_currency(cls, v: str) -> str:
        u = (v or "").lower()
        if len(u) != 3 or not u.isalpha():
            raise ValueError("currency must be ISO-4217 alpha-3")
        return u


class TransferResult(BaseModel):
    id: str
    status: str
    # Ledger id on the connected account (destination payment), used for payout linking
    destination_payment: Optional[str] = None


class RefundRequest(BaseModel):
    payment_reference: str
    amount: int = Field(gt=0)
    reason: str = "requested_by_customer"
    idempotency_key: str
    metadata: dict[str, str] = Field(default_factory=dict)


class RefundResult(BaseModel):
    id: str
    status: str
    platform_fee_refunded: Optional[int] = None
    provider_amount_refunded: Optional[int] = None


class ConnectAccount(BaseModel):
    id: str
    charges_enabled: bool = False
    payouts_enabled: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)


class PayoutSnapshot(BaseModel):
    id: str
    amount: int
    currency: str
    status: str
    arrival_date: Optional[datetime] = None
    failure_code: Optional[str] = None
    failure_message: Optional[str] = None
    balance_transaction: Optional[str] = None
    raw: dict[str, Any] = Field(default_factory=dict)


class WebhookEvent(BaseModel):
    id: str
    type: str
    provider: str
    data: dict[str, Any]
    account: Optional[str] = None
    raw_headers: Optional[dict[str, Any]] = None
    raw_body: Optional[bytes] = None

    @property
    def object(self) -> dict[str, Any]:
        obj = self.data.get("object") if isinstance(self.data, dict) else None
        return obj if isinstance(obj, dict) else {}
