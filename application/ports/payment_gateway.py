"""
Payment processor port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements adapters and
translates SDK errors into ``ProcessorError`` at its boundary.
"""
from __future__ import annotations

from typing import Any, Optional, Protocol, Sequence, runtime_checkable

from application.dtos.payments import (
    ConnectAccount,
    RefundRequest,
    RefundResult,
    TransferRequest,
    TransferResult,
    WebhookEvent,
)
from shared.codes.payment_codes import BALANCE_INSUFFICIENT


class ProcessorError(Exception):
    """Narrow error shape for any payment processor failure."""

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        error_type: Optional[str] = None,
        request_id: Optional[str] = None,
        status_code: Optional[int] = None,
        retryable: bool = False,
    ) -> None:
        self.message = message
        self.code = code
        self.error_type = error_type
        self.request_id = request_id
        self.status_code = status_code
        self.retryable = retryable
        super().__init__(message)

    @property
    def is_balance_insufficient(self) -> bool:
        return self.code == BALANCE_INSUFFICIENT

    @property
    def reason(self) -> str:
        return self.code or self.error_type or "processor_error"

    def as_log_fields(self) -> dict[str, Any]:
        return {
            "processor_code": self.code,
            "processor_type": self.error_type,
            "processor_request_id": self.request_id,
            "processor_status": self.status_code,
            "error": self.message,
        }


@runtime_checkable
class PaymentProcessor(Protocol):
    """Gateway protocol for the marketplace payment processor.

    Every method raises ``ProcessorError`` on failure.
    """

    provider: str

    async def create_transfer(self, req: TransferRequest) -> TransferResult: ...

    async def create_refund(self, req: RefundRequest) -> RefundResult: ...

    async def retrieve_account(self, account_id: str) -> ConnectAccount: ...

    async def list_payout_ledger_refs(self, payout_id: str, account_id: str) -> Sequence[str]: ...

    def parse_webhook(self, headers: dict[str, Any], body: bytes, *, secret: Optional[str]) -> WebhookEvent: ...
