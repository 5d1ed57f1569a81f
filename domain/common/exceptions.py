"""领域层业务异常定义，供领域与基础设施使用。

核心（core）层仅负责全局映射与异常处理，尽量避免领域层反向依赖核心层。
"""
from __future__ import annotations

from typing import Optional
from shared.codes import BusinessCode
from shared.codes.payment_codes import PaymentCode


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
        message_key: Optional[str] = None,
        format_params: Optional[dict] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        self.message_key = message_key
        self.format_params = format_params
        super().__init__(self.message)


class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
        message_key: str | None = None,
        format_params: dict | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
            message_key=message_key or "validation.domain",
            format_params=format_params,
        )


class InvalidTransitionException(BusinessException):
    """Requested booking status change is not in the transition table."""

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(
            code=BusinessCode.BOOKING_INVALID_TRANSITION,
            message=f"Invalid booking transition: {current} -> {requested}",
            error_type="InvalidTransition",
            details={"current": current, "requested": requested},
            field="status",
            message_key="booking.invalid_transition",
        )


class InvalidStateException(BusinessException):
    def __init__(self, message: str, *, status: Optional[str] = None, details: Optional[dict] = None):
        full_details = {"status": status} if status else {}
        if details:
            full_details.update(details)
        super().__init__(
            code=BusinessCode.BOOKING_INVALID_STATE,
            message=message,
            error_type="InvalidState",
            details=full_details or None,
            field="status",
            message_key="booking.invalid_state",
        )


class InvalidAmountException(BusinessException):
    def __init__(self, amount: object, *, field: str = "gross"):
        super().__init__(
            code=BusinessCode.EARNINGS_INVALID_AMOUNT,
            message=f"Invalid monetary amount: {amount!r}",
            error_type="InvalidAmount",
            details={"amount": str(amount)},
            field=field,
            message_key="earnings.invalid_amount",
        )


class MissingEarningsException(BusinessException):
    def __init__(self, booking_id: str):
        super().__init__(
            code=BusinessCode.EARNINGS_MISSING,
            message="Earnings record missing and could not be repaired",
            error_type="MissingEarnings",
            details={"booking_id": booking_id},
            message_key="earnings.missing",
        )


class RefundFailedException(BusinessException):
    def __init__(self, booking_id: str, refund_id: Optional[str] = None):
        super().__init__(
            code=BusinessCode.REFUND_FAILED,
            message="Refund with payment processor failed",
            error_type="RefundFailed",
            details={"booking_id": booking_id, "refund_id": refund_id},
            message_key="refund.failed",
        )


class ForbiddenActionException(BusinessException):
    def __init__(self, message: str = "Actor is not allowed to perform this action", *, details: Optional[dict] = None):
        super().__init__(
            code=BusinessCode.FORBIDDEN,
            message=message,
            error_type="Forbidden",
            details=details,
            message_key="auth.forbidden",
        )


class IdempotencyInProgressException(BusinessException):
    def __init__(self, key: str):
        super().__init__(
            code=BusinessCode.IDEMPOTENCY_IN_PROGRESS,
            message="An identical request is already being processed",
            error_type="IdempotencyInProgress",
            details={"idempotency_key": key},
            message_key="request.in_progress",
        )


class ResourceNotFoundException(BusinessException):
    resource: str = "resource"

    def __init__(self, resource_id: Optional[str] = None):
        details = {f"{self.resource}_id": resource_id} if resource_id else None
        super().__init__(
            code=BusinessCode.NOT_FOUND,
            message=f"{self.resource.capitalize()} not found",
            error_type=f"{self.resource.capitalize()}NotFound",
            details=details,
            message_key=f"{self.resource}.not_found",
        )


class BookingNotFoundException(ResourceNotFoundException):
    resource = "booking"


class ServiceNotFoundException(ResourceNotFoundException):
    resource = "service"


class ProviderNotFoundException(ResourceNotFoundException):
    resource = "provider"


class DisputeNotFoundException(ResourceNotFoundException):
    resource = "dispute"


class WebhookSignatureException(BusinessException):
    """Webhook payload failed signature verification."""

    def __init__(self, source: str, reason: str = "invalid_signature"):
        super().__init__(
            code=PaymentCode.SIGNATURE_ERROR,
            message=f"Invalid webhook signature ({source})",
            error_type="WebhookSignatureInvalid",
            details={"source": source, "reason": reason},
            message_key="webhook.signature_invalid",
        )


class WebhookSecretMissingException(BusinessException):
    def __init__(self, source: str):
        super().__init__(
            code=PaymentCode.WEBHOOK_SECRET_MISSING,
            message=f"Webhook secret not configured ({source})",
            error_type="WebhookSecretMissing",
            details={"source": source},
            message_key="webhook.secret_missing",
        )
