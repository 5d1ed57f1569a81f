"""Infrastructure models package exports."""
from .base import Base, metadata
from .provider import ProviderModel, ServiceModel
from .booking import BookingModel, BookingCancellationModel, DisputeModel
from .earnings import ProviderEarningsModel, ProviderPayoutModel
from .payment import RefundModel
from .idempotency import IdempotencyRecordModel
from .notification import NotificationModel

__all__ = [
    "Base",
    "metadata",
    "ProviderModel",
    "ServiceModel",
    "BookingModel",
    "BookingCancellationModel",
    "DisputeModel",
    "ProviderEarningsModel",
    "ProviderPayoutModel",
    "RefundModel",
    "IdempotencyRecordModel",
    "NotificationModel",
]
