"""
Shared booking helpers used by several application services.

Status writes are compare-and-set: the row is only updated while it still
holds the status the caller validated against.
"""
from __future__ import annotations

from domain.booking.entity import Booking, BookingStatus
from domain.booking.repository import BookingRepository
from domain.booking.state_machine import assert_resolution, assert_transition
from domain.common.config import PlatformConfig
from domain.common.exceptions import InvalidTransitionException, MissingEarningsException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.earnings.calculator import InclusiveTaxRule, calculate_earnings
from domain.earnings.entity import ProviderEarnings
from domain.provider.entity import Provider, Service
from core.logging_config import get_logger


logger = get_logger(__name__)


async def transition_booking(
    repo: BookingRepository,
    booking: Booking,
    requested: BookingStatus,
    *,
    resolution: bool = False,
) -> BookingStatus:
    """Validate and persist ``booking.status -> requested``.

    Raises InvalidTransitionException when the table forbids the move or when
    a concurrent writer changed the row first.
    """
    validate = assert_resolution if resolution else assert_transition
    expected = booking.status
    target = validate(expected, requested)
    if await repo.transition(booking, expected, target):
        return target

    fresh = await repo.get_by_id(booking.id)
    current = fresh.status.value if fresh else expected.value
    logger.warning(
        "booking_transition_conflict",
        booking_id=booking.id,
        expected=expected.value,
        current=current,
        requested=target.value,
    )
    raise InvalidTransitionException(current, target.value)


def compute_held_earnings(
    booking: Booking,
    provider: Provider,
    service: Service | None,
    config: PlatformConfig,
) -> ProviderEarnings:
    # service flag wins, then provider flag
    charges_tax = service.charges_gst if service and service.charges_gst is not None else provider.charges_gst
    breakdown = calculate_earnings(
        booking.price_at_booking,
        charges_tax,
        fee_bps=config.fee_bps_for_plan(provider.plan.value, provider.fee_override_bps),
        tax_rule=InclusiveTaxRule(config.tax_rate_bps),
    )
    return ProviderEarnings.held(booking.id, provider.id, breakdown, config.currency)


async def ensure_held_earnings(
    uow: AbstractUnitOfWork,
    booking: Booking,
    config: PlatformConfig,
) -> ProviderEarnings:
    """Return the booking's earnings row, creating a ``held`` row when missing."""
    existing = await uow.earnings_repository.get_by_booking(booking.id)
    if existing is not None:
        return existing

    provider = await uow.provider_repository.get_by_id(booking.provider_id)
    if provider is None:
        logger.error("earnings_repair_failed", booking_id=booking.id, provider_id=booking.provider_id)
        raise MissingEarningsException(booking.id)
    service = await uow.service_repository.get_by_id(booking.service_id)

    earnings = await uow.earnings_repository.upsert_held(
        compute_held_earnings(booking, provider, service, config)
    )
    logger.info(
        "earnings_held",
        booking_id=booking.id,
        provider_id=provider.id,
        gross=earnings.gross_amount,
        fee=earnings.platform_fee_amount,
        gst=earnings.gst_amount,
        net=earnings.net_amount,
    )
    return earnings
