"""
预订API路由 - FastAPI表现层

Thin layer: actors come from the bearer token, everything else is the
application services' job.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Header

from api.dependencies import (
    Actor,
    get_booking_service,
    get_cancellation_coordinator,
    get_current_actor,
    get_dispute_coordinator,
    get_payout_orchestrator,
)
from application.dtos.bookings import (
    BookingDTO,
    CancelBookingDTO,
    CancellationResultDTO,
    CompletionResultDTO,
    CreateBookingDTO,
    DisputeDTO,
    OpenDisputeDTO,
    RespondBookingDTO,
)
from application.services.booking_service import BookingApplicationService
from application.services.payout_service import PayoutOrchestrator
from application.services.refund_service import CancellationCoordinator, DisputeCoordinator
from core.i18n import t
from core.response import Response as ApiResponse, success_response

router = APIRouter(prefix="/bookings", tags=["Bookings"])


@router.post("", summary="创建预订", response_model=ApiResponse[BookingDTO])
async def create_booking(
    payload: CreateBookingDTO,
    actor: Actor = Depends(get_current_actor),
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
    service: BookingApplicationService = Depends(get_booking_service),
):
    """
    客户预订一项服务

    - **service_id**: 服务 id（必须存在且处于上架状态）
    - **scheduled_date**: 预约时间（可选，不能早于当前时间）

    相同请求在 10 分钟内重复提交返回同一条预订。
    """
    booking = await service.create_booking(
        actor.user_id,
        payload.service_id,
        scheduled_date=payload.scheduled_date,
        idempotency_key=idempotency_key,
    )
    return success_response(data=booking, message=t("booking.created"))


@router.get("/{booking_id}", summary="预订详情", response_model=ApiResponse[BookingDTO])
async def get_booking(
    booking_id: str,
    actor: Actor = Depends(get_current_actor),
    service: BookingApplicationService = Depends(get_booking_service),
):
    booking = await service.get_booking(booking_id, actor.user_id, is_admin=actor.is_admin)
    return success_response(data=booking)


@router.post("/{booking_id}/respond", summary="服务者响应预订", response_model=ApiResponse[BookingDTO])
async def respond_to_booking(
    booking_id: str,
    payload: RespondBookingDTO,
    actor: Actor = Depends(get_current_actor),
    service: BookingApplicationService = Depends(get_booking_service),
):
    booking = await service.respond_to_booking(booking_id, actor.user_id, payload.action, payload.reason)
    return success_response(data=booking, message=t("booking.updated"))


@router.post("/{booking_id}/complete", summary="服务者标记完成", response_model=ApiResponse[BookingDTO])
async def mark_completed(
    booking_id: str,
    actor: Actor = Depends(get_current_actor),
    service: BookingApplicationService = Depends(get_booking_service),
):
    booking = await service.mark_completed_by_provider(booking_id, actor.user_id)
    return success_response(data=booking, message=t("booking.updated"))


@router.post(
    "/{booking_id}/confirm-completion",
    summary="客户确认完成",
    response_model=ApiResponse[CompletionResultDTO],
)
async def confirm_completion(
    booking_id: str,
    actor: Actor = Depends(get_current_actor),
    orchestrator: PayoutOrchestrator = Depends(get_payout_orchestrator),
):
    """
    确认完成并释放托管资金

    打款失败不会影响确认结果：``payout_outcome`` 为 queued 时由定时任务重试。
    """
    result = await orchestrator.confirm_completion(booking_id, actor.user_id)
    return success_response(data=result, message=t("booking.completed"))


@router.post("/{booking_id}/cancel", summary="取消预订", response_model=ApiResponse[CancellationResultDTO])
async def cancel_booking(
    booking_id: str,
    payload: Optional[CancelBookingDTO] = None,
    actor: Actor = Depends(get_current_actor),
    coordinator: CancellationCoordinator = Depends(get_cancellation_coordinator),
):
    reason = payload.reason if payload else None
    result = await coordinator.cancel_booking(booking_id, actor.user_id, reason)
    return success_response(data=result, message=t("booking.canceled"))


@router.post("/{booking_id}/dispute", summary="发起争议", response_model=ApiResponse[DisputeDTO])
async def open_dispute(
    booking_id: str,
    payload: OpenDisputeDTO,
    actor: Actor = Depends(get_current_actor),
    coordinator: DisputeCoordinator = Depends(get_dispute_coordinator),
):
    dispute = await coordinator.open_dispute(booking_id, actor.user_id, payload.reason)
    return success_response(data=dispute, message=t("dispute.opened"))
