"""
管理员API路由
"""
from fastapi import APIRouter, Depends

from api.dependencies import Actor, get_dispute_coordinator, require_admin
from application.dtos.bookings import DisputeDTO, ResolveDisputeDTO
from application.services.refund_service import DisputeCoordinator
from core.i18n import t
from core.response import Response as ApiResponse, success_response

router = APIRouter(prefix="/admin", tags=["Admin"])


@router.post("/disputes/{dispute_id}/resolve", summary="裁决争议", response_model=ApiResponse[DisputeDTO])
async def resolve_dispute(
    dispute_id: str,
    payload: ResolveDisputeDTO,
    admin: Actor = Depends(require_admin),
    coordinator: DisputeCoordinator = Depends(get_dispute_coordinator),
):
    """
    - **customer_favor**: 全额退款（或指定金额）
    - **provider_favor**: 不退款，预订完成，收益进入打款队列
    - **split**: 必须给出 refund_amount
    """
    dispute = await coordinator.resolve_dispute(
        dispute_id,
        admin.user_id,
        payload.decision,
        refund_amount=payload.refund_amount,
        notes=payload.admin_notes,
    )
    return success_response(data=dispute, message=t("dispute.resolved"))
