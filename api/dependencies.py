"""
API依赖项 - 认证、授权与服务装配

访问令牌由上游身份服务签发：``sub`` 为用户 id，``role`` 为
customer/provider/admin，使用 SECRET_KEY 签名。
"""
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from application.ports.identity import IdentityWebhookVerifier
from application.ports.payment_gateway import PaymentProcessor
from application.services.booking_service import BookingApplicationService
from application.services.payout_service import PayoutOrchestrator
from application.services.refund_service import CancellationCoordinator, DisputeCoordinator
from application.services.webhook_service import WebhookReconciler
from core.config import settings
from core.exceptions import TokenExpiredException, UnauthorizedException
from domain.booking.entity import ActorRole
from domain.common.exceptions import ForbiddenActionException
from infrastructure import container
from infrastructure.external.identity import get_identity_verifier

# HTTP Bearer for direct API calls
http_bearer = HTTPBearer(
    scheme_name="Bearer",
    description="JWT Bearer token authentication",
    auto_error=False,
)


class Actor(BaseModel):
    user_id: str
    role: ActorRole

    @property
    def is_admin(self) -> bool:
        return self.role == ActorRole.ADMIN


async def get_token(bearer_token: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer)) -> str:
    if bearer_token and bearer_token.credentials:
        return bearer_token.credentials
    raise UnauthorizedException("Missing bearer token")


async def get_current_actor(token: str = Depends(get_token)) -> Actor:
    """解析 JWT，得到当前操作者"""
    try:
        claims = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise TokenExpiredException()
    except jwt.PyJWTError:
        raise UnauthorizedException("Invalid token")

    user_id = claims.get("sub")
    role = claims.get("role") or ActorRole.CUSTOMER.value
    if not user_id or role not in {r.value for r in ActorRole}:
        raise UnauthorizedException("Invalid token claims")
    return Actor(user_id=str(user_id), role=ActorRole(role))


async def require_admin(actor: Actor = Depends(get_current_actor)) -> Actor:
    if not actor.is_admin:
        raise ForbiddenActionException("Admin role required")
    return actor


async def get_booking_service() -> BookingApplicationService:
    return await container.build_booking_service()


async def get_cancellation_coordinator() -> CancellationCoordinator:
    return await container.build_cancellation_coordinator()


async def get_payout_orchestrator() -> PayoutOrchestrator:
    return await container.build_payout_orchestrator()


async def get_dispute_coordinator() -> DisputeCoordinator:
    return await container.build_dispute_coordinator()


async def get_webhook_reconciler() -> WebhookReconciler:
    return await container.build_webhook_reconciler()


def get_payment_processor() -> Optional[PaymentProcessor]:
    return container.payment_processor()


def get_identity_webhook_verifier() -> IdentityWebhookVerifier:
    return get_identity_verifier()
