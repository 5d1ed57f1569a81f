"""
HTTP 边界的异常映射：业务码 -> HTTP 状态码，以及 FastAPI 全局异常处理器
"""
import traceback
import uuid
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette import status as http_status

from core.i18n import t
from core.logging_config import get_logger
from domain.common.exceptions import BusinessException
from shared.codes import BusinessCode
from shared.codes.payment_codes import PaymentCode

from .response import Response, error_response


logger = get_logger(__name__)


class UnauthorizedException(BusinessException):
    """缺少或无法解析 bearer token"""

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(
            code=BusinessCode.UNAUTHORIZED,
            message=message,
            error_type="Unauthorized",
            message_key="auth.unauthorized",
        )


class TokenExpiredException(BusinessException):
    def __init__(self):
        super().__init__(
            code=BusinessCode.TOKEN_EXPIRED,
            message="Token expired",
            error_type="TokenExpired",
            message_key="auth.token.expired",
        )


_BAD_REQUEST = http_status.HTTP_400_BAD_REQUEST
_UNAUTHORIZED = http_status.HTTP_401_UNAUTHORIZED
_FORBIDDEN = http_status.HTTP_403_FORBIDDEN
_CONFLICT = http_status.HTTP_409_CONFLICT
_UNPROCESSABLE = http_status.HTTP_422_UNPROCESSABLE_ENTITY
_SERVER_ERROR = http_status.HTTP_500_INTERNAL_SERVER_ERROR
_BAD_GATEWAY = http_status.HTTP_502_BAD_GATEWAY
_THROTTLED = http_status.HTTP_429_TOO_MANY_REQUESTS

_HTTP_STATUS_BY_CODE = {
    BusinessCode.PARAM_ERROR: _BAD_REQUEST,
    BusinessCode.PARAM_MISSING: _BAD_REQUEST,
    BusinessCode.PARAM_TYPE_ERROR: _BAD_REQUEST,
    BusinessCode.PARAM_VALIDATION_ERROR: _UNPROCESSABLE,
    BusinessCode.BUSINESS_ERROR: _BAD_REQUEST,
    BusinessCode.NOT_FOUND: http_status.HTTP_404_NOT_FOUND,
    BusinessCode.CONFLICT: _CONFLICT,
    # 状态机与结算
    BusinessCode.BOOKING_INVALID_TRANSITION: _CONFLICT,
    BusinessCode.BOOKING_INVALID_STATE: _CONFLICT,
    BusinessCode.IDEMPOTENCY_IN_PROGRESS: _CONFLICT,
    BusinessCode.EARNINGS_INVALID_AMOUNT: _UNPROCESSABLE,
    BusinessCode.EARNINGS_MISSING: _CONFLICT,
    BusinessCode.REFUND_FAILED: _BAD_GATEWAY,
    # 认证与授权
    BusinessCode.PERMISSION_ERROR: _FORBIDDEN,
    BusinessCode.UNAUTHORIZED: _UNAUTHORIZED,
    BusinessCode.FORBIDDEN: _FORBIDDEN,
    BusinessCode.TOKEN_INVALID: _UNAUTHORIZED,
    BusinessCode.TOKEN_EXPIRED: _UNAUTHORIZED,
    # 基础设施
    BusinessCode.SYSTEM_ERROR: _SERVER_ERROR,
    BusinessCode.DATABASE_ERROR: _SERVER_ERROR,
    BusinessCode.NETWORK_ERROR: _SERVER_ERROR,
    BusinessCode.SERVICE_UNAVAILABLE: http_status.HTTP_503_SERVICE_UNAVAILABLE,
    BusinessCode.RATE_LIMIT_ERROR: _THROTTLED,
    BusinessCode.TOO_MANY_REQUESTS: _THROTTLED,
    # webhook 与支付渠道
    PaymentCode.SIGNATURE_ERROR: _BAD_REQUEST,
    PaymentCode.WEBHOOK_SECRET_MISSING: _SERVER_ERROR,
    PaymentCode.PROVIDER_ERROR: _BAD_GATEWAY,
}

_CODE_BY_HTTP_STATUS = {
    401: BusinessCode.UNAUTHORIZED,
    403: BusinessCode.FORBIDDEN,
    404: BusinessCode.NOT_FOUND,
    409: BusinessCode.CONFLICT,
    429: BusinessCode.TOO_MANY_REQUESTS,
    503: BusinessCode.SERVICE_UNAVAILABLE,
}

# 这些业务码意味着数据或渠道异常，需要按 error 级别告警
_ALERTING_CODES = frozenset({BusinessCode.EARNINGS_INVALID_AMOUNT, BusinessCode.REFUND_FAILED})


def business_code_to_http_status(code: int) -> int:
    """未登记的业务码一律按 400 处理"""
    return _HTTP_STATUS_BY_CODE.get(code, _BAD_REQUEST)


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or str(uuid.uuid4())


def _render(body: Response, status_code: int, headers: Optional[dict] = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"), headers=headers)


def register_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(BusinessException)
    async def on_business_error(request: Request, exc: BusinessException):
        request_id = _request_id(request)
        status_code = business_code_to_http_status(exc.code)
        params = exc.format_params if isinstance(exc.format_params, dict) else (exc.details or {})

        log = logger.error if exc.code in _ALERTING_CODES else logger.info
        log(
            "business_exception",
            request_id=request_id,
            code=int(exc.code),
            error_type=exc.error_type,
            status_code=status_code,
            error=exc.message,
        )

        body = error_response(
            code=exc.code,
            message=t(exc.message_key or exc.message, **params),
            error_type=exc.error_type,
            details=exc.details,
            field=exc.field,
            request_id=request_id,
        )
        headers = {"WWW-Authenticate": "Bearer"} if status_code == _UNAUTHORIZED else None
        return _render(body, status_code, headers)

    @app.exception_handler(RequestValidationError)
    async def on_validation_error(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        # loc 的第一段是 body/query/path
        field = ".".join(str(part) for part in first.get("loc", [])[1:])
        body = error_response(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=t("validation.failed", reason=first.get("msg", "unknown")),
            error_type="ValidationError",
            details={"errors": [{k: v for k, v in e.items() if k != "ctx"} for e in errors]},
            field=field or None,
            request_id=_request_id(request),
        )
        return _render(body, _UNPROCESSABLE)

    @app.exception_handler(HTTPException)
    async def on_http_error(request: Request, exc: HTTPException):
        body = error_response(
            code=_CODE_BY_HTTP_STATUS.get(exc.status_code, BusinessCode.SYSTEM_ERROR),
            message=str(exc.detail),
            error_type="HTTPError",
            details={"status_code": exc.status_code},
            request_id=_request_id(request),
        )
        return _render(body, exc.status_code, getattr(exc, "headers", None))

    @app.exception_handler(Exception)
    async def on_unhandled_error(request: Request, exc: Exception):
        request_id = _request_id(request)
        logger.error("unhandled_exception", request_id=request_id, error=str(exc), exc_info=True)

        details = None
        if app.debug:
            details = {"exception": str(exc), "traceback": traceback.format_exc()}
        body = error_response(
            code=BusinessCode.SYSTEM_ERROR,
            message=t("error.internal"),
            error_type="SystemError",
            details=details,
            request_id=request_id,
        )
        return _render(body, _SERVER_ERROR)
