"""
API 响应包装：所有预订、争议与 webhook 接口都返回 {code, message, data, error}
"""
from datetime import datetime, timezone
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, Field, field_serializer

from shared.codes import BusinessCode


T = TypeVar("T")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_zulu(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


class ErrorDetail(BaseModel):
    """失败时附带的机器可读信息；details 里放状态机的 from/to 等上下文"""
    type: str
    details: Optional[dict] = None
    field: Optional[str] = None
    request_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utc_now)

    @field_serializer("timestamp")
    def _timestamp(self, value: datetime) -> str:
        return _as_zulu(value)


class Response(BaseModel, Generic[T]):
    code: int
    message: str
    data: Optional[T] = None
    error: Optional[ErrorDetail] = None


def success_response(
    data: Any = None,
    message: str = "Success",
    code: int = BusinessCode.SUCCESS,
) -> Response:
    return Response(code=code, message=message, data=data)


def error_response(
    code: int,
    message: str,
    error_type: str = "BusinessError",
    details: Optional[dict] = None,
    field: Optional[str] = None,
    request_id: Optional[str] = None,
) -> Response:
    """构造错误响应；data 恒为空，HTTP 状态码由异常处理器决定"""
    detail = ErrorDetail(
        type=error_type,
        details=details,
        field=field,
        request_id=request_id,
    )
    return Response(code=code, message=message, error=detail)
