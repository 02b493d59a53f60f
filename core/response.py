"""
统一响应格式定义

Provider webhooks and the admin console both expect flat JSON bodies:
``{"received": true}`` on success and ``{"error": ..., "error_type": ...}``
plus exception details on failure.
"""
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field, field_serializer
from datetime import datetime, timezone


class ErrorBody(BaseModel):
    """错误响应体（details 会被平铺到顶层）"""

    model_config = ConfigDict(extra="allow")

    error: str
    error_type: str
    code: int
    field: Optional[str] = None
    request_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_serializer('timestamp')
    def serialize_timestamp(self, timestamp: datetime) -> str:
        """序列化时间戳为 UTC ISO8601，统一使用 Z 结尾"""
        ts = timestamp
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        else:
            ts = ts.astimezone(timezone.utc)
        s = ts.isoformat()
        return s.replace("+00:00", "Z")


def success_response(data: Any = None, **extra: Any) -> dict:
    """
    创建成功响应

    Pydantic models are dumped in JSON mode; dicts pass through unchanged.
    """
    if isinstance(data, BaseModel):
        body = data.model_dump(mode="json")
    elif data is None:
        body = {}
    else:
        body = dict(data)
    body.update(extra)
    return body


def error_response(
    code: int,
    message: str,
    error_type: str = "BusinessError",
    details: Optional[dict] = None,
    field: Optional[str] = None,
    request_id: Optional[str] = None
) -> dict:
    """
    创建错误响应

    Args:
        code: 业务状态码
        message: 错误消息
        error_type: 错误类型
        details: 错误详情（平铺到响应体顶层，不覆盖固定字段）
        field: 错误字段
        request_id: 请求ID
    """
    body = ErrorBody(
        error=message,
        error_type=error_type,
        code=code,
        field=field,
        request_id=request_id,
    ).model_dump(mode="json", exclude_none=True)
    for key, value in (details or {}).items():
        body.setdefault(key, value)
    return body
