"""异常定义

券商网关边界只构造一次 UpstreamError，下游逻辑只按 kind 分支，
不再探测原始响应体的结构。
"""
from enum import Enum
from typing import Any, Dict, Optional


class UpstreamErrorKind(str, Enum):
    """券商接口错误类型"""
    TIMEOUT = "timeout"
    AUTH_REJECTED = "auth_rejected"
    RATE_LIMITED = "rate_limited"
    VALIDATION = "validation"
    UNKNOWN = "unknown"


class UpstreamError(Exception):
    """券商 REST 调用失败"""

    def __init__(
        self,
        kind: UpstreamErrorKind,
        message: str,
        http_status: Optional[int] = None,
        raw_body: Any = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.http_status = http_status
        self.raw_body = raw_body

    def __repr__(self) -> str:
        return f"UpstreamError(kind={self.kind.value}, status={self.http_status}, message={self.message!r})"


class OrderErrorKind(str, Enum):
    """下单/撤单失败类型"""
    VALIDATION = "validation"
    UNAUTHENTICATED = "unauthenticated"
    UPSTREAM_REJECTED = "upstream_rejected"
    TIMEOUT = "timeout"
    NOT_FOUND = "not_found"


class OrderError(Exception):
    """下单/撤单操作失败，直接反馈给调用方"""

    def __init__(self, kind: OrderErrorKind, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.details = details or {}

    @classmethod
    def from_upstream(cls, error: UpstreamError) -> 'OrderError':
        """将网关错误映射为订单错误"""
        details = {'upstream_kind': error.kind.value, 'http_status': error.http_status}
        if isinstance(error.raw_body, (dict, list)):
            details['body'] = error.raw_body
        if error.kind == UpstreamErrorKind.AUTH_REJECTED:
            return cls(OrderErrorKind.UNAUTHENTICATED, error.message, details)
        if error.kind == UpstreamErrorKind.TIMEOUT:
            return cls(OrderErrorKind.TIMEOUT, error.message, details)
        return cls(OrderErrorKind.UPSTREAM_REJECTED, error.message, details)


class ValidationError(Exception):
    """输入校验失败（子账户凭证校验失败也归入此类）"""

    def __init__(self, reason: str, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message or reason)
        self.reason = reason
        self.message = message or reason
        self.details = details or {}


class OrderNotFoundError(Exception):
    """本地订单簿中不存在该订单"""

    def __init__(self, user_id: str, order_id: str):
        super().__init__(f"订单不存在: user={user_id} order={order_id}")
        self.user_id = user_id
        self.order_id = order_id
