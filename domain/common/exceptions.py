"""领域层业务异常定义，供领域与基础设施使用。

核心（core）层仅负责全局映射与异常处理，尽量避免领域层反向依赖核心层。
"""
from __future__ import annotations

from decimal import Decimal
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
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        super().__init__(self.message)


class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
        )


class OrderNotFoundException(BusinessException):
    def __init__(self, order_id: Optional[str] = None):
        details = {"order_id": order_id} if order_id else None
        super().__init__(
            code=BusinessCode.NOT_FOUND,
            message="Order not found",
            error_type="NotFound",
            details=details,
        )


class InvalidTransitionException(BusinessException):
    """A status move outside the whitelist. Carries both states for diagnosis."""

    def __init__(
        self,
        current: str,
        attempted: str,
        *,
        axis: str = "status",
        reason: Optional[str] = None,
    ):
        self.current = current
        self.attempted = attempted
        self.axis = axis
        message = f"Cannot move {axis} from '{current}' to '{attempted}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(
            code=BusinessCode.INVALID_TRANSITION,
            message=message,
            error_type="InvalidTransition",
            details={
                "axis": axis,
                "current_status": current,
                "attempted_status": attempted,
            },
            field="new_status" if axis == "status" else "payment_status",
        )


class ConcurrentUpdateException(BusinessException):
    def __init__(self, order_id: str, expected_version: int):
        super().__init__(
            code=BusinessCode.CONCURRENT_UPDATE,
            message="Order was modified concurrently",
            error_type="ConcurrentUpdate",
            details={"order_id": order_id, "expected_version": expected_version},
        )


class RefundNotAllowedException(BusinessException):
    """Refund preconditions failed; nothing happened."""

    def __init__(self, order_id: str, payment_status: str):
        if payment_status == "refunded":
            message = "Order has already been refunded"
        elif payment_status == "partially_refunded":
            message = "Order has already been partially refunded"
        else:
            message = "Only paid orders can be refunded"
        super().__init__(
            code=BusinessCode.REFUND_NOT_ALLOWED,
            message=message,
            error_type="RefundNotAllowed",
            details={"order_id": order_id, "payment_status": payment_status},
        )


class ProviderUnsupportedException(BusinessException):
    """The provider has no refund API; an operator must refund out-of-band."""

    def __init__(self, provider: str, order_id: str, amount: Decimal):
        super().__init__(
            code=BusinessCode.REFUND_MANUAL_REQUIRED,
            message=(
                f"{provider} refunds must be processed manually via the provider dashboard. "
                "Please note the order details and process the refund there."
            ),
            error_type="ProviderUnsupported",
            details={
                "manual_required": True,
                "provider": provider,
                "order_id": order_id,
                "amount": str(amount),
            },
        )


class RefundReconciliationRequiredException(BusinessException):
    """The provider refunded the money but the order could not be updated locally."""

    def __init__(self, order_id: str, refund_id: str, amount: Decimal, error: str):
        super().__init__(
            code=BusinessCode.RECONCILIATION_REQUIRED,
            message=(
                "Refund succeeded at the provider but the order could not be updated. "
                "Do not retry; contact engineering for manual reconciliation."
            ),
            error_type="RefundReconciliationRequired",
            details={
                "order_id": order_id,
                "refund_id": refund_id,
                "amount": str(amount),
                "error": error,
            },
        )


class PermissionDeniedException(BusinessException):
    def __init__(self, action: str):
        super().__init__(
            code=BusinessCode.FORBIDDEN,
            message="Insufficient permissions",
            error_type="Forbidden",
            details={"action": action},
        )


class WebhookSignatureException(BusinessException):
    """Webhook authentication failed; the payload was never parsed."""

    def __init__(self, provider: str, reason: Optional[str] = None):
        super().__init__(
            code=BusinessCode.UNAUTHORIZED,
            message="Invalid signature",
            error_type="AuthenticationFailure",
            details={"provider": provider},
        )
        self.reason = reason


class WebhookProcessingException(BusinessException):
    """A verified event could not be persisted; the provider should redeliver."""

    def __init__(self, provider: str, order_id: Optional[str], error: str):
        super().__init__(
            code=BusinessCode.DATABASE_ERROR,
            message="Webhook could not be processed, please retry",
            error_type="WebhookProcessingError",
            details={"provider": provider, "order_id": order_id, "error": error},
        )


class PaymentStatusLookupException(BusinessException):
    """The provider could not tell us the payment status; the order was not touched."""

    def __init__(self, provider: str, order_id: str, error: str):
        super().__init__(
            code=PaymentCode.PROVIDER_ERROR,
            message=f"Payment status check failed at {provider}: {error}",
            error_type="PaymentStatusLookupError",
            details={"provider": provider, "order_id": order_id},
        )


class RefundProviderException(BusinessException):
    """The provider rejected or failed the refund call; the order was not touched."""

    def __init__(self, provider: str, order_id: str, error: str):
        super().__init__(
            code=PaymentCode.PROVIDER_ERROR,
            message=f"Refund failed at {provider}: {error}",
            error_type="RefundProviderError",
            details={"provider": provider, "order_id": order_id},
        )


class UnknownProviderException(BusinessException):
    def __init__(self, provider: Optional[str]):
        super().__init__(
            code=BusinessCode.NOT_FOUND,
            message=f"Unknown payment provider: {provider}",
            error_type="UnknownProvider",
            details={"provider": provider},
        )
