"""
订单领域实体 - 订单聚合根

An order carries two independent status axes: the business workflow
(`status`) and money settlement (`payment_status`). Only the state machine
computes new values for either axis.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from domain.common.exceptions import DomainValidationException


SYSTEM_ACTOR = "system"


class OrderStatus(str, Enum):
    """业务流程状态"""
    PENDING = "pending"
    PAYMENT_PENDING = "payment_pending"
    PAID = "paid"
    IN_PROGRESS = "in_progress"
    REVIEW = "review"
    REVISION = "revision"
    COMPLETED = "completed"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentStatus(str, Enum):
    """资金结算状态"""
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


class Currency(str, Enum):
    USD = "USD"
    XAF = "XAF"


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """确保时间为 UTC 时区"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass
class Order:
    """
    订单聚合根

    业务规则：
    1. 金额必须大于0，币种仅限 USD/XAF
    2. 状态转换必须遵循状态机（见 domain.order.state_machine）
    3. 只有已支付的订单才能退款
    4. 订单从不物理删除，取消是终态
    """

    id: str
    order_number: str
    currency: Currency
    amount_expected: Decimal
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None

    status: OrderStatus = OrderStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.PENDING
    amount_paid: Optional[Decimal] = None
    payment_provider: Optional[str] = None
    payment_reference: Optional[str] = None
    paid_at: Optional[datetime] = None

    refund_amount: Optional[Decimal] = None
    refund_reason: Optional[str] = None
    refund_reference: Optional[str] = None
    refunded_at: Optional[datetime] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    version: int = 0

    def __post_init__(self):
        self.currency = Currency(self.currency)
        self.status = OrderStatus(self.status)
        self.payment_status = PaymentStatus(self.payment_status)
        if self.amount_expected <= 0:
            raise DomainValidationException(
                f"Order amount must be positive: {self.amount_expected}",
                field="amount_expected",
            )
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)
        self.paid_at = _ensure_utc(self.paid_at)
        self.refunded_at = _ensure_utc(self.refunded_at)

    @property
    def customer_display_name(self) -> str:
        return self.customer_name or "Valued Customer"


@dataclass(frozen=True)
class StatusHistoryEntry:
    """Append-only audit row, one per accepted transition."""

    order_id: str
    old_status: Optional[str]
    new_status: str
    changed_by: str
    notes: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
