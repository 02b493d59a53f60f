"""
Payment and order DTOs (Pydantic v2) used at application boundaries.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.types import condecimal

from domain.order.entity import OrderStatus

SUPPORTED_CURRENCIES = {"USD", "XAF"}

# Reasons forwarded to providers are capped to this many characters
PROVIDER_REASON_MAX_LENGTH = 500


class RefundCommand(BaseModel):
    """Admin refund request."""

    order_id: str = Field(min_length=1)
    reason: str
    amount: Optional[condecimal(gt=0)] = None  # type: ignore[valid-type]

    @field_validator("reason")
    @classmethod
    def _strip_reason(cls, v: str) -> str:
        return (v or "").strip()


class StatusUpdateCommand(BaseModel):
    """Admin business-status change."""

    order_id: str = Field(min_length=1)
    new_status: OrderStatus
    note: Optional[str] = Field(default=None, max_length=2000)


class ProviderRefundRequest(BaseModel):
    order_id: str
    amount: condecimal(gt=0)  # type: ignore[valid-type]
    currency: str
    reason: Optional[str] = None
    payment_reference: Optional[str] = None
    idempotency_key: str

    @field_validator("currency")
    @classmethod
    def _upper_and_validate_currency(cls, v: str) -> str:
        u = (v or "").upper()
        if u not in SUPPORTED_CURRENCIES:
            raise ValueError("unsupported currency")
        return u

    @field_validator("reason")
    @classmethod
    def _truncate_reason(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v[:PROVIDER_REASON_MAX_LENGTH]


class ProviderRefundResult(BaseModel):
    refund_id: str
    status: str
    provider: str
    amount: Optional[Decimal] = None


class RefundOutcome(BaseModel):
    success: bool = True
    refund_id: str
    amount: Decimal
    full_refund: bool
    message: str


class StatusUpdateOutcome(BaseModel):
    success: bool = True
    message: str
    order_id: str
    old_status: str
    new_status: str


class WebhookOutcome(BaseModel):
    """What the webhook endpoint acknowledges back to the provider."""

    received: bool = True
    duplicate: bool = False
    skipped: bool = False

    def body(self) -> dict[str, Any]:
        data: dict[str, Any] = {"received": self.received}
        if self.duplicate:
            data["duplicate"] = True
        if self.skipped:
            data["skipped"] = True
        return data


class StatusHistoryItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    old_status: Optional[str] = None
    new_status: str
    changed_by: str
    notes: Optional[str] = None
    created_at: datetime


class ProviderHealth(BaseModel):
    provider: str
    healthy: bool
    response_time_ms: Optional[float] = None
    checked_at: datetime
    error: Optional[str] = None
    details: Optional[dict[str, Any]] = None


class PaymentSystemHealth(BaseModel):
    healthy: bool
    providers: list[ProviderHealth]
    checked_at: datetime
    summary: str


class PaymentCheckOutcome(BaseModel):
    """Result of asking the provider for a pending order's payment status."""

    order_id: str
    payment_status: str
    status: str
    # False when the provider was not asked (already settled, nothing to look up)
    checked: bool
    changed: bool = False
    amount_paid: Optional[Decimal] = None
    paid_at: Optional[datetime] = None
    payment_reference: Optional[str] = None
    message: str
