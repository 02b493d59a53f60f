"""Changes an order can undergo besides verified payment events."""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from .entity import OrderStatus


@dataclass(frozen=True)
class StatusChangeCommand:
    """Manual business-status change issued from the admin console."""

    new_status: OrderStatus
    actor: str
    note: Optional[str] = None


@dataclass(frozen=True)
class RefundApplied:
    """A refund the provider has already accepted, to be reflected on the order."""

    amount: Decimal
    refund_reference: str
    reason: str
    actor: str
