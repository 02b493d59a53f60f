"""
Normalized payment events produced by provider verifiers.

Whatever the provider's wire format, a verified webhook call becomes exactly
one `PaymentEvent`. Events are ephemeral: only their dedup key outlives the
request (see the idempotency guard).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_EVEN, Decimal
from enum import Enum
from typing import Any, Optional


class PaymentProvider(str, Enum):
    STRIPE = "stripe"
    CAMPAY = "campay"


class PaymentOutcome(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


# Currencies expressed without a minor unit (Stripe and CamPay agree on these)
ZERO_DECIMAL_CURRENCIES = frozenset({
    "BIF", "CLP", "DJF", "GNF", "JPY", "KMF", "KRW", "MGA",
    "PYG", "RWF", "UGX", "VND", "VUV", "XAF", "XOF", "XPF",
})


def currency_exponent(currency: Optional[str]) -> int:
    return 0 if str(getattr(currency, "value", currency) or "").upper() in ZERO_DECIMAL_CURRENCIES else 2


def quantize_amount(amount: Decimal, currency: Optional[str]) -> Decimal:
    """Round a major-unit amount to what the currency can actually carry."""
    return Decimal(amount).quantize(Decimal(10) ** -currency_exponent(currency), rounding=ROUND_HALF_EVEN)


def to_minor(amount: Decimal, currency: Optional[str]) -> int:
    """Major units -> smallest currency unit."""
    return int(quantize_amount(amount, currency).scaleb(currency_exponent(currency)))


def from_minor(amount: Optional[int], currency: Optional[str]) -> Optional[Decimal]:
    """Smallest currency unit -> major units."""
    if amount is None:
        return None
    return Decimal(int(amount)).scaleb(-currency_exponent(currency))


def make_dedup_key(provider: str, raw_key: Optional[str]) -> Optional[str]:
    """Provider-scoped dedup key so ids from different providers never collide."""
    if not raw_key:
        return None
    return f"{provider}:{raw_key}"


@dataclass(frozen=True)
class PaymentEvent:
    provider: str
    event_type: str
    dedup_key: Optional[str] = None
    order_id: Optional[str] = None
    outcome: Optional[PaymentOutcome] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    payment_reference: Optional[str] = None
    # opaque provider payload, kept for audit only
    raw: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)
    note: Optional[str] = None

    @property
    def is_actionable(self) -> bool:
        return bool(self.order_id) and self.outcome is not None


@dataclass(frozen=True)
class VerificationResult:
    valid: bool
    reason: Optional[str] = None
    event: Optional[PaymentEvent] = None

    @classmethod
    def rejected(cls, reason: str) -> "VerificationResult":
        return cls(valid=False, reason=reason)

    @classmethod
    def accepted(cls, event: PaymentEvent) -> "VerificationResult":
        return cls(valid=True, event=event)
