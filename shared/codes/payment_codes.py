"""
Payment specific codes and provider status mapping.
"""
from __future__ import annotations

from enum import IntEnum


class PaymentCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Provider/Network errors (6xxxx)
    PROVIDER_ERROR = 60000
    PROVIDER_RECOVERABLE = 60001
    SIGNATURE_ERROR = 60002
    TIMEOUT = 60003
    RATE_LIMITED = 60004


# Provider status -> normalized payment outcome.
# Statuses absent from a mapping are not actionable (the event becomes a no-op).
PROVIDER_STATUS_TO_OUTCOME = {
    "stripe": {
        # checkout.session.payment_status
        "paid": "completed",
        "no_payment_required": "completed",
    },
    "campay": {
        # webhook `status`
        "SUCCESSFUL": "completed",
        "FAILED": "failed",
    },
}

# Provider refund status -> internal refund status
PROVIDER_REFUND_STATUS = {
    "stripe": {
        "succeeded": "completed",
        "pending": "pending",
        "requires_action": "pending",
        "failed": "failed",
        "canceled": "failed",
    },
}
