"""
Payment gateway port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements one adapter
per provider. The set of providers is closed: adding one means adding an
adapter and a factory branch.
"""
from __future__ import annotations

from typing import Any, Mapping, Optional, Protocol, runtime_checkable

from application.dtos.payments import (
    ProviderHealth,
    ProviderRefundRequest,
    ProviderRefundResult,
)
from domain.payment.entity import PaymentEvent, VerificationResult


@runtime_checkable
class PaymentGateway(Protocol):
    """Gateway protocol for third-party payment providers.

    ``verify`` is pure: it authenticates the exact received bytes and maps the
    payload to a normalized event without doing any I/O.
    """

    provider: str
    supports_refunds: bool
    # header carrying the provider signature, if any
    signature_header: Optional[str]

    def verify(
        self,
        raw_body: bytes,
        signature_header: Optional[str],
        headers: Mapping[str, Any],
    ) -> VerificationResult: ...

    async def refund(self, req: ProviderRefundRequest) -> ProviderRefundResult: ...

    async def verify_payment(self, order_id: str, reference: str) -> PaymentEvent:
        """Ask the provider for the current state of ``reference``.

        The event carries no dedup key and is actionable only once the
        provider reports a final outcome.
        """
        ...

    async def health_check(self) -> ProviderHealth: ...

    async def aclose(self) -> None: ...
