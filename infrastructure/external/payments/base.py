"""
Base payment client implementing shared concerns: http, retry, logging, mapping.

Concrete providers subclass and implement provider-specific verification,
status lookups and refunds.
"""
from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Mapping, Optional
from contextlib import asynccontextmanager

import httpx
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential, retry_if_exception_type

from core.logging_config import get_logger
from application.dtos.payments import (
    ProviderHealth,
    ProviderRefundRequest,
    ProviderRefundResult,
)
from domain.payment.entity import PaymentEvent, PaymentOutcome, VerificationResult
from shared.codes.payment_codes import PROVIDER_REFUND_STATUS, PROVIDER_STATUS_TO_OUTCOME


logger = get_logger(__name__)


class BasePaymentClient:
    provider: str = "base"
    supports_refunds: bool = False
    signature_header: Optional[str] = None

    def __init__(
        self,
        *,
        timeouts: Optional[dict[str, float]] = None,
        retry: Optional[dict[str, Any]] = None,
    ) -> None:
        self._timeouts_cfg = timeouts or {"connect": 1.0, "read": 3.0, "write": 3.0, "total": 5.0}
        self._retry_cfg = retry or {"max": 2, "base": 0.2}
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def timeouts(self) -> httpx.Timeout:
        return httpx.Timeout(
            connect=self._timeouts_cfg["connect"],
            read=self._timeouts_cfg["read"],
            write=self._timeouts_cfg["write"],
            timeout=self._timeouts_cfg["total"],
        )

    @asynccontextmanager
    async def client(self):
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeouts)
        try:
            yield self._client
        finally:
            # Keep open for reuse; explicit aclose() will close.
            ...

    async def aclose(self) -> None:
        """Close underlying HTTP client if created."""
        if self._client is not None:
            try:
                await self._client.aclose()
            finally:
                self._client = None

    async def _retry(self, fn: Callable[[], Awaitable[Any]]):
        """Retry transport-level failures of idempotent reads (never refunds)."""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(int(self._retry_cfg["max"]) + 1),
            wait=wait_exponential(multiplier=self._retry_cfg["base"], min=0.1, max=2.0),
            retry=retry_if_exception_type((httpx.TimeoutException, httpx.TransportError)),
            reraise=True,
        ):
            with attempt:
                return await fn()

    # Default implementations raise to force override where needed
    def verify(
        self,
        raw_body: bytes,
        signature_header: Optional[str],
        headers: Mapping[str, Any],
    ) -> VerificationResult:
        raise NotImplementedError

    async def refund(self, req: ProviderRefundRequest) -> ProviderRefundResult:
        raise NotImplementedError

    async def verify_payment(self, order_id: str, reference: str) -> PaymentEvent:
        raise NotImplementedError

    async def _check_connectivity(self) -> Optional[dict[str, Any]]:
        """Provider-specific connectivity check returning status details."""
        raise NotImplementedError

    async def health_check(self) -> ProviderHealth:
        checked_at = datetime.now(timezone.utc)
        started = time.perf_counter()
        try:
            details = await self._check_connectivity()
        except Exception as exc:
            elapsed = (time.perf_counter() - started) * 1000
            logger.warning("payment_health_check_failed", provider=self.provider, error=str(exc))
            return ProviderHealth(
                provider=self.provider,
                healthy=False,
                response_time_ms=round(elapsed, 2),
                checked_at=checked_at,
                error=f"{self.provider} API health check failed: {exc}",
            )
        elapsed = (time.perf_counter() - started) * 1000
        return ProviderHealth(
            provider=self.provider,
            healthy=True,
            response_time_ms=round(elapsed, 2),
            checked_at=checked_at,
            details=details,
        )

    # Helpers
    def _map_outcome(self, provider_status: Optional[str]) -> Optional[PaymentOutcome]:
        mapping = PROVIDER_STATUS_TO_OUTCOME.get(self.provider, {})
        value = mapping.get(provider_status or "")
        return PaymentOutcome(value) if value else None

    def _map_refund_status(self, provider_status: str) -> str:
        mapping = PROVIDER_REFUND_STATUS.get(self.provider, {})
        return mapping.get(provider_status, provider_status)

    def _log(self, event: str, **kwargs) -> None:
        logger.info(
            event,
            provider=self.provider,
            **kwargs,
        )
