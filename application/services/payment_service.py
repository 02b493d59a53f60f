"""
Application service for provider-level payment concerns.

Depends only on the PaymentGateway port; gateway instances are supplied by the
composition root (API/tasks), keeping dependencies one-way.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Sequence

from application.dtos.payments import PaymentSystemHealth, ProviderHealth
from application.ports.payment_gateway import PaymentGateway
from core.logging_config import get_logger


logger = get_logger(__name__)


class PaymentService:
    def __init__(self, gateways: Sequence[PaymentGateway]) -> None:
        self.gateways = list(gateways)

    async def _check_one(self, gateway: PaymentGateway, checked_at: datetime) -> ProviderHealth:
        try:
            return await gateway.health_check()
        except Exception as exc:
            logger.warning("payment_health_check_error", provider=gateway.provider, error=str(exc))
            return ProviderHealth(
                provider=gateway.provider,
                healthy=False,
                response_time_ms=0,
                checked_at=checked_at,
                error=f"Health check failed: {exc}",
            )

    async def check_health(self) -> PaymentSystemHealth:
        checked_at = datetime.now(timezone.utc)
        results = await asyncio.gather(*(self._check_one(g, checked_at) for g in self.gateways))

        total = len(results)
        healthy = sum(1 for r in results if r.healthy)
        if healthy == total:
            summary = f"All {total} payment providers are healthy"
        elif healthy == 0:
            summary = f"All {total} payment providers are unhealthy - payments may be unavailable"
        else:
            summary = f"{healthy}/{total} payment providers are healthy"

        logger.info("payment_health_checked", healthy=healthy, total=total)
        return PaymentSystemHealth(
            healthy=healthy == total,
            providers=list(results),
            checked_at=checked_at,
            summary=summary,
        )
