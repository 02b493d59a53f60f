"""
Payments API routes.

Provider webhooks and the provider health check. Keep this thin: signature
checks, dedup and state changes live in the application services.
"""
from __future__ import annotations

import ipaddress
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from starlette import status as http_status

from application.services.payment_service import PaymentService
from application.services.webhook_service import WebhookService
from api.dependencies import get_payment_service, get_webhook_service
from api.middleware.request_id import resolve_client_ip
from core.config import settings
from core.logging_config import get_logger
from core.response import success_response
from core.settings import payment_settings
from infrastructure.external.payments import get_payment_gateway


router = APIRouter(prefix="/payments", tags=["Payments"])
logger = get_logger(__name__)


def ip_permitted(remote_ip: Optional[str], allowlist: list[str]) -> bool:
    """Allowlist entries are exact IPs or CIDR networks; an empty list allows everyone."""
    if not allowlist:
        return True
    if not remote_ip:
        return False
    try:
        rip = ipaddress.ip_address(remote_ip)
    except ValueError:
        return False
    for entry in allowlist:
        try:
            if "/" in entry:
                if rip in ipaddress.ip_network(entry, strict=False):
                    return True
            elif rip == ipaddress.ip_address(entry):
                return True
        except ValueError:
            logger.warning("webhook_allowlist_entry_invalid", entry=entry)
    return False


@router.post("/webhooks/{provider}", summary="Provider webhook")
async def payments_webhook(
    provider: str,
    request: Request,
    service: WebhookService = Depends(get_webhook_service),
):
    remote_ip = getattr(request.state, "client_ip", None) or resolve_client_ip(
        request, settings.TRUST_PROXY_HEADERS
    )
    if not ip_permitted(remote_ip, payment_settings.webhook.ip_allowlist or []):
        logger.warning("webhook_ip_not_allowed", provider=provider, remote_ip=remote_ip)
        raise HTTPException(status_code=http_status.HTTP_403_FORBIDDEN, detail="IP not allowed")

    # unknown providers surface as 404 before the body is read
    gateway = get_payment_gateway(provider)

    # signatures are computed over the exact received bytes
    raw_body = await request.body()
    headers = {k.lower(): v for k, v in request.headers.items()}
    outcome = await service.ingest(gateway, raw_body, headers)
    return outcome.body()


@router.get("/health", summary="Payment provider health")
async def payments_health(service: PaymentService = Depends(get_payment_service)):
    health = await service.check_health()
    return success_response(health)
