"""
CamPay (MTN / Orange Mobile Money, XAF) adapter.

CamPay signs each webhook with HMAC-SHA256 over
``f"{reference}{amount}{status}"`` using the shared webhook secret, and sends
the hex digest in the body's ``signature`` field. ``amount`` is rendered the
way CamPay's JavaScript signer renders numbers (``5000``, never ``5000.0``).

CamPay has no refund API: refunds are an operator action in the CamPay
dashboard, so ``supports_refunds`` is False. Payment status can be polled
with ``GET /transaction/<reference>/``.
"""
from __future__ import annotations

import hashlib
import hmac
import json
import time
from decimal import Decimal
from typing import Any, Mapping, Optional

import httpx

from application.dtos.payments import ProviderRefundRequest, ProviderRefundResult
from core.settings import payment_settings
from core.logging_config import get_logger
from domain.payment.entity import PaymentEvent, VerificationResult, make_dedup_key
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import (
    PaymentConfigurationError,
    PaymentProviderError,
    PaymentRecoverableError,
)


logger = get_logger(__name__)

# Seconds shaved off the token lifetime so it is refreshed before CamPay expires it
TOKEN_EXPIRY_MARGIN = 60


def render_js_number(value: Any) -> str:
    """Render a JSON number the way JavaScript's String(number) does."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        value = Decimal(repr(value))
    if isinstance(value, Decimal):
        if value == value.to_integral_value():
            return str(int(value))
        return format(value.normalize(), "f")
    return "" if value is None else str(value)


def campay_signature(secret: str, reference: Any, amount: Any, status: Any) -> str:
    message = f"{'' if reference is None else reference}{render_js_number(amount)}{'' if status is None else status}"
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


class CampayClient(BasePaymentClient):
    provider = "campay"
    supports_refunds = False
    signature_header = "x-campay-signature"

    def __init__(
        self,
        *,
        username: Optional[str] = None,
        password: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        base_url: Optional[str] = None,
    ):
        super().__init__(
            timeouts=payment_settings.timeouts.model_dump(),
            retry={"max": payment_settings.retry.max, "base": payment_settings.retry.base_backoff},
        )
        cfg = payment_settings.campay
        self._username = username if username is not None else cfg.username
        self._password = password if password is not None else cfg.password
        self._webhook_secret = webhook_secret if webhook_secret is not None else cfg.webhook_secret
        self._base_url = (base_url or cfg.base_url).rstrip("/")
        self._token: Optional[str] = None
        self._token_expires_at: float = 0.0

    @property
    def environment(self) -> str:
        return "sandbox" if "demo" in self._base_url else "production"

    # ------------------------------------------------------------------ webhook

    def verify(
        self,
        raw_body: bytes,
        signature_header: Optional[str],
        headers: Mapping[str, Any],
    ) -> VerificationResult:
        if not self._webhook_secret:
            return VerificationResult.rejected("CamPay webhook secret not configured")
        try:
            data = json.loads(raw_body, parse_float=Decimal)
        except ValueError:
            return VerificationResult.rejected("Invalid webhook payload")
        if not isinstance(data, dict):
            return VerificationResult.rejected("Invalid webhook payload")

        received = data.get("signature") or signature_header
        if not received or not isinstance(received, str):
            return VerificationResult.rejected("Missing webhook signature")

        expected = campay_signature(
            self._webhook_secret, data.get("reference"), data.get("amount"), data.get("status")
        )
        if not hmac.compare_digest(expected, received.strip().lower()):
            return VerificationResult.rejected("Invalid webhook signature")

        return VerificationResult.accepted(self._to_event(data))

    def _to_event(self, data: dict[str, Any]) -> PaymentEvent:
        status = str(data.get("status") or "").upper()
        reference = data.get("reference")
        outcome = self._map_outcome(status)
        base = {
            "provider": self.provider,
            "event_type": f"payment.{status.lower()}",
            "dedup_key": make_dedup_key(self.provider, str(reference) if reference else None),
            "raw": data,
        }
        if outcome is None:
            # PENDING and unknown statuses carry nothing to apply yet
            return PaymentEvent(**base)

        order_id = data.get("external_reference")
        amount = data.get("amount")
        operator = data.get("operator") or "Unknown"
        verb = "confirmed" if status == "SUCCESSFUL" else "failed"
        return PaymentEvent(
            **base,
            order_id=str(order_id) if order_id else None,
            outcome=outcome,
            amount=Decimal(str(amount)) if amount not in (None, "") else None,
            currency="XAF",
            payment_reference=str(reference) if reference else None,
            note=f"Payment {verb} via CamPay Mobile Money ({operator})",
        )

    # ------------------------------------------------------------------- refund

    async def refund(self, req: ProviderRefundRequest) -> ProviderRefundResult:
        raise PaymentProviderError(
            "CamPay refunds must be processed manually via the CamPay dashboard",
            provider=self.provider,
            details={"manual_required": True},
        )

    # ------------------------------------------------------------------- status

    async def verify_payment(self, order_id: str, reference: str) -> PaymentEvent:
        token = await self._access_token()

        async def _fetch():
            async with self.client() as http:
                return await http.get(
                    f"{self._base_url}/transaction/{reference}/",
                    headers={"Authorization": f"Token {token}"},
                )

        self._log("campay_status_request", order_id=order_id, reference=reference)
        try:
            response = await self._retry(_fetch)
        except httpx.HTTPError as exc:
            raise PaymentRecoverableError(f"CamPay unreachable: {exc}", provider=self.provider) from exc
        if response.status_code != 200:
            raise PaymentProviderError(
                f"CamPay status lookup failed: {response.status_code}",
                provider=self.provider,
                provider_code=str(response.status_code),
            )

        data = response.json()
        owner = data.get("external_reference")
        if owner and str(owner) != order_id:
            raise PaymentProviderError(
                f"CamPay transaction {reference} belongs to order {owner}", provider=self.provider
            )
        status = str(data.get("status") or "").upper()
        outcome = self._map_outcome(status)
        base = {
            "provider": self.provider,
            "event_type": f"status_poll.{status.lower() or 'unknown'}",
            "order_id": order_id,
            "raw": data,
        }
        if outcome is None:
            return PaymentEvent(**base)

        amount = data.get("amount")
        operator = data.get("operator") or "Unknown"
        verb = "confirmed" if status == "SUCCESSFUL" else "failed"
        return PaymentEvent(
            **base,
            outcome=outcome,
            amount=Decimal(str(amount)) if amount not in (None, "") else None,
            currency="XAF",
            payment_reference=reference,
            note=f"Payment {verb} via CamPay status check ({operator}, ref {data.get('operator_reference') or '-'})",
        )

    # -------------------------------------------------------------------- token

    async def _access_token(self) -> str:
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token
        if not self._username or not self._password:
            raise PaymentConfigurationError(
                "PAYMENTS__CAMPAY__USERNAME and PAYMENTS__CAMPAY__PASSWORD are required",
                provider=self.provider,
            )

        async def _fetch():
            async with self.client() as http:
                return await http.post(
                    f"{self._base_url}/token/",
                    json={"username": self._username, "password": self._password},
                )

        response = await self._retry(_fetch)
        if response.status_code != 200:
            raise PaymentProviderError(
                f"CamPay auth failed: {response.status_code}",
                provider=self.provider,
                provider_code=str(response.status_code),
            )
        body = response.json()
        token = body.get("token")
        if not token:
            raise PaymentProviderError("CamPay authentication failed: no token received", provider=self.provider)
        expires_in = int(body.get("expires_in") or 3600)
        self._token = token
        self._token_expires_at = time.monotonic() + max(expires_in - TOKEN_EXPIRY_MARGIN, 0)
        return token

    async def _check_connectivity(self) -> Optional[dict[str, Any]]:
        await self._access_token()
        return {"environment": self.environment, "token_valid": True}
