"""
Stripe adapter using the official stripe-python SDK.

Notes on SDK usage:
- Webhook authentication uses `stripe.WebhookSignature.verify_header` on the
  exact received body, with the timestamp tolerance from settings. The body
  is parsed only after the signature checks out.
- Refunds go through `stripe.Refund.create` with an idempotency key; the SDK
  call is blocking, so it runs in a worker thread.
- Status polling retrieves the Checkout Session (payment intent expanded)
  or the PaymentIntent, also in a worker thread.
"""
from __future__ import annotations

import asyncio
import json
from typing import Any, Mapping, Optional

import stripe

from application.dtos.payments import ProviderRefundRequest, ProviderRefundResult
from core.settings import payment_settings
from core.logging_config import get_logger
from domain.payment.entity import (
    PaymentEvent,
    PaymentOutcome,
    VerificationResult,
    from_minor,
    make_dedup_key,
    to_minor,
)
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import (
    PaymentConfigurationError,
    PaymentProviderError,
    PaymentRecoverableError,
)


logger = get_logger(__name__)

EVENT_CHECKOUT_COMPLETED = "checkout.session.completed"
EVENT_PAYMENT_FAILED = "payment_intent.payment_failed"
EVENT_CHARGE_REFUNDED = "charge.refunded"


def _order_id_from(obj: Mapping[str, Any], *, allow_client_reference: bool = False) -> Optional[str]:
    metadata = obj.get("metadata") or {}
    order_id = metadata.get("orderId") or metadata.get("order_id")
    if not order_id and allow_client_reference:
        order_id = obj.get("client_reference_id")
    return str(order_id) if order_id else None


class StripeClient(BasePaymentClient):
    provider = "stripe"
    supports_refunds = True
    signature_header = "stripe-signature"

    def __init__(
        self,
        *,
        secret_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        tolerance_seconds: Optional[int] = None,
    ):
        super().__init__(
            timeouts=payment_settings.timeouts.model_dump(),
            retry={"max": payment_settings.retry.max, "base": payment_settings.retry.base_backoff},
        )
        self._secret_key = secret_key if secret_key is not None else payment_settings.stripe.secret_key
        self._webhook_secret = (
            webhook_secret if webhook_secret is not None else payment_settings.stripe.webhook_secret
        )
        self._tolerance = (
            tolerance_seconds if tolerance_seconds is not None else payment_settings.webhook.tolerance_seconds
        )

    # ------------------------------------------------------------------ webhook

    def verify(
        self,
        raw_body: bytes,
        signature_header: Optional[str],
        headers: Mapping[str, Any],
    ) -> VerificationResult:
        if not self._webhook_secret:
            return VerificationResult.rejected("Stripe webhook secret not configured")
        if not signature_header:
            return VerificationResult.rejected("Missing Stripe-Signature header")
        try:
            payload = raw_body.decode("utf-8")
        except UnicodeDecodeError:
            return VerificationResult.rejected("Body is not valid UTF-8")
        try:
            stripe.WebhookSignature.verify_header(payload, signature_header, self._webhook_secret, self._tolerance)
        except stripe.SignatureVerificationError as exc:
            return VerificationResult.rejected(f"Signature verification failed: {exc.user_message or exc}")

        try:
            event = json.loads(payload)
        except ValueError:
            return VerificationResult.rejected("Signed body is not valid JSON")
        if not isinstance(event, dict):
            return VerificationResult.rejected("Signed body is not a JSON object")
        return VerificationResult.accepted(self._to_event(event))

    def _to_event(self, event: dict[str, Any]) -> PaymentEvent:
        event_type = str(event.get("type") or "")
        obj = (event.get("data") or {}).get("object") or {}
        base = {
            "provider": self.provider,
            "event_type": event_type,
            "dedup_key": make_dedup_key(self.provider, event.get("id")),
            "raw": event,
        }

        if event_type == EVENT_CHECKOUT_COMPLETED:
            outcome = self._map_outcome(obj.get("payment_status"))
            if outcome is not PaymentOutcome.COMPLETED:
                # session finished but money not captured yet (async methods)
                return PaymentEvent(**base)
            currency = (obj.get("currency") or "").upper() or None
            return PaymentEvent(
                **base,
                order_id=_order_id_from(obj, allow_client_reference=True),
                outcome=outcome,
                amount=from_minor(obj.get("amount_total"), currency),
                currency=currency,
                payment_reference=obj.get("payment_intent") or obj.get("id"),
                note="Payment confirmed via Stripe webhook",
            )

        if event_type == EVENT_PAYMENT_FAILED:
            error = (obj.get("last_payment_error") or {}).get("message")
            note = "Payment failed via Stripe"
            if error:
                note = f"{note}: {error}"
            return PaymentEvent(
                **base,
                order_id=_order_id_from(obj),
                outcome=PaymentOutcome.FAILED,
                payment_reference=obj.get("id"),
                note=note,
            )

        if event_type == EVENT_CHARGE_REFUNDED:
            full = bool(obj.get("refunded"))
            currency = (obj.get("currency") or "").upper() or None
            return PaymentEvent(
                **base,
                order_id=_order_id_from(obj),
                outcome=PaymentOutcome.REFUNDED if full else PaymentOutcome.PARTIALLY_REFUNDED,
                amount=from_minor(obj.get("amount_refunded"), currency),
                currency=currency,
                payment_reference=obj.get("payment_intent") or obj.get("id"),
                note=f"Refund processed via Stripe ({'full' if full else 'partial'})",
            )

        return PaymentEvent(**base)

    # ------------------------------------------------------------------- refund

    def _require_api_key(self) -> str:
        if not self._secret_key:
            raise PaymentConfigurationError("PAYMENTS__STRIPE__SECRET_KEY not configured", provider=self.provider)
        return self._secret_key

    async def refund(self, req: ProviderRefundRequest) -> ProviderRefundResult:
        api_key = self._require_api_key()
        if not req.payment_reference:
            raise PaymentProviderError("Order has no Stripe payment reference", provider=self.provider)

        params: dict[str, Any] = {
            "amount": to_minor(req.amount, req.currency),
            "reason": "requested_by_customer",
            "metadata": {"order_id": req.order_id, "reason": req.reason or ""},
            "idempotency_key": req.idempotency_key,
            "api_key": api_key,
        }
        if req.payment_reference.startswith("ch_"):
            params["charge"] = req.payment_reference
        else:
            params["payment_intent"] = req.payment_reference

        self._log("stripe_refund_request", order_id=req.order_id, amount_minor=params["amount"])
        try:
            refund = await asyncio.to_thread(stripe.Refund.create, **params)
        except (stripe.RateLimitError, stripe.APIConnectionError) as exc:
            raise PaymentRecoverableError(
                exc.user_message or str(exc), provider=self.provider, provider_code=exc.code
            ) from exc
        except stripe.StripeError as exc:
            raise PaymentProviderError(
                exc.user_message or str(exc), provider=self.provider, provider_code=exc.code
            ) from exc

        status = self._map_refund_status(str(refund.get("status") or ""))
        self._log("stripe_refund_response", order_id=req.order_id, refund_id=refund.get("id"), status=status)
        return ProviderRefundResult(
            refund_id=str(refund["id"]),
            status=status,
            provider=self.provider,
            amount=from_minor(refund.get("amount"), req.currency),
        )

    # ------------------------------------------------------------------- status

    async def verify_payment(self, order_id: str, reference: str) -> PaymentEvent:
        """Poll a Checkout Session (``cs_...``) or PaymentIntent (``pi_...``)."""
        api_key = self._require_api_key()
        self._log("stripe_status_request", order_id=order_id, reference=reference)
        try:
            if reference.startswith("pi_"):
                intent = await asyncio.to_thread(stripe.PaymentIntent.retrieve, reference, api_key=api_key)
                return self._intent_status_event(order_id, intent)
            session = await asyncio.to_thread(
                stripe.checkout.Session.retrieve, reference, expand=["payment_intent"], api_key=api_key
            )
        except (stripe.RateLimitError, stripe.APIConnectionError) as exc:
            raise PaymentRecoverableError(
                exc.user_message or str(exc), provider=self.provider, provider_code=exc.code
            ) from exc
        except stripe.StripeError as exc:
            raise PaymentProviderError(
                exc.user_message or str(exc), provider=self.provider, provider_code=exc.code
            ) from exc
        return self._session_status_event(order_id, session)

    def _status_base(self, order_id: str, obj: Mapping[str, Any], provider_status: Optional[str]) -> dict[str, Any]:
        owner = _order_id_from(obj, allow_client_reference=True)
        if owner and owner != order_id:
            raise PaymentProviderError(
                f"Stripe object {obj.get('id')} belongs to order {owner}", provider=self.provider
            )
        return {
            "provider": self.provider,
            "event_type": f"status_poll.{provider_status or 'unknown'}",
            "order_id": order_id,
            "raw": {"id": obj.get("id"), "status": obj.get("status"), "payment_status": obj.get("payment_status")},
        }

    def _session_status_event(self, order_id: str, session: Mapping[str, Any]) -> PaymentEvent:
        payment_status = session.get("payment_status")
        base = self._status_base(order_id, session, payment_status)
        outcome = self._map_outcome(payment_status)
        if outcome is not PaymentOutcome.COMPLETED:
            if session.get("status") == "expired":
                return PaymentEvent(
                    **base,
                    outcome=PaymentOutcome.FAILED,
                    payment_reference=session.get("id"),
                    note="Stripe checkout session expired",
                )
            return PaymentEvent(**base)

        intent = session.get("payment_intent")
        intent_id = intent if isinstance(intent, str) else (intent.get("id") if intent else None)
        currency = (session.get("currency") or "").upper() or None
        return PaymentEvent(
            **base,
            outcome=outcome,
            amount=from_minor(session.get("amount_total"), currency),
            currency=currency,
            payment_reference=intent_id or session.get("id"),
            note="Payment confirmed via Stripe status check",
        )

    def _intent_status_event(self, order_id: str, intent: Mapping[str, Any]) -> PaymentEvent:
        status = intent.get("status")
        base = self._status_base(order_id, intent, status)
        if status == "succeeded":
            currency = (intent.get("currency") or "").upper() or None
            return PaymentEvent(
                **base,
                outcome=PaymentOutcome.COMPLETED,
                amount=from_minor(intent.get("amount_received"), currency),
                currency=currency,
                payment_reference=intent.get("id"),
                note="Payment confirmed via Stripe status check",
            )
        if status == "canceled":
            return PaymentEvent(
                **base,
                outcome=PaymentOutcome.FAILED,
                payment_reference=intent.get("id"),
                note="Stripe payment intent canceled",
            )
        return PaymentEvent(**base)

    # ------------------------------------------------------------------- health

    async def _check_connectivity(self) -> Optional[dict[str, Any]]:
        api_key = self._require_api_key()
        account = await asyncio.to_thread(stripe.Account.retrieve, api_key=api_key)
        return {
            "account_id": account.get("id"),
            "charges_enabled": account.get("charges_enabled"),
            "payouts_enabled": account.get("payouts_enabled"),
            "country": account.get("country"),
        }
