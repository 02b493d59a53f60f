import hashlib
import hmac
import json
import time
from decimal import Decimal

import pytest
import stripe

from domain.payment.entity import PaymentOutcome
from infrastructure.external.payments.exceptions import PaymentProviderError, PaymentRecoverableError
from infrastructure.external.payments.stripe_client import StripeClient


SECRET = "whsec_unit_test"


def _sign(payload: str, secret: str = SECRET, timestamp: int | None = None) -> str:
    ts = int(time.time()) if timestamp is None else timestamp
    digest = hmac.new(secret.encode(), f"{ts}.{payload}".encode(), hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


def _client() -> StripeClient:
    return StripeClient(secret_key="sk_test_123", webhook_secret=SECRET, tolerance_seconds=300)


def _checkout_event(**obj_overrides) -> str:
    obj = {
        "id": "cs_test_1",
        "payment_status": "paid",
        "amount_total": 4999,
        "currency": "usd",
        "payment_intent": "pi_test_1",
        "metadata": {"orderId": "ord_42"},
    }
    obj.update(obj_overrides)
    return json.dumps({"id": "evt_1", "type": "checkout.session.completed", "data": {"object": obj}})


def test_checkout_completed_is_verified_and_normalised():
    payload = _checkout_event()
    result = _client().verify(payload.encode(), _sign(payload), {})

    assert result.valid
    event = result.event
    assert event.order_id == "ord_42"
    assert event.outcome is PaymentOutcome.COMPLETED
    assert event.amount == Decimal("49.99")
    assert event.currency == "USD"
    assert event.payment_reference == "pi_test_1"
    assert event.dedup_key == "stripe:evt_1"


def test_client_reference_id_is_used_when_metadata_missing():
    payload = _checkout_event(metadata={}, client_reference_id="ord_77")
    result = _client().verify(payload.encode(), _sign(payload), {})
    assert result.event.order_id == "ord_77"


def test_unpaid_checkout_is_not_actionable():
    payload = _checkout_event(payment_status="unpaid")
    result = _client().verify(payload.encode(), _sign(payload), {})
    assert result.valid
    assert not result.event.is_actionable


def test_wrong_secret_is_rejected():
    payload = _checkout_event()
    result = _client().verify(payload.encode(), _sign(payload, secret="whsec_other"), {})
    assert not result.valid
    assert result.event is None


def test_tampered_body_is_rejected():
    payload = _checkout_event()
    header = _sign(payload)
    tampered = payload.replace("ord_42", "ord_43")
    assert not _client().verify(tampered.encode(), header, {}).valid


def test_stale_timestamp_is_rejected():
    payload = _checkout_event()
    header = _sign(payload, timestamp=int(time.time()) - 3600)
    assert not _client().verify(payload.encode(), header, {}).valid


def test_missing_header_is_rejected():
    payload = _checkout_event()
    result = _client().verify(payload.encode(), None, {})
    assert not result.valid
    assert "Stripe-Signature" in result.reason


def test_unconfigured_secret_rejects_everything():
    client = StripeClient(secret_key="sk_test_123", webhook_secret="", tolerance_seconds=300)
    payload = _checkout_event()
    assert not client.verify(payload.encode(), _sign(payload), {}).valid


def test_payment_failed_event():
    payload = json.dumps({
        "id": "evt_2",
        "type": "payment_intent.payment_failed",
        "data": {"object": {
            "id": "pi_9",
            "metadata": {"order_id": "ord_9"},
            "last_payment_error": {"message": "Card declined"},
        }},
    })
    event = _client().verify(payload.encode(), _sign(payload), {}).event
    assert event.outcome is PaymentOutcome.FAILED
    assert event.order_id == "ord_9"
    assert event.note == "Payment failed via Stripe: Card declined"


def test_partial_charge_refund_event():
    payload = json.dumps({
        "id": "evt_3",
        "type": "charge.refunded",
        "data": {"object": {
            "id": "ch_1",
            "refunded": False,
            "amount_refunded": 1000,
            "currency": "usd",
            "payment_intent": "pi_1",
            "metadata": {"orderId": "ord_1"},
        }},
    })
    event = _client().verify(payload.encode(), _sign(payload), {}).event
    assert event.outcome is PaymentOutcome.PARTIALLY_REFUNDED
    assert event.amount == Decimal("10")


def test_unrelated_event_type_is_skipped():
    payload = json.dumps({"id": "evt_4", "type": "customer.created", "data": {"object": {"id": "cus_1"}}})
    result = _client().verify(payload.encode(), _sign(payload), {})
    assert result.valid
    assert result.event.order_id is None
    assert not result.event.is_actionable


@pytest.mark.asyncio
async def test_refund_routes_charge_ids_and_converts_to_minor_units(monkeypatch):
    import stripe
    from application.dtos.payments import ProviderRefundRequest

    calls = {}

    def _fake_create(**params):
        calls.update(params)
        return {"id": "re_1", "status": "succeeded", "amount": params["amount"]}

    monkeypatch.setattr(stripe.Refund, "create", staticmethod(_fake_create))
    req = ProviderRefundRequest(
        order_id="ord_1",
        amount=Decimal("12.50"),
        currency="USD",
        reason="Customer request",
        payment_reference="ch_abc",
        idempotency_key="k" * 64,
    )
    result = await _client().refund(req)

    assert calls["charge"] == "ch_abc"
    assert "payment_intent" not in calls
    assert calls["amount"] == 1250
    assert calls["idempotency_key"] == "k" * 64
    assert result.refund_id == "re_1"
    assert result.amount == Decimal("12.5")


def _retrieve_returning(obj, calls):
    def _retrieve(reference, **kwargs):
        calls.append((reference, kwargs))
        return obj
    return _retrieve


@pytest.mark.asyncio
async def test_status_check_of_paid_session(monkeypatch):
    calls = []
    session = {
        "id": "cs_test_1",
        "status": "complete",
        "payment_status": "paid",
        "amount_total": 4999,
        "currency": "usd",
        "payment_intent": {"id": "pi_test_1", "status": "succeeded"},
        "metadata": {"orderId": "ord_42"},
    }
    monkeypatch.setattr(stripe.checkout.Session, "retrieve", _retrieve_returning(session, calls))

    event = await _client().verify_payment("ord_42", "cs_test_1")

    assert calls == [("cs_test_1", {"expand": ["payment_intent"], "api_key": "sk_test_123"})]
    assert event.is_actionable
    assert event.dedup_key is None
    assert event.outcome is PaymentOutcome.COMPLETED
    assert event.amount == Decimal("49.99")
    assert event.currency == "USD"
    assert event.payment_reference == "pi_test_1"


@pytest.mark.asyncio
@pytest.mark.parametrize("session_status,expected", [
    ("expired", PaymentOutcome.FAILED),
    ("open", None),
])
async def test_status_check_of_unpaid_session(monkeypatch, session_status, expected):
    session = {"id": "cs_test_2", "status": session_status, "payment_status": "unpaid", "payment_intent": None}
    monkeypatch.setattr(stripe.checkout.Session, "retrieve", _retrieve_returning(session, []))

    event = await _client().verify_payment("ord_42", "cs_test_2")

    assert event.outcome is expected
    assert event.order_id == "ord_42"


@pytest.mark.asyncio
async def test_status_check_of_payment_intent(monkeypatch):
    intent = {"id": "pi_test_9", "status": "succeeded", "amount_received": 1000, "currency": "usd", "metadata": {}}
    monkeypatch.setattr(stripe.PaymentIntent, "retrieve", _retrieve_returning(intent, []))

    event = await _client().verify_payment("ord_42", "pi_test_9")

    assert event.outcome is PaymentOutcome.COMPLETED
    assert event.amount == Decimal("10.00")
    assert event.payment_reference == "pi_test_9"


@pytest.mark.asyncio
async def test_status_check_rejects_session_of_another_order(monkeypatch):
    session = {"id": "cs_test_3", "payment_status": "paid", "metadata": {"orderId": "ord_other"}}
    monkeypatch.setattr(stripe.checkout.Session, "retrieve", _retrieve_returning(session, []))

    with pytest.raises(PaymentProviderError):
        await _client().verify_payment("ord_42", "cs_test_3")


@pytest.mark.asyncio
async def test_status_check_maps_connection_errors_to_recoverable(monkeypatch):
    def _down(reference, **kwargs):
        raise stripe.APIConnectionError("network down")

    monkeypatch.setattr(stripe.checkout.Session, "retrieve", _down)

    with pytest.raises(PaymentRecoverableError):
        await _client().verify_payment("ord_42", "cs_test_4")
