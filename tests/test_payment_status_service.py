from decimal import Decimal

import pytest

from conftest import FakeGateway, make_order, make_paid_order
from application.services.notifications import drain_background_notifications
from application.services.payment_status_service import PaymentStatusService
from domain.common.exceptions import (
    OrderNotFoundException,
    PaymentStatusLookupException,
    PermissionDeniedException,
)
from domain.order.entity import OrderStatus, PaymentStatus
from domain.payment.entity import PaymentEvent, PaymentOutcome
from infrastructure.external.payments.exceptions import PaymentRecoverableError


def _status_event(outcome, order_id="ord_1", amount=Decimal("5000")):
    return PaymentEvent(
        provider="campay",
        event_type=f"status_poll.{outcome.value}",
        order_id=order_id,
        outcome=outcome,
        amount=amount,
        currency="XAF",
        payment_reference="cp_ref_1",
        note="Payment confirmed via CamPay status check (MTN, ref MP1)",
    )


def _pending_campay_order(**overrides):
    return make_order(payment_provider="campay", payment_reference="cp_ref_1", **overrides)


@pytest.fixture
def campay_gateway():
    return FakeGateway(provider="campay", supports_refunds=False)


@pytest.fixture
def service(uow_factory, campay_gateway, authorizer, audit_logger, dispatcher):
    return PaymentStatusService(
        uow_factory=uow_factory,
        gateway_resolver=lambda provider: campay_gateway,
        authorizer=authorizer,
        audit_logger=audit_logger,
        dispatcher=dispatcher,
    )


@pytest.mark.asyncio
async def test_completed_payment_is_applied(service, repo, campay_gateway, audit_logger, dispatcher, admin):
    repo.add(_pending_campay_order())
    campay_gateway.status_event = _status_event(PaymentOutcome.COMPLETED)

    outcome = await service.check_payment("ord_1", admin)
    await drain_background_notifications()

    assert outcome.checked and outcome.changed
    assert outcome.payment_status == "paid"
    assert outcome.status == "paid"
    assert outcome.amount_paid == Decimal("5000")
    assert campay_gateway.status_requests == [("ord_1", "cp_ref_1")]

    order = repo.orders["ord_1"]
    assert order.payment_status is PaymentStatus.PAID
    assert order.status is OrderStatus.PAID
    assert order.version == 1
    history = repo.history_for("ord_1")
    assert len(history) == 1
    assert history[0].changed_by == "system"
    assert [t for t, _, _ in dispatcher.sent] == ["order-confirmation"]
    assert audit_logger.records[-1][0] == "order.payment_check"
    assert audit_logger.records[-1][3]["payment_status_to"] == "paid"


@pytest.mark.asyncio
async def test_failed_payment_is_applied(service, repo, campay_gateway, dispatcher, admin):
    repo.add(_pending_campay_order())
    campay_gateway.status_event = _status_event(PaymentOutcome.FAILED, amount=None)

    outcome = await service.check_payment("ord_1", admin)
    await drain_background_notifications()

    assert outcome.payment_status == "failed"
    assert repo.orders["ord_1"].payment_status is PaymentStatus.FAILED
    assert dispatcher.sent == []


@pytest.mark.asyncio
async def test_still_pending_leaves_order_untouched(service, repo, campay_gateway, admin):
    repo.add(_pending_campay_order())

    outcome = await service.check_payment("ord_1", admin)

    assert outcome.checked and not outcome.changed
    assert outcome.payment_status == "pending"
    assert outcome.message == "Payment still pending at provider"
    assert repo.history == []


@pytest.mark.asyncio
async def test_settled_order_is_not_sent_to_provider(service, repo, campay_gateway, admin):
    repo.add(make_paid_order(id="ord_1", payment_provider="campay"))

    outcome = await service.check_payment("ord_1", admin)

    assert not outcome.checked
    assert outcome.message == "Payment already paid"
    assert campay_gateway.status_requests == []


@pytest.mark.asyncio
async def test_order_without_reference_reports_not_initiated(service, repo, campay_gateway, admin):
    repo.add(make_order())

    outcome = await service.check_payment("ord_1", admin)

    assert outcome.payment_status == "pending"
    assert outcome.message == "Payment not yet initiated"
    assert campay_gateway.status_requests == []


@pytest.mark.asyncio
async def test_provider_error_raises_and_touches_nothing(service, repo, campay_gateway, audit_logger, admin):
    repo.add(_pending_campay_order())
    campay_gateway.status_error = PaymentRecoverableError("CamPay unreachable: timeout", provider="campay")

    with pytest.raises(PaymentStatusLookupException) as exc_info:
        await service.check_payment("ord_1", admin)

    assert "CamPay unreachable" in exc_info.value.message
    assert repo.orders["ord_1"].payment_status is PaymentStatus.PENDING
    assert repo.history == []
    assert audit_logger.records[-1][3]["status"] == "failed"


@pytest.mark.asyncio
async def test_webhook_applied_first_is_reported_up_to_date(service, repo, campay_gateway, admin, dispatcher):
    repo.add(_pending_campay_order())
    campay_gateway.status_event = _status_event(PaymentOutcome.COMPLETED)

    async def _webhook_wins(order_id, reference):
        # the webhook lands between the read and the locked write
        order = repo.orders[order_id]
        repo.orders[order_id] = make_paid_order(
            id=order_id, currency="XAF", amount_expected=order.amount_expected,
            amount_paid=order.amount_expected, payment_provider="campay", payment_reference=reference,
        )
        return campay_gateway.status_event

    campay_gateway.verify_payment = _webhook_wins

    outcome = await service.check_payment("ord_1", admin)
    await drain_background_notifications()

    assert outcome.checked and not outcome.changed
    assert outcome.message == "Payment already up to date"
    assert repo.history == []
    assert dispatcher.sent == []


@pytest.mark.asyncio
async def test_permission_is_checked_first(service, authorizer, campay_gateway, admin):
    authorizer.allowed = False
    with pytest.raises(PermissionDeniedException):
        await service.check_payment("ord_1", admin)
    assert authorizer.checks == [("adm_1", "orders:update")]
    assert campay_gateway.status_requests == []


@pytest.mark.asyncio
async def test_missing_order(service, admin):
    with pytest.raises(OrderNotFoundException):
        await service.check_payment("nope", admin)
