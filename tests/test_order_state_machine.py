from datetime import datetime, timezone
from decimal import Decimal

import pytest

from conftest import make_order, make_paid_order
from domain.common.exceptions import InvalidTransitionException
from domain.order.commands import RefundApplied, StatusChangeCommand
from domain.order.entity import OrderStatus, PaymentStatus
from domain.order.state_machine import (
    COMPATIBLE_PAYMENT_STATUSES,
    JOINT_TRANSITIONS,
    PAYMENT_TRANSITIONS,
    STATUS_TRANSITIONS,
    OrderStateMachine,
    can_transition,
    sanitize_note,
)
from domain.payment.entity import PaymentEvent, PaymentOutcome


NOW = datetime(2026, 10, 17, 9, 0, tzinfo=timezone.utc)
machine = OrderStateMachine()


def _event(outcome, amount=None, **kwargs):
    return PaymentEvent(
        provider=kwargs.pop("provider", "campay"),
        event_type="test",
        dedup_key="campay:ref_1",
        order_id="ord_1",
        outcome=outcome,
        amount=amount,
        payment_reference=kwargs.pop("payment_reference", "ref_1"),
        **kwargs,
    )


def test_whitelist_is_closed_over_status_values():
    assert set(STATUS_TRANSITIONS) == set(OrderStatus)
    for targets in STATUS_TRANSITIONS.values():
        assert targets <= set(OrderStatus)
    assert set(PAYMENT_TRANSITIONS) == set(PaymentStatus)
    assert set(COMPATIBLE_PAYMENT_STATUSES) == set(OrderStatus)


def test_terminal_statuses_have_no_exits():
    for status in (OrderStatus.DELIVERED, OrderStatus.CANCELLED, OrderStatus.REFUNDED):
        assert STATUS_TRANSITIONS[status] == frozenset()
    for status in (PaymentStatus.FAILED, PaymentStatus.REFUNDED, PaymentStatus.PARTIALLY_REFUNDED):
        assert PAYMENT_TRANSITIONS[status] == frozenset()


def test_joint_transitions_only_cover_allowed_payment_moves():
    for (src, dst), status_moves in JOINT_TRANSITIONS.items():
        assert dst in PAYMENT_TRANSITIONS[src]
        for before, after in status_moves.items():
            if before is not after:
                assert after in COMPATIBLE_PAYMENT_STATUSES and dst in COMPATIBLE_PAYMENT_STATUSES[after]


@pytest.mark.parametrize("current", list(OrderStatus))
@pytest.mark.parametrize("target", list(OrderStatus))
def test_admin_change_accepted_only_when_whitelisted(current, target):
    payment = PaymentStatus.PAID if PaymentStatus.PAID in COMPATIBLE_PAYMENT_STATUSES[current] else PaymentStatus.PENDING
    order = make_order(status=current, payment_status=payment, amount_paid=Decimal("5000"))
    command = StatusChangeCommand(new_status=target, actor="ops@example.com")
    allowed = can_transition(current, target) and payment in COMPATIBLE_PAYMENT_STATUSES[target]
    if allowed:
        result = machine.apply(order, command, now=NOW)
        assert result.order.status is target
        assert result.history.old_status == current.value
        assert result.history.new_status == target.value
    else:
        with pytest.raises(InvalidTransitionException) as exc_info:
            machine.apply(order, command, now=NOW)
        assert exc_info.value.current == current.value
        assert exc_info.value.attempted == target.value
        assert exc_info.value.details["current_status"] == current.value


def test_completed_payment_moves_both_axes():
    order = make_order()
    result = machine.apply(order, _event(PaymentOutcome.COMPLETED, Decimal("5000")), now=NOW)

    assert result.order.payment_status is PaymentStatus.PAID
    assert result.order.status is OrderStatus.PAID
    assert result.order.amount_paid == Decimal("5000")
    assert result.order.paid_at == NOW
    assert result.order.payment_reference == "ref_1"
    assert result.history.old_status == "payment_pending"
    assert result.history.new_status == "paid"
    assert result.history.changed_by == "system"
    assert result.history.notes == "Payment confirmed via Campay webhook"
    # input is never mutated
    assert order.payment_status is PaymentStatus.PENDING


def test_redelivered_outcome_is_a_noop():
    order = make_paid_order()
    result = machine.apply(order, _event(PaymentOutcome.COMPLETED, Decimal("100")), now=NOW)
    assert not result.changed
    assert result.order is order


def test_failed_after_paid_is_rejected():
    order = make_paid_order()
    with pytest.raises(InvalidTransitionException) as exc_info:
        machine.apply(order, _event(PaymentOutcome.FAILED), now=NOW)
    assert exc_info.value.axis == "payment_status"


def test_failed_payment_keeps_business_status():
    order = make_order()
    result = machine.apply(order, _event(PaymentOutcome.FAILED, note="Payment failed via CamPay Mobile Money (MTN)"), now=NOW)
    assert result.order.payment_status is PaymentStatus.FAILED
    assert result.order.status is OrderStatus.PAYMENT_PENDING
    assert result.history.old_status == "pending"
    assert result.history.new_status == "failed"
    assert result.history.notes == "Payment failed via CamPay Mobile Money (MTN)"


def test_paid_on_cancelled_order_records_payment_axis_only():
    order = make_order(status=OrderStatus.CANCELLED)
    result = machine.apply(order, _event(PaymentOutcome.COMPLETED, Decimal("5000")), now=NOW)
    assert result.order.status is OrderStatus.CANCELLED
    assert result.order.payment_status is PaymentStatus.PAID
    assert result.status_advanced is False
    assert result.history.old_status == "pending"
    assert result.history.new_status == "paid"


def test_missing_amount_defaults_to_expected():
    result = machine.apply(make_order(), _event(PaymentOutcome.COMPLETED), now=NOW)
    assert result.order.amount_paid == Decimal("5000")


def test_full_refund_cancels_order():
    order = make_paid_order(status=OrderStatus.IN_PROGRESS)
    refund = RefundApplied(amount=Decimal("100.00"), refund_reference="re_1", reason="Customer request", actor="ops@example.com")
    result = machine.apply(order, refund, now=NOW)

    assert result.full_refund
    assert result.order.payment_status is PaymentStatus.REFUNDED
    assert result.order.status is OrderStatus.CANCELLED
    assert result.order.refund_amount == Decimal("100.00")
    assert result.order.refund_reference == "re_1"
    assert result.history.old_status == "paid"
    assert result.history.new_status == "refunded"
    assert result.history.notes == "Refund processed: USD 100.00 - Customer request"


def test_partial_refund_keeps_business_status():
    order = make_paid_order(status=OrderStatus.REVIEW)
    refund = RefundApplied(amount=Decimal("99.99"), refund_reference="re_2", reason="Late delivery", actor="ops")
    result = machine.apply(order, refund, now=NOW)

    assert not result.full_refund
    assert result.order.payment_status is PaymentStatus.PARTIALLY_REFUNDED
    assert result.order.status is OrderStatus.REVIEW
    assert result.order.refund_amount == Decimal("99.99")


def test_refund_amount_is_clamped_to_amount_paid():
    order = make_paid_order()
    refund = RefundApplied(amount=Decimal("250.00"), refund_reference="re_3", reason="Duplicate charge", actor="ops")
    result = machine.apply(order, refund, now=NOW)
    assert result.order.refund_amount == Decimal("100.00")
    assert result.full_refund


def test_second_refund_is_rejected():
    order = make_paid_order(payment_status=PaymentStatus.PARTIALLY_REFUNDED)
    refund = RefundApplied(amount=Decimal("1"), refund_reference="re_4", reason="Second attempt", actor="ops")
    with pytest.raises(InvalidTransitionException):
        machine.apply(order, refund, now=NOW)


def test_admin_note_is_sanitised_and_capped():
    order = make_paid_order()
    note = "<b>Started</b> recording\x00 " + "x" * 600
    result = machine.apply(order, StatusChangeCommand(OrderStatus.IN_PROGRESS, "ops", note), now=NOW)
    assert result.history.notes.startswith("Started recording")
    assert len(result.history.notes) == 500


def test_sanitize_note_blank_becomes_none():
    assert sanitize_note("  <br>  ") is None
    assert sanitize_note(None) is None


def test_admin_cannot_skip_payment():
    order = make_order(status=OrderStatus.PAYMENT_PENDING)
    with pytest.raises(InvalidTransitionException):
        machine.apply(order, StatusChangeCommand(OrderStatus.PAID, "ops"), now=NOW)
