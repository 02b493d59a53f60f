"""
Order lifecycle state machine.

Two separate machines live here:

* the business workflow (`OrderStatus`), constrained by a static whitelist;
* money settlement (`PaymentStatus`), a narrower forward-only machine.

They meet only at the junctions listed in `JOINT_TRANSITIONS`. Every
function in this module is pure: it returns a new `Order` plus the history
row to persist, and never touches storage.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from decimal import Decimal
from types import MappingProxyType
from typing import Mapping, Optional, Union

from domain.common.exceptions import InvalidTransitionException
from domain.payment.entity import PaymentEvent, PaymentOutcome
from .commands import RefundApplied, StatusChangeCommand
from .entity import (
    SYSTEM_ACTOR,
    Order,
    OrderStatus,
    PaymentStatus,
    StatusHistoryEntry,
)


S = OrderStatus
P = PaymentStatus

STATUS_TRANSITIONS: Mapping[OrderStatus, frozenset] = MappingProxyType({
    S.PENDING: frozenset({S.PAYMENT_PENDING, S.CANCELLED}),
    S.PAYMENT_PENDING: frozenset({S.PAID, S.CANCELLED}),
    S.PAID: frozenset({S.IN_PROGRESS, S.CANCELLED, S.REFUNDED}),
    S.IN_PROGRESS: frozenset({S.REVIEW, S.CANCELLED}),
    S.REVIEW: frozenset({S.REVISION, S.COMPLETED, S.IN_PROGRESS}),
    S.REVISION: frozenset({S.IN_PROGRESS}),
    S.COMPLETED: frozenset({S.DELIVERED}),
    S.DELIVERED: frozenset(),
    S.CANCELLED: frozenset(),
    S.REFUNDED: frozenset(),
})

PAYMENT_TRANSITIONS: Mapping[PaymentStatus, frozenset] = MappingProxyType({
    P.PENDING: frozenset({P.PAID, P.FAILED}),
    P.PAID: frozenset({P.REFUNDED, P.PARTIALLY_REFUNDED}),
    P.FAILED: frozenset(),
    P.REFUNDED: frozenset(),
    P.PARTIALLY_REFUNDED: frozenset(),
})

# (payment from, payment to) -> {business from: business to}.
# Business statuses missing from the inner mapping are left untouched.
JOINT_TRANSITIONS: Mapping[tuple, Mapping[OrderStatus, OrderStatus]] = MappingProxyType({
    (P.PENDING, P.PAID): MappingProxyType({
        S.PENDING: S.PAID,
        S.PAYMENT_PENDING: S.PAID,
    }),
    (P.PENDING, P.FAILED): MappingProxyType({}),
    (P.PAID, P.REFUNDED): MappingProxyType({
        s: S.CANCELLED for s in OrderStatus if s is not S.CANCELLED
    }),
    (P.PAID, P.PARTIALLY_REFUNDED): MappingProxyType({}),
})

_SETTLED = frozenset({P.PAID, P.PARTIALLY_REFUNDED})
_UNSETTLED = frozenset({P.PENDING, P.FAILED})

# Which payment statuses may coexist with each business status.
COMPATIBLE_PAYMENT_STATUSES: Mapping[OrderStatus, frozenset] = MappingProxyType({
    S.PENDING: _UNSETTLED,
    S.PAYMENT_PENDING: _UNSETTLED,
    S.PAID: _SETTLED,
    S.IN_PROGRESS: _SETTLED,
    S.REVIEW: _SETTLED,
    S.REVISION: _SETTLED,
    S.COMPLETED: _SETTLED,
    S.DELIVERED: _SETTLED,
    S.CANCELLED: frozenset(PaymentStatus),
    S.REFUNDED: frozenset({P.REFUNDED, P.PARTIALLY_REFUNDED}),
})

OUTCOME_TO_PAYMENT_STATUS: Mapping[PaymentOutcome, PaymentStatus] = MappingProxyType({
    PaymentOutcome.COMPLETED: P.PAID,
    PaymentOutcome.FAILED: P.FAILED,
    PaymentOutcome.REFUNDED: P.REFUNDED,
    PaymentOutcome.PARTIALLY_REFUNDED: P.PARTIALLY_REFUNDED,
})

NOTE_MAX_LENGTH = 500
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_TAGS = re.compile(r"<[^>]*>")


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return OrderStatus(target) in STATUS_TRANSITIONS[OrderStatus(current)]


def can_transition_payment(current: PaymentStatus, target: PaymentStatus) -> bool:
    return PaymentStatus(target) in PAYMENT_TRANSITIONS[PaymentStatus(current)]


def is_compatible(status: OrderStatus, payment_status: PaymentStatus) -> bool:
    return PaymentStatus(payment_status) in COMPATIBLE_PAYMENT_STATUSES[OrderStatus(status)]


def sanitize_note(note: Optional[str], max_length: int = NOTE_MAX_LENGTH) -> Optional[str]:
    if note is None:
        return None
    cleaned = _CONTROL_CHARS.sub("", _TAGS.sub("", note)).strip()
    return cleaned[:max_length] or None


@dataclass(frozen=True)
class Transition:
    """Result of applying a change. `history` is None when nothing changed."""

    before: Order
    order: Order
    history: Optional[StatusHistoryEntry]
    # False when a confirmed payment could not advance the business status
    status_advanced: bool = True

    @property
    def changed(self) -> bool:
        return self.history is not None

    @property
    def full_refund(self) -> bool:
        return self.order.payment_status is P.REFUNDED


Change = Union[PaymentEvent, StatusChangeCommand, RefundApplied]


class OrderStateMachine:
    """Validates and applies order transitions against the static tables."""

    def apply(self, order: Order, change: Change, *, now: Optional[datetime] = None) -> Transition:
        now = now or datetime.now(timezone.utc)
        if isinstance(change, PaymentEvent):
            return self.apply_payment_event(order, change, now=now)
        if isinstance(change, StatusChangeCommand):
            return self.apply_status_change(order, change, now=now)
        if isinstance(change, RefundApplied):
            return self.apply_refund(order, change, now=now)
        raise TypeError(f"Unsupported change type: {type(change).__name__}")

    # ------------------------------------------------------------------ webhooks

    def apply_payment_event(self, order: Order, event: PaymentEvent, *, now: datetime) -> Transition:
        if event.outcome is None:
            raise ValueError("Payment event carries no actionable outcome")
        target = OUTCOME_TO_PAYMENT_STATUS[event.outcome]
        if order.payment_status is target:
            # redelivery of an already applied outcome
            return Transition(before=order, order=order, history=None)

        new_status = self._payment_move(order, target)
        updates: dict = {
            "payment_status": target,
            "status": new_status,
            "updated_at": now,
        }
        if target is P.PAID:
            updates.update(
                amount_paid=event.amount if event.amount is not None else order.amount_expected,
                paid_at=now,
                payment_provider=event.provider,
                payment_reference=event.payment_reference or order.payment_reference,
            )
        elif target in (P.REFUNDED, P.PARTIALLY_REFUNDED):
            paid = order.amount_paid if order.amount_paid is not None else order.amount_expected
            updates.update(
                refund_amount=event.amount if event.amount is not None else paid,
                refund_reference=event.payment_reference or order.refund_reference,
                refunded_at=now,
            )

        new_order = replace(order, **updates)
        status_advanced = target is not P.PAID or new_status is not order.status
        if target is P.PAID and new_status is not order.status:
            old, new = order.status.value, new_status.value
        else:
            old, new = order.payment_status.value, target.value

        history = StatusHistoryEntry(
            order_id=order.id,
            old_status=old,
            new_status=new,
            changed_by=SYSTEM_ACTOR,
            notes=event.note or _default_event_note(event),
            created_at=now,
        )
        return Transition(before=order, order=new_order, history=history, status_advanced=status_advanced)

    # --------------------------------------------------------------------- admin

    def apply_status_change(self, order: Order, command: StatusChangeCommand, *, now: datetime) -> Transition:
        target = OrderStatus(command.new_status)
        if not can_transition(order.status, target):
            raise InvalidTransitionException(order.status.value, target.value)
        if not is_compatible(target, order.payment_status):
            raise InvalidTransitionException(
                order.status.value,
                target.value,
                reason=f"payment status '{order.payment_status.value}' does not allow it",
            )

        new_order = replace(order, status=target, updated_at=now)
        history = StatusHistoryEntry(
            order_id=order.id,
            old_status=order.status.value,
            new_status=target.value,
            changed_by=command.actor,
            notes=sanitize_note(command.note),
            created_at=now,
        )
        return Transition(before=order, order=new_order, history=history)

    def apply_refund(self, order: Order, refund: RefundApplied, *, now: datetime) -> Transition:
        paid = order.amount_paid if order.amount_paid is not None else order.amount_expected
        amount = min(Decimal(refund.amount), paid)
        if amount <= 0:
            raise InvalidTransitionException(
                order.payment_status.value,
                P.REFUNDED.value,
                axis="payment_status",
                reason="refund amount must be positive",
            )
        target = P.REFUNDED if amount >= paid else P.PARTIALLY_REFUNDED
        new_status = self._payment_move(order, target)

        new_order = replace(
            order,
            payment_status=target,
            status=new_status,
            refund_amount=amount,
            refund_reason=refund.reason,
            refund_reference=refund.refund_reference,
            refunded_at=now,
            updated_at=now,
        )
        history = StatusHistoryEntry(
            order_id=order.id,
            old_status=order.payment_status.value,
            new_status=target.value,
            changed_by=refund.actor,
            notes=sanitize_note(f"Refund processed: {order.currency.value} {amount} - {refund.reason}"),
            created_at=now,
        )
        return Transition(before=order, order=new_order, history=history)

    # ------------------------------------------------------------------- helpers

    def _payment_move(self, order: Order, target: PaymentStatus) -> OrderStatus:
        """Validate a payment-axis move and return the business status it drags along."""
        if not can_transition_payment(order.payment_status, target):
            raise InvalidTransitionException(
                order.payment_status.value, target.value, axis="payment_status"
            )
        joint = JOINT_TRANSITIONS[(order.payment_status, target)]
        new_status = joint.get(order.status, order.status)
        if not is_compatible(new_status, target):
            raise InvalidTransitionException(
                order.payment_status.value,
                target.value,
                axis="payment_status",
                reason=f"business status '{new_status.value}' does not allow it",
            )
        return new_status


def _default_event_note(event: PaymentEvent) -> str:
    label = event.provider.capitalize() if event.provider else "provider"
    if event.outcome is PaymentOutcome.COMPLETED:
        return f"Payment confirmed via {label} webhook"
    if event.outcome is PaymentOutcome.FAILED:
        return f"Payment failed via {label}"
    kind = "full" if event.outcome is PaymentOutcome.REFUNDED else "partial"
    return f"Refund processed via {label} ({kind})"
