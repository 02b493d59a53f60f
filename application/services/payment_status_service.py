"""
Provider status polling for orders whose webhook never arrived.

Mobile-money payments in particular can settle minutes after checkout; an
admin can ask the provider directly and the answer is applied exactly like a
webhook would be (same state machine, same row lock, same notification).
"""
from __future__ import annotations

from typing import Callable, Optional

from application.dtos.payments import PaymentCheckOutcome
from application.ports.collaborators import (
    AdminPrincipal,
    AuditLogger,
    Authorizer,
    NotificationDispatcher,
)
from application.ports.payment_gateway import PaymentGateway
from application.services.audit import ACTION_ORDER_PAYMENT_CHECK, audit
from application.services.payment_events import PaymentEventApplier
from core.logging_config import get_logger
from domain.common.exceptions import (
    BusinessException,
    OrderNotFoundException,
    PaymentStatusLookupException,
    PermissionDeniedException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import Order, PaymentStatus
from domain.order.state_machine import OrderStateMachine


logger = get_logger(__name__)

PERMISSION_UPDATE = "orders:update"


def _outcome(order: Order, message: str, *, checked: bool, changed: bool = False) -> PaymentCheckOutcome:
    return PaymentCheckOutcome(
        order_id=order.id,
        payment_status=order.payment_status.value,
        status=order.status.value,
        checked=checked,
        changed=changed,
        amount_paid=order.amount_paid,
        paid_at=order.paid_at,
        payment_reference=order.payment_reference,
        message=message,
    )


class PaymentStatusService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        gateway_resolver: Callable[[str], PaymentGateway],
        authorizer: Authorizer,
        audit_logger: Optional[AuditLogger] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        state_machine: Optional[OrderStateMachine] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self._gateway_resolver = gateway_resolver
        self._authorizer = authorizer
        self._audit_logger = audit_logger
        self._applier = PaymentEventApplier(uow_factory, dispatcher, state_machine)

    async def check_payment(self, order_id: str, actor: AdminPrincipal) -> PaymentCheckOutcome:
        if not self._authorizer.has_permission(actor, PERMISSION_UPDATE):
            logger.warning("payment_check_forbidden", actor_id=actor.id, role=actor.role, order_id=order_id)
            raise PermissionDeniedException(PERMISSION_UPDATE)

        order = await self._load(order_id)
        if order.payment_status is not PaymentStatus.PENDING:
            return _outcome(order, f"Payment already {order.payment_status.value}", checked=False)
        if not order.payment_provider or not order.payment_reference:
            return _outcome(order, "Payment not yet initiated", checked=False)

        provider = order.payment_provider
        gateway = self._gateway_resolver(provider)
        try:
            event = await gateway.verify_payment(order.id, order.payment_reference)
        except Exception as exc:
            error = exc.message if isinstance(exc, BusinessException) else str(exc)
            logger.error("payment_check_provider_failed", order_id=order.id, provider=provider, error=error)
            await audit(self._audit_logger, ACTION_ORDER_PAYMENT_CHECK, actor, order.id, {
                "status": "failed",
                "provider": provider,
                "error": error,
            })
            raise PaymentStatusLookupException(provider, order.id, error) from exc

        logger.info(
            "payment_check_result",
            order_id=order.id,
            provider=provider,
            event_type=event.event_type,
            outcome=event.outcome.value if event.outcome else None,
        )
        if not event.is_actionable:
            return _outcome(order, "Payment still pending at provider", checked=True)

        transition = await self._applier.apply(event, source="status_check")
        if transition is None:
            current = await self._load(order_id)
            return _outcome(current, "Provider outcome conflicts with the order's current state", checked=True)
        if not transition.changed:
            return _outcome(transition.order, "Payment already up to date", checked=True)

        self._applier.after_commit(transition)
        saved = transition.order
        await audit(self._audit_logger, ACTION_ORDER_PAYMENT_CHECK, actor, saved.id, {
            "status": "success",
            "provider": provider,
            "payment_status_from": transition.before.payment_status.value,
            "payment_status_to": saved.payment_status.value,
        })
        return _outcome(saved, f"Payment status updated to {saved.payment_status.value}", checked=True, changed=True)

    async def _load(self, order_id: str) -> Order:
        async with self._uow_factory(readonly=True) as uow:
            order = await uow.order_repository.get(order_id)
        if order is None:
            raise OrderNotFoundException(order_id)
        return order
