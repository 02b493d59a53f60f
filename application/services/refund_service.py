"""
Admin refund orchestration.

The provider is called first and the order is written second, so a local
failure after a successful provider refund cannot be undone by retrying. That
case is surfaced as `RefundReconciliationRequiredException` and never retried
silently; the deterministic idempotency key makes a human retry safe at the
provider.
"""
from __future__ import annotations

import hashlib
from decimal import Decimal
from typing import Callable, Optional

from application.dtos.payments import (
    ProviderRefundRequest,
    ProviderRefundResult,
    RefundCommand,
    RefundOutcome,
)
from application.ports.collaborators import (
    AdminPrincipal,
    AuditLogger,
    Authorizer,
    NotificationDispatcher,
)
from application.ports.payment_gateway import PaymentGateway
from application.services.audit import ACTION_ORDER_REFUND, audit
from application.services.notifications import (
    TEMPLATE_CANCELLATION,
    cancellation_data,
    notify_in_background,
)
from core.logging_config import get_logger
from domain.common.exceptions import (
    BusinessException,
    DomainValidationException,
    OrderNotFoundException,
    PermissionDeniedException,
    ProviderUnsupportedException,
    RefundNotAllowedException,
    RefundProviderException,
    RefundReconciliationRequiredException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.commands import RefundApplied
from domain.order.entity import Order, PaymentStatus
from domain.order.state_machine import OrderStateMachine
from domain.payment.entity import quantize_amount, to_minor


logger = get_logger(__name__)

PERMISSION_REFUND = "orders:refund"
FAILED_REFUND_STATUSES = {"failed", "canceled"}


def refund_idempotency_key(order_id: str, amount: Decimal, currency: str) -> str:
    """Same order + same amount always yields the same key, so retries are safe
    while distinct partial refunds remain possible.

    The amount enters the key in minor units, so ``100``, ``100.0`` and
    ``100.00`` are one refund.
    """
    base = f"refund-{order_id}-{to_minor(amount, currency)}"
    return hashlib.sha256(base.encode("utf-8")).hexdigest()


def resolve_refund_amount(order: Order, requested: Optional[Decimal]) -> Decimal:
    """Clamp to the paid amount, then round to the currency's minor unit."""
    paid = order.amount_paid if order.amount_paid is not None else order.amount_expected
    amount = min(Decimal(requested), paid) if requested is not None and requested > 0 else paid
    return quantize_amount(amount, order.currency)


class RefundService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        gateway_resolver: Callable[[str], PaymentGateway],
        authorizer: Authorizer,
        audit_logger: Optional[AuditLogger] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        *,
        reason_min_length: int = 10,
        state_machine: Optional[OrderStateMachine] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self._gateway_resolver = gateway_resolver
        self._authorizer = authorizer
        self._audit_logger = audit_logger
        self._dispatcher = dispatcher
        self._reason_min_length = reason_min_length
        self._state_machine = state_machine or OrderStateMachine()

    async def refund(self, command: RefundCommand, actor: AdminPrincipal) -> RefundOutcome:
        if not self._authorizer.has_permission(actor, PERMISSION_REFUND):
            logger.warning("refund_forbidden", actor_id=actor.id, role=actor.role, order_id=command.order_id)
            raise PermissionDeniedException(PERMISSION_REFUND)

        reason = command.reason.strip()
        if len(reason) < self._reason_min_length:
            raise DomainValidationException(
                f"Refund reason must be at least {self._reason_min_length} characters",
                field="reason",
            )

        async with self._uow_factory(readonly=True) as uow:
            order = await uow.order_repository.get(command.order_id)
        if order is None:
            raise OrderNotFoundException(command.order_id)

        if order.payment_status is not PaymentStatus.PAID:
            raise RefundNotAllowedException(order.id, order.payment_status.value)

        amount = resolve_refund_amount(order, command.amount)
        if amount <= 0:
            raise DomainValidationException(
                f"Refund amount rounds to zero in {order.currency.value}",
                field="amount",
            )
        provider = order.payment_provider or ""
        gateway = self._gateway_resolver(provider)

        if not gateway.supports_refunds:
            exc = ProviderUnsupportedException(provider, order.id, amount)
            await audit(self._audit_logger, ACTION_ORDER_REFUND, actor, order.id, {
                "status": "failed",
                "error": exc.message,
                "amount": str(amount),
                "provider": provider,
                "manual_required": True,
            })
            logger.info("refund_manual_required", order_id=order.id, provider=provider, amount=str(amount))
            raise exc

        result = await self._call_provider(gateway, order, amount, reason, actor)

        try:
            saved, full_refund, applied = await self._apply_locally(
                order.id, amount, result.refund_id, reason, actor
            )
        except Exception as exc:
            logger.critical(
                "refund_reconciliation_required",
                order_id=order.id,
                refund_id=result.refund_id,
                provider=provider,
                amount=str(amount),
                error=str(exc),
                exc_info=True,
            )
            await audit(self._audit_logger, ACTION_ORDER_REFUND, actor, order.id, {
                "status": "reconciliation_required",
                "refund_id": result.refund_id,
                "amount": str(amount),
                "provider": provider,
                "error": str(exc),
            })
            raise RefundReconciliationRequiredException(order.id, result.refund_id, amount, str(exc)) from exc

        if applied:
            notify_in_background(
                self._dispatcher,
                TEMPLATE_CANCELLATION,
                saved.customer_email,
                cancellation_data(saved, amount, reason),
            )
        await audit(self._audit_logger, ACTION_ORDER_REFUND, actor, order.id, {
            "status": "success" if applied else "already_applied",
            "refund_id": result.refund_id,
            "amount": str(amount),
            "full_refund": full_refund,
            "provider": provider,
            "reason": reason[:200],
        })
        logger.info(
            "refund_completed",
            order_id=order.id,
            refund_id=result.refund_id,
            amount=str(amount),
            full_refund=full_refund,
            already_applied=not applied,
        )

        message = (
            "Full refund processed successfully"
            if full_refund
            else f"Partial refund of {order.currency.value} {amount} processed successfully"
        )
        return RefundOutcome(
            refund_id=result.refund_id,
            amount=amount,
            full_refund=full_refund,
            message=message,
        )

    async def _call_provider(
        self,
        gateway: PaymentGateway,
        order: Order,
        amount: Decimal,
        reason: str,
        actor: AdminPrincipal,
    ) -> ProviderRefundResult:
        req = ProviderRefundRequest(
            order_id=order.id,
            amount=amount,
            currency=order.currency.value,
            reason=reason,
            payment_reference=order.payment_reference,
            idempotency_key=refund_idempotency_key(order.id, amount, order.currency.value),
        )
        logger.info(
            "refund_provider_request",
            order_id=order.id,
            provider=gateway.provider,
            amount=str(amount),
            idempotency_key=req.idempotency_key,
        )
        try:
            result = await gateway.refund(req)
        except Exception as exc:
            error = exc.message if isinstance(exc, BusinessException) else str(exc)
            await self._provider_failed(gateway.provider, order.id, amount, error, actor)
            raise RefundProviderException(gateway.provider, order.id, error) from exc

        if result.status in FAILED_REFUND_STATUSES:
            error = f"provider returned status '{result.status}'"
            await self._provider_failed(gateway.provider, order.id, amount, error, actor)
            raise RefundProviderException(gateway.provider, order.id, error)
        return result

    async def _provider_failed(
        self, provider: str, order_id: str, amount: Decimal, error: str, actor: AdminPrincipal
    ) -> None:
        logger.error("refund_provider_failed", order_id=order_id, provider=provider, error=error)
        await audit(self._audit_logger, ACTION_ORDER_REFUND, actor, order_id, {
            "status": "failed",
            "error": error,
            "amount": str(amount),
            "provider": provider,
        })

    async def _apply_locally(
        self,
        order_id: str,
        amount: Decimal,
        refund_id: str,
        reason: str,
        actor: AdminPrincipal,
    ) -> tuple[Order, bool, bool]:
        """Returns ``(order, full_refund, applied)``.

        ``applied`` is False when a concurrent request for the same idempotency
        key already recorded this provider refund; the order is returned as is.
        """
        async with self._uow_factory() as uow:
            order = await uow.order_repository.get_for_update(order_id)
            if order is None:
                raise OrderNotFoundException(order_id)
            if order.refund_reference == refund_id:
                logger.info("refund_already_applied", order_id=order_id, refund_id=refund_id)
                return order, order.payment_status is PaymentStatus.REFUNDED, False
            transition = self._state_machine.apply(
                order,
                RefundApplied(amount=amount, refund_reference=refund_id, reason=reason, actor=actor.identity),
            )
            saved = await uow.order_repository.update(transition.order, expected_version=order.version)
            await uow.order_repository.insert_history(transition.history)
            await uow.commit()
        return saved, transition.full_refund, True
