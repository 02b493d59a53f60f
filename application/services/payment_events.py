"""
Apply a normalized `PaymentEvent` to its order under the row lock.

Shared by webhook ingestion and provider status polling, so both paths run
the same state machine and write order + history in one unit of work.
"""
from __future__ import annotations

from typing import Callable, Optional

from application.ports.collaborators import NotificationDispatcher
from application.services.notifications import (
    TEMPLATE_ORDER_CONFIRMATION,
    notify_in_background,
    order_confirmation_data,
)
from core.logging_config import get_logger
from domain.common.exceptions import InvalidTransitionException, OrderNotFoundException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import PaymentStatus
from domain.order.state_machine import OrderStateMachine, Transition
from domain.payment.entity import PaymentEvent


logger = get_logger(__name__)


class PaymentEventApplier:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        dispatcher: Optional[NotificationDispatcher] = None,
        state_machine: Optional[OrderStateMachine] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self._dispatcher = dispatcher
        self._state_machine = state_machine or OrderStateMachine()

    async def apply(self, event: PaymentEvent, *, source: str) -> Optional[Transition]:
        """Returns None when the whitelist rejects the move.

        An unchanged transition means the outcome was already applied.
        """
        async with self._uow_factory() as uow:
            order = await uow.order_repository.get_for_update(event.order_id)
            if order is None:
                logger.warning(
                    "payment_event_order_not_found",
                    source=source,
                    provider=event.provider,
                    order_id=event.order_id,
                    event_type=event.event_type,
                )
                raise OrderNotFoundException(event.order_id)

            try:
                transition = self._state_machine.apply(order, event)
            except InvalidTransitionException as exc:
                logger.warning(
                    "payment_transition_rejected",
                    source=source,
                    provider=event.provider,
                    order_id=order.id,
                    axis=exc.axis,
                    current_status=exc.current,
                    attempted_status=exc.attempted,
                )
                return None

            if not transition.changed:
                logger.info(
                    "payment_outcome_already_applied",
                    source=source,
                    provider=event.provider,
                    order_id=order.id,
                    payment_status=order.payment_status.value,
                )
                return transition

            saved = await uow.order_repository.update(transition.order, expected_version=order.version)
            await uow.order_repository.insert_history(transition.history)
            await uow.commit()

        logger.info(
            "order_transition_applied",
            source=source,
            order_id=saved.id,
            actor="system",
            status_from=order.status.value,
            status_to=saved.status.value,
            payment_status_from=order.payment_status.value,
            payment_status_to=saved.payment_status.value,
        )
        if not transition.status_advanced:
            # Payment confirmed on an order whose workflow had already moved on
            # (or been cancelled); product owners need to decide these by hand.
            logger.warning(
                "payment_confirmed_status_not_advanced",
                order_id=saved.id,
                status=saved.status.value,
            )
        return Transition(
            before=transition.before,
            order=saved,
            history=transition.history,
            status_advanced=transition.status_advanced,
        )

    def after_commit(self, transition: Transition) -> None:
        order = transition.order
        if transition.changed and order.payment_status is PaymentStatus.PAID:
            notify_in_background(
                self._dispatcher,
                TEMPLATE_ORDER_CONFIRMATION,
                order.customer_email,
                order_confirmation_data(order),
            )
