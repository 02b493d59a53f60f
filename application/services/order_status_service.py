"""
Admin order workflow: manual business-status changes and history reads.
"""
from __future__ import annotations

from typing import Callable, List, Optional

from application.dtos.payments import StatusHistoryItem, StatusUpdateCommand, StatusUpdateOutcome
from application.ports.collaborators import (
    AdminPrincipal,
    AuditLogger,
    Authorizer,
    NotificationDispatcher,
)
from application.services.audit import ACTION_ORDER_STATUS_CHANGE, audit
from application.services.notifications import (
    NOTIFY_ON_STATUS,
    TEMPLATE_STATUS_UPDATE,
    format_status,
    notify_in_background,
    status_update_data,
)
from core.logging_config import get_logger
from domain.common.exceptions import (
    InvalidTransitionException,
    OrderNotFoundException,
    PermissionDeniedException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.commands import StatusChangeCommand
from domain.order.state_machine import OrderStateMachine


logger = get_logger(__name__)

PERMISSION_UPDATE = "orders:update"
PERMISSION_VIEW = "orders:view"


class OrderStatusService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        authorizer: Authorizer,
        audit_logger: Optional[AuditLogger] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        state_machine: Optional[OrderStateMachine] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self._authorizer = authorizer
        self._audit_logger = audit_logger
        self._dispatcher = dispatcher
        self._state_machine = state_machine or OrderStateMachine()

    async def update_status(self, command: StatusUpdateCommand, actor: AdminPrincipal) -> StatusUpdateOutcome:
        if not self._authorizer.has_permission(actor, PERMISSION_UPDATE):
            logger.warning("status_update_forbidden", actor_id=actor.id, role=actor.role, order_id=command.order_id)
            raise PermissionDeniedException(PERMISSION_UPDATE)

        try:
            async with self._uow_factory() as uow:
                order = await uow.order_repository.get_for_update(command.order_id)
                if order is None:
                    raise OrderNotFoundException(command.order_id)
                transition = self._state_machine.apply(
                    order,
                    StatusChangeCommand(new_status=command.new_status, actor=actor.identity, note=command.note),
                )
                saved = await uow.order_repository.update(transition.order, expected_version=order.version)
                await uow.order_repository.insert_history(transition.history)
                await uow.commit()
        except InvalidTransitionException as exc:
            logger.info(
                "status_update_rejected",
                order_id=command.order_id,
                current_status=exc.current,
                attempted_status=exc.attempted,
            )
            await audit(self._audit_logger, ACTION_ORDER_STATUS_CHANGE, actor, command.order_id, {
                "status": "failed",
                "error": exc.message,
                "current_status": exc.current,
                "attempted_status": exc.attempted,
            })
            raise

        old_status = transition.before.status.value
        logger.info(
            "order_transition_applied",
            order_id=saved.id,
            actor=actor.identity,
            status_from=old_status,
            status_to=saved.status.value,
        )

        if saved.status in NOTIFY_ON_STATUS:
            notify_in_background(
                self._dispatcher,
                TEMPLATE_STATUS_UPDATE,
                saved.customer_email,
                status_update_data(saved),
            )
        await audit(self._audit_logger, ACTION_ORDER_STATUS_CHANGE, actor, saved.id, {
            "status": "success",
            "old_status": old_status,
            "new_status": saved.status.value,
            "note": transition.history.notes,
        })

        return StatusUpdateOutcome(
            message=f"Order status updated to {format_status(saved.status)}",
            order_id=saved.id,
            old_status=old_status,
            new_status=saved.status.value,
        )

    async def list_history(self, order_id: str, actor: AdminPrincipal) -> List[StatusHistoryItem]:
        if not self._authorizer.has_permission(actor, PERMISSION_VIEW):
            raise PermissionDeniedException(PERMISSION_VIEW)
        async with self._uow_factory(readonly=True) as uow:
            order = await uow.order_repository.get(order_id)
            if order is None:
                raise OrderNotFoundException(order_id)
            entries = await uow.order_repository.list_history(order_id)
        return [StatusHistoryItem.model_validate(entry) for entry in entries]
