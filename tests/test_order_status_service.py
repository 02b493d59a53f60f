import pytest

from conftest import make_order, make_paid_order
from application.dtos.payments import StatusUpdateCommand
from application.services.notifications import drain_background_notifications
from application.services.order_status_service import OrderStatusService
from domain.common.exceptions import (
    InvalidTransitionException,
    OrderNotFoundException,
    PermissionDeniedException,
)
from domain.order.entity import OrderStatus


@pytest.fixture
def service(uow_factory, authorizer, audit_logger, dispatcher):
    return OrderStatusService(
        uow_factory=uow_factory,
        authorizer=authorizer,
        audit_logger=audit_logger,
        dispatcher=dispatcher,
    )


@pytest.mark.asyncio
async def test_status_change_writes_history_and_notifies(service, repo, audit_logger, dispatcher, admin):
    repo.add(make_paid_order())

    outcome = await service.update_status(
        StatusUpdateCommand(order_id="ord_paid", new_status="in_progress", note="Lyrics drafted"), admin
    )
    await drain_background_notifications()

    assert outcome.success
    assert outcome.message == "Order status updated to In Progress"
    assert outcome.old_status == "paid"
    assert outcome.new_status == "in_progress"
    assert repo.orders["ord_paid"].status is OrderStatus.IN_PROGRESS

    entry = repo.history_for("ord_paid")[-1]
    assert entry.changed_by == "ops@example.com"
    assert entry.notes == "Lyrics drafted"

    template, recipient, data = dispatcher.sent[0]
    assert template == "status-update"
    assert recipient == "amina@example.com"
    assert data["new_status"] == "In Progress"
    assert audit_logger.records[-1][0] == "order.status_change"
    assert audit_logger.records[-1][3]["status"] == "success"


@pytest.mark.asyncio
async def test_cancellation_does_not_notify(service, repo, dispatcher, admin):
    repo.add(make_paid_order())
    await service.update_status(StatusUpdateCommand(order_id="ord_paid", new_status="cancelled"), admin)
    await drain_background_notifications()
    assert dispatcher.sent == []


@pytest.mark.asyncio
async def test_invalid_transition_is_audited_and_raised(service, repo, audit_logger, admin):
    repo.add(make_paid_order(status=OrderStatus.DELIVERED))

    with pytest.raises(InvalidTransitionException) as exc_info:
        await service.update_status(StatusUpdateCommand(order_id="ord_paid", new_status="in_progress"), admin)

    assert exc_info.value.details["current_status"] == "delivered"
    assert exc_info.value.details["attempted_status"] == "in_progress"
    assert repo.orders["ord_paid"].status is OrderStatus.DELIVERED
    assert repo.history == []
    assert audit_logger.records[-1][3]["status"] == "failed"


@pytest.mark.asyncio
async def test_missing_order(service, admin):
    with pytest.raises(OrderNotFoundException):
        await service.update_status(StatusUpdateCommand(order_id="nope", new_status="paid"), admin)


@pytest.mark.asyncio
async def test_forbidden_without_permission(service, authorizer, repo, admin):
    repo.add(make_paid_order())
    authorizer.allowed = False
    with pytest.raises(PermissionDeniedException):
        await service.update_status(StatusUpdateCommand(order_id="ord_paid", new_status="in_progress"), admin)
    assert repo.orders["ord_paid"].status is OrderStatus.PAID


@pytest.mark.asyncio
async def test_history_lists_entries_in_order(service, repo, admin):
    repo.add(make_paid_order())
    await service.update_status(StatusUpdateCommand(order_id="ord_paid", new_status="in_progress"), admin)
    await service.update_status(StatusUpdateCommand(order_id="ord_paid", new_status="review"), admin)
    await drain_background_notifications()

    items = await service.list_history("ord_paid", admin)
    assert [(i.old_status, i.new_status) for i in items] == [("paid", "in_progress"), ("in_progress", "review")]


@pytest.mark.asyncio
async def test_history_of_unknown_order(service, admin):
    with pytest.raises(OrderNotFoundException):
        await service.list_history("nope", admin)


@pytest.mark.asyncio
async def test_payment_pending_order_can_be_cancelled(service, repo, admin):
    repo.add(make_order())
    outcome = await service.update_status(StatusUpdateCommand(order_id="ord_1", new_status="cancelled"), admin)
    assert outcome.new_status == "cancelled"
