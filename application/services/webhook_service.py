"""
Webhook ingestion: verify, dedupe, transition, acknowledge.

The ordering matters and is fixed:

1. authenticate the raw bytes (nothing else runs on failure);
2. drop events that reference no order;
3. drop redeliveries already recorded by the idempotency guard;
4. lock the order, apply the event through the state machine and persist
   order + history in one unit of work;
5. schedule the customer notification without awaiting it;
6. only then mark the dedup key as processed.

Any failure before step 6 leaves the key unmarked so the provider's own
redelivery can complete the work.
"""
from __future__ import annotations

from typing import Any, Callable, Mapping, Optional

from application.dtos.payments import WebhookOutcome
from application.ports.collaborators import NotificationDispatcher
from application.ports.idempotency import IdempotencyGuard
from application.ports.payment_gateway import PaymentGateway
from application.services.payment_events import PaymentEventApplier
from core.logging_config import get_logger
from domain.common.exceptions import (
    ConcurrentUpdateException,
    WebhookProcessingException,
    WebhookSignatureException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.state_machine import OrderStateMachine
from domain.payment.entity import PaymentEvent


logger = get_logger(__name__)


class WebhookService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        guard: IdempotencyGuard,
        dispatcher: Optional[NotificationDispatcher] = None,
        state_machine: Optional[OrderStateMachine] = None,
    ) -> None:
        self._guard = guard
        self._applier = PaymentEventApplier(uow_factory, dispatcher, state_machine)

    async def ingest(
        self,
        gateway: PaymentGateway,
        raw_body: bytes,
        headers: Mapping[str, Any],
    ) -> WebhookOutcome:
        provider = gateway.provider
        signature = headers.get(gateway.signature_header) if gateway.signature_header else None
        result = gateway.verify(raw_body, signature, headers)
        if not result.valid or result.event is None:
            logger.warning("webhook_signature_invalid", provider=provider, reason=result.reason)
            raise WebhookSignatureException(provider, result.reason)

        event = result.event
        logger.info(
            "webhook_received",
            provider=provider,
            event_type=event.event_type,
            order_id=event.order_id,
            dedup_key=event.dedup_key,
        )

        if not event.is_actionable:
            logger.info("webhook_skipped_no_order", provider=provider, event_type=event.event_type)
            return WebhookOutcome(skipped=True)

        if event.dedup_key and await self._guard.has_processed(event.dedup_key):
            logger.info("webhook_duplicate_ignored", provider=provider, dedup_key=event.dedup_key)
            return WebhookOutcome(duplicate=True)

        try:
            transition = await self._applier.apply(event, source="webhook")
        except ConcurrentUpdateException as exc:
            # the row lock should make this unreachable; let the provider redeliver
            logger.error(
                "webhook_concurrent_update",
                provider=provider,
                order_id=event.order_id,
                dedup_key=event.dedup_key,
            )
            raise WebhookProcessingException(provider, event.order_id, exc.message) from exc

        if transition is None:
            # rejected by the whitelist; redelivery can never succeed
            await self._mark(event)
            return WebhookOutcome(skipped=True)

        if not transition.changed:
            # guard entry expired but the outcome is already on the order
            await self._mark(event)
            return WebhookOutcome(duplicate=True)

        self._applier.after_commit(transition)
        await self._mark(event)
        return WebhookOutcome()

    async def _mark(self, event: PaymentEvent) -> None:
        if event.dedup_key:
            await self._guard.mark_processed(event.dedup_key)
