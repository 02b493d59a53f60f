"""Celery application for customer notifications"""
from __future__ import annotations

import os

from celery import Celery
from kombu import Queue

from core.config import settings
from core.logging_config import get_logger
from .beat import CELERY_BEAT_SCHEDULE

logger = get_logger(__name__)

CELERY_IMPORTS = ("infrastructure.tasks.tasks",)

# ENVIRONMENT values that run tasks inline instead of through a broker
EAGER_ENVIRONMENTS = {"development", "dev", "test", "testing"}


def _queues() -> tuple[Queue, ...]:
    names = ["default", settings.notifications.queue]
    return tuple(Queue(name) for name in dict.fromkeys(names))


celery_app = Celery("song_orders")

celery_app.conf.update(
    broker_url=os.getenv("CELERY_BROKER_URL") or settings.redis.url,
    # notifications are fire-and-forget; results are only kept for debugging
    result_backend=os.getenv("CELERY_RESULT_BACKEND") or settings.redis.url,
    result_expires=3600,
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    task_default_queue="default",
    task_queues=_queues(),
    task_routes={"notifications.*": {"queue": settings.notifications.queue}},
    beat_schedule=CELERY_BEAT_SCHEDULE,
    imports=CELERY_IMPORTS,
)

if (settings.ENVIRONMENT or "production").lower() in EAGER_ENVIRONMENTS:
    celery_app.conf.task_always_eager = True
    # surface task errors to the caller instead of storing them
    celery_app.conf.task_eager_propagates = True

celery_app.autodiscover_tasks(packages=CELERY_IMPORTS)


@celery_app.on_after_configure.connect
def _log_configuration(sender, **kwargs):
    logger.info(
        "celery_configured",
        queues=[q.name for q in sender.conf.task_queues],
        eager=bool(sender.conf.task_always_eager),
    )
