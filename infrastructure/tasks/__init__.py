"""Celery task infrastructure package.

Importing this module wires together the configured Celery app and the
notification dispatcher the API layer depends upon.
"""
from .config.celery import celery_app
from .utils.dispatcher import CeleryNotificationDispatcher

__all__ = ["celery_app", "CeleryNotificationDispatcher"]
