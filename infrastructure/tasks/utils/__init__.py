"""Utility helpers for Celery tasks."""
from .dispatcher import CeleryNotificationDispatcher
from .base_task import BaseTask

__all__ = ["CeleryNotificationDispatcher", "BaseTask"]
