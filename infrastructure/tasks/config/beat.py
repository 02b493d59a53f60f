"""Celery beat schedule configuration (optional).

No periodic jobs yet: webhook dedup keys expire on their own (Redis TTL or
the in-process sweeper).
"""
from __future__ import annotations

CELERY_BEAT_SCHEDULE: dict = {}
