"""Celery beat schedule configuration."""
from __future__ import annotations

from core.config import settings

CELERY_BEAT_SCHEDULE = {
    # 余额不足等原因排队的 payout 定期重试
    "retry-awaiting-payouts": {
        "task": "payouts.retry_awaiting",
        "schedule": settings.celery.payout_retry_interval_seconds,
        "kwargs": {"limit": settings.celery.payout_retry_batch_size},
        "options": {"queue": "low"},
    },
}
