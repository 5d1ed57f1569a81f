"""Celery application configuration"""
from __future__ import annotations

import os
from core.logging_config import get_logger
from celery import Celery
from kombu import Queue

from core.config import settings
from .beat import CELERY_BEAT_SCHEDULE


CELERY_IMPORTS = (
    "infrastructure.tasks.tasks",
)


celery_app = Celery("booking_settlement")

celery_app.conf.update(
    # CELERY__BROKER_URL, then the shared Redis, then the plain env vars
    broker_url=settings.celery.broker_url or settings.redis.url or os.getenv("CELERY_BROKER_URL"),
    result_backend=settings.celery.result_backend or settings.redis.url or os.getenv("CELERY_RESULT_BACKEND"),
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # payout retries are idempotent per earnings row, redelivery is safe
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    result_expires=3600,
    worker_prefetch_multiplier=1,
    task_default_queue="default",
    task_default_retry_delay=5,
    task_queues=(
        Queue("high"),
        Queue("default"),
        Queue("low"),
    ),
    # push fan-out is user facing, payout sweeps are background
    task_routes={
        "payouts.*": {"queue": "low"},
        "notifications.*": {"queue": "high"},
    },
    beat_schedule=CELERY_BEAT_SCHEDULE,
)

celery_app.conf.imports = CELERY_IMPORTS

environment = settings.ENVIRONMENT or "production"
if environment.lower() in {"development", "dev", "test", "testing"}:
    celery_app.conf.task_always_eager = True


logger = get_logger(__name__)


@celery_app.on_after_configure.connect
def _log_configuration(sender, **kwargs):
    logger.info(
        "celery_configured",
        eager=bool(sender.conf.task_always_eager),
        queues=[q.name for q in sender.conf.task_queues],
        beat_jobs=sorted(sender.conf.beat_schedule),
    )
