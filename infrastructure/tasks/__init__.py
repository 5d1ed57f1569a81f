"""Celery wiring for push fan-out and the payout retry sweep.

``celery -A infrastructure.tasks worker -B`` picks up ``celery_app`` from here.
"""
from .config.celery import celery_app
from .utils.dispatcher import TaskDispatcher

__all__ = ["celery_app", "TaskDispatcher"]
