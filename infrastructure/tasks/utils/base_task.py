"""Base task shared by settlement jobs"""
from __future__ import annotations

import asyncio
from typing import Any, Awaitable

from celery import Task
from core.logging_config import get_logger

logger = get_logger(__name__)


class BaseTask(Task):
    """Structured lifecycle logging plus a bridge into the async service layer."""

    def run_async(self, coro: Awaitable[Any]) -> Any:
        """Run an application-service coroutine to completion inside the worker."""
        return asyncio.run(coro)

    def on_retry(self, exc, task_id, args, kwargs, einfo):  # type: ignore[override]
        logger.warning(
            "celery_task_retry",
            task_id=task_id,
            task_name=self.name,
            retries=self.request.retries,
            error=str(exc),
        )
        super().on_retry(exc, task_id, args, kwargs, einfo)

    def on_failure(self, exc, task_id, args, kwargs, einfo):  # type: ignore[override]
        # kwargs may carry notification text, keep only the keys
        logger.error(
            "celery_task_failure",
            task_id=task_id,
            task_name=self.name,
            kwarg_keys=sorted(kwargs or {}),
            error=str(exc),
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_success(self, retval, task_id, args, kwargs):  # type: ignore[override]
        logger.debug("celery_task_success", task_id=task_id, task_name=self.name)
        super().on_success(retval, task_id, args, kwargs)
