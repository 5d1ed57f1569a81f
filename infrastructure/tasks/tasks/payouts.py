"""Payout retry job (beat: every 15 minutes by default)."""
from __future__ import annotations

from celery import shared_task

from ..utils.base_task import BaseTask
from core.logging_config import get_logger

logger = get_logger(__name__)


@shared_task(name="payouts.retry_awaiting", bind=True, base=BaseTask, max_retries=0)
def retry_awaiting_payouts(self, limit: int = 100) -> dict:
    """Retry transfers for earnings stuck in awaiting_payout."""
    from infrastructure.container import build_payout_orchestrator

    async def _run():
        orchestrator = await build_payout_orchestrator()
        return await orchestrator.retry_awaiting_payouts(limit=limit)

    summary = self.run_async(_run())
    logger.info("payout_retry_task_finished", task_id=self.request.id, **summary.model_dump())
    return summary.model_dump()
