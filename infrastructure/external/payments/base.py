"""
Shared concerns for processor adapters: retry, SDK error translation, logging.
"""
from __future__ import annotations

import asyncio
from typing import Any, Callable, Mapping, Optional, Tuple, Type, TypeVar

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from application.ports.payment_gateway import ProcessorError
from core.logging_config import get_logger


logger = get_logger(__name__)

T = TypeVar("T")


def header_value(headers: Mapping[str, Any], name: str) -> Optional[str]:
    """Case-insensitive header lookup over a plain dict."""
    target = name.lower()
    for key, value in (headers or {}).items():
        if str(key).lower() == target:
            return value
    return None


class BaseProcessorClient:
    provider: str = "base"
    # SDK exceptions worth another attempt
    retryable_errors: Tuple[Type[BaseException], ...] = ()

    def __init__(self, *, retry: Optional[dict[str, Any]] = None) -> None:
        self._retry_cfg = retry or {"max": 2, "base": 0.2}

    async def _retry(self, fn: Callable[[], T]) -> T:
        """Run a blocking SDK call off the event loop with bounded retries."""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(int(self._retry_cfg["max"]) + 1),
            wait=wait_exponential(multiplier=self._retry_cfg["base"], min=0.1, max=2.0),
            retry=retry_if_exception_type(self.retryable_errors),
            reraise=True,
        ):
            with attempt:
                return await asyncio.to_thread(fn)

    def _translate(self, exc: Exception) -> ProcessorError:
        raise NotImplementedError

    async def _call(self, operation: str, fn: Callable[[], T]) -> T:
        try:
            return await self._retry(fn)
        except ProcessorError:
            raise
        except Exception as exc:
            err = self._translate(exc)
            logger.warning("processor_call_failed", provider=self.provider, operation=operation, **err.as_log_fields())
            raise err from exc

    def _log(self, event: str, **kwargs) -> None:
        logger.info(event, provider=self.provider, **kwargs)
