"""
Idempotency guard for externally-triggered mutating operations.

The first call for a key runs the operation and stores its (JSON-serialisable)
result; later calls inside the TTL get the stored result back. A concurrent
duplicate that finds the key still pending is told to retry.
"""
from __future__ import annotations

import hashlib
import json
from typing import Any, Awaitable, Callable, Optional, TypeVar

from application.ports.idempotency import ClaimResult, IdempotencyStore
from core.logging_config import get_logger
from domain.common.exceptions import IdempotencyInProgressException


logger = get_logger(__name__)

T = TypeVar("T")

BOOKING_CREATE_TTL_SECONDS = 10 * 60
BOOKING_CANCEL_TTL_SECONDS = 6 * 60 * 60
WEBHOOK_EVENT_TTL_SECONDS = 7 * 24 * 60 * 60


def hash_payload(payload: Any) -> str:
    """Stable sha256 over canonical JSON (sorted keys, no whitespace)."""
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def make_idempotency_key(operation: str, actor_id: str, target_id: str, payload: Any = None) -> str:
    base = f"{operation}:{actor_id}:{target_id}"
    if payload is None:
        return base
    return f"{base}:{hash_payload(payload)}"


def _identity(value: Any) -> Any:
    return value


class IdempotencyGuard:
    def __init__(self, store: IdempotencyStore) -> None:
        self.store = store

    async def run(
        self,
        key: str,
        ttl_seconds: int,
        operation: Callable[[], Awaitable[T]],
        *,
        encode: Callable[[T], Any] = _identity,
        decode: Callable[[Any], T] = _identity,
    ) -> T:
        claim = await self._claim(key, ttl_seconds)
        if not claim.claimed:
            logger.info("idempotency_replay", idempotency_key=key)
            return decode(claim.result)

        try:
            result = await operation()
        except Exception:
            await self.store.release(key, claim.token)
            raise

        await self.store.complete(key, encode(result), claim.token)
        return result

    async def run_once(self, key: str, ttl_seconds: int, operation: Callable[[], Awaitable[Optional[dict]]]) -> bool:
        """Run a side-effect-only operation at most once.

        Returns False for a replay of a completed run. A duplicate that arrives
        while the first run is still pending raises ``IdempotencyInProgressException``
        so the sender retries later instead of the event being dropped.
        """
        claim = await self._claim(key, ttl_seconds)
        if not claim.claimed:
            logger.info("idempotency_duplicate_ignored", idempotency_key=key)
            return False
        try:
            result = await operation()
        except Exception:
            await self.store.release(key, claim.token)
            raise
        await self.store.complete(key, result or {"ok": True}, claim.token)
        return True

    async def _claim(self, key: str, ttl_seconds: int) -> ClaimResult:
        # claimed, or a completed replay; anything else is still running
        claim = await self.store.claim(key, ttl_seconds)
        if not claim.claimed and not claim.completed:
            logger.warning("idempotency_in_progress", idempotency_key=key)
            raise IdempotencyInProgressException(key)
        return claim
