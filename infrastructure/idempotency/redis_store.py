"""
Redis-backed idempotency store.

The claim is ``SET key {pending, token} NX EX lease``: a pending marker only
lives for the lease window, so a crashed owner frees the key quickly. Completing
and releasing are Lua compare-and-set scripts on the owner's token; completion
rewrites the key with the full TTL.
"""
from __future__ import annotations

import uuid
from typing import Any, Optional

from application.ports.idempotency import ClaimResult
from core.config import settings
from core.logging_config import get_logger
from infrastructure.external.cache.redis_client import RedisClient


logger = get_logger(__name__)

# ARGV: token ('' completes any pending claim), result json
_COMPLETE = """
local raw = redis.call('GET', KEYS[1])
if not raw then return 0 end
local rec = cjson.decode(raw)
if rec.status ~= 'pending' then return 0 end
if ARGV[1] ~= '' and rec.token ~= ARGV[1] then return 0 end
redis.call('SET', KEYS[1], ARGV[2], 'EX', rec.ttl)
return 1
"""

# ARGV: token ('' releases any pending claim)
_RELEASE = """
local raw = redis.call('GET', KEYS[1])
if not raw then return 0 end
local rec = cjson.decode(raw)
if rec.status ~= 'pending' then return 0 end
if ARGV[1] ~= '' and rec.token ~= ARGV[1] then return 0 end
return redis.call('DEL', KEYS[1])
"""


class RedisIdempotencyStore:
    def __init__(self, client: RedisClient, prefix: str = "idem", lease_seconds: Optional[int] = None) -> None:
        self._client = client
        self._prefix = prefix
        self._lease = settings.idempotency.pending_lease_seconds if lease_seconds is None else lease_seconds

    def _key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    async def claim(self, key: str, ttl_seconds: int) -> ClaimResult:
        ttl = max(1, ttl_seconds)
        token = uuid.uuid4().hex
        pending = {"status": "pending", "token": token, "ttl": ttl}
        if await self._client.set(self._key(key), pending, ttl=max(1, min(self._lease, ttl)), nx=True):
            return ClaimResult(claimed=True, token=token)
        record = await self._client.get(self._key(key))
        if not isinstance(record, dict):
            # expired between SET and GET
            return await self.claim(key, ttl_seconds)
        completed = record.get("status") == "completed"
        return ClaimResult(claimed=False, completed=completed, result=record.get("result"))

    async def complete(self, key: str, result: Any, token: Optional[str] = None) -> bool:
        payload = self._client.encode({"status": "completed", "result": result})
        written = await self._client.eval(_COMPLETE, [self._key(key)], token or "", payload)
        if not written:
            logger.warning("idempotency_claim_lost", idempotency_key=key)
            return False
        return True

    async def release(self, key: str, token: Optional[str] = None) -> None:
        await self._client.eval(_RELEASE, [self._key(key)], token or "")
