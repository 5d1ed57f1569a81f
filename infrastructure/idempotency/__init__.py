"""
Factory for the configured idempotency store (IDEMPOTENCY__BACKEND).
"""
from __future__ import annotations

from application.ports.idempotency import IdempotencyStore
from core.config import settings


async def get_idempotency_store() -> IdempotencyStore:
    if settings.idempotency.backend == "redis":
        from infrastructure.external.cache import get_redis_client
        from .redis_store import RedisIdempotencyStore
        return RedisIdempotencyStore(await get_redis_client(), prefix=settings.idempotency.key_prefix)
    from .sql_store import SQLAlchemyIdempotencyStore
    return SQLAlchemyIdempotencyStore()
