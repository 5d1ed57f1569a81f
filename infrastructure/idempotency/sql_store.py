"""
Database-backed idempotency store.

``claim`` relies on the primary key of ``idempotency_records``: the insert
that wins the conflict owns the key. A row can be taken over with a single
conditional update once its TTL has elapsed, or while it is still pending
but its lease has run out (the owner died before completing or releasing).
"""
from __future__ import annotations

import uuid
from datetime import timedelta
from typing import Any, Callable, Optional

from sqlalchemy import and_, delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from application.ports.idempotency import ClaimResult
from core.config import settings
from core.logging_config import get_logger
from infrastructure.database import AsyncSessionLocal
from infrastructure.models.base import utcnow
from infrastructure.models.idempotency import IdempotencyRecordModel
from infrastructure.repositories.dialect import upsert_insert


logger = get_logger(__name__)

PENDING = "pending"
COMPLETED = "completed"

Record = IdempotencyRecordModel


class SQLAlchemyIdempotencyStore:
    """Uses its own short sessions so claims commit independently of business work."""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
        lease_seconds: Optional[int] = None,
    ) -> None:
        self._session_factory = session_factory
        self._lease = timedelta(
            seconds=settings.idempotency.pending_lease_seconds if lease_seconds is None else lease_seconds
        )

    async def claim(self, key: str, ttl_seconds: int) -> ClaimResult:
        now = utcnow()
        token = uuid.uuid4().hex
        claimed_values = dict(
            status=PENDING,
            result=None,
            expires_at=now + timedelta(seconds=ttl_seconds),
            claim_token=token,
            claimed_at=now,
            updated_at=now,
        )
        async with self._session_factory() as session:
            stmt = (
                upsert_insert(session, Record)
                .values(key=key, created_at=now, **claimed_values)
                .on_conflict_do_nothing(index_elements=["key"])
            )
            if (await session.execute(stmt)).rowcount == 1:
                await session.commit()
                return ClaimResult(claimed=True, token=token)

            taken = await session.execute(
                update(Record)
                .where(
                    Record.key == key,
                    or_(
                        Record.expires_at <= now,
                        and_(Record.status == PENDING, Record.claimed_at <= now - self._lease),
                    ),
                )
                .values(**claimed_values)
                .execution_options(synchronize_session=False)
            )
            if taken.rowcount == 1:
                await session.commit()
                logger.info("idempotency_key_taken_over", idempotency_key=key)
                return ClaimResult(claimed=True, token=token)

            # 只取列值，不加载 ORM 实例
            existing = (
                await session.execute(select(Record.status, Record.result).where(Record.key == key))
            ).one_or_none()
            await session.commit()

        if existing is None:
            # released between our insert and select
            return await self.claim(key, ttl_seconds)
        status, result = existing
        return ClaimResult(claimed=False, completed=status == COMPLETED, result=result)

    async def complete(self, key: str, result: Any, token: Optional[str] = None) -> bool:
        stmt = update(Record).where(Record.key == key)
        if token is not None:
            stmt = stmt.where(Record.claim_token == token)
        async with self._session_factory() as session:
            written = await session.execute(
                stmt.values(status=COMPLETED, result=result, updated_at=utcnow())
            )
            await session.commit()
        if written.rowcount != 1:
            logger.warning("idempotency_claim_lost", idempotency_key=key)
            return False
        return True

    async def release(self, key: str, token: Optional[str] = None) -> None:
        stmt = delete(Record).where(Record.key == key, Record.status == PENDING)
        if token is not None:
            stmt = stmt.where(Record.claim_token == token)
        async with self._session_factory() as session:
            await session.execute(stmt)
            await session.commit()
