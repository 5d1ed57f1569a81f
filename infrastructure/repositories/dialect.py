"""
Dialect-aware ``INSERT ... ON CONFLICT`` for PostgreSQL (production) and
SQLite (tests / local development).
"""
from __future__ import annotations

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession


def upsert_insert(session: AsyncSession, model):
    """Return the dialect's ``insert()`` construct supporting on_conflict_* clauses."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise NotImplementedError(f"upsert not supported for dialect: {dialect}")
