"""Dialect-aware "insert or do nothing" for natural-key upserts."""

from typing import Any

from sqlalchemy import Insert
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from commerce_api.db.base import Base


def insert_if_absent(session: AsyncSession, model: type[Base], key: str, values: dict[str, Any]) -> Insert:
    """Build ``INSERT ... ON CONFLICT (key) DO NOTHING RETURNING key``.

    The statement returns the key only when this call inserted the row, so
    a scalar result of None means another transaction got there first. The
    unique constraint on ``key`` is the serialization point under
    concurrent delivery.
    """
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(model)
    elif dialect == "sqlite":
        stmt = sqlite.insert(model)
    else:
        raise RuntimeError(f"Unsupported database dialect for upserts: {dialect}")

    column = model.__table__.c[key]
    return stmt.values(**values).on_conflict_do_nothing(index_elements=[column]).returning(column)
