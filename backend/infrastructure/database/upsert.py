"""
Dialect-aware INSERT ... ON CONFLICT DO UPDATE.

PostgreSQL in production, SQLite in tests. Both dialects expose the same
``on_conflict_do_update`` API; only the ``insert`` construct differs.
"""

from typing import Any, Iterable, Mapping

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession


def dialect_insert(db: AsyncSession, model: Any):
    """Return the dialect-specific ``insert(model)`` for the session's bind."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise NotImplementedError(f"Upsert is not supported on dialect {dialect!r}")


async def upsert(
    db: AsyncSession,
    model: Any,
    values: Mapping[str, Any],
    conflict_columns: Iterable[str],
    update_columns: Iterable[str],
):
    """
    Insert a row or update it in place when the conflict key already exists.

    A single statement, so two concurrent writers on the same key never
    produce a duplicate-key error.

    Args:
        db: Async database session
        model: Mapped class to write
        values: Column values for the insert
        conflict_columns: Columns of the unique constraint to conflict on
        update_columns: Columns overwritten from the proposed row on conflict

    Returns:
        The driver result of the executed statement
    """
    stmt = dialect_insert(db, model).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=list(conflict_columns),
        set_={column: stmt.excluded[column] for column in update_columns},
    )
    return await db.execute(stmt)
