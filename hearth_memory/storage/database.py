"""Shared SQLite plumbing: connection setup, error mapping, column migrations."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import aiosqlite

from hearth_memory.errors import StorageError

logger = logging.getLogger(__name__)


async def connect(db_path: Path) -> aiosqlite.Connection:
    """Open a connection with dict-like rows, creating the parent directory."""
    db_path.parent.mkdir(parents=True, exist_ok=True)
    db = await aiosqlite.connect(str(db_path))
    db.row_factory = aiosqlite.Row
    return db


@contextmanager
def storage_errors(operation: str) -> Iterator[None]:
    """Re-raise driver errors as StorageError tagged with the operation."""
    try:
        yield
    except aiosqlite.Error as exc:
        raise StorageError(f"{operation}: {exc}") from exc


async def add_columns(
    db: aiosqlite.Connection, table: str, columns: list[tuple[str, str]],
) -> None:
    """Additive migrations. Only "duplicate column name" is tolerated."""
    for name, decl in columns:
        try:
            await db.execute(f"ALTER TABLE {table} ADD COLUMN {name} {decl}")
        except aiosqlite.OperationalError as exc:
            if "duplicate column name" not in str(exc):
                raise StorageError(f"migrate {table}.{name}: {exc}") from exc
        else:
            logger.info("Added column %s.%s", table, name)
    await db.commit()
