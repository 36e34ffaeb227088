"""SQLite storage for anticipations: pending "wake me when" rules.

Every timestamp is normalized to UTC before it is bound to SQL, and
expiry is evaluated on parsed datetimes, so rows written with any UTC
offset filter correctly.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from pathlib import Path

import aiosqlite

from hearth_memory.config import DB_PATH
from hearth_memory.core.matching import trigger_matches
from hearth_memory.errors import InvalidArgumentError, NotFoundError
from hearth_memory.models import (
    Anticipation,
    Trigger,
    WakeContext,
    format_timestamp,
    new_anticipation_id,
    parse_timestamp,
    to_utc,
    utc_now,
)
from hearth_memory.storage.database import add_columns, connect, storage_errors

logger = logging.getLogger(__name__)

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS anticipations (
    id            TEXT PRIMARY KEY,
    description   TEXT NOT NULL,
    context       TEXT NOT NULL DEFAULT '',
    trigger_json  TEXT NOT NULL,
    metadata_json TEXT,
    created_at    TEXT NOT NULL,
    expires_at    TEXT,
    resolved_at   TEXT,
    deleted_at    TEXT
);
"""

_ADDED_COLUMNS = [
    ("context_entities_json", "TEXT"),
    ("recurring", "INTEGER NOT NULL DEFAULT 0"),
    ("cooldown_seconds", "INTEGER NOT NULL DEFAULT 0"),
    ("last_fired_at", "TEXT"),
]

_INDEXES = """
CREATE INDEX IF NOT EXISTS idx_anticipations_active
    ON anticipations(resolved_at, deleted_at, expires_at);
"""

_COLUMNS = (
    "id, description, context, trigger_json, metadata_json, context_entities_json, "
    "recurring, cooldown_seconds, created_at, expires_at, resolved_at, deleted_at, last_fired_at"
)


class AnticipationStore:
    """Async SQLite store for anticipations.

    Like FactStore, it can run on its own connection or a shared one.
    """

    def __init__(self, db_path: Path | None = None, db: aiosqlite.Connection | None = None) -> None:
        self.db_path = db_path or DB_PATH
        self._db = db
        self._owns_db = db is None

    async def initialize(self) -> None:
        if self._db is None:
            self._db = await connect(self.db_path)
        with storage_errors("create anticipations table"):
            await self.db.executescript(_CREATE_TABLE)
        await add_columns(self.db, "anticipations", _ADDED_COLUMNS)
        with storage_errors("create anticipations indexes"):
            await self.db.executescript(_INDEXES)
            await self.db.commit()

    async def close(self) -> None:
        if self._db and self._owns_db:
            await self._db.close()
        self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        assert self._db is not None, "AnticipationStore not initialized — call initialize() first"
        return self._db

    async def create(self, a: Anticipation) -> Anticipation:
        """Persist a new anticipation, filling in its id and created_at."""
        if a.cooldown_seconds < 0:
            raise InvalidArgumentError(
                f"create anticipation {a.id or a.description!r}: cooldown_seconds must be >= 0"
            )
        if not a.id:
            a.id = new_anticipation_id()
        a.created_at = to_utc(a.created_at) if a.created_at else utc_now()
        for name in ("expires_at", "resolved_at", "deleted_at", "last_fired_at"):
            value = getattr(a, name)
            if value is not None:
                setattr(a, name, to_utc(value))
        if a.trigger.after_time is not None:
            a.trigger.after_time = to_utc(a.trigger.after_time)

        with storage_errors(f"create anticipation {a.id}"):
            await self.db.execute(
                f"INSERT INTO anticipations ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    a.id,
                    a.description,
                    a.context,
                    json.dumps(a.trigger.to_dict()),
                    json.dumps(a.metadata) if a.metadata else None,
                    json.dumps(a.context_entities) if a.context_entities else None,
                    int(a.recurring),
                    a.cooldown_seconds,
                    format_timestamp(a.created_at),
                    format_timestamp(a.expires_at),
                    format_timestamp(a.resolved_at),
                    format_timestamp(a.deleted_at),
                    format_timestamp(a.last_fired_at),
                ),
            )
            await self.db.commit()
        logger.debug("Created anticipation %s: %s", a.id, a.description)
        return a

    async def get(self, anticipation_id: str) -> Anticipation:
        """Fetch by id. Resolved rows are returned; soft-deleted ones are not."""
        with storage_errors(f"get anticipation {anticipation_id}"):
            async with self.db.execute(
                f"SELECT {_COLUMNS} FROM anticipations WHERE id = ? AND deleted_at IS NULL",
                (anticipation_id,),
            ) as cur:
                row = await cur.fetchone()
        if row is None:
            raise NotFoundError(f"anticipation not found: {anticipation_id}")
        return _row_to_anticipation(dict(row))

    async def active(self, now: datetime | None = None) -> list[Anticipation]:
        """Unresolved, undeleted, unexpired anticipations, oldest first."""
        now = to_utc(now) if now else utc_now()
        with storage_errors("list active anticipations"):
            async with self.db.execute(
                f"""SELECT {_COLUMNS} FROM anticipations
                WHERE resolved_at IS NULL AND deleted_at IS NULL
                ORDER BY created_at ASC"""
            ) as cur:
                rows = await cur.fetchall()
        anticipations = [_row_to_anticipation(dict(r)) for r in rows]
        return [a for a in anticipations if a.is_active(now)]

    async def resolve(self, anticipation_id: str) -> bool:
        """Mark resolved. Returns False when already resolved or unknown."""
        return await self._stamp(
            "resolve", "resolved_at", anticipation_id, "resolved_at IS NULL",
        )

    async def delete(self, anticipation_id: str) -> bool:
        """Soft delete. Returns False when already deleted or unknown."""
        return await self._stamp(
            "delete", "deleted_at", anticipation_id, "deleted_at IS NULL",
        )

    async def mark_fired(self, anticipation_id: str, now: datetime | None = None) -> bool:
        """Record a firing. ``last_fired_at`` never moves backwards."""
        now = to_utc(now) if now else utc_now()
        ts = format_timestamp(now)
        with storage_errors(f"mark anticipation {anticipation_id} fired"):
            cur = await self.db.execute(
                """UPDATE anticipations SET last_fired_at = ?
                WHERE id = ? AND (last_fired_at IS NULL OR last_fired_at < ?)""",
                (ts, anticipation_id, ts),
            )
            await self.db.commit()
        return cur.rowcount > 0

    async def on_cooldown(
        self, anticipation_id: str, global_default: timedelta, now: datetime | None = None,
    ) -> bool:
        """Whether the anticipation fired too recently to fire again.

        A positive per-row ``cooldown_seconds`` overrides ``global_default``.
        Unknown ids and never-fired rows are not on cooldown.
        """
        with storage_errors(f"check cooldown for anticipation {anticipation_id}"):
            async with self.db.execute(
                "SELECT cooldown_seconds, last_fired_at FROM anticipations WHERE id = ?",
                (anticipation_id,),
            ) as cur:
                row = await cur.fetchone()
        if row is None or not row["last_fired_at"]:
            return False

        cooldown = global_default
        if row["cooldown_seconds"] and row["cooldown_seconds"] > 0:
            cooldown = timedelta(seconds=row["cooldown_seconds"])
        now = to_utc(now) if now else utc_now()
        return now - parse_timestamp(row["last_fired_at"]) < cooldown

    async def match(self, wake: WakeContext) -> list[Anticipation]:
        """Active anticipations whose trigger holds for ``wake``."""
        return [a for a in await self.active() if trigger_matches(a.trigger, wake)]

    async def _stamp(self, verb: str, column: str, anticipation_id: str, guard: str) -> bool:
        with storage_errors(f"{verb} anticipation {anticipation_id}"):
            cur = await self.db.execute(
                f"UPDATE anticipations SET {column} = ? WHERE id = ? AND {guard}",
                (format_timestamp(utc_now()), anticipation_id),
            )
            await self.db.commit()
        return cur.rowcount > 0


def _row_to_anticipation(row: dict) -> Anticipation:
    """Convert a SQLite row dict to an Anticipation dataclass."""
    return Anticipation(
        id=row["id"],
        description=row["description"],
        context=row["context"] or "",
        trigger=Trigger.from_dict(json.loads(row["trigger_json"] or "{}")),
        metadata=json.loads(row["metadata_json"]) if row.get("metadata_json") else {},
        context_entities=json.loads(row["context_entities_json"]) if row.get("context_entities_json") else [],
        recurring=bool(row.get("recurring")),
        cooldown_seconds=row.get("cooldown_seconds") or 0,
        created_at=parse_timestamp(row["created_at"]),
        expires_at=parse_timestamp(row.get("expires_at")),
        resolved_at=parse_timestamp(row.get("resolved_at")),
        deleted_at=parse_timestamp(row.get("deleted_at")),
        last_fired_at=parse_timestamp(row.get("last_fired_at")),
    )
