"""SQLite storage for learned facts with full-text and vector search.

Facts are categorized key/value records. ``(category, key)`` is unique
across every row, soft-deleted ones included, so a later ``set`` on a
forgotten key resurrects the original row and keeps its id.

Search is hybrid but uncombined: ``search`` is keyword search (FTS5 with
BM25 ranking, LIKE when FTS5 is unavailable or the query errors) and
``semantic_search`` is a cosine linear scan over stored embeddings.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import aiosqlite

from hearth_memory.config import DB_PATH, MEMORY_CONFIG
from hearth_memory.embeddings.codec import decode_embedding, encode_embedding, top_k_scored
from hearth_memory.errors import InvalidArgumentError, NotFoundError
from hearth_memory.models import (
    FACT_CATEGORIES,
    Fact,
    format_timestamp,
    new_fact_id,
    parse_timestamp,
    utc_now,
)
from hearth_memory.storage.database import add_columns, connect, storage_errors

logger = logging.getLogger(__name__)

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS facts (
    id          TEXT PRIMARY KEY,
    category    TEXT NOT NULL,
    key         TEXT NOT NULL,
    value       TEXT NOT NULL,
    source      TEXT,
    confidence  REAL DEFAULT 1.0,
    embedding   BLOB,
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL,
    accessed_at TEXT NOT NULL,
    deleted_at  TEXT,
    UNIQUE(category, key)
);
"""

# Columns added after the first release of the table
_ADDED_COLUMNS = [
    ("embedding", "BLOB"),
    ("deleted_at", "TEXT"),
    ("subjects", "TEXT"),
    ("ref", "TEXT"),
]

_INDEXES = """
CREATE UNIQUE INDEX IF NOT EXISTS idx_facts_category_key ON facts(category, key);
CREATE INDEX IF NOT EXISTS idx_facts_category ON facts(category);
CREATE INDEX IF NOT EXISTS idx_facts_key ON facts(key);
CREATE INDEX IF NOT EXISTS idx_facts_accessed ON facts(accessed_at DESC);
CREATE INDEX IF NOT EXISTS idx_facts_deleted ON facts(deleted_at);
"""

_CREATE_FTS = """
CREATE VIRTUAL TABLE IF NOT EXISTS facts_fts USING fts5(
    key,
    value,
    source,
    content=facts,
    content_rowid=rowid
)
"""

_COLUMNS = "id, category, key, value, source, confidence, subjects, ref, created_at, updated_at, accessed_at, deleted_at"
_COLUMNS_WITH_EMBEDDING = _COLUMNS + ", embedding"
# facts and facts_fts share key/value/source, so the FTS join needs prefixes
_COLUMNS_FTS = ", ".join(f"facts.{c.strip()}" for c in _COLUMNS.split(","))

_ACTIVE = "deleted_at IS NULL"

_UPSERT = """
INSERT INTO facts
    (id, category, key, value, source, confidence, subjects, ref, created_at, updated_at, accessed_at)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(category, key) DO UPDATE SET
    value = excluded.value,
    source = excluded.source,
    confidence = excluded.confidence,
    subjects = excluded.subjects,
    ref = excluded.ref,
    updated_at = excluded.updated_at,
    accessed_at = excluded.accessed_at,
    deleted_at = NULL
RETURNING id, created_at
"""


def sanitize_fts_query(query: str) -> str:
    """Quote every term so FTS5 operators in user text cannot break the query.

    Terms are OR-ed together; BM25 ranks rows matching more terms higher.
    """
    terms = query.split()
    if not terms:
        return ""
    return " OR ".join('"' + term.replace('"', '""') + '"' for term in terms)


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class FactStore:
    """Async SQLite store for categorized facts.

    Pass ``db`` to share an already-open connection; the store then leaves
    closing it to the owner.
    """

    def __init__(
        self,
        db_path: Path | None = None,
        db: aiosqlite.Connection | None = None,
        enable_fts: bool = True,
    ) -> None:
        self.db_path = db_path or DB_PATH
        self._db = db
        self._owns_db = db is None
        self._enable_fts = enable_fts
        self._fts_enabled = False
        self.search_limit = MEMORY_CONFIG["fact_search_limit"]

    async def initialize(self) -> None:
        if self._db is None:
            self._db = await connect(self.db_path)
        with storage_errors("create facts table"):
            await self.db.executescript(_CREATE_TABLE)
        await add_columns(self.db, "facts", _ADDED_COLUMNS)
        with storage_errors("create facts indexes"):
            await self.db.executescript(_INDEXES)
            await self.db.commit()
        if self._enable_fts:
            await self._try_enable_fts()

    async def close(self) -> None:
        if self._db and self._owns_db:
            await self._db.close()
        self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        assert self._db is not None, "FactStore not initialized — call initialize() first"
        return self._db

    @property
    def fts_enabled(self) -> bool:
        return self._fts_enabled

    # ── Full-text index ──

    async def _try_enable_fts(self) -> None:
        try:
            await self.db.execute(_CREATE_FTS)
            await self.db.commit()
        except aiosqlite.Error as exc:
            logger.warning("FTS5 not available for facts, using LIKE fallback: %s", exc)
            return
        self._fts_enabled = True
        # Reconcile the index with rows written before it existed
        if not await self._rebuild_fts():
            self._fts_enabled = False

    async def _rebuild_fts(self) -> bool:
        # A full rebuild is the simple correct option for an external-content
        # table with soft deletes; the facts table stays small.
        if not self._fts_enabled:
            return False
        try:
            await self.db.execute("INSERT INTO facts_fts(facts_fts) VALUES('rebuild')")
            await self.db.commit()
        except aiosqlite.Error as exc:
            logger.warning("Failed to rebuild facts FTS index: %s", exc)
            return False
        return True

    # ── Writes ──

    async def set(
        self,
        category: str,
        key: str,
        value: str,
        source: str = "",
        confidence: float = 1.0,
        subjects: Sequence[str] | None = None,
        ref: str = "",
    ) -> Fact:
        """Create or update a fact, resurrecting it if it was soft-deleted."""
        _validate(category, key)
        if not 0.0 <= confidence <= 1.0:
            raise InvalidArgumentError(f"set fact {category}/{key}: confidence {confidence} outside [0, 1]")

        subjects = list(subjects or [])
        now = utc_now()
        ts = format_timestamp(now)
        with storage_errors(f"set fact {category}/{key}"):
            async with self.db.execute(
                _UPSERT,
                (
                    new_fact_id(), category, key, value, source, confidence,
                    json.dumps(subjects) if subjects else None, ref or None,
                    ts, ts, ts,
                ),
            ) as cur:
                row = await cur.fetchone()
            await self.db.commit()
        await self._rebuild_fts()

        return Fact(
            id=row["id"],
            category=category,
            key=key,
            value=value,
            source=source,
            confidence=confidence,
            subjects=subjects,
            ref=ref,
            created_at=parse_timestamp(row["created_at"]),
            updated_at=now,
            accessed_at=now,
        )

    async def set_embedding(self, fact_id: str, vector: Sequence[float] | None) -> None:
        with storage_errors(f"set embedding for fact {fact_id}"):
            cur = await self.db.execute(
                "UPDATE facts SET embedding = ? WHERE id = ?",
                (encode_embedding(vector), fact_id),
            )
            await self.db.commit()
        if cur.rowcount == 0:
            raise NotFoundError(f"fact not found: {fact_id}")

    async def delete(self, category: str, key: str) -> None:
        """Soft-delete an active fact."""
        with storage_errors(f"delete fact {category}/{key}"):
            cur = await self.db.execute(
                f"UPDATE facts SET deleted_at = ? WHERE category = ? AND key = ? AND {_ACTIVE}",
                (format_timestamp(utc_now()), category, key),
            )
            await self.db.commit()
        if cur.rowcount == 0:
            raise NotFoundError(f"fact not found: {category}/{key}")
        await self._rebuild_fts()

    async def delete_by_source(self, source: str) -> int:
        """Soft-delete every active fact from ``source``. Returns the count."""
        with storage_errors(f"delete facts from source {source}"):
            cur = await self.db.execute(
                f"UPDATE facts SET deleted_at = ? WHERE source = ? AND {_ACTIVE}",
                (format_timestamp(utc_now()), source),
            )
            await self.db.commit()
        if cur.rowcount:
            await self._rebuild_fts()
        return cur.rowcount

    # ── Reads ──

    async def get(self, category: str, key: str) -> Fact:
        """Fetch an active fact and touch its accessed_at."""
        facts = await self._fetch(
            f"get fact {category}/{key}",
            f"SELECT {_COLUMNS} FROM facts WHERE {_ACTIVE} AND category = ? AND key = ?",
            (category, key),
        )
        if not facts:
            raise NotFoundError(f"fact not found: {category}/{key}")
        fact = facts[0]

        now = utc_now()
        with storage_errors(f"touch fact {category}/{key}"):
            await self.db.execute(
                "UPDATE facts SET accessed_at = ? WHERE id = ?",
                (format_timestamp(now), fact.id),
            )
            await self.db.commit()
        fact.accessed_at = now
        return fact

    async def get_by_category(self, category: str) -> list[Fact]:
        return await self._fetch(
            f"list facts in {category}",
            f"SELECT {_COLUMNS} FROM facts WHERE {_ACTIVE} AND category = ? ORDER BY key",
            (category,),
        )

    async def get_all(self) -> list[Fact]:
        return await self._fetch(
            "list facts",
            f"SELECT {_COLUMNS} FROM facts WHERE {_ACTIVE} ORDER BY category, key",
        )

    async def get_deleted(self) -> list[Fact]:
        """Admin view of soft-deleted facts, most recently deleted first."""
        return await self._fetch(
            "list deleted facts",
            f"SELECT {_COLUMNS} FROM facts WHERE deleted_at IS NOT NULL ORDER BY deleted_at DESC",
        )

    async def get_by_subjects(self, subjects: Sequence[str]) -> list[Fact]:
        """Active facts tagged with any of ``subjects``, newest update first."""
        if not subjects:
            return []
        placeholders = ",".join("?" for _ in subjects)
        return await self._fetch(
            "query facts by subjects",
            f"""SELECT {_COLUMNS} FROM facts
            WHERE {_ACTIVE} AND json_valid(subjects) AND EXISTS (
                SELECT 1 FROM json_each(facts.subjects) WHERE value IN ({placeholders})
            )
            ORDER BY updated_at DESC, rowid DESC""",
            tuple(subjects),
        )

    async def search(self, query: str) -> list[Fact]:
        """Keyword search over key, value and source."""
        if not query.strip():
            return []
        if self._fts_enabled:
            try:
                async with self.db.execute(
                    f"""SELECT {_COLUMNS_FTS}
                    FROM facts_fts
                    JOIN facts ON facts_fts.rowid = facts.rowid
                    WHERE facts_fts MATCH ? AND facts.{_ACTIVE}
                    ORDER BY rank
                    LIMIT ?""",
                    (sanitize_fts_query(query), self.search_limit),
                ) as cur:
                    rows = await cur.fetchall()
                return [_row_to_fact(dict(r)) for r in rows]
            except aiosqlite.Error as exc:
                logger.warning("FTS5 search failed for %r, falling back to LIKE: %s", query, exc)
        return await self._search_like(query)

    async def _search_like(self, query: str) -> list[Fact]:
        pattern = f"%{_escape_like(query)}%"
        return await self._fetch(
            f"search facts for {query!r}",
            f"""SELECT {_COLUMNS} FROM facts
            WHERE {_ACTIVE} AND (key LIKE ? ESCAPE '\\' OR value LIKE ? ESCAPE '\\')
            ORDER BY accessed_at DESC
            LIMIT ?""",
            (pattern, pattern, self.search_limit),
        )

    async def semantic_search(
        self, query_vector: Sequence[float], limit: int,
    ) -> tuple[list[Fact], list[float]]:
        """Facts most similar to ``query_vector``, with their cosine scores.

        Facts whose embedding dimension differs from the query are skipped.
        """
        if limit < 0:
            raise InvalidArgumentError(f"semantic search: limit must be >= 0, got {limit}")
        if limit == 0 or not query_vector:
            return [], []

        candidates = [
            f for f in await self.get_all_with_embeddings()
            if f.embedding and len(f.embedding) == len(query_vector)
        ]
        ranked = top_k_scored(query_vector, [f.embedding for f in candidates], limit)
        return [candidates[i] for i, _ in ranked], [score for _, score in ranked]

    async def get_all_with_embeddings(self) -> list[Fact]:
        with storage_errors("list facts with embeddings"):
            async with self.db.execute(
                f"SELECT {_COLUMNS_WITH_EMBEDDING} FROM facts "
                f"WHERE {_ACTIVE} AND embedding IS NOT NULL ORDER BY rowid"
            ) as cur:
                rows = await cur.fetchall()

        facts = []
        for row in rows:
            try:
                facts.append(_row_to_fact(dict(row), with_embedding=True))
            except InvalidArgumentError:
                logger.warning("Skipping fact %s with corrupt embedding blob", row["id"])
        return facts

    async def get_facts_without_embeddings(self) -> list[Fact]:
        return await self._fetch(
            "list facts without embeddings",
            f"SELECT {_COLUMNS} FROM facts WHERE {_ACTIVE} AND embedding IS NULL ORDER BY rowid",
        )

    async def stats(self) -> dict[str, Any]:
        with storage_errors("fact stats"):
            async with self.db.execute(
                f"SELECT category, COUNT(*) AS cnt FROM facts WHERE {_ACTIVE} GROUP BY category"
            ) as cur:
                by_category = {row["category"]: row["cnt"] async for row in cur}
        return {"total": sum(by_category.values()), "by_category": by_category}

    async def _fetch(self, operation: str, sql: str, params: tuple = ()) -> list[Fact]:
        with storage_errors(operation):
            async with self.db.execute(sql, params) as cur:
                rows = await cur.fetchall()
        return [_row_to_fact(dict(r)) for r in rows]


def _validate(category: str, key: str) -> None:
    if category not in FACT_CATEGORIES:
        raise InvalidArgumentError(
            f"unknown fact category {category!r} (expected one of {', '.join(FACT_CATEGORIES)})"
        )
    if not key.strip():
        raise InvalidArgumentError(f"fact key is required (category {category})")


def _row_to_fact(row: dict, with_embedding: bool = False) -> Fact:
    """Convert a SQLite row dict to a Fact dataclass."""
    subjects: list[str] = []
    if row.get("subjects"):
        try:
            subjects = list(json.loads(row["subjects"]))
        except (TypeError, ValueError):
            logger.warning("Ignoring malformed subjects on fact %s", row["id"])
    return Fact(
        id=row["id"],
        category=row["category"],
        key=row["key"],
        value=row["value"],
        source=row.get("source") or "",
        confidence=row.get("confidence") if row.get("confidence") is not None else 1.0,
        subjects=subjects,
        ref=row.get("ref") or "",
        embedding=decode_embedding(row.get("embedding")) if with_embedding else None,
        created_at=parse_timestamp(row["created_at"]),
        updated_at=parse_timestamp(row["updated_at"]),
        accessed_at=parse_timestamp(row["accessed_at"]),
        deleted_at=parse_timestamp(row.get("deleted_at")),
    )
