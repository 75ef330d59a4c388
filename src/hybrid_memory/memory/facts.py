"""SQLite + FTS5 fact store.

The authoritative record of every captured fact.  A ``facts`` table holds
the structured rows; an external-content FTS5 table ``facts_fts`` indexes
their text and triple columns.  Insert/update/delete triggers keep the two in
lockstep so every write is a single logical operation.

All public methods are coroutines.  The blocking ``sqlite3`` calls run in the
default executor and are serialised by a lock because the connection is
shared between executor threads.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import math
import re
import sqlite3
import threading
import time
import uuid
from pathlib import Path
from typing import Any, Callable, Iterable, TypeVar

from .decay import classify_decay
from .types import (
    TTL_SECONDS,
    DecayClass,
    MemoryCategory,
    MemoryFact,
    ScoredFact,
    StorageError,
    expiry_for,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_UNSET: Any = object()
_TOKEN = re.compile(r"\w+", re.UNICODE)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS facts (
    id TEXT PRIMARY KEY,
    text TEXT NOT NULL,
    category TEXT NOT NULL DEFAULT 'other',
    importance REAL NOT NULL DEFAULT 0.7,
    entity TEXT,
    attribute TEXT,
    value TEXT,
    source TEXT NOT NULL DEFAULT 'conversation',
    created_at INTEGER NOT NULL,
    decay_class TEXT NOT NULL DEFAULT 'stable',
    expires_at INTEGER,
    last_confirmed_at INTEGER,
    confidence REAL NOT NULL DEFAULT 1.0
);

CREATE VIRTUAL TABLE IF NOT EXISTS facts_fts USING fts5(
    text, category, entity, attribute, value,
    content=facts, content_rowid=rowid,
    tokenize='porter unicode61'
);

CREATE TRIGGER IF NOT EXISTS facts_ai AFTER INSERT ON facts BEGIN
    INSERT INTO facts_fts(rowid, text, category, entity, attribute, value)
    VALUES (new.rowid, new.text, new.category, new.entity, new.attribute, new.value);
END;

CREATE TRIGGER IF NOT EXISTS facts_ad AFTER DELETE ON facts BEGIN
    INSERT INTO facts_fts(facts_fts, rowid, text, category, entity, attribute, value)
    VALUES ('delete', old.rowid, old.text, old.category, old.entity, old.attribute, old.value);
END;

CREATE TRIGGER IF NOT EXISTS facts_au AFTER UPDATE ON facts BEGIN
    INSERT INTO facts_fts(facts_fts, rowid, text, category, entity, attribute, value)
    VALUES ('delete', old.rowid, old.text, old.category, old.entity, old.attribute, old.value);
    INSERT INTO facts_fts(rowid, text, category, entity, attribute, value)
    VALUES (new.rowid, new.text, new.category, new.entity, new.attribute, new.value);
END;

CREATE INDEX IF NOT EXISTS idx_facts_category ON facts(category);
CREATE INDEX IF NOT EXISTS idx_facts_entity ON facts(entity);
CREATE INDEX IF NOT EXISTS idx_facts_created ON facts(created_at);
CREATE INDEX IF NOT EXISTS idx_facts_expires ON facts(expires_at) WHERE expires_at IS NOT NULL;
"""


def build_match_query(query: str) -> str | None:
    """Turn free text into an FTS5 expression of quoted terms joined by OR.

    Quoting every token means punctuation or FTS operators in user text can
    never produce a syntax error.  Returns ``None`` when nothing is left.
    """
    tokens = list(dict.fromkeys(t.lower() for t in _TOKEN.findall(query)))
    if not tokens:
        return None
    return " OR ".join(f'"{t}"' for t in tokens)


def relevance_to_score(bm25_rank: float) -> float:
    """Map FTS5 ``bm25()`` output into ``(0, 1]`` with higher meaning better.

    ``bm25()`` reports better matches as more negative numbers, so the
    relevance is its negation, squashed through a logistic curve.
    """
    return 1.0 / (1.0 + math.exp(min(bm25_rank, 50.0)))


class FactStore:
    """Durable fact storage with ranked full-text search.

    Args:
        path: SQLite database file (``~`` is expanded) or ``":memory:"``.
        clock: Returns the current time in epoch seconds.  Injectable so
            expiry behaviour can be tested without sleeping.
    """

    def __init__(self, path: str | Path, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        if str(path) == ":memory:":
            self.path = ":memory:"
        else:
            resolved = Path(path).expanduser()
            resolved.parent.mkdir(parents=True, exist_ok=True)
            self.path = str(resolved)
        try:
            self._conn = sqlite3.connect(self.path, check_same_thread=False, timeout=10.0)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.executescript(_SCHEMA)
        except sqlite3.Error as exc:
            raise StorageError(f"Cannot open fact store at {self.path}: {exc}") from exc

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def store(
        self,
        text: str,
        *,
        category: MemoryCategory = MemoryCategory.OTHER,
        importance: float = 0.7,
        entity: str | None = None,
        attribute: str | None = None,
        value: str | None = None,
        source: str = "conversation",
        confidence: float = 1.0,
        decay_class: DecayClass | None = None,
        expires_at: int | None = _UNSET,
    ) -> MemoryFact:
        """Persist a new fact and return the complete record.

        The decay class is classified from the text and triple unless given.
        The expiry is derived from the decay class unless *expires_at* is
        passed explicitly; passing ``None`` stores a fact that never expires.

        Raises:
            ValueError: If *text* is blank.
        """
        if not text.strip():
            raise ValueError("Fact text must not be empty")
        now = self._now()
        resolved_class = decay_class
        if resolved_class is None:
            resolved_class = classify_decay(entity, attribute, value, text)
        fact = MemoryFact(
            id=str(uuid.uuid4()),
            text=text,
            category=category,
            importance=importance,
            entity=entity,
            attribute=attribute,
            value=value,
            source=source,
            created_at=now,
            decay_class=resolved_class,
            expires_at=expiry_for(resolved_class, now) if expires_at is _UNSET else expires_at,
            last_confirmed_at=now,
            confidence=confidence,
        )
        await self._run(self._insert, fact)
        logger.debug("Stored fact %s (decay=%s)", fact.id, fact.decay_class.value)
        return fact

    async def search(self, query: str, limit: int = 5) -> list[ScoredFact]:
        """Full-text search over unexpired facts, best match first."""
        match = build_match_query(query)
        if match is None or limit <= 0:
            return []
        return await self._run(self._search, match, limit, self._now())

    async def get(self, fact_id: str) -> MemoryFact | None:
        return await self._run(self._get, fact_id)

    async def refresh_accessed(self, ids: Iterable[str]) -> int:
        """Renew ``stable``/``active`` facts that were just recalled.

        Sets ``last_confirmed_at`` to now and pushes ``expires_at`` out by the
        class TTL, in one transaction.  Facts of other classes are untouched.
        Returns the number of facts refreshed.
        """
        unique = list(dict.fromkeys(ids))
        if not unique:
            return 0
        return await self._run(self._refresh, unique, self._now())

    async def prune_expired(self) -> int:
        """Delete facts whose expiry is strictly in the past."""
        removed = await self._run(self._prune, self._now())
        if removed:
            logger.info("Pruned %d expired facts", removed)
        return removed

    async def count(self) -> int:
        return await self._run(self._count)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # ------------------------------------------------------------------
    # Internals (run inside the executor, under the lock)
    # ------------------------------------------------------------------

    def _now(self) -> int:
        return int(self._clock())

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(self._locked, fn, *args))

    def _locked(self, fn: Callable[..., T], *args: Any) -> T:
        with self._lock:
            try:
                return fn(*args)
            except sqlite3.Error as exc:
                raise StorageError(f"Fact store operation failed: {exc}") from exc

    def _insert(self, fact: MemoryFact) -> None:
        with self._conn:
            self._conn.execute(
                """
                INSERT INTO facts (
                    id, text, category, importance, entity, attribute, value, source,
                    created_at, decay_class, expires_at, last_confirmed_at, confidence
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    fact.id,
                    fact.text,
                    fact.category.value,
                    fact.importance,
                    fact.entity,
                    fact.attribute,
                    fact.value,
                    fact.source,
                    fact.created_at,
                    fact.decay_class.value,
                    fact.expires_at,
                    fact.last_confirmed_at,
                    fact.confidence,
                ),
            )

    def _search(self, match: str, limit: int, now: int) -> list[ScoredFact]:
        rows = self._conn.execute(
            """
            SELECT f.*, bm25(facts_fts) AS bm25_rank
            FROM facts_fts
            JOIN facts f ON f.rowid = facts_fts.rowid
            WHERE facts_fts MATCH ?
              AND (f.expires_at IS NULL OR f.expires_at >= ?)
            ORDER BY bm25_rank
            LIMIT ?
            """,
            (match, now, limit),
        ).fetchall()
        results = [ScoredFact(fact=self._row_to_fact(r), score=relevance_to_score(r["bm25_rank"])) for r in rows]
        results.sort(key=lambda r: r.score, reverse=True)
        return results

    def _get(self, fact_id: str) -> MemoryFact | None:
        row = self._conn.execute("SELECT * FROM facts WHERE id = ? LIMIT 1", (fact_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_fact(row)

    def _refresh(self, ids: list[str], now: int) -> int:
        stable_until = now + (TTL_SECONDS[DecayClass.STABLE] or 0)
        active_until = now + (TTL_SECONDS[DecayClass.ACTIVE] or 0)
        with self._conn:
            cur = self._conn.executemany(
                """
                UPDATE facts
                SET last_confirmed_at = ?,
                    expires_at = CASE decay_class
                        WHEN 'stable' THEN ?
                        WHEN 'active' THEN ?
                        ELSE expires_at END
                WHERE id = ? AND decay_class IN ('stable', 'active')
                """,
                [(now, stable_until, active_until, fact_id) for fact_id in ids],
            )
        return cur.rowcount

    def _prune(self, now: int) -> int:
        with self._conn:
            cur = self._conn.execute(
                "DELETE FROM facts WHERE expires_at IS NOT NULL AND expires_at < ?",
                (now,),
            )
        return cur.rowcount

    def _count(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM facts").fetchone()[0]

    @staticmethod
    def _row_to_fact(row: sqlite3.Row) -> MemoryFact:
        return MemoryFact(
            id=row["id"],
            text=row["text"],
            category=MemoryCategory(row["category"]),
            importance=row["importance"],
            entity=row["entity"],
            attribute=row["attribute"],
            value=row["value"],
            source=row["source"],
            created_at=row["created_at"],
            decay_class=DecayClass(row["decay_class"]),
            expires_at=row["expires_at"],
            last_confirmed_at=row["last_confirmed_at"],
            confidence=row["confidence"] if row["confidence"] is not None else 1.0,
        )
