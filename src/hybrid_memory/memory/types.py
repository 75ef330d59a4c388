"""Record types shared by the lexical and vector stores.

The two stores are deliberately independent: a :class:`MemoryFact` lives in
the SQLite fact store and a :class:`VectorRecord` lives in the Qdrant
collection.  Their ids come from separate id spaces and nothing links them
except identical ``text`` written by the same capture call.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class DecayClass(Enum):
    """How long a fact stays valid and whether access renews it."""

    PERMANENT = "permanent"
    """Identity, contact details, conventions.  Never expires."""

    STABLE = "stable"
    """Projects, relationships, technology preferences."""

    ACTIVE = "active"
    """Current tasks, sprints, goals."""

    SESSION = "session"
    """Debugging notes and other short-lived context."""

    CHECKPOINT = "checkpoint"
    """Pre-flight state saved right before a risky action."""


class MemoryCategory(Enum):
    PREFERENCE = "preference"
    FACT = "fact"
    DECISION = "decision"
    ENTITY = "entity"
    OTHER = "other"


TTL_SECONDS: dict[DecayClass, int | None] = {
    DecayClass.PERMANENT: None,
    DecayClass.STABLE: 90 * 24 * 3600,
    DecayClass.ACTIVE: 14 * 24 * 3600,
    DecayClass.SESSION: 24 * 3600,
    DecayClass.CHECKPOINT: 4 * 3600,
}
"""Time-to-live per decay class, in seconds.  ``None`` means no expiry."""

REFRESHABLE_CLASSES: frozenset[DecayClass] = frozenset(
    {DecayClass.STABLE, DecayClass.ACTIVE}
)
"""Decay classes whose expiry is pushed forward when a fact is recalled."""


def expiry_for(decay_class: DecayClass, now: int) -> int | None:
    """Return the expiry timestamp for a fact created (or refreshed) at *now*."""
    ttl = TTL_SECONDS[decay_class]
    if ttl is None:
        return None
    return now + ttl


class StorageError(Exception):
    """Raised when a backing store fails to read or write.

    Wraps ``sqlite3.Error`` from the fact store and client errors from the
    vector store so callers only need to handle one type.
    """


@dataclass
class MemoryFact:
    """A single fact as persisted in the lexical store.

    Timestamps are integer epoch seconds.
    """
    id: str
    text: str
    category: MemoryCategory
    importance: float
    entity: str | None
    attribute: str | None
    value: str | None
    source: str
    created_at: int
    decay_class: DecayClass
    expires_at: int | None
    last_confirmed_at: int
    confidence: float = 1.0


@dataclass
class VectorRecord:
    """A single embedded memory in the vector store."""
    id: str
    text: str
    vector: list[float]
    importance: float
    category: MemoryCategory
    created_at: int


@dataclass
class ScoredFact:
    fact: MemoryFact
    score: float


@dataclass
class ScoredVector:
    record: VectorRecord
    score: float
