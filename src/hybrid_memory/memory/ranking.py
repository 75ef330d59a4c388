"""Fusion of lexical and vector search results.

Lexical hits seed the output first, so a full-text match always wins over an
approximate vector match with the same text, whatever their raw scores.
The combined list is then sorted by score with a stable sort: on equal
scores lexical results stay ahead of vector results, and each backend keeps
its own order.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Sequence

from .types import MemoryCategory, MemoryFact, ScoredFact, ScoredVector


class Backend(Enum):
    LEXICAL = "lexical"
    VECTOR = "vector"


@dataclass
class SearchResult:
    """One merged recall hit.

    ``fact`` carries the full record for lexical hits and is ``None`` for
    vector hits, whose ids belong to the vector store's own id space.
    """
    id: str
    text: str
    category: MemoryCategory
    score: float
    backend: Backend
    fact: MemoryFact | None = None


def merge_results(
    lexical: Sequence[ScoredFact],
    vector: Sequence[ScoredVector],
) -> list[SearchResult]:
    seen: set[str] = set()
    merged: list[SearchResult] = []

    for hit in lexical:
        if hit.fact.text in seen:
            continue
        seen.add(hit.fact.text)
        merged.append(SearchResult(
            id=hit.fact.id,
            text=hit.fact.text,
            category=hit.fact.category,
            score=hit.score,
            backend=Backend.LEXICAL,
            fact=hit.fact,
        ))

    for hit in vector:
        if hit.record.text in seen:
            continue
        seen.add(hit.record.text)
        merged.append(SearchResult(
            id=hit.record.id,
            text=hit.record.text,
            category=hit.record.category,
            score=hit.score,
            backend=Backend.VECTOR,
        ))

    merged.sort(key=lambda r: r.score, reverse=True)
    return merged
