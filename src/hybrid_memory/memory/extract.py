"""Rule-based structure extraction for captured statements.

Two small first-match-wins rule tables:

* :func:`extract_triple` splits a sentence into ``(entity, attribute, value)``
  when it follows one of a handful of common phrasings.
* :func:`detect_category` assigns a :class:`MemoryCategory`.

Neither function ever raises; unrecognised text yields an empty triple and
the ``other`` category respectively.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable

from .types import MemoryCategory


@dataclass(frozen=True)
class Triple:
    entity: str | None = None
    attribute: str | None = None
    value: str | None = None

    @property
    def is_empty(self) -> bool:
        return self.entity is None and self.attribute is None and self.value is None


EMPTY_TRIPLE = Triple()


def _possessive(m: re.Match[str]) -> Triple:
    return Triple(m.group(1).strip(), m.group(2).strip(), m.group(3).strip())


def _preference(m: re.Match[str]) -> Triple:
    return Triple("user", "prefer", m.group(1).strip())


def _decision(m: re.Match[str]) -> Triple:
    return Triple("decision", m.group(1).strip(), m.group(2).strip())


def _convention(m: re.Match[str]) -> Triple:
    return Triple("convention", m.group(2).strip(), m.group(1).lower())


TRIPLE_PATTERNS: list[tuple[re.Pattern[str], Callable[[re.Match[str]], Triple]]] = [
    # "Alice's birthday is March 3"
    (re.compile(r"^(.+?)'s (.+?) is (.+)$", re.IGNORECASE), _possessive),
    # "I prefer dark mode"
    (re.compile(r"^I (?:prefer|like|love|hate|want) (.+)$", re.IGNORECASE), _preference),
    # "We decided to use Postgres because it has JSONB"
    (
        re.compile(r"^we (?:decided|chose) to use (.+?) (?:because|for) (.+)$", re.IGNORECASE),
        _decision,
    ),
    # "Always run the linter before committing"
    (re.compile(r"^(always|never) (.+)$", re.IGNORECASE), _convention),
]


def extract_triple(text: str) -> Triple:
    stripped = text.strip()
    for pattern, build in TRIPLE_PATTERNS:
        m = pattern.match(stripped)
        if m:
            return build(m)
    return EMPTY_TRIPLE


CATEGORY_RULES: list[tuple[re.Pattern[str], MemoryCategory]] = [
    (re.compile(r"prefer|like|love|hate|want"), MemoryCategory.PREFERENCE),
    (re.compile(r"decided|chose|will use"), MemoryCategory.DECISION),
    (re.compile(r"\+\d{10,}|@[\w.-]+\.\w+|is called"), MemoryCategory.ENTITY),
    (re.compile(r"is|are|has|have"), MemoryCategory.FACT),
]


def detect_category(text: str) -> MemoryCategory:
    lowered = text.lower()
    for pattern, category in CATEGORY_RULES:
        if pattern.search(lowered):
            return category
    return MemoryCategory.OTHER
