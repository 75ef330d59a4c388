"""Capture gating for auto-captured conversation text.

A candidate utterance is persisted only when it passes every hard veto
(length bounds, self-reference, markup, prompt injection) and matches at
least one memorability trigger.  Rejection is routine filtering, not an
error, so the gate only ever answers ``True`` or ``False``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from .context import CONTEXT_OPEN_TAG

MIN_CAPTURE_CHARS = 10
DEFAULT_CAPTURE_MAX_CHARS = 500

MEMORY_TRIGGERS: list[re.Pattern[str]] = [
    re.compile(r"remember|memorize|zapamatuj|pamatuj", re.IGNORECASE),
    re.compile(r"prefer|preferuji|radši|like|love|hate|want", re.IGNORECASE),
    re.compile(r"decided|rozhodli|budeme používat", re.IGNORECASE),
    re.compile(r"\+\d{10,}|[\w.-]+@[\w.-]+\.\w+"),
    re.compile(r"my \w+ is|is my \w+|daughter'?s birthday|son'?s", re.IGNORECASE),
    re.compile(r"i (like|prefer|hate|love|want|need)", re.IGNORECASE),
    re.compile(r"always|never|important", re.IGNORECASE),
]

PROMPT_INJECTION_PATTERNS: list[re.Pattern[str]] = [
    re.compile(
        r"(?:ignore|disregard|forget) (?:(?:all|any|every|the|previous|above|prior|earlier|your) )*"
        r"(?:instructions|rules|prompts?)",
        re.IGNORECASE,
    ),
    re.compile(r"do not follow (?:the )?(?:system|developer)", re.IGNORECASE),
    re.compile(r"<\s*/?\s*(?:system|assistant|developer|tool|relevant-memories)\b", re.IGNORECASE),
]

_LEADING_TAG = re.compile(r"^\s*<([A-Za-z][\w:-]*)[^>]*>")
_WHITESPACE = re.compile(r"\s+")


def looks_like_prompt_injection(text: str) -> bool:
    normalized = _WHITESPACE.sub(" ", text).strip()
    if not normalized:
        return False
    return any(p.search(normalized) for p in PROMPT_INJECTION_PATTERNS)


def is_wrapped_markup(text: str) -> bool:
    """True when *text* opens with a tag and later closes that same tag."""
    m = _LEADING_TAG.match(text)
    if m is None:
        return False
    return f"</{m.group(1).lower()}" in text.lower()


def has_memory_trigger(text: str) -> bool:
    return any(p.search(text) for p in MEMORY_TRIGGERS)


@dataclass(frozen=True)
class CaptureGate:
    max_chars: int = DEFAULT_CAPTURE_MAX_CHARS
    min_chars: int = MIN_CAPTURE_CHARS

    def __call__(self, text: str) -> bool:
        if len(text) < self.min_chars or len(text) > self.max_chars:
            return False
        if CONTEXT_OPEN_TAG in text:
            return False
        if is_wrapped_markup(text):
            return False
        if looks_like_prompt_injection(text):
            return False
        return has_memory_trigger(text)


def should_capture(text: str, max_chars: int = DEFAULT_CAPTURE_MAX_CHARS) -> bool:
    return CaptureGate(max_chars=max_chars)(text)
