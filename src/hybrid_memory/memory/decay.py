from __future__ import annotations

import re

from .types import DecayClass

# Evaluated in order; the first pattern that matches decides the class.
DECAY_RULES: list[tuple[re.Pattern[str], DecayClass]] = [
    (
        re.compile(
            r"birthday|name|email|phone|address|api.?key|endpoint"
            r"|always|never|decided|chose|convention"
        ),
        DecayClass.PERMANENT,
    ),
    (re.compile(r"project|relationship|tech.?stack|prefer|choice"), DecayClass.STABLE),
    (re.compile(r"task|sprint|goal|currently|working on"), DecayClass.ACTIVE),
    (re.compile(r"debug|temp|session|right now"), DecayClass.SESSION),
    (re.compile(r"checkpoint|pre.?flight|about to do"), DecayClass.CHECKPOINT),
]

DEFAULT_DECAY_CLASS = DecayClass.STABLE


def classify_decay(
    entity: str | None,
    attribute: str | None,
    value: str | None,
    text: str,
) -> DecayClass:
    """Pick a decay class for a fact from its triple and full text."""
    haystack = " ".join((entity or "", attribute or "", value or "", text)).lower()
    for pattern, decay_class in DECAY_RULES:
        if pattern.search(haystack):
            return decay_class
    return DEFAULT_DECAY_CLASS
