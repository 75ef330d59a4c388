"""Recall and capture orchestration around a conversation turn.

:class:`HybridMemory` composes the fact store, the vector store and the
embedding provider into the operations a host agent runtime needs:

* two tools, :meth:`~HybridMemory.recall` and :meth:`~HybridMemory.store`;
* two lifecycle hooks, :meth:`~HybridMemory.before_turn` (inject relevant
  memories) and :meth:`~HybridMemory.after_turn` (capture new ones);
* administrative :meth:`~HybridMemory.stats` and :meth:`~HybridMemory.prune`.

The hooks never raise: any failure is logged as a warning and the turn goes
on without context or without capture.  The tools degrade the same way for
embedding and storage failures but still report what happened.  The
administrative calls propagate :class:`StorageError` because there is no
meaningful degraded answer.

Facts and vectors are written by two separate calls with no transaction
spanning them.  The near-duplicate check against the vector store before each
write is the only consistency mechanism between the two stores.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Iterable, Mapping

from hybrid_memory.models.embeddings import (
    EmbeddingError,
    EmbeddingProvider,
    build_embedding_provider,
)

from .context import ContextEntry, format_memory_context
from .extract import detect_category, extract_triple
from .facts import FactStore
from .gates import CaptureGate
from .ranking import Backend, SearchResult, merge_results
from .store import VectorStore
from .types import MemoryCategory, StorageError

if TYPE_CHECKING:
    from hybrid_memory.config import HybridMemorySettings

logger = logging.getLogger(__name__)

DEFAULT_RECALL_LIMIT = 5
RECALL_MIN_SCORE = 0.2
"""Vector similarity floor for the recall tool."""

HOOK_RECALL_LIMIT = 3
HOOK_MIN_SCORE = 0.3
"""Vector similarity floor for automatic recall at turn start."""

DUPLICATE_THRESHOLD = 0.95
MAX_CAPTURES_PER_TURN = 3
MIN_PROMPT_CHARS = 5
DEFAULT_IMPORTANCE = 0.7
CAPTURE_SOURCE = "conversation"


@dataclass
class ToolResult:
    """Outcome of a tool call.

    ``text`` is the human-readable answer shown to the agent, ``details``
    the machine-readable part (``count`` for recall, ``action`` for store).
    """
    text: str
    details: dict[str, Any]
    results: list[SearchResult] = field(default_factory=list)


@dataclass
class MemoryStats:
    facts: int
    vectors: int


def extract_user_texts(messages: Iterable[Any]) -> list[str]:
    """Collect the text a user wrote in a turn's messages.

    Only messages with ``role == "user"`` are read.  String content is taken
    whole; list content contributes the ``text`` of its ``type == "text"``
    blocks.  Anything else is ignored.
    """
    texts: list[str] = []
    for message in messages:
        if not isinstance(message, Mapping) or message.get("role") != "user":
            continue
        content = message.get("content")
        if isinstance(content, str):
            texts.append(content)
        elif isinstance(content, list):
            for block in content:
                if isinstance(block, Mapping) and block.get("type") == "text":
                    text = block.get("text")
                    if isinstance(text, str):
                        texts.append(text)
    return texts


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


class HybridMemory:
    """Hybrid lexical + semantic memory for a conversational agent.

    Args:
        facts: The authoritative fact store.
        vectors: The vector store used for semantic recall and deduplication.
        embeddings: A ready provider.  Mutually exclusive with
            *embedding_factory*.
        embedding_factory: Builds the provider on first use; concurrent first
            uses share a single call.
        auto_capture: Enable :meth:`after_turn`.
        auto_recall: Enable :meth:`before_turn`.
        capture_max_chars: Longest utterance :meth:`after_turn` will capture.
    """

    def __init__(
        self,
        facts: FactStore,
        vectors: VectorStore,
        embeddings: EmbeddingProvider | None = None,
        embedding_factory: Callable[[], EmbeddingProvider] | None = None,
        *,
        auto_capture: bool = True,
        auto_recall: bool = True,
        capture_max_chars: int = 500,
    ) -> None:
        if embeddings is None and embedding_factory is None:
            raise ValueError("Either embeddings or embedding_factory is required")
        self.facts = facts
        self.vectors = vectors
        self.auto_capture = auto_capture
        self.auto_recall = auto_recall
        self.gate = CaptureGate(max_chars=capture_max_chars)
        self._embeddings = embeddings
        self._embedding_factory = embedding_factory
        self._embeddings_lock = asyncio.Lock()

    @classmethod
    def from_settings(
        cls,
        settings: HybridMemorySettings,
        clock: Callable[[], float] = time.time,
    ) -> HybridMemory:
        """Open both stores at the configured paths.

        The embedding provider is only built on first use, so constructing
        the engine never loads a local model.
        """
        facts = FactStore(settings.SQLITE_PATH, clock=clock)
        vectors = VectorStore(settings.VECTOR_PATH, settings.vector_dimensions, clock=clock)
        logger.info(
            "Hybrid memory ready: facts=%s, vectors=%s, embeddings=%s (%s)",
            facts.path,
            settings.VECTOR_PATH,
            settings.EMBEDDING_PROVIDER,
            settings.effective_model,
        )
        return cls(
            facts,
            vectors,
            embedding_factory=functools.partial(build_embedding_provider, settings),
            auto_capture=settings.AUTO_CAPTURE,
            auto_recall=settings.AUTO_RECALL,
            capture_max_chars=settings.CAPTURE_MAX_CHARS,
        )

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    async def recall(self, query: str, limit: int = DEFAULT_RECALL_LIMIT) -> ToolResult:
        """Search both stores and summarise the merged hits."""
        try:
            results = await self._search(query, limit, RECALL_MIN_SCORE)
        except (EmbeddingError, StorageError) as e:
            logger.warning("Memory recall failed: %s", e)
            return ToolResult(text="Memory recall failed.", details={"count": 0, "error": str(e)})

        if not results:
            return ToolResult(text="No relevant memories found.", details={"count": 0})

        lines = "\n".join(
            f"{i}. [{r.category.value}] {r.text} ({r.score * 100:.0f}%)"
            for i, r in enumerate(results, start=1)
        )
        return ToolResult(
            text=f"Found {len(results)} memories:\n\n{lines}",
            details={"count": len(results)},
            results=results,
        )

    async def store(
        self,
        text: str,
        importance: float = DEFAULT_IMPORTANCE,
        category: MemoryCategory | str | None = None,
    ) -> ToolResult:
        """Save *text* unless a near-identical memory already exists.

        Without an explicit *category* the category is detected from the text.
        Blank text and text longer than the capture limit are skipped.

        Raises:
            ValueError: If *category* names no known category.
        """
        if not text or not text.strip():
            return ToolResult(
                text="Nothing to store.",
                details={"action": "skipped", "reason": "empty"},
            )
        if len(text) > self.gate.max_chars:
            return ToolResult(
                text=f"Memory is too long to store (limit {self.gate.max_chars} characters).",
                details={"action": "skipped", "reason": "too_long"},
            )
        if category is None:
            resolved = detect_category(text)
        else:
            resolved = MemoryCategory(category)
        try:
            existing, fact_id = await self._write(text, _clamp(importance), resolved)
        except (EmbeddingError, StorageError) as e:
            logger.warning("Memory store failed: %s", e)
            return ToolResult(
                text="Memory could not be stored.",
                details={"action": "skipped", "error": str(e)},
            )

        if existing is not None:
            return ToolResult(
                text=f'Similar memory exists: "{existing}"',
                details={"action": "duplicate", "existing": existing},
            )
        preview = text if len(text) <= 80 else f"{text[:80]}..."
        return ToolResult(text=f'Stored: "{preview}"', details={"action": "created", "id": fact_id})

    # ------------------------------------------------------------------
    # Lifecycle hooks
    # ------------------------------------------------------------------

    async def before_turn(self, prompt: str | None) -> str | None:
        """Return a context block of memories relevant to *prompt*, if any."""
        if not self.auto_recall or not prompt or len(prompt) < MIN_PROMPT_CHARS:
            return None
        try:
            results = await self._search(prompt, HOOK_RECALL_LIMIT, HOOK_MIN_SCORE)
        except Exception as e:
            logger.warning("Automatic recall failed: %s", e)
            return None
        if not results:
            return None
        logger.info("Injecting %d memories into context", len(results))
        return format_memory_context(ContextEntry(r.category, r.text) for r in results)

    async def after_turn(self, success: bool, messages: Iterable[Any] | None) -> int:
        """Capture memorable user statements from a finished turn.

        Returns the number of new facts stored.
        """
        if not self.auto_capture or not success or not messages:
            return 0
        try:
            candidates = [t for t in extract_user_texts(messages) if t and self.gate(t)]
        except Exception as e:
            logger.warning("Automatic capture failed: %s", e)
            return 0

        stored = 0
        for text in candidates[:MAX_CAPTURES_PER_TURN]:
            try:
                existing, _ = await self._write(text, DEFAULT_IMPORTANCE, detect_category(text))
            except Exception as e:
                logger.warning("Automatic capture failed: %s", e)
                continue
            if existing is None:
                stored += 1
        if stored:
            logger.info("Auto-captured %d memories", stored)
        return stored

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    async def stats(self) -> MemoryStats:
        facts, vectors = await asyncio.gather(self.facts.count(), self.vectors.count())
        return MemoryStats(facts=facts, vectors=vectors)

    async def prune(self) -> int:
        """Remove expired facts.  Vector records are never pruned."""
        return await self.facts.prune_expired()

    async def close(self) -> None:
        self.facts.close()
        await self.vectors.close()
        if self._embeddings is not None:
            await self._embeddings.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _get_embeddings(self) -> EmbeddingProvider:
        if self._embeddings is not None:
            return self._embeddings
        async with self._embeddings_lock:
            if self._embeddings is None:
                assert self._embedding_factory is not None
                try:
                    self._embeddings = self._embedding_factory()
                except EmbeddingError:
                    raise
                except Exception as e:
                    raise EmbeddingError(f"Cannot create embedding provider: {e}") from e
                logger.info("Embedding provider ready: %r", self._embeddings)
        return self._embeddings

    async def _search(self, query: str, limit: int, min_score: float) -> list[SearchResult]:
        if limit <= 0:
            return []
        lexical = await self.facts.search(query, limit)
        embeddings = await self._get_embeddings()
        vector = await embeddings.embed_one(query)
        semantic = await self.vectors.search(vector, limit, min_score)
        results = merge_results(lexical, semantic)

        recalled = [r.id for r in results if r.backend is Backend.LEXICAL]
        if recalled:
            try:
                await self.facts.refresh_accessed(recalled)
            except StorageError as e:
                logger.warning("Access refresh failed: %s", e)
        logger.debug(
            "Search %r: %d lexical, %d vector, %d merged",
            query, len(lexical), len(semantic), len(results),
        )
        return results

    async def _write(
        self,
        text: str,
        importance: float,
        category: MemoryCategory,
    ) -> tuple[str | None, str | None]:
        """Write *text* to both stores unless a near-duplicate exists.

        Returns ``(existing_text, None)`` for a duplicate and
        ``(None, fact_id)`` after a write.
        """
        embeddings = await self._get_embeddings()
        vector = await embeddings.embed_one(text)
        existing = await self.vectors.search(vector, limit=1, min_score=DUPLICATE_THRESHOLD)
        if existing:
            logger.debug("Skipping near-duplicate memory: %r", text)
            return existing[0].record.text, None

        triple = extract_triple(text)
        fact = await self.facts.store(
            text,
            category=category,
            importance=importance,
            entity=triple.entity,
            attribute=triple.attribute,
            value=triple.value,
            source=CAPTURE_SOURCE,
        )
        await self.vectors.store(text, vector, importance=importance, category=category)
        return None, fact.id
