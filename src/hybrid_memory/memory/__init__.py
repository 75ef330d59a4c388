"""Memory subsystem: stores, classifiers, ranking and orchestration."""

from .context import ContextEntry, MemoryContext, format_memory_context
from .decay import classify_decay
from .engine import HybridMemory, MemoryStats, ToolResult, extract_user_texts
from .extract import Triple, detect_category, extract_triple
from .facts import FactStore
from .gates import CaptureGate, should_capture
from .ranking import Backend, SearchResult, merge_results
from .store import VectorStore
from .types import (
    DecayClass,
    MemoryCategory,
    MemoryFact,
    ScoredFact,
    ScoredVector,
    StorageError,
    VectorRecord,
)

__all__ = [
    "Backend",
    "CaptureGate",
    "ContextEntry",
    "DecayClass",
    "FactStore",
    "HybridMemory",
    "MemoryCategory",
    "MemoryContext",
    "MemoryFact",
    "MemoryStats",
    "ScoredFact",
    "ScoredVector",
    "SearchResult",
    "StorageError",
    "ToolResult",
    "Triple",
    "VectorRecord",
    "VectorStore",
    "classify_decay",
    "detect_category",
    "extract_triple",
    "extract_user_texts",
    "format_memory_context",
    "merge_results",
    "should_capture",
]
