"""Hybrid lexical + semantic long-term memory for conversational agents."""

from hybrid_memory.config import HybridMemorySettings, get_settings
from hybrid_memory.memory.engine import HybridMemory, MemoryStats, ToolResult

__version__ = "0.1.0"

__all__ = [
    "HybridMemory",
    "HybridMemorySettings",
    "MemoryStats",
    "ToolResult",
    "get_settings",
]
