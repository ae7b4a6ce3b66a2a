"""Schema definitions for the Confidant memory engine.

Schema Categories:
    - memory: Memory rows, candidates, search and lifecycle models
"""

from confidant.config.schemas.memory import (
    Memory,
    MemoryCategory,
    MemoryType,
    ExtractedMemory,
    RetrievalSource,
    SearchOptions,
    SearchedMemory,
)

__all__ = [
    "Memory",
    "MemoryCategory",
    "MemoryType",
    "ExtractedMemory",
    "RetrievalSource",
    "SearchOptions",
    "SearchedMemory",
]
