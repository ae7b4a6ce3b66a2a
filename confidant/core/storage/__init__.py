"""Storage protocols and local backends for the memory engine.

Protocols:
    MemoryRepository: Canonical memory rows.
    VectorIndex: Namespaced vector search.

Backends:
    InMemoryMemoryRepository, InMemoryVectorIndex, MemoryLocking: in-process.
    FaissVectorIndex: FAISS flat inner-product indexes per namespace.
    PineconeVectorIndex: hosted Pinecone index.
"""

from confidant.core.storage.faiss_index import FaissVectorIndex
from confidant.core.storage.memory import (
    InMemoryMemoryRepository,
    InMemoryVectorIndex,
    MemoryLocking,
)
from confidant.core.storage.pinecone_index import PineconeVectorIndex
from confidant.core.storage.protocols import MemoryQuery, MemoryRepository, VectorIndex

__all__ = [
    "MemoryQuery",
    "MemoryRepository",
    "VectorIndex",
    "InMemoryMemoryRepository",
    "InMemoryVectorIndex",
    "MemoryLocking",
    "FaissVectorIndex",
    "PineconeVectorIndex",
]
