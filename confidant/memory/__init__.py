"""Conversational memory: embedding, extraction, storage, retrieval, lifecycle.

Modules:
    embeddings: Text to vectors and cosine similarity
    triggers: Memorability heuristics and pattern extraction
    llm: Chat clients for the extraction model
    extraction: LLM memory extraction with defensive parsing
    vector_store: Per-user namespaced vector storage with deduplication
    retrieval: Vector search with keyword and recent fallbacks
    lifecycle: Statistics, pruning, conflicts and importance re-scoring
    pipeline: Background extract-and-store and the chat handler API
"""

from confidant.memory.embeddings import EmbeddingService, cosine_similarity
from confidant.memory.extraction import MemoryExtractor
from confidant.memory.lifecycle import LifecycleManager
from confidant.memory.pipeline import MemoryPipeline, build_memory_pipeline
from confidant.memory.retrieval import RetrievalEngine
from confidant.memory.vector_store import VectorStoreGateway

__all__ = [
    "EmbeddingService",
    "cosine_similarity",
    "MemoryExtractor",
    "LifecycleManager",
    "MemoryPipeline",
    "build_memory_pipeline",
    "RetrievalEngine",
    "VectorStoreGateway",
]
