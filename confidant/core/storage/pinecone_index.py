"""Pinecone-backed namespaced vector index.

Adapts a Pinecone serverless index to the :class:`VectorIndex` protocol.
The Pinecone SDK is synchronous, so every call runs in a worker thread.
Namespaces, metadata filters and cosine scores map directly onto
Pinecone's own; the index must be created with the ``cosine`` metric and
the embedding dimensionality.

Example:
    >>> index = PineconeVectorIndex(api_key=key, index_name="confidant-memories")
    >>> await index.upsert("user_42", [VectorRecord(id="m1", values=vec)])
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional, Sequence

from pinecone import Pinecone

from confidant.config.schemas.memory import VectorMatch, VectorRecord
from confidant.config.settings import ConfidantSettings
from confidant.core.exceptions import ConfigurationError
from confidant.core.storage.filters import validate_filter

logger = logging.getLogger(__name__)


def _clean_metadata(metadata: dict[str, Any]) -> dict[str, Any]:
    # Pinecone rejects null metadata values
    return {key: value for key, value in metadata.items() if value is not None}


class PineconeVectorIndex:
    """Vector index stored in a hosted Pinecone index.

    Attributes:
        index_name: Name of the Pinecone index.
        dimensions: Dimensionality the index was created with.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        index_name: str = "confidant-memories",
        dimensions: int = 1536,
        index: Any = None,
    ) -> None:
        """Connect to a Pinecone index.

        Args:
            api_key: Pinecone API key; ignored when ``index`` is given.
            index_name: Name of an existing index.
            dimensions: Dimensionality of stored vectors.
            index: Preconnected index handle, mainly for tests.

        Raises:
            ConfigurationError: If neither an API key nor an index was given.
        """
        if index is None and not api_key:
            raise ConfigurationError(
                "PINECONE_API_KEY is required for the 'pinecone' vector backend",
                config_key="api_keys.pinecone_api_key",
            )
        self.index_name = index_name
        self.dimensions = dimensions
        self._index = index if index is not None else Pinecone(api_key=api_key).Index(index_name)

    @classmethod
    def from_settings(cls, settings: ConfidantSettings) -> "PineconeVectorIndex":
        return cls(
            api_key=settings.api_keys.pinecone_api_key,
            index_name=settings.vector_store.index_name,
            dimensions=settings.embedding.dimensions,
        )

    def _check_dimensions(self, values: Sequence[float]) -> None:
        if len(values) != self.dimensions:
            raise ValueError(
                f"Vector dimensions ({len(values)}) don't match index dimensions ({self.dimensions})"
            )

    async def upsert(self, namespace: str, records: Sequence[VectorRecord]) -> int:
        if not records:
            return 0
        vectors = []
        for record in records:
            self._check_dimensions(record.values)
            vectors.append({
                "id": record.id,
                "values": list(record.values),
                "metadata": _clean_metadata(record.metadata),
            })
        await asyncio.to_thread(self._index.upsert, vectors=vectors, namespace=namespace)
        return len(vectors)

    async def query(
        self,
        namespace: str,
        vector: Sequence[float],
        top_k: int = 10,
        filter: Optional[dict[str, Any]] = None,
    ) -> list[VectorMatch]:
        validate_filter(filter)
        self._check_dimensions(vector)
        response = await asyncio.to_thread(
            self._index.query,
            vector=list(vector),
            top_k=top_k,
            namespace=namespace,
            filter=filter or None,
            include_metadata=True,
        )
        return [
            VectorMatch(id=match.id, score=float(match.score), metadata=dict(match.metadata or {}))
            for match in response.matches
        ]

    async def delete(self, namespace: str, ids: Sequence[str]) -> int:
        if not ids:
            return 0
        # Pinecone does not report deletions, so count the ids that exist first
        fetched = await asyncio.to_thread(self._index.fetch, ids=list(ids), namespace=namespace)
        existing = list(fetched.vectors or {})
        if not existing:
            return 0
        await asyncio.to_thread(self._index.delete, ids=existing, namespace=namespace)
        return len(existing)

    async def delete_namespace(self, namespace: str) -> int:
        stats = await self.describe_index_stats()
        count = stats["namespaces"].get(namespace, {}).get("vector_count", 0)
        if count == 0:
            return 0
        await asyncio.to_thread(self._index.delete, delete_all=True, namespace=namespace)
        logger.debug(f"[Pinecone] Dropped namespace {namespace} ({count} vectors)")
        return count

    async def describe_index_stats(self) -> dict[str, Any]:
        stats = await asyncio.to_thread(self._index.describe_index_stats)
        namespaces = {
            name: {"vector_count": int(summary.vector_count)}
            for name, summary in (stats.namespaces or {}).items()
        }
        return {
            "dimension": stats.dimension,
            "total_vector_count": int(stats.total_vector_count),
            "namespaces": namespaces,
        }


__all__ = ["PineconeVectorIndex"]
