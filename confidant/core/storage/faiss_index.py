"""FAISS-backed namespaced vector index.

Each namespace gets its own ``IndexIDMap2`` over an inner-product flat
index. Vectors are L2-normalized before insertion, so inner product equals
cosine similarity. Metadata lives beside the index in plain dictionaries
and filters are applied to the exact search results.

Example:
    >>> index = FaissVectorIndex(dimensions=1536)
    >>> await index.upsert("user_42", [VectorRecord(id="m1", values=vec)])
    >>> matches = await index.query("user_42", vec, top_k=3)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

import faiss
import numpy as np

from confidant.config.schemas.memory import VectorMatch, VectorRecord
from confidant.core.storage.filters import matches_filter, validate_filter

logger = logging.getLogger(__name__)


@dataclass
class _Namespace:
    index: Any
    id_to_idx: dict[str, int] = field(default_factory=dict)
    idx_to_id: dict[int, str] = field(default_factory=dict)
    metadata: dict[str, dict[str, Any]] = field(default_factory=dict)
    next_idx: int = 0


class FaissVectorIndex:
    """Vector index keeping one FAISS index per namespace.

    Attributes:
        dimensions: The dimensionality of stored vectors.
    """

    def __init__(self, dimensions: int = 1536) -> None:
        self.dimensions = dimensions
        self._namespaces: dict[str, _Namespace] = {}
        self._lock = asyncio.Lock()

    def _new_namespace(self) -> _Namespace:
        return _Namespace(index=faiss.IndexIDMap2(faiss.IndexFlatIP(self.dimensions)))

    def _prepare(self, vectors: Sequence[Sequence[float]]) -> np.ndarray:
        matrix = np.array(vectors, dtype=np.float32)
        if matrix.ndim != 2 or matrix.shape[1] != self.dimensions:
            raise ValueError(
                f"Vector dimensions {matrix.shape} don't match index dimensions ({self.dimensions})"
            )
        faiss.normalize_L2(matrix)
        return matrix

    async def upsert(self, namespace: str, records: Sequence[VectorRecord]) -> int:
        if not records:
            return 0
        matrix = self._prepare([record.values for record in records])

        async with self._lock:
            ns = self._namespaces.get(namespace)
            if ns is None:
                ns = self._new_namespace()
                self._namespaces[namespace] = ns

            replaced = [ns.id_to_idx[r.id] for r in records if r.id in ns.id_to_idx]
            if replaced:
                ns.index.remove_ids(np.array(replaced, dtype=np.int64))
                for idx in replaced:
                    ns.idx_to_id.pop(idx, None)

            ids = np.arange(ns.next_idx, ns.next_idx + len(records), dtype=np.int64)
            ns.index.add_with_ids(matrix, ids)
            for record, idx in zip(records, ids):
                ns.id_to_idx[record.id] = int(idx)
                ns.idx_to_id[int(idx)] = record.id
                ns.metadata[record.id] = dict(record.metadata)
            ns.next_idx += len(records)

        return len(records)

    async def query(
        self,
        namespace: str,
        vector: Sequence[float],
        top_k: int = 10,
        filter: Optional[dict[str, Any]] = None,
    ) -> list[VectorMatch]:
        validate_filter(filter)
        query = self._prepare([vector])

        async with self._lock:
            ns = self._namespaces.get(namespace)
            if ns is None or ns.index.ntotal == 0:
                return []
            # Filtering happens after search, so search everything when filtered
            k = ns.index.ntotal if filter else min(top_k, ns.index.ntotal)
            scores, indices = ns.index.search(query, k)

            matches: list[VectorMatch] = []
            for score, idx in zip(scores[0], indices[0]):
                if idx < 0:
                    continue
                record_id = ns.idx_to_id.get(int(idx))
                if record_id is None:
                    continue
                metadata = ns.metadata.get(record_id, {})
                if not matches_filter(metadata, filter):
                    continue
                matches.append(
                    VectorMatch(id=record_id, score=float(score), metadata=dict(metadata))
                )
                if len(matches) >= top_k:
                    break
            return matches

    async def delete(self, namespace: str, ids: Sequence[str]) -> int:
        async with self._lock:
            ns = self._namespaces.get(namespace)
            if ns is None:
                return 0
            idxs = [ns.id_to_idx.pop(i) for i in ids if i in ns.id_to_idx]
            if not idxs:
                return 0
            ns.index.remove_ids(np.array(idxs, dtype=np.int64))
            for idx in idxs:
                record_id = ns.idx_to_id.pop(idx)
                ns.metadata.pop(record_id, None)
            return len(idxs)

    async def delete_namespace(self, namespace: str) -> int:
        async with self._lock:
            ns = self._namespaces.pop(namespace, None)
            if ns is None:
                return 0
            count = int(ns.index.ntotal)
            logger.debug(f"[FAISS] Dropped namespace {namespace} ({count} vectors)")
            return count

    async def describe_index_stats(self) -> dict[str, Any]:
        async with self._lock:
            namespaces = {
                name: {"vector_count": int(ns.index.ntotal)}
                for name, ns in self._namespaces.items()
            }
        return {
            "dimension": self.dimensions,
            "total_vector_count": sum(n["vector_count"] for n in namespaces.values()),
            "namespaces": namespaces,
        }


__all__ = ["FaissVectorIndex"]
