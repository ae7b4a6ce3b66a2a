"""Embedding service: text to fixed-length vectors.

This module wraps an embedding provider with input normalization, retries
and a circuit breaker, and provides the cosine similarity used across the
engine.

Protocols:
    EmbeddingProvider: Raw provider call (``embed(text) -> list[float]``).

Classes:
    OpenAIEmbeddingProvider: OpenAI embeddings API.
    HashingEmbeddingProvider: Deterministic local embedder for development.
    EmbeddingService: Normalizing, retrying, circuit-broken embedder.

Functions:
    cosine_similarity: Cosine of two equal-length vectors.
    build_embedding_provider: Provider selected by settings.

Example:
    >>> service = EmbeddingService(OpenAIEmbeddingProvider(api_key=key))
    >>> vector = await service.embed("User loves hiking on weekends")
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import math
import re
from typing import Optional, Protocol, Sequence, runtime_checkable

import numpy as np
from openai import AsyncOpenAI

from confidant.config.settings import ConfidantSettings, EmbeddingSettings
from confidant.core.exceptions import (
    ConfigurationError,
    EmbeddingError,
    InputValidationError,
    RetryExhaustedError,
)
from confidant.core.reliability.circuit_breaker import CircuitBreaker
from confidant.core.reliability.registry import EMBEDDING
from confidant.core.reliability.retry import ExponentialBackoff, retry_with_backoff

logger = logging.getLogger(__name__)

HEALTH_PROBE_TEXT = "Health check: the quick brown fox jumps over the lazy dog."


# =============================================================================
# Similarity
# =============================================================================


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors.

    Args:
        a: First vector.
        b: Second vector, same length as ``a``.

    Returns:
        Similarity in [-1, 1]; 0.0 when either vector has zero magnitude.

    Raises:
        InputValidationError: If the vectors differ in length.
    """
    if len(a) != len(b):
        raise InputValidationError(
            f"Vectors must have the same length ({len(a)} != {len(b)})",
            field="vector",
        )
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm_a = float(np.linalg.norm(va))
    norm_b = float(np.linalg.norm(vb))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    similarity = float(np.dot(va, vb) / (norm_a * norm_b))
    return max(-1.0, min(1.0, similarity))


# =============================================================================
# Providers
# =============================================================================


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Raw embedding provider."""

    dimensions: int

    async def embed(self, text: str) -> list[float]:
        """Return the embedding of ``text``."""
        ...


class OpenAIEmbeddingProvider:
    """Embedding provider backed by ``openai.AsyncOpenAI``."""

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        dimensions: int = 1536,
        api_key: Optional[str] = None,
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        if client is None and not api_key:
            raise ConfigurationError(
                "OPENAI_API_KEY is required for the 'openai' embedding provider",
                config_key="api_keys.openai_api_key",
            )
        self.model = model
        self.dimensions = dimensions
        self._client = client or AsyncOpenAI(api_key=api_key)

    async def embed(self, text: str) -> list[float]:
        response = await self._client.embeddings.create(
            model=self.model,
            input=text,
            encoding_format="float",
        )
        if not response.data:
            raise EmbeddingError(f"No embedding returned by {self.model}")
        return list(response.data[0].embedding)


class HashingEmbeddingProvider:
    """Deterministic bag-of-words embedder using feature hashing.

    Each lowercase word token is hashed into one of ``dimensions`` buckets
    with a hashed sign, and the resulting count vector is L2-normalized.
    Identical texts always produce identical vectors and texts sharing
    words are similar, which is enough for local development and tests.
    It has no notion of synonyms or meaning.
    """

    _TOKEN_RE = re.compile(r"[a-z0-9']+")

    def __init__(self, dimensions: int = 256) -> None:
        self.dimensions = dimensions

    def _bucket(self, token: str) -> tuple[int, float]:
        digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
        value = int.from_bytes(digest, "big")
        sign = 1.0 if value & 1 else -1.0
        return (value >> 1) % self.dimensions, sign

    async def embed(self, text: str) -> list[float]:
        vec = np.zeros(self.dimensions, dtype=np.float64)
        for token in self._TOKEN_RE.findall(text.lower()):
            idx, sign = self._bucket(token)
            vec[idx] += sign
        norm = np.linalg.norm(vec)
        if norm > 0:
            vec /= norm
        return vec.tolist()


def build_embedding_provider(settings: ConfidantSettings) -> EmbeddingProvider:
    """Create the embedding provider named by ``settings.embedding.provider``."""
    config = settings.embedding
    if config.provider == "hashing":
        return HashingEmbeddingProvider(dimensions=config.dimensions)
    return OpenAIEmbeddingProvider(
        model=config.model,
        dimensions=config.dimensions,
        api_key=settings.api_keys.openai_api_key,
    )


# =============================================================================
# Embedding Service
# =============================================================================


class EmbeddingService:
    """Normalizing, retrying, circuit-broken embedder.

    Attributes:
        provider: Underlying embedding provider.
        breaker: Circuit breaker for the embedding dependency.
        settings: Embedding settings (limits, attempts, batching).
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        breaker: Optional[CircuitBreaker] = None,
        backoff: Optional[ExponentialBackoff] = None,
        settings: Optional[EmbeddingSettings] = None,
    ) -> None:
        self.provider = provider
        self.breaker = breaker or CircuitBreaker(EMBEDDING)
        self.backoff = backoff or ExponentialBackoff(max_delay=10.0)
        self.settings = settings or EmbeddingSettings(dimensions=provider.dimensions)

    @property
    def dimensions(self) -> int:
        return self.provider.dimensions

    def normalize_text(self, text: str) -> str:
        """Collapse whitespace and truncate to the provider input limit.

        Raises:
            InputValidationError: If nothing remains after normalization.
        """
        if not isinstance(text, str):
            raise InputValidationError("Text to embed must be a string", field="text")
        normalized = " ".join(text.split())[: self.settings.max_input_chars]
        if not normalized:
            raise InputValidationError("Cannot embed empty text", field="text")
        return normalized

    async def _embed_once(self, text: str) -> list[float]:
        values = await self.provider.embed(text)
        if not values:
            raise EmbeddingError("Provider returned an empty embedding")
        if len(values) != self.dimensions:
            raise EmbeddingError(
                f"Provider returned {len(values)} dimensions, expected {self.dimensions}"
            )
        if not all(isinstance(v, (int, float)) and math.isfinite(v) for v in values):
            raise EmbeddingError("Provider returned non-numeric embedding values")
        return [float(v) for v in values]

    async def embed(self, text: str) -> list[float]:
        """Embed one text.

        Args:
            text: Text to embed. Whitespace is collapsed and the text is
                truncated to ``max_input_chars``.

        Returns:
            The embedding vector.

        Raises:
            InputValidationError: If the text is empty after normalization.
            CircuitOpenError: If the embedding circuit is open.
            EmbeddingError: If every attempt failed.
        """
        normalized = self.normalize_text(text)

        async def attempt() -> list[float]:
            return await retry_with_backoff(
                lambda: self._embed_once(normalized),
                max_attempts=self.settings.max_attempts,
                backoff=self.backoff,
                operation_name="embed",
            )

        try:
            return await self.breaker.execute(attempt)
        except RetryExhaustedError as e:
            raise EmbeddingError(
                f"Embedding failed after {e.attempts} attempts: {e.last_error}"
            ) from e

    async def embed_batch(
        self,
        texts: Sequence[str],
        batch_size: Optional[int] = None,
    ) -> list[list[float]]:
        """Embed many texts, dropping the ones that fail.

        Texts are embedded concurrently within a batch, with
        ``batch_delay`` seconds between batches.

        Args:
            texts: Texts to embed.
            batch_size: Texts per batch; defaults to settings.

        Returns:
            Vectors of the texts that succeeded, in input order.
        """
        size = batch_size or self.settings.batch_size
        vectors: list[list[float]] = []
        failed = 0

        for start in range(0, len(texts), size):
            batch = texts[start:start + size]
            results = await asyncio.gather(
                *(self.embed(text) for text in batch), return_exceptions=True
            )
            for offset, result in enumerate(results):
                if isinstance(result, BaseException):
                    failed += 1
                    logger.warning(
                        f"[Embedding] Batch item {start + offset} failed: {result}"
                    )
                else:
                    vectors.append(result)
            if start + size < len(texts) and self.settings.batch_delay > 0:
                await asyncio.sleep(self.settings.batch_delay)

        if failed:
            logger.warning(f"[Embedding] {failed}/{len(texts)} batch embeddings failed")
        return vectors

    async def health_check(self) -> bool:
        """Embed a fixed probe sentence; True if it succeeds."""
        try:
            await self.embed(HEALTH_PROBE_TEXT)
            return True
        except Exception as e:
            logger.warning(f"[Embedding] Health check failed: {e}")
            return False


__all__ = [
    "HEALTH_PROBE_TEXT",
    "cosine_similarity",
    "EmbeddingProvider",
    "OpenAIEmbeddingProvider",
    "HashingEmbeddingProvider",
    "build_embedding_provider",
    "EmbeddingService",
]
