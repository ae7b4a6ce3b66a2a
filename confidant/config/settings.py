"""Pydantic settings for the Confidant memory engine.

This module defines the main ConfidantSettings class that loads configuration
from environment variables and .env files. It uses pydantic-settings for
automatic environment variable parsing and validation.

Settings Categories:
    - Core: Engine-level settings (debug mode, log level, environment)
    - Embedding: Provider, model, input limits and batching
    - Extraction: LLM model and memory candidate validation limits
    - Vector Store: Backend, duplicate suppression and upsert batching
    - Retrieval: Search defaults, fallbacks and warm cache
    - Lifecycle: Per-user caps, pruning, conflict and importance rules
    - Reliability: Backoff and per-dependency circuit breakers
    - API Keys: External service credentials

Environment Variables:
    CONFIDANT_DEBUG: Enable debug mode (default: false)
    CONFIDANT_LOG_LEVEL: Logging level (default: INFO)
    CONFIDANT_EMBEDDING__PROVIDER: 'openai' or 'hashing' (default: openai)
    CONFIDANT_VECTOR_STORE__BACKEND: 'faiss' or 'memory' (default: faiss)
    CONFIDANT_LIFECYCLE__MAX_MEMORIES_PER_USER: Per-user cap (default: 5000)
    CONFIDANT_RELIABILITY__EMBEDDING__FAILURE_THRESHOLD: Breaker threshold
    OPENAI_API_KEY: API key for OpenAI embeddings
    ANTHROPIC_API_KEY: API key for the Anthropic extraction model

Usage:
    from confidant.config.settings import get_settings

    settings = get_settings()
    print(settings.embedding.model)
    print(settings.lifecycle.max_memories_per_user)
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# =============================================================================
# Default Constants
# =============================================================================

DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"
"""Default embedding model."""

DEFAULT_EMBEDDING_DIMENSIONS = 1536
"""Output dimensionality of the default embedding model."""

DEFAULT_EXTRACTION_MODEL = "claude-3-5-haiku-latest"
"""Default model used to extract memories from chat turns."""


# =============================================================================
# Nested Settings Models
# =============================================================================


class EmbeddingSettings(BaseModel):
    """Settings for the embedding service.

    Attributes:
        provider: Embedding provider ('openai', 'hashing').
        model: Provider model identifier.
        dimensions: Length of produced vectors.
        max_input_chars: Input is truncated to this many characters.
        max_attempts: Attempts per embed call before giving up.
        batch_size: Texts embedded concurrently per batch.
        batch_delay: Seconds to pause between batches.

    Provider Types:
        - 'openai': OpenAI embeddings API (requires OPENAI_API_KEY).
        - 'hashing': Deterministic local hashing embedder. No network,
            no semantic understanding; for development and tests.
    """

    provider: str = Field(
        default="openai",
        description="Embedding provider: 'openai' or 'hashing'"
    )
    model: str = Field(
        default=DEFAULT_EMBEDDING_MODEL,
        description="Embedding model identifier"
    )
    dimensions: int = Field(
        default=DEFAULT_EMBEDDING_DIMENSIONS,
        ge=1,
        description="Embedding vector length"
    )
    max_input_chars: int = Field(
        default=8000,
        ge=1,
        description="Maximum characters sent to the provider"
    )
    max_attempts: int = Field(
        default=3,
        ge=1,
        description="Attempts per embedding call"
    )
    batch_size: int = Field(
        default=10,
        ge=1,
        description="Texts embedded concurrently per batch"
    )
    batch_delay: float = Field(
        default=1.0,
        ge=0.0,
        description="Pause between batches in seconds"
    )

    @field_validator("provider")
    @classmethod
    def validate_provider(cls, v: str) -> str:
        """Validate embedding provider type."""
        valid_providers = {"openai", "hashing"}
        normalized = v.lower().strip()
        if normalized not in valid_providers:
            raise ValueError(
                f"Invalid embedding provider '{v}'. Must be one of: {', '.join(sorted(valid_providers))}"
            )
        return normalized


class ExtractionSettings(BaseModel):
    """Settings for memory extraction.

    Attributes:
        model: LLM used to propose memories.
        temperature: Sampling temperature for extraction.
        max_tokens: Completion token limit for extraction.
        max_attempts: Attempts per extraction call.
        max_memories_per_turn: Cap on candidates accepted from one turn.
        min_message_length: User messages at or below this length are skipped.
        min_content_length: Minimum characters in a candidate's content.
        max_tags: Maximum tags kept per candidate.
        context_messages: Prior conversation messages included in the prompt.
    """

    model: str = Field(
        default=DEFAULT_EXTRACTION_MODEL,
        description="Extraction model identifier"
    )
    temperature: float = Field(
        default=0.1,
        ge=0.0,
        le=2.0,
        description="Sampling temperature"
    )
    max_tokens: int = Field(
        default=800,
        ge=1,
        description="Maximum tokens for the extraction completion"
    )
    max_attempts: int = Field(
        default=3,
        ge=1,
        description="Attempts per extraction call"
    )
    max_memories_per_turn: int = Field(
        default=3,
        ge=1,
        description="Maximum memories accepted per chat turn"
    )
    min_message_length: int = Field(
        default=20,
        ge=0,
        description="Minimum user message length considered for extraction"
    )
    min_content_length: int = Field(
        default=10,
        ge=1,
        description="Minimum memory content length"
    )
    max_tags: int = Field(
        default=5,
        ge=0,
        description="Maximum tags per memory"
    )
    context_messages: int = Field(
        default=3,
        ge=0,
        description="Prior messages included as context"
    )


class VectorStoreSettings(BaseModel):
    """Settings for the vector store gateway.

    Attributes:
        backend: Vector index backend ('faiss', 'memory', 'pinecone').
        index_name: Name of the hosted index (pinecone backend only).
        namespace_prefix: Prefix of per-user namespaces.
        duplicate_threshold: Cosine similarity at which a write is a duplicate.
        duplicate_top_k: Neighbours inspected by the duplicate check.
        metadata_content_limit: Characters of content kept in vector metadata.
        upsert_attempts: Attempts per upsert.
        batch_size: Memories stored concurrently per batch.
        batch_delay: Seconds to pause between batches.
        serialize_writes: Hold a per-user lock across dedup check and upsert.

    Vector Backend Types:
        - 'faiss': FAISS inner-product index per namespace (default).
        - 'memory': In-memory brute-force search for testing.
        - 'pinecone': Hosted Pinecone index, one namespace per user.
    """

    backend: str = Field(
        default="faiss",
        description="Vector backend: 'faiss', 'memory' or 'pinecone'"
    )
    index_name: str = Field(
        default="confidant-memories",
        min_length=1,
        description="Hosted index name"
    )
    namespace_prefix: str = Field(
        default="user_",
        min_length=1,
        description="Prefix for per-user namespaces"
    )
    duplicate_threshold: float = Field(
        default=0.9,
        ge=0.0,
        le=1.0,
        description="Similarity treated as a duplicate"
    )
    duplicate_top_k: int = Field(
        default=3,
        ge=1,
        description="Neighbours checked for duplicates"
    )
    metadata_content_limit: int = Field(
        default=1000,
        ge=1,
        description="Content characters stored in metadata"
    )
    upsert_attempts: int = Field(
        default=3,
        ge=1,
        description="Attempts per upsert"
    )
    batch_size: int = Field(
        default=5,
        ge=1,
        description="Memories stored concurrently per batch"
    )
    batch_delay: float = Field(
        default=2.0,
        ge=0.0,
        description="Pause between batches in seconds"
    )
    serialize_writes: bool = Field(
        default=False,
        description="Serialize dedup check and upsert per user"
    )

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        """Validate vector backend type."""
        valid_backends = {"faiss", "memory", "pinecone"}
        normalized = v.lower().strip()
        if normalized not in valid_backends:
            raise ValueError(
                f"Invalid vector backend '{v}'. Must be one of: {', '.join(sorted(valid_backends))}"
            )
        return normalized


class RetrievalSettings(BaseModel):
    """Settings for memory retrieval.

    Attributes:
        limit: Default number of memories returned.
        min_importance: Default importance floor.
        min_score: Default similarity floor for vector results.
        max_top_k: Upper bound on neighbours requested from the index.
        max_query_terms: Terms used by the keyword fallback.
        min_term_length: Terms shorter than this are ignored.
        recent_min_importance: Importance floor of the recent fallback.
        recent_limit: Cap of the recent fallback.
        cache_ttl: Seconds a prefetched memory set stays warm.
        prefetch_limit: Memories prefetched per user.
        prefetch_min_importance: Importance floor for prefetching.
    """

    limit: int = Field(default=15, ge=1, description="Default result limit")
    min_importance: int = Field(
        default=3, ge=1, le=10, description="Default importance floor"
    )
    min_score: float = Field(
        default=0.7, ge=-1.0, le=1.0, description="Default similarity floor"
    )
    max_top_k: int = Field(default=20, ge=1, description="Maximum index top_k")
    max_query_terms: int = Field(
        default=5, ge=1, description="Keyword fallback terms"
    )
    min_term_length: int = Field(
        default=3, ge=1, description="Minimum keyword length"
    )
    recent_min_importance: int = Field(
        default=5, ge=1, le=10, description="Recent fallback importance floor"
    )
    recent_limit: int = Field(default=5, ge=1, description="Recent fallback cap")
    cache_ttl: int = Field(
        default=86400, ge=0, description="Warm cache TTL in seconds"
    )
    prefetch_limit: int = Field(
        default=50, ge=1, description="Memories prefetched per user"
    )
    prefetch_min_importance: int = Field(
        default=5, ge=1, le=10, description="Prefetch importance floor"
    )


class LifecycleSettings(BaseModel):
    """Settings for memory lifecycle management.

    Attributes:
        max_memories_per_user: Hard cap of visible memories per user.
        soft_limit_ratio: Fraction of the cap at which routine pruning starts.
        soft_prune_batch: Memories pruned when over the soft limit.
        hard_prune_batch: Memories pruned when at or over the cap.
        low_importance_threshold: Importance at or below which memories age out.
        low_importance_retention_days: Age after which low-importance memories
            become prunable.
        max_age_days: Age after which any memory becomes prunable.
        conflict_similarity_threshold: Jaccard similarity above which two
            memories are considered duplicates.
        promote_access_count: Accesses that earn an importance bump.
        demote_after_days: Age at which never-accessed memories lose importance.
    """

    max_memories_per_user: int = Field(default=5000, ge=1)
    soft_limit_ratio: float = Field(default=0.8, gt=0.0, le=1.0)
    soft_prune_batch: int = Field(default=100, ge=1)
    hard_prune_batch: int = Field(default=500, ge=1)
    low_importance_threshold: int = Field(default=3, ge=1, le=10)
    low_importance_retention_days: int = Field(default=90, ge=0)
    max_age_days: int = Field(default=365, ge=0)
    conflict_similarity_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    promote_access_count: int = Field(default=5, ge=1)
    demote_after_days: int = Field(default=30, ge=0)


class CircuitSettings(BaseModel):
    """Settings for one circuit breaker.

    Attributes:
        failure_threshold: Consecutive failures that open the circuit.
        recovery_timeout: Seconds before an open circuit allows a probe.
        success_threshold: Probe successes needed to close the circuit.
        monitoring_window: Window used when reporting failure rates.
    """

    failure_threshold: int = Field(default=5, ge=1)
    recovery_timeout: float = Field(default=60.0, ge=0.0)
    success_threshold: int = Field(default=3, ge=1)
    monitoring_window: float = Field(default=300.0, ge=0.0)


class ReliabilitySettings(BaseModel):
    """Settings for retries and circuit breakers.

    Attributes:
        backoff_initial_delay: First retry delay in seconds.
        backoff_max_delay: Upper bound on any retry delay.
        backoff_factor: Multiplier applied per attempt.
        backoff_jitter: Randomize delays into [50%, 100%] of nominal.
        embedding: Circuit for the embedding provider.
        extraction: Circuit for the extraction LLM.
        vector_store: Circuit for the vector index.
    """

    backoff_initial_delay: float = Field(default=1.0, ge=0.0)
    backoff_max_delay: float = Field(default=30.0, ge=0.0)
    backoff_factor: float = Field(default=2.0, ge=1.0)
    backoff_jitter: bool = Field(default=True)

    embedding: CircuitSettings = Field(
        default_factory=lambda: CircuitSettings(
            failure_threshold=3, recovery_timeout=30.0, success_threshold=2,
            monitoring_window=180.0,
        ),
        description="Embedding provider circuit"
    )
    extraction: CircuitSettings = Field(
        default_factory=lambda: CircuitSettings(
            failure_threshold=10, recovery_timeout=120.0, success_threshold=3,
            monitoring_window=600.0,
        ),
        description="Extraction LLM circuit"
    )
    vector_store: CircuitSettings = Field(
        default_factory=lambda: CircuitSettings(
            failure_threshold=7, recovery_timeout=90.0, success_threshold=2,
            monitoring_window=300.0,
        ),
        description="Vector index circuit"
    )


class APIKeySettings(BaseSettings):
    """Settings for external API keys.

    These are loaded WITHOUT a prefix since they use standard env var names.

    Attributes:
        openai_api_key: API key for OpenAI embeddings.
        anthropic_api_key: API key for the Anthropic extraction model.
        pinecone_api_key: API key for the Pinecone vector backend.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    openai_api_key: Optional[str] = Field(
        default=None,
        description="OpenAI API key"
    )
    anthropic_api_key: Optional[str] = Field(
        default=None,
        description="Anthropic API key"
    )
    pinecone_api_key: Optional[str] = Field(
        default=None,
        description="Pinecone API key"
    )


# =============================================================================
# Main Settings Class
# =============================================================================


class ConfidantSettings(BaseSettings):
    """Main settings class for the memory engine.

    Environment variables use the CONFIDANT_ prefix (except for API keys
    which use standard names like OPENAI_API_KEY). Nested groups are set
    with a double underscore, e.g. CONFIDANT_RETRIEVAL__MIN_SCORE=0.6.

    Attributes:
        debug: Enable debug mode for verbose logging.
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        environment: Deployment environment.
        embedding: Embedding service configuration.
        extraction: Extraction engine configuration.
        vector_store: Vector store gateway configuration.
        retrieval: Retrieval engine configuration.
        lifecycle: Lifecycle manager configuration.
        reliability: Retry and circuit breaker configuration.
        api_keys: External API credentials.
    """

    model_config = SettingsConfigDict(
        env_prefix="CONFIDANT_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )

    # Core settings
    debug: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )
    environment: str = Field(
        default="development",
        description="Deployment environment"
    )

    # Nested configuration groups
    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    extraction: ExtractionSettings = Field(default_factory=ExtractionSettings)
    vector_store: VectorStoreSettings = Field(default_factory=VectorStoreSettings)
    retrieval: RetrievalSettings = Field(default_factory=RetrievalSettings)
    lifecycle: LifecycleSettings = Field(default_factory=LifecycleSettings)
    reliability: ReliabilitySettings = Field(default_factory=ReliabilitySettings)

    # API keys (loaded separately without prefix)
    api_keys: APIKeySettings = Field(
        default_factory=APIKeySettings,
        description="API key configuration"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize log level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        normalized = v.upper()
        if normalized not in valid_levels:
            raise ValueError(
                f"Invalid log level '{v}'. Must be one of: {', '.join(sorted(valid_levels))}"
            )
        return normalized

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate and normalize environment."""
        valid_envs = {"development", "staging", "production", "test"}
        normalized = v.lower()
        if normalized not in valid_envs:
            raise ValueError(
                f"Invalid environment '{v}'. Must be one of: {', '.join(sorted(valid_envs))}"
            )
        return normalized

    def to_dict(self) -> dict[str, Any]:
        """Export settings as a dictionary with API keys masked."""
        data = self.model_dump()
        if "api_keys" in data:
            for key in data["api_keys"]:
                if data["api_keys"][key]:
                    data["api_keys"][key] = "***MASKED***"
        return data


# =============================================================================
# Singleton Pattern
# =============================================================================

_settings_instance: Optional[ConfidantSettings] = None


def get_settings() -> ConfidantSettings:
    """Get the cached settings instance.

    Settings are created once and cached for subsequent calls to avoid
    repeated .env parsing and validation.

    Returns:
        The cached ConfidantSettings instance.
    """
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = ConfidantSettings()
    return _settings_instance


def reload_settings() -> ConfidantSettings:
    """Reload settings from environment, clearing the cache.

    Returns:
        A fresh ConfidantSettings instance.
    """
    global _settings_instance
    _settings_instance = ConfidantSettings()
    return _settings_instance


def clear_settings_cache() -> None:
    """Clear the cached settings instance."""
    global _settings_instance
    _settings_instance = None


__all__ = [
    "ConfidantSettings",
    "EmbeddingSettings",
    "ExtractionSettings",
    "VectorStoreSettings",
    "RetrievalSettings",
    "LifecycleSettings",
    "CircuitSettings",
    "ReliabilitySettings",
    "APIKeySettings",
    "get_settings",
    "reload_settings",
    "clear_settings_cache",
    "DEFAULT_EMBEDDING_MODEL",
    "DEFAULT_EMBEDDING_DIMENSIONS",
    "DEFAULT_EXTRACTION_MODEL",
]
