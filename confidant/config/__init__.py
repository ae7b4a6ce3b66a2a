"""Configuration module for the Confidant memory engine.

This module provides centralized configuration management using Pydantic
for validation and type safety. It includes:
- Environment-based settings with .env support
- Schema definitions for memories and engine reports

Usage:
    from confidant.config import get_settings, ConfidantSettings

    settings = get_settings()
    print(settings.retrieval.min_score)
    print(settings.reliability.embedding.failure_threshold)
"""

from confidant.config.settings import (
    # Main settings class
    ConfidantSettings,
    # Nested settings classes
    EmbeddingSettings,
    ExtractionSettings,
    VectorStoreSettings,
    RetrievalSettings,
    LifecycleSettings,
    CircuitSettings,
    ReliabilitySettings,
    APIKeySettings,
    # Singleton functions
    get_settings,
    reload_settings,
    clear_settings_cache,
)

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
]
