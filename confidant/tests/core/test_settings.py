"""Tests for settings, logging setup and the exception hierarchy."""

import logging

import pytest
from pydantic import ValidationError

from confidant.config.settings import (
    ConfidantSettings,
    EmbeddingSettings,
    VectorStoreSettings,
    clear_settings_cache,
    get_settings,
    reload_settings,
)
from confidant.core.exceptions import (
    CircuitOpenError,
    ConfidantError,
    DependencyError,
    EmbeddingError,
    InputValidationError,
    MemoryWriteError,
    RetryExhaustedError,
)
from confidant.core.logging_config import configure_logging


@pytest.fixture(autouse=True)
def _fresh_settings():
    clear_settings_cache()
    yield
    clear_settings_cache()


class TestSettingsDefaults:
    """Tests for default values."""

    def test_operational_defaults(self):
        """Test the documented tuning defaults."""
        settings = ConfidantSettings()

        assert settings.embedding.dimensions == 1536
        assert settings.embedding.max_input_chars == 8000
        assert settings.extraction.max_memories_per_turn == 3
        assert settings.vector_store.duplicate_threshold == 0.9
        assert settings.retrieval.limit == 15
        assert settings.retrieval.min_importance == 3
        assert settings.retrieval.min_score == 0.7
        assert settings.lifecycle.max_memories_per_user == 5000

    def test_circuit_defaults_per_dependency(self):
        """Test per-dependency circuit thresholds."""
        reliability = ConfidantSettings().reliability

        assert reliability.embedding.failure_threshold == 3
        assert reliability.extraction.recovery_timeout == 120.0
        assert reliability.vector_store.failure_threshold == 7


class TestSettingsEnvironment:
    """Tests for environment variable loading."""

    def test_nested_override(self, monkeypatch):
        """Test double-underscore nested overrides."""
        monkeypatch.setenv("CONFIDANT_RETRIEVAL__MIN_SCORE", "0.6")
        monkeypatch.setenv("CONFIDANT_LIFECYCLE__MAX_MEMORIES_PER_USER", "200")

        settings = ConfidantSettings()

        assert settings.retrieval.min_score == 0.6
        assert settings.lifecycle.max_memories_per_user == 200

    def test_api_keys_use_standard_names(self, monkeypatch):
        """Test that API keys are read without the prefix and masked on export."""
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-test")

        settings = ConfidantSettings()

        assert settings.api_keys.anthropic_api_key == "sk-ant-test"
        assert settings.to_dict()["api_keys"]["anthropic_api_key"] == "***MASKED***"

    def test_singleton_and_reload(self, monkeypatch):
        """Test caching and reloading of settings."""
        first = get_settings()
        assert get_settings() is first

        monkeypatch.setenv("CONFIDANT_DEBUG", "true")
        reloaded = reload_settings()

        assert reloaded is not first
        assert reloaded.debug is True


class TestSettingsValidation:
    """Tests for field validators."""

    def test_log_level_normalized(self):
        assert ConfidantSettings(log_level="warning").log_level == "WARNING"

    def test_invalid_log_level(self):
        with pytest.raises(ValidationError):
            ConfidantSettings(log_level="LOUD")

    def test_invalid_environment(self):
        with pytest.raises(ValidationError):
            ConfidantSettings(environment="moon")

    def test_invalid_backends(self):
        """Test provider and backend validation."""
        with pytest.raises(ValidationError):
            EmbeddingSettings(provider="word2vec")
        with pytest.raises(ValidationError):
            VectorStoreSettings(backend="weaviate")


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_debug_forces_debug_level(self):
        assert configure_logging(ConfidantSettings(debug=True)) == logging.DEBUG

    def test_noisy_loggers_capped(self):
        """Test that HTTP client loggers are capped outside debug mode."""
        level = configure_logging(ConfidantSettings(log_level="INFO"))

        assert level == logging.INFO
        assert logging.getLogger("httpx").level == logging.WARNING


class TestExceptions:
    """Tests for the exception hierarchy."""

    def test_to_log_dict(self):
        """Test structured logging output."""
        error = MemoryWriteError("disk full", memory_id="m1", user_id="u1")

        data = error.to_log_dict()

        assert data["error_type"] == "MemoryWriteError"
        assert data["error_code"] == "MEMORY_WRITE_ERROR"
        assert data["context"] == {"memory_id": "m1", "user_id": "u1"}
        assert str(error) == "[MEMORY_WRITE_ERROR] disk full"

    def test_dependency_errors_are_recoverable(self):
        """Test that dependency failures are flagged recoverable."""
        for error in (
            CircuitOpenError("embedding"),
            RetryExhaustedError(3, ConnectionError("x")),
            EmbeddingError("bad vector"),
        ):
            assert isinstance(error, DependencyError)
            assert error.recoverable

    def test_input_validation_error_is_value_error(self):
        """Test that validation errors can be caught as ValueError."""
        error = InputValidationError("empty", field="text")

        assert isinstance(error, ValueError)
        assert isinstance(error, ConfidantError)
        assert error.context == {"field": "text"}
