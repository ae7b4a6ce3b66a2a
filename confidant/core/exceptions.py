"""Custom exceptions for the Confidant memory engine.

This module defines the exception hierarchy used throughout Confidant. All
exceptions inherit from ConfidantError, enabling catch-all handling while
still allowing specific exception types.

Exception Hierarchy:
    ConfidantError (base)
    ├── ConfigurationError: Invalid configuration or settings
    ├── InputValidationError: Caller supplied invalid input (never retried)
    ├── DependencyError: An external AI or vector service failed
    │   ├── CircuitOpenError: Circuit breaker is blocking calls
    │   ├── RetryExhaustedError: All retry attempts failed
    │   ├── EmbeddingError: Embedding provider failure
    │   ├── ExtractionError: Memory extraction LLM failure
    │   └── VectorStoreError: Vector index failure
    └── MemoryStoreError: Relational memory store failures
        ├── MemoryWriteError: Failed to write a memory row
        └── MemoryRetrievalError: Failed to read memory rows

Features:
    - Error codes for programmatic handling
    - Context information included in each exception
    - Recoverable flag distinguishing transient from permanent failures
    - Structured logging support via to_log_dict method
"""

from typing import Any, Optional


class ConfidantError(Exception):
    """Base exception for all Confidant errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        context: Additional context information about the error
        recoverable: Whether the error is potentially recoverable
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "CONFIDANT_ERROR"
        self.context = context or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def to_log_dict(self) -> dict[str, Any]:
        """Return structured dict for logging.

        Returns:
            Dictionary with error details suitable for structured logging
        """
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.code,
            "message": self.message,
            "recoverable": self.recoverable,
            "context": self.context,
        }


class ConfigurationError(ConfidantError):
    """Raised when configuration is invalid or missing.

    Attributes:
        config_key: The configuration key that caused the error
    """

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.pop("context", {}) or {}
        if config_key:
            context["config_key"] = config_key
        super().__init__(message, code="CONFIG_ERROR", context=context, **kwargs)
        self.config_key = config_key


class InputValidationError(ConfidantError, ValueError):
    """Raised when a caller supplies invalid input.

    Validation failures are permanent: the retry helpers re-raise them
    immediately instead of spending attempts on them.

    Attributes:
        field: Name of the offending input, if known
    """

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.pop("context", {}) or {}
        if field:
            context["field"] = field
        super().__init__(message, code="INVALID_INPUT", context=context, **kwargs)
        self.field = field


# =============================================================================
# Dependency Errors
# =============================================================================


class DependencyError(ConfidantError):
    """Base class for failures of external AI and vector services.

    Attributes:
        service: Name of the dependency that failed
    """

    def __init__(
        self,
        message: str,
        service: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.pop("context", {}) or {}
        if service:
            context["service"] = service
        code = kwargs.pop("code", None) or "DEPENDENCY_ERROR"
        recoverable = kwargs.pop("recoverable", True)
        super().__init__(
            message, code=code, context=context, recoverable=recoverable, **kwargs
        )
        self.service = service


class CircuitOpenError(DependencyError):
    """Raised when a circuit is open and no fallback was supplied."""

    def __init__(self, service: str, message: str = "") -> None:
        super().__init__(
            message or f"Service unavailable - circuit '{service}' is OPEN",
            service=service,
            code="CIRCUIT_OPEN",
        )


class RetryExhaustedError(DependencyError):
    """Raised when an operation failed on every retry attempt.

    The last underlying error is chained as ``__cause__``.

    Attributes:
        attempts: Number of attempts made
        last_error: The exception raised by the final attempt
    """

    def __init__(
        self,
        attempts: int,
        last_error: Optional[BaseException] = None,
        operation: Optional[str] = None,
    ) -> None:
        label = operation or "operation"
        detail = f": {last_error}" if last_error else ""
        super().__init__(
            f"{label} failed after {attempts} attempts{detail}",
            code="RETRY_EXHAUSTED",
            context={"attempts": attempts, "operation": label},
        )
        self.attempts = attempts
        self.last_error = last_error


class EmbeddingError(DependencyError):
    """Raised when text could not be converted into an embedding."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("code", "EMBEDDING_ERROR")
        super().__init__(message, service="embedding", **kwargs)


class ExtractionError(DependencyError):
    """Raised when the extraction LLM call fails."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("code", "EXTRACTION_ERROR")
        super().__init__(message, service="extraction", **kwargs)


class VectorStoreError(DependencyError):
    """Raised when the vector index rejects or fails an operation."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("code", "VECTOR_STORE_ERROR")
        super().__init__(message, service="vector_store", **kwargs)


# =============================================================================
# Relational Store Errors
# =============================================================================


class MemoryStoreError(ConfidantError):
    """Base class for relational memory store failures.

    Attributes:
        memory_id: ID of the memory involved, if any
        user_id: Owner of the memory involved, if any
    """

    def __init__(
        self,
        message: str,
        memory_id: Optional[str] = None,
        user_id: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.pop("context", {}) or {}
        if memory_id:
            context["memory_id"] = memory_id
        if user_id:
            context["user_id"] = user_id
        code = kwargs.pop("code", None) or "MEMORY_STORE_ERROR"
        super().__init__(message, code=code, context=context, **kwargs)
        self.memory_id = memory_id
        self.user_id = user_id


class MemoryWriteError(MemoryStoreError):
    """Raised when a memory row cannot be created or updated."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("code", "MEMORY_WRITE_ERROR")
        super().__init__(message, **kwargs)


class MemoryRetrievalError(MemoryStoreError):
    """Raised when memory rows cannot be read."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("code", "MEMORY_RETRIEVAL_ERROR")
        super().__init__(message, **kwargs)


__all__ = [
    "ConfidantError",
    "ConfigurationError",
    "InputValidationError",
    "DependencyError",
    "CircuitOpenError",
    "RetryExhaustedError",
    "EmbeddingError",
    "ExtractionError",
    "VectorStoreError",
    "MemoryStoreError",
    "MemoryWriteError",
    "MemoryRetrievalError",
]
