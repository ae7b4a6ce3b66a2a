"""Logging setup for processes that embed the memory engine.

Library modules only ever call ``logging.getLogger(__name__)``; the host
application calls :func:`configure_logging` once at startup.
"""

from __future__ import annotations

import logging
from typing import Optional

from confidant.config.settings import ConfidantSettings, get_settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Chatty HTTP client loggers used by the provider SDKs
_NOISY_LOGGERS = ("httpx", "httpcore", "urllib3", "openai", "anthropic", "pinecone", "faiss")


def configure_logging(settings: Optional[ConfidantSettings] = None) -> int:
    """Configure root logging from settings.

    Debug mode forces DEBUG regardless of ``log_level``. Third-party HTTP
    loggers are capped at WARNING unless running in debug mode.

    Args:
        settings: Settings to read. Defaults to the cached settings.

    Returns:
        The numeric log level that was applied.
    """
    settings = settings or get_settings()
    level_name = "DEBUG" if settings.debug else settings.log_level
    log_level = getattr(logging, level_name, logging.INFO)

    logging.basicConfig(
        level=log_level,
        format=LOG_FORMAT,
    )

    if not settings.debug:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    return log_level


__all__ = ["LOG_FORMAT", "configure_logging"]
