"""Confidant: conversational memory engine for companion chat.

The package extracts durable facts about a user from chat turns, stores them
in a per-user vector namespace, retrieves the relevant ones for the next turn
and keeps the memory set healthy over time.

Subpackages:
    config: Settings (pydantic-settings) and data schemas
    core: Exceptions, logging, reliability primitives, storage backends
    memory: Embedding, extraction, vector storage, retrieval, lifecycle
"""

__version__ = "0.1.0"
