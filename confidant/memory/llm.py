"""Chat-completion clients used for memory extraction.

Protocols:
    ChatClient: ``complete(system, user, temperature, max_tokens) -> str``

Classes:
    AnthropicChatClient: ChatClient backed by the Anthropic Messages API.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol, runtime_checkable

from anthropic import AsyncAnthropic

from confidant.config.settings import ConfidantSettings
from confidant.core.exceptions import ConfigurationError, ExtractionError

logger = logging.getLogger(__name__)


@runtime_checkable
class ChatClient(Protocol):
    """Minimal chat-completion interface."""

    async def complete(
        self,
        system: str,
        user: str,
        temperature: float = 0.1,
        max_tokens: int = 800,
    ) -> str:
        """Return the model's text reply to ``user`` under ``system``."""
        ...


class AnthropicChatClient:
    """ChatClient backed by ``anthropic.AsyncAnthropic``.

    Attributes:
        model: Anthropic model identifier.
    """

    def __init__(
        self,
        model: str,
        api_key: Optional[str] = None,
        client: Optional[AsyncAnthropic] = None,
    ) -> None:
        """Initialize the client.

        Args:
            model: Anthropic model identifier.
            api_key: API key; ignored when ``client`` is given.
            client: Preconfigured SDK client.

        Raises:
            ConfigurationError: If neither an API key nor a client was given.
        """
        if client is None and not api_key:
            raise ConfigurationError(
                "ANTHROPIC_API_KEY is required for LLM memory extraction",
                config_key="api_keys.anthropic_api_key",
            )
        self.model = model
        self._client = client or AsyncAnthropic(api_key=api_key)

    @classmethod
    def from_settings(cls, settings: ConfidantSettings) -> "AnthropicChatClient":
        return cls(
            model=settings.extraction.model,
            api_key=settings.api_keys.anthropic_api_key,
        )

    async def complete(
        self,
        system: str,
        user: str,
        temperature: float = 0.1,
        max_tokens: int = 800,
    ) -> str:
        message = await self._client.messages.create(
            model=self.model,
            max_tokens=max_tokens,
            temperature=temperature,
            system=system,
            messages=[{"role": "user", "content": user}],
        )
        text = "".join(
            block.text for block in message.content if getattr(block, "type", None) == "text"
        )
        if not text.strip():
            raise ExtractionError(f"Empty completion from {self.model}")
        return text


__all__ = ["ChatClient", "AnthropicChatClient"]
