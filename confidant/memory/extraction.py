"""Memory extraction from chat turns.

The extractor turns one (user message, AI response) pair into at most a
few validated memory candidates:

1. A cheap pre-filter (``should_extract``) skips turns with nothing
   memorable before any LLM call is made.
2. The extraction LLM is called through the extraction circuit breaker
   with retries, and asked for strict JSON.
3. The response is parsed defensively: markdown fences and surrounding
   prose are stripped, and malformed JSON falls back to a regex scan for
   ``"content"`` fields.
4. Every candidate is validated and normalized individually.

When the LLM path is unavailable (no client configured, circuit open,
retries exhausted) the deterministic pattern rules in
:mod:`confidant.memory.triggers` are used instead. Extraction never raises.

Example:
    >>> extractor = MemoryExtractor(AnthropicChatClient(model, api_key=key))
    >>> memories = await extractor.extract(
    ...     "I'm a teacher and I love hiking on weekends", "That sounds lovely!"
    ... )
"""

from __future__ import annotations

import json
import logging
import math
import re
from typing import Any, Optional, Sequence

from confidant.config.schemas.memory import (
    MAX_IMPORTANCE,
    MIN_IMPORTANCE,
    ExtractedMemory,
    MemoryCategory,
    MemoryType,
)
from confidant.config.settings import ExtractionSettings
from confidant.core.exceptions import DependencyError
from confidant.core.reliability.circuit_breaker import CircuitBreaker
from confidant.core.reliability.registry import EXTRACTION
from confidant.core.reliability.retry import ExponentialBackoff, retry_with_backoff
from confidant.memory.llm import ChatClient
from confidant.memory.triggers import extract_with_patterns, should_extract

logger = logging.getLogger(__name__)


# =============================================================================
# Prompt
# =============================================================================

EXTRACTION_INSTRUCTION = "Extract memories from this conversation."

EXTRACTION_PROMPT = """You are an expert at identifying personally meaningful information that would help make future conversations more personal and relevant.

Analyze this conversation and extract ONLY truly meaningful memories about the user - information that would help understand them better and personalize future conversations.

User Message: {user_message}
AI Response: {ai_response}
Recent Context: {context}

GUIDELINES:
1. Only extract NEW information, not things already discussed
2. Extract between 1 and 3 memories, each specific and useful for future personalization
3. Avoid generic or obvious information
4. Prioritize emotional context, personal preferences and unique experiences

Memory Types:
- PERSONALITY_TRAIT: Core personality characteristics
- PREFERENCE: Likes, dislikes, favorites
- LIFE_EVENT: Significant experiences or events
- RELATIONSHIP_DYNAMIC: Information about relationships
- EMOTIONAL_STATE: Current emotions or emotional patterns
- GOAL: Aspirations or objectives
- FEAR: Concerns or anxieties
- INTEREST: Hobbies or topics they enjoy
- BEHAVIORAL_PATTERN: How they typically act or respond

Categories: {categories}

Importance:
- 1-3: minor detail
- 4-6: moderate, useful context
- 7-8: important to who they are
- 9-10: life-changing

Respond with VALID JSON only:
{{
  "memories": [
    {{
      "content": "Brief, specific description of what to remember",
      "type": "EXACT_TYPE_FROM_LIST_ABOVE",
      "importance": 1-10,
      "category": "one_of_the_categories_above",
      "tags": ["relevant", "searchable", "tags"],
      "emotional_context": "optional emotional context when shared"
    }}
  ]
}}

If no meaningful memories should be extracted, respond with:
{{"memories": []}}"""


def build_extraction_prompt(
    user_message: str,
    ai_response: str,
    context: Optional[Sequence[dict[str, Any]]] = None,
    context_messages: int = 3,
) -> str:
    """Render the extraction system prompt for one chat turn."""
    recent = list(context or [])[-context_messages:] if context_messages else []
    return EXTRACTION_PROMPT.format(
        user_message=json.dumps(user_message, ensure_ascii=False),
        ai_response=json.dumps(ai_response, ensure_ascii=False),
        context=json.dumps(recent, ensure_ascii=False, default=str),
        categories=", ".join(c.value for c in MemoryCategory),
    )


# =============================================================================
# Parsing
# =============================================================================

_FENCE_RE = re.compile(r"```(?:json)?\s*", re.IGNORECASE)
_CONTENT_FIELD_RE = re.compile(r'"content":\s*"([^"]+)"')

MAX_FALLBACK_MEMORIES = 3


def _fallback_parse(text: str) -> list[dict[str, Any]]:
    matches = _CONTENT_FIELD_RE.findall(text)[:MAX_FALLBACK_MEMORIES]
    if matches:
        logger.warning(f"[Extraction] Using fallback parsing for malformed JSON ({len(matches)} fragments)")
    return [
        {
            "content": content,
            "type": MemoryType.PREFERENCE.value,
            "category": MemoryCategory.PREFERENCE.value,
            "importance": 5,
            "tags": [],
        }
        for content in matches
    ]


def parse_memory_response(text: str) -> list[dict[str, Any]]:
    """Parse the extraction LLM's reply into raw candidate dicts.

    Args:
        text: Raw model output, possibly fenced or wrapped in prose.

    Returns:
        The ``memories`` array of the JSON object, the regex fallback
        candidates when the JSON is malformed, or an empty list.
    """
    if not text:
        return []

    cleaned = _FENCE_RE.sub("", text.strip())
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start == -1 or end <= start:
        logger.warning(f"[Extraction] No JSON object in response: {text[:200]!r}")
        return _fallback_parse(text)

    try:
        parsed = json.loads(cleaned[start:end + 1])
    except json.JSONDecodeError as e:
        logger.warning(f"[Extraction] Failed to parse response JSON: {e}")
        return _fallback_parse(text)

    if not isinstance(parsed, dict):
        return []
    memories = parsed.get("memories")
    if not isinstance(memories, list):
        logger.warning("[Extraction] No memories array in response")
        return []
    return memories


# =============================================================================
# Validation
# =============================================================================


def coerce_importance(value: Any, default: int = 5) -> int:
    """Coerce an importance value into an int clamped to [1, 10].

    Numbers and numeric strings are accepted; anything else yields
    ``default``.
    """
    if isinstance(value, bool):
        number: Optional[float] = None
    elif isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            number = None
    else:
        number = None

    if number is None or not math.isfinite(number):
        number = float(default)
    return max(MIN_IMPORTANCE, min(MAX_IMPORTANCE, int(round(number))))


def _parse_enum(enum_cls: Any, value: Any, upper: bool) -> Optional[Any]:
    if not isinstance(value, str):
        return None
    normalized = value.strip().upper() if upper else value.strip().lower()
    try:
        return enum_cls(normalized)
    except ValueError:
        return None


def validate_memories(
    items: Sequence[Any],
    min_content_length: int = 10,
    max_tags: int = 5,
) -> list[ExtractedMemory]:
    """Validate raw candidates, dropping invalid ones individually.

    Args:
        items: Raw candidate dicts.
        min_content_length: Minimum characters of trimmed content.
        max_tags: Maximum tags kept per candidate.

    Returns:
        Valid, normalized candidates in input order.
    """
    valid: list[ExtractedMemory] = []

    for item in items:
        if not isinstance(item, dict):
            logger.debug(f"[Extraction] Dropping non-object candidate: {item!r}")
            continue

        content = item.get("content")
        if not isinstance(content, str) or len(content.strip()) < min_content_length:
            logger.debug(f"[Extraction] Dropping candidate with invalid content: {content!r}")
            continue

        memory_type = _parse_enum(MemoryType, item.get("type"), upper=True)
        if memory_type is None:
            logger.debug(f"[Extraction] Dropping candidate with invalid type: {item.get('type')!r}")
            continue

        category = _parse_enum(MemoryCategory, item.get("category"), upper=False)
        if category is None:
            logger.debug(f"[Extraction] Dropping candidate with invalid category: {item.get('category')!r}")
            continue

        raw_tags = item.get("tags")
        tags = [
            tag.strip()
            for tag in (raw_tags if isinstance(raw_tags, list) else [])
            if isinstance(tag, str) and tag.strip()
        ][:max_tags]

        emotional = item.get("emotional_context", item.get("emotionalContext"))
        emotional = emotional.strip() if isinstance(emotional, str) and emotional.strip() else None

        valid.append(
            ExtractedMemory(
                content=content.strip(),
                type=memory_type,
                category=category,
                importance=coerce_importance(item.get("importance")),
                tags=tags,
                emotional_context=emotional,
            )
        )

    return valid


# =============================================================================
# Extractor
# =============================================================================


class MemoryExtractor:
    """Extracts memory candidates from chat turns.

    Attributes:
        client: Chat client for the extraction LLM, or None for pattern-only
            extraction.
        breaker: Circuit breaker for the extraction dependency.
        settings: Extraction settings.
    """

    def __init__(
        self,
        client: Optional[ChatClient] = None,
        breaker: Optional[CircuitBreaker] = None,
        backoff: Optional[ExponentialBackoff] = None,
        settings: Optional[ExtractionSettings] = None,
    ) -> None:
        self.client = client
        self.breaker = breaker or CircuitBreaker(EXTRACTION)
        self.backoff = backoff or ExponentialBackoff()
        self.settings = settings or ExtractionSettings()

    def should_extract(self, user_message: str, ai_response: str = "") -> bool:
        return should_extract(
            user_message, ai_response, min_length=self.settings.min_message_length
        )

    async def extract(
        self,
        user_message: str,
        ai_response: str = "",
        context: Optional[Sequence[dict[str, Any]]] = None,
    ) -> list[ExtractedMemory]:
        """Extract memory candidates from one chat turn.

        Args:
            user_message: What the user wrote.
            ai_response: The companion's reply.
            context: Prior conversation messages (role/content dicts).

        Returns:
            Up to ``max_memories_per_turn`` validated candidates. Empty when
            the turn is not memorable or extraction failed.
        """
        try:
            if not self.should_extract(user_message, ai_response):
                logger.debug("[Extraction] Pre-filter rejected message")
                return []

            if self.client is None:
                return self.extract_with_patterns(user_message)

            try:
                response = await self._call_llm(user_message, ai_response, context)
            except DependencyError as e:
                logger.warning(f"[Extraction] LLM unavailable, using pattern rules: {e}")
                return self.extract_with_patterns(user_message)

            memories = self._validate(parse_memory_response(response))
            logger.info(f"[Extraction] Extracted {len(memories)} valid memories from conversation")
            return memories
        except Exception as e:
            logger.error(f"[Extraction] Memory extraction failed: {e}", exc_info=True)
            return []

    def extract_with_patterns(self, user_message: str) -> list[ExtractedMemory]:
        """Deterministic extraction used when the LLM path is unavailable."""
        memories = self._validate(extract_with_patterns(user_message))
        logger.info(f"[Extraction] Pattern rules produced {len(memories)} memories")
        return memories

    def _validate(self, items: Sequence[Any]) -> list[ExtractedMemory]:
        valid = validate_memories(
            items,
            min_content_length=self.settings.min_content_length,
            max_tags=self.settings.max_tags,
        )
        return valid[: self.settings.max_memories_per_turn]

    async def _call_llm(
        self,
        user_message: str,
        ai_response: str,
        context: Optional[Sequence[dict[str, Any]]],
    ) -> str:
        client = self.client
        system = build_extraction_prompt(
            user_message, ai_response, context, self.settings.context_messages
        )

        async def complete() -> str:
            return await client.complete(
                system,
                EXTRACTION_INSTRUCTION,
                temperature=self.settings.temperature,
                max_tokens=self.settings.max_tokens,
            )

        async def attempt() -> str:
            return await retry_with_backoff(
                complete,
                max_attempts=self.settings.max_attempts,
                backoff=self.backoff,
                operation_name="extract_memories",
            )

        return await self.breaker.execute(attempt)


__all__ = [
    "EXTRACTION_PROMPT",
    "build_extraction_prompt",
    "parse_memory_response",
    "coerce_importance",
    "validate_memories",
    "MemoryExtractor",
]
