"""Memorability heuristics for chat turns.

Everything here is a pure function over data tables, so the heuristics can
be tuned and tested without an LLM.

Functions:
    is_generic_message: Acknowledgments and very short messages.
    should_extract: Cheap pre-filter run before any LLM call.
    extract_with_patterns: Deterministic regex extraction used when the
        LLM path is unavailable.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from confidant.config.schemas.memory import MemoryCategory, MemoryType

# =============================================================================
# Data Tables
# =============================================================================

MEMORY_TRIGGERS: tuple[str, ...] = (
    # Personal information
    "my name", "i am", "i'm", "call me", "my family", "my friend", "my job",
    "i work", "i work as", "my favorite", "i love", "i hate", "i enjoy",
    "i prefer", "i like", "i dislike", "my birthday", "my age",
    # Experiences and events
    "yesterday", "today", "tomorrow", "last week", "next week", "happened",
    "experience", "remember when", "story", "tell you about", "something that",
    "went to", "visited", "traveled", "trip",
    # Emotions and feelings
    "feel", "feeling", "emotion", "happy", "sad", "excited", "worried",
    "anxious", "nervous", "confident", "scared", "angry", "frustrated",
    "disappointed", "proud", "grateful", "stressed", "relaxed",
    # Relationships
    "relationship", "partner", "boyfriend", "girlfriend", "spouse", "husband",
    "wife", "dating", "love", "crush", "friend", "family",
    # Goals and aspirations
    "want to", "hope to", "planning to", "goal", "dream", "aspire",
    "looking forward", "excited about", "working towards",
    # Personal traits and patterns
    "always", "never", "usually", "typically", "tend to", "habit",
    "personality", "character", "style", "approach", "way i",
    # Preferences and opinions
    "opinion", "believe", "think that", "philosophy", "value",
    "important to me", "matters to me", "care about",
    # Current state and context
    "right now", "currently", "at the moment", "lately", "recently",
    "these days", "situation", "dealing with", "going through",
)

GENERIC_PHRASES: frozenset[str] = frozenset({
    "hi", "hello", "hey", "thanks", "thank you", "ok", "okay", "yes", "no",
    "sure", "alright", "bye", "goodbye", "lol", "haha", "hmm", "yeah",
    "sounds good", "i see", "makes sense", "got it", "understood",
})

MIN_MEANINGFUL_LENGTH = 10

_PERSONAL_SHARE_RE = re.compile(r"\b(i|i'm|i've|i'd|me|my|mine|myself)\b")


def is_generic_message(message: str) -> bool:
    """True for bare acknowledgments and messages under 10 characters."""
    normalized = message.lower().strip()
    return normalized in GENERIC_PHRASES or len(normalized) < MIN_MEANINGFUL_LENGTH


def should_extract(
    user_message: str,
    ai_response: str = "",
    min_length: int = 20,
) -> bool:
    """Decide whether a chat turn is worth sending to the extraction LLM.

    The user message must mention a memory trigger, talk about the user
    (first-person words), be longer than ``min_length`` characters and not
    be a generic acknowledgment. The AI response does not influence the
    decision.

    Args:
        user_message: What the user wrote.
        ai_response: The companion's reply.
        min_length: Messages at or below this many characters are skipped.

    Returns:
        Whether extraction should run.
    """
    if not user_message or len(user_message) <= min_length:
        return False
    if is_generic_message(user_message):
        return False
    message = user_message.lower()
    if not _PERSONAL_SHARE_RE.search(message):
        return False
    return any(trigger in message for trigger in MEMORY_TRIGGERS)


# =============================================================================
# Pattern Extraction
# =============================================================================


@dataclass(frozen=True)
class PatternRule:
    """One deterministic extraction rule.

    Attributes:
        pattern: Regex applied case-insensitively; group ``value`` is the
            captured phrase.
        type: Memory type assigned to matches.
        category: Memory category assigned to matches.
        importance: Importance assigned to matches.
        template: Format string for the content, given ``value``.
        tags: Tags attached to matches.
    """

    pattern: str
    type: MemoryType
    category: MemoryCategory
    importance: int
    template: str
    tags: tuple[str, ...] = field(default_factory=tuple)

    def compiled(self) -> re.Pattern[str]:
        return re.compile(self.pattern, re.IGNORECASE)


# Captured phrases stop at sentence punctuation or a following clause
_PHRASE = r"(?P<value>[^.!?,;]+?)(?=\s+(?:and|but|so|because)\s+i\b|[.!?,;]|$)"

PATTERN_RULES: tuple[PatternRule, ...] = (
    PatternRule(
        rf"\bmy name is\s+{_PHRASE}",
        MemoryType.LIFE_EVENT, MemoryCategory.LIFE_EVENT, 8,
        "User's name is {value}", ("name", "identity"),
    ),
    PatternRule(
        rf"\bi work as\s+{_PHRASE}",
        MemoryType.LIFE_EVENT, MemoryCategory.LIFE_EVENT, 7,
        "User works as {value}", ("work", "career"),
    ),
    PatternRule(
        rf"\bi(?:'m| am) (?:a |an )(?P<value>teacher|nurse|doctor|student|engineer|developer|designer|writer|lawyer|artist|chef|programmer|musician|parent|mom|dad)\b",
        MemoryType.LIFE_EVENT, MemoryCategory.LIFE_EVENT, 7,
        "User is a {value}", ("work", "identity"),
    ),
    PatternRule(
        rf"\bi(?:'m| am) (?:a |an )?(?:very |really |pretty )?(?P<value>[a-z]+) person\b",
        MemoryType.PERSONALITY_TRAIT, MemoryCategory.PERSONALITY, 6,
        "User is a {value} person", ("personality",),
    ),
    PatternRule(
        rf"\bi(?: really)? love\s+{_PHRASE}",
        MemoryType.PREFERENCE, MemoryCategory.PREFERENCE, 6,
        "User loves {value}", ("likes",),
    ),
    PatternRule(
        rf"\bi(?: really)? (?:like|enjoy)\s+{_PHRASE}",
        MemoryType.PREFERENCE, MemoryCategory.PREFERENCE, 5,
        "User enjoys {value}", ("likes",),
    ),
    PatternRule(
        rf"\bi(?: really)? (?:hate|dislike|can't stand)\s+{_PHRASE}",
        MemoryType.PREFERENCE, MemoryCategory.PREFERENCE, 5,
        "User dislikes {value}", ("dislikes",),
    ),
    PatternRule(
        rf"\bi(?:'m| am) (?:really )?(?:afraid|scared|terrified) of\s+{_PHRASE}",
        MemoryType.FEAR, MemoryCategory.EMOTIONAL, 6,
        "User is afraid of {value}", ("fear",),
    ),
    PatternRule(
        rf"\bi(?:'ve been| have been|'m| am)? ?feel(?:ing)?\s+{_PHRASE}",
        MemoryType.EMOTIONAL_STATE, MemoryCategory.EMOTIONAL, 5,
        "User has been feeling {value}", ("feelings",),
    ),
    PatternRule(
        rf"\b(?:i want to|i hope to|i'm planning to|i am planning to|my goal is to)\s+{_PHRASE}",
        MemoryType.GOAL, MemoryCategory.GOAL, 6,
        "User wants to {value}", ("goal",),
    ),
    PatternRule(
        rf"\bi(?:'m| am) (?:really )?interested in\s+{_PHRASE}",
        MemoryType.INTEREST, MemoryCategory.PREFERENCE, 5,
        "User is interested in {value}", ("interest",),
    ),
    PatternRule(
        rf"\bmy (?P<relation>partner|wife|husband|boyfriend|girlfriend|mom|mother|dad|father|sister|brother|son|daughter|best friend)\s+(?:is|was)\s+{_PHRASE}",
        MemoryType.RELATIONSHIP_DYNAMIC, MemoryCategory.RELATIONSHIP, 6,
        "User's {relation} is {value}", ("relationship",),
    ),
    PatternRule(
        rf"\bmy family\s+(?:is|are|was|were)\s+{_PHRASE}",
        MemoryType.RELATIONSHIP_DYNAMIC, MemoryCategory.RELATIONSHIP, 6,
        "User's family is {value}", ("relationship", "family"),
    ),
)

_COMPILED_RULES = tuple((rule, rule.compiled()) for rule in PATTERN_RULES)

MAX_PATTERN_MEMORIES = 3


def extract_with_patterns(message: str, limit: int = MAX_PATTERN_MEMORIES) -> list[dict[str, Any]]:
    """Extract memory candidates with regex rules.

    Output items have the same shape as parsed LLM output, so they go
    through the same validation.

    Args:
        message: The user's message.
        limit: Maximum number of candidates.

    Returns:
        Raw candidate dicts, deduplicated by exact content.
    """
    candidates: list[dict[str, Any]] = []
    seen: set[str] = set()

    for rule, regex in _COMPILED_RULES:
        for match in regex.finditer(message):
            groups = {k: v.strip() for k, v in match.groupdict().items() if v}
            if not groups.get("value"):
                continue
            content = rule.template.format(**groups)
            if content in seen:
                continue
            seen.add(content)
            candidates.append({
                "content": content,
                "type": rule.type.value,
                "category": rule.category.value,
                "importance": rule.importance,
                "tags": list(rule.tags),
            })
            if len(candidates) >= limit:
                return candidates

    return candidates


__all__ = [
    "MEMORY_TRIGGERS",
    "GENERIC_PHRASES",
    "PatternRule",
    "PATTERN_RULES",
    "is_generic_message",
    "should_extract",
    "extract_with_patterns",
]
