"""
sitespeak_suggest.completion.matchers

The four independent completion passes run by :class:`MatchEngine`:

1. Exact   – case-insensitive prefix of the command.
2. Fuzzy   – Levenshtein ratio above a threshold.
3. Semantic – token overlap against command words and keywords.
4. Pattern – intent lookup driven by a small table of input prefixes.

Each matcher is stateless and safe to share between threads.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Pattern, Protocol, Sequence, Tuple

from ..models import (
    CompletionMatch,
    HighlightRange,
    IndexEntry,
    IntentCategory,
    MatchType,
)
from .similarity import string_similarity, token_overlap, token_ranges, tokenize

LOGGER = logging.getLogger(__name__)

_QUOTED = re.compile(r'"([^"]+)"')


@dataclass(frozen=True)
class MatchQuery:
    """Pre-processed partial input shared by all passes."""
    raw: str
    normalized: str
    tokens: Tuple[str, ...]
    fuzzy_threshold: float = 0.5
    semantic_threshold: float = 0.3
    pattern_limit: int = 3
    parameters: Dict[str, str] = field(default_factory=dict, hash=False, compare=False)

    @classmethod
    def build(
        cls,
        partial_input: str,
        *,
        fuzzy_threshold: float = 0.5,
        semantic_threshold: float = 0.3,
        pattern_limit: int = 3,
    ) -> "MatchQuery":
        parameters: Dict[str, str] = {}
        quoted = _QUOTED.search(partial_input)
        if quoted:
            parameters["value"] = quoted.group(1)
        return cls(
            raw=partial_input,
            normalized=partial_input.lower().strip(),
            tokens=tuple(tokenize(partial_input)),
            fuzzy_threshold=fuzzy_threshold,
            semantic_threshold=semantic_threshold,
            pattern_limit=pattern_limit,
            parameters=parameters,
        )


class Matcher(Protocol):
    name: str

    def match(self, query: MatchQuery, index: Sequence[IndexEntry]) -> List[CompletionMatch]:
        ...


def _is_prefix(query: MatchQuery, entry: IndexEntry) -> bool:
    return entry.command.lower().startswith(query.normalized)


class ExactMatcher:
    name = "exact"

    def match(self, query: MatchQuery, index: Sequence[IndexEntry]) -> List[CompletionMatch]:
        matches: List[CompletionMatch] = []
        for entry in index:
            if not _is_prefix(query, entry):
                continue
            matches.append(CompletionMatch(
                text=entry.command,
                intent=entry.intent,
                confidence=min(1.0, 0.9 + 0.01 * entry.frequency),
                match_type=MatchType.EXACT,
                highlight_ranges=(HighlightRange(0, len(query.raw)),),
                reasoning="Exact prefix match",
                parameters=dict(query.parameters),
            ))
        return matches


class FuzzyMatcher:
    name = "fuzzy"

    def match(self, query: MatchQuery, index: Sequence[IndexEntry]) -> List[CompletionMatch]:
        matches: List[CompletionMatch] = []
        for entry in index:
            # Already covered by the exact pass.
            if _is_prefix(query, entry):
                continue
            similarity = string_similarity(query.normalized, entry.command.lower())
            if similarity <= query.fuzzy_threshold:
                continue
            matches.append(CompletionMatch(
                text=entry.command,
                intent=entry.intent,
                confidence=min(1.0, similarity * 0.8 + 0.005 * entry.frequency),
                match_type=MatchType.FUZZY,
                highlight_ranges=tuple(token_ranges(query.raw, entry.command)),
                reasoning=f"Fuzzy match ({round(similarity * 100)}% similarity)",
                parameters=dict(query.parameters),
            ))
        return matches


class SemanticMatcher:
    """Keyword-overlap stand-in for embedding similarity."""

    name = "semantic"

    def match(self, query: MatchQuery, index: Sequence[IndexEntry]) -> List[CompletionMatch]:
        if not query.tokens:
            return []
        matches: List[CompletionMatch] = []
        for entry in index:
            candidate = set(tokenize(entry.command))
            for keyword in entry.keywords:
                candidate.update(tokenize(keyword))
            score = token_overlap(query.tokens, candidate)
            if score <= query.semantic_threshold:
                continue
            overlap = len(set(query.tokens) & candidate)
            matches.append(CompletionMatch(
                text=entry.command,
                intent=entry.intent,
                confidence=min(1.0, score * 0.7 + 0.003 * entry.frequency),
                match_type=MatchType.SEMANTIC,
                highlight_ranges=tuple(token_ranges(query.raw, entry.command)),
                reasoning=f"Semantic match ({overlap} word overlap)",
                parameters=dict(query.parameters),
            ))
        return matches


# Ordered input-prefix table; every matching row contributes.
DEFAULT_PATTERNS: Tuple[Tuple[Pattern[str], IntentCategory], ...] = (
    (re.compile(r"^(go|navigate) to", re.IGNORECASE), IntentCategory.NAVIGATE_TO_SECTION),
    (re.compile(r"^(click|press)", re.IGNORECASE), IntentCategory.CLICK_ELEMENT),
    (re.compile(r"^(search|find)", re.IGNORECASE), IntentCategory.SEARCH_CONTENT),
    (re.compile(r"^(help|how)", re.IGNORECASE), IntentCategory.HELP_REQUEST),
    (re.compile(r"^(add to cart|buy)", re.IGNORECASE), IntentCategory.ADD_TO_CART),
)


class PatternMatcher:
    name = "pattern"

    def __init__(self, patterns: Sequence[Tuple[Pattern[str], IntentCategory]] = DEFAULT_PATTERNS):
        self.patterns = tuple(patterns)

    def match(self, query: MatchQuery, index: Sequence[IndexEntry]) -> List[CompletionMatch]:
        matches: List[CompletionMatch] = []
        for pattern, intent in self.patterns:
            if not pattern.search(query.raw):
                continue
            same_intent = [entry for entry in index if entry.intent == intent]
            for entry in same_intent[: query.pattern_limit]:
                matches.append(CompletionMatch(
                    text=entry.command,
                    intent=entry.intent,
                    confidence=min(1.0, 0.6 + 0.002 * entry.frequency),
                    match_type=MatchType.PATTERN,
                    highlight_ranges=(HighlightRange(0, min(len(query.raw), len(entry.command))),),
                    reasoning=f"Pattern match for {intent.value}",
                    parameters=dict(query.parameters),
                ))
        return matches


def default_matchers() -> List[Matcher]:
    """Matchers in evaluation order; earlier passes win deduplication."""
    return [ExactMatcher(), FuzzyMatcher(), SemanticMatcher(), PatternMatcher()]
