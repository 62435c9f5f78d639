"""
sitespeak_suggest.completion.engine

Runs the matcher passes over an index snapshot, merges their candidates and
ranks them. Matcher failures are isolated: a pass that raises is logged and
skipped, and only when every pass fails does the engine substitute its
single help fallback.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Iterable, List, Optional, Sequence

from ..config import MatchingConfig
from ..models import (
    CommandSuggestion,
    CompletionMatch,
    CompletionResult,
    IndexEntry,
    IntentCategory,
    MatchType,
    intent_to_category,
)
from .index import CompletionIndex
from .matchers import Matcher, MatchQuery, SemanticMatcher, default_matchers

logger = logging.getLogger(__name__)

FALLBACK_TEXT = "Help me with this page"
FALLBACK_CONFIDENCE = 0.5
RELATED_LIMIT = 3


def merge_matches(candidates: Iterable[CompletionMatch]) -> List[CompletionMatch]:
    """Drop later duplicates (by lower-cased text), then rank priority-first."""
    seen = set()
    unique: List[CompletionMatch] = []
    for match in candidates:
        key = match.text.lower()
        if key in seen:
            continue
        seen.add(key)
        unique.append(match)
    unique.sort(key=lambda m: (m.priority, m.confidence), reverse=True)
    return unique


def _fallback_match() -> CompletionMatch:
    return CompletionMatch(
        text=FALLBACK_TEXT,
        intent=IntentCategory.HELP_REQUEST,
        confidence=FALLBACK_CONFIDENCE,
        match_type=MatchType.PATTERN,
        reasoning="Fallback suggestion",
    )


class MatchEngine:
    """Ranked completions for partial input.

    The engine itself is stateless apart from its configuration and the
    matcher list, so one instance can serve concurrent callers.
    """

    def __init__(self, config: Optional[MatchingConfig] = None,
                 matchers: Optional[Sequence[Matcher]] = None):
        self.config = config or MatchingConfig()
        self.matchers: List[Matcher] = list(matchers) if matchers is not None else default_matchers()

    def complete(
        self,
        partial_input: str,
        index,
        *,
        user_id: Optional[str] = None,
        max_results: Optional[int] = None,
        include_semantic: Optional[bool] = None,
    ) -> CompletionResult:
        """Complete ``partial_input`` against ``index``.

        ``index`` is either a :class:`CompletionIndex` or a plain sequence of
        :class:`IndexEntry`. Inputs shorter than ``min_input_length`` once
        stripped return an empty result without reading the index.
        """
        started = time.perf_counter()
        if len(partial_input.strip()) < self.config.min_input_length:
            return CompletionResult.empty(partial_input)

        entries = self._snapshot(index, user_id)
        limit = max_results or self.config.max_results
        semantic = self.config.include_semantic if include_semantic is None else include_semantic
        query = MatchQuery.build(
            partial_input,
            fuzzy_threshold=self.config.fuzzy_threshold,
            semantic_threshold=self.config.semantic_threshold,
            pattern_limit=self.config.pattern_matches_per_pattern,
        )

        candidates: List[CompletionMatch] = []
        failures = 0
        attempted = 0
        for matcher in self.matchers:
            if not semantic and isinstance(matcher, SemanticMatcher):
                continue
            attempted += 1
            try:
                candidates.extend(matcher.match(query, entries))
            except Exception as exc:
                failures += 1
                logger.warning("Matcher %s failed for %r: %s",
                               getattr(matcher, "name", type(matcher).__name__), partial_input, exc)

        if attempted and failures == attempted:
            matches = [_fallback_match()]
            return CompletionResult(
                matches=matches,
                confidence=FALLBACK_CONFIDENCE,
                partial_input=partial_input,
                processing_time_ms=(time.perf_counter() - started) * 1000,
                fallback_used=True,
            )

        ranked = merge_matches(candidates)[:limit]
        confidence = sum(m.confidence for m in ranked) / len(ranked) if ranked else 0.0
        result = CompletionResult(
            matches=ranked,
            confidence=confidence,
            partial_input=partial_input,
            related=self.related_suggestions(ranked, entries),
        )
        result.processing_time_ms = (time.perf_counter() - started) * 1000
        logger.debug("Completed %r with %d matches in %.2fms",
                     partial_input, len(ranked), result.processing_time_ms)
        return result

    def related_suggestions(self, matches: Sequence[CompletionMatch],
                            entries: Sequence[IndexEntry]) -> List[CommandSuggestion]:
        """Other indexed commands sharing an intent with the top matches."""
        if not matches:
            return []
        shown = {m.text.lower() for m in matches}
        intents = []
        for match in matches[:RELATED_LIMIT]:
            if match.intent not in intents:
                intents.append(match.intent)

        related: List[CommandSuggestion] = []
        for entry in entries:
            if len(related) >= RELATED_LIMIT:
                break
            if entry.intent not in intents or entry.command.lower() in shown:
                continue
            shown.add(entry.command.lower())
            related.append(CommandSuggestion(
                id=f"related_{uuid.uuid4().hex[:8]}",
                command=entry.command,
                intent=entry.intent,
                confidence=0.6,
                category=intent_to_category(entry.intent),
                priority="low",
                keywords=list(entry.keywords),
                variations=list(entry.variations),
                reasoning="Related to top completion",
                source="pattern",
            ))
        return related

    @staticmethod
    def _snapshot(index, user_id: Optional[str]) -> List[IndexEntry]:
        if isinstance(index, CompletionIndex):
            return index.relevant_entries(user_id)
        return list(index)
