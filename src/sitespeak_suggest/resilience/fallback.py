"""
sitespeak_suggest.resilience.fallback

Degraded-quality responses tried in priority order when the generator is
unavailable: cached suggestions, page-type templates, a single help
suggestion, and finally a static offline suggestion.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..config import FallbackStrategyConfig, FallbackType
from ..exceptions import SuggestionError
from ..models import (
    CommandSuggestion,
    IntentCategory,
    SuggestionContext,
    SuggestionResponse,
    intent_to_category,
)

logger = logging.getLogger(__name__)

FallbackHandler = Callable[
    [SuggestionContext, SuggestionError, Optional[str], Optional[str]],
    Optional[SuggestionResponse],
]


# --------------------------------------------------------------------------- #
# Static suggestion sets
# --------------------------------------------------------------------------- #

# (command, intent, keywords, examples)
_TemplateRow = Tuple[str, IntentCategory, Tuple[str, ...], Tuple[str, ...]]

_GENERAL_TEMPLATES: Tuple[_TemplateRow, ...] = (
    ("Navigate around the site", IntentCategory.NAVIGATE_TO_SECTION,
     ("navigate", "go", "menu"), ("Go to home", "Open menu")),
    ("What can I do here?", IntentCategory.HELP_REQUEST,
     ("help", "what", "can", "do"), ("Show me options", "Help me")),
)

_PAGE_TEMPLATES: Dict[str, Tuple[_TemplateRow, ...]] = {
    "home": (
        ("Show me the latest content", IntentCategory.GET_INFORMATION,
         ("latest", "new", "content"), ("What's new?",)),
        ("Open the main menu", IntentCategory.OPEN_MENU,
         ("menu", "open"), ("Show navigation",)),
    ),
    "product": (
        ("Add this to my cart", IntentCategory.ADD_TO_CART,
         ("add", "cart", "buy"), ("Buy this", "Add to basket")),
        ("Show product details", IntentCategory.SHOW_DETAILS,
         ("details", "specs"), ("Tell me more about this",)),
    ),
    "category": (
        ("Filter these results", IntentCategory.FILTER_RESULTS,
         ("filter", "narrow"), ("Only show items under $50",)),
        ("Sort by price", IntentCategory.SORT_RESULTS,
         ("sort", "order", "price"), ("Cheapest first",)),
    ),
    "blog": (
        ("Search articles", IntentCategory.SEARCH_CONTENT,
         ("search", "articles", "posts"), ("Find posts about design",)),
        ("Go to the next post", IntentCategory.NAVIGATE_FORWARD,
         ("next", "post"), ("Read the next article",)),
    ),
    "contact": (
        ("Fill out the contact form", IntentCategory.EDIT_TEXT,
         ("form", "contact", "fill"), ("Enter my email",)),
        ("Submit the form", IntentCategory.SUBMIT_FORM,
         ("submit", "send"), ("Send my message",)),
    ),
}

_EDIT_MODE_TEMPLATES: Tuple[_TemplateRow, ...] = (
    ("Add a new section", IntentCategory.ADD_CONTENT,
     ("add", "section", "new"), ("Insert a heading",)),
    ("Undo the last change", IntentCategory.UNDO_ACTION,
     ("undo", "revert"), ("Go back one step",)),
)


def _suggestion(
    suggestion_id: str,
    command: str,
    intent: IntentCategory,
    confidence: float,
    *,
    priority: str = "medium",
    description: str = "",
    keywords: Sequence[str] = (),
    variations: Sequence[str] = (),
    examples: Sequence[str] = (),
    reasoning: str = "",
) -> CommandSuggestion:
    return CommandSuggestion(
        id=suggestion_id,
        command=command,
        intent=intent,
        confidence=confidence,
        category=intent_to_category(intent),
        priority=priority,
        description=description,
        keywords=list(keywords),
        variations=list(variations),
        examples=list(examples),
        reasoning=reasoning,
        source="template",
    )


def template_suggestions(context: SuggestionContext) -> List[CommandSuggestion]:
    """Static suggestions for the context's page type, then the general set."""
    rows: List[_TemplateRow] = []
    if context.current_mode == "edit":
        rows.extend(_EDIT_MODE_TEMPLATES)
    rows.extend(_PAGE_TEMPLATES.get(context.page_type, ()))
    rows.extend(_GENERAL_TEMPLATES)

    suggestions = []
    for position, (command, intent, keywords, examples) in enumerate(rows):
        suggestions.append(_suggestion(
            f"template-{position}",
            command,
            intent,
            0.8 if intent == IntentCategory.HELP_REQUEST else 0.7,
            priority="high" if intent == IntentCategory.HELP_REQUEST else "medium",
            keywords=keywords,
            examples=examples,
            reasoning=f"Template suggestion for {context.page_type} pages",
        ))
    return suggestions


def minimal_suggestions() -> List[CommandSuggestion]:
    return [_suggestion(
        "fallback-help",
        "Help me with this page",
        IntentCategory.HELP_REQUEST,
        0.8,
        priority="high",
        description="Get assistance with using this page",
        keywords=("help", "assistance"),
        variations=("Show me help", "I need help"),
        examples=("How do I use this?", "What can I do here?"),
        reasoning="Fallback help suggestion",
    )]


def offline_suggestions() -> List[CommandSuggestion]:
    return [_suggestion(
        "offline-basic",
        "Basic navigation help",
        IntentCategory.HELP_REQUEST,
        0.6,
        description="Basic help when offline",
        keywords=("help", "basic"),
        reasoning="Offline mode basic help",
    )]


BASIC_COMPLETIONS = (
    "Help me with this page",
    "Go to home page",
    "Search for something",
    "What can I do here?",
)


def basic_completions(partial_input: str) -> List[str]:
    """Static commands containing ``partial_input``, for completion outages."""
    needle = partial_input.lower()
    return [command for command in BASIC_COMPLETIONS if needle in command.lower()]


# --------------------------------------------------------------------------- #
# Chain
# --------------------------------------------------------------------------- #

def _holds_suggestions(entry: Any) -> bool:
    return isinstance(entry.value, list) and any(isinstance(s, CommandSuggestion) for s in entry.value)


@dataclass
class FallbackStrategy:
    type: FallbackType
    priority: int
    handler: FallbackHandler
    enabled: bool = True
    description: str = ""


class FallbackChain:
    """Ordered fallback strategies; the first non-``None`` response wins.

    A strategy that raises is logged and skipped. When every strategy
    declines or fails the chain returns an empty response flagged as a
    fallback with a descriptive error; :meth:`run` never raises.
    """

    def __init__(self, configs: Sequence[FallbackStrategyConfig], cache: Any = None,
                 *, clock: Callable[[], float] = time.time):
        self.cache = cache
        self._clock = clock
        self._lock = threading.Lock()
        handlers: Dict[FallbackType, FallbackHandler] = {
            FallbackType.CACHE: self._from_cache,
            FallbackType.TEMPLATE: self._from_templates,
            FallbackType.MINIMAL: self._minimal,
            FallbackType.OFFLINE: self._offline,
        }
        self._strategies: List[FallbackStrategy] = [
            FallbackStrategy(
                type=cfg.type,
                priority=cfg.priority,
                handler=handlers[cfg.type],
                enabled=cfg.enabled,
                description=cfg.description,
            )
            for cfg in configs
        ]

    def strategies(self) -> List[FallbackStrategy]:
        with self._lock:
            return sorted(self._strategies, key=lambda s: s.priority)

    def set_enabled(self, fallback_type: FallbackType, enabled: bool) -> None:
        with self._lock:
            for strategy in self._strategies:
                if strategy.type == fallback_type:
                    strategy.enabled = enabled
        logger.info("Fallback strategy %s %s", fallback_type.value,
                    "enabled" if enabled else "disabled")

    def replace_handler(self, fallback_type: FallbackType, handler: FallbackHandler) -> None:
        with self._lock:
            for strategy in self._strategies:
                if strategy.type == fallback_type:
                    strategy.handler = handler

    def run(
        self,
        context: SuggestionContext,
        error: SuggestionError,
        *,
        service_name: str = "suggestion_engine",
        cache_key: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> SuggestionResponse:
        started = self._clock()
        for strategy in self.strategies():
            if not strategy.enabled:
                continue
            try:
                response = strategy.handler(context, error, cache_key, user_id)
            except Exception as exc:
                logger.warning("Fallback strategy '%s' failed: %s", strategy.type.value, exc)
                continue
            if response is None:
                continue
            logger.info("Fallback strategy '%s' succeeded for %s", strategy.type.value, service_name)
            response.fallback_used = True
            response.strategy = strategy.type.value
            if response.error is None:
                response.error = f"{error.code.value}: {error.message}"
            response.processing_time_ms = (self._clock() - started) * 1000
            return response

        logger.error("All fallback strategies failed for %s", service_name)
        return SuggestionResponse(
            suggestions=[],
            fallback_used=True,
            confidence=0.0,
            error=f"All fallback strategies failed ({error.code.value}: {error.message})",
            processing_time_ms=(self._clock() - started) * 1000,
        )

    # ---- Built-in handlers

    def _from_cache(self, context: SuggestionContext, error: SuggestionError,
                    cache_key: Optional[str], user_id: Optional[str]) -> Optional[SuggestionResponse]:
        if self.cache is None:
            return None
        entry = None
        if cache_key:
            entry = self.cache.peek(cache_key, context, user_id)
        if entry is None or not _holds_suggestions(entry):
            entry = self.cache.latest_for_context(context, _holds_suggestions, user_id)
        if entry is None:
            return None
        suggestions = [s for s in entry.value if isinstance(s, CommandSuggestion)]
        if not suggestions:
            return None
        return SuggestionResponse(
            suggestions=suggestions,
            confidence=sum(s.confidence for s in suggestions) / len(suggestions),
            cache_hit=True,
        )

    def _from_templates(self, context: SuggestionContext, error: SuggestionError,
                        cache_key: Optional[str], user_id: Optional[str]) -> Optional[SuggestionResponse]:
        return SuggestionResponse(suggestions=template_suggestions(context), confidence=0.7)

    def _minimal(self, context: SuggestionContext, error: SuggestionError,
                 cache_key: Optional[str], user_id: Optional[str]) -> Optional[SuggestionResponse]:
        return SuggestionResponse(
            suggestions=minimal_suggestions(),
            confidence=0.5,
            error=f"Service unavailable: {error.message}",
        )

    def _offline(self, context: SuggestionContext, error: SuggestionError,
                 cache_key: Optional[str], user_id: Optional[str]) -> Optional[SuggestionResponse]:
        return SuggestionResponse(suggestions=offline_suggestions(), confidence=0.6)
