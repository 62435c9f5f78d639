"""Core data structures for the suggestion subsystem.

Index entries, completion matches and generated command suggestions are
plain dataclasses; enums are ``str`` subclasses so they serialise cleanly
into logs and JSON reports.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class IntentCategory(str, Enum):
    # Navigation
    NAVIGATE_TO_PAGE = "navigate_to_page"
    NAVIGATE_TO_SECTION = "navigate_to_section"
    NAVIGATE_BACK = "navigate_back"
    NAVIGATE_FORWARD = "navigate_forward"
    SCROLL_TO_ELEMENT = "scroll_to_element"
    OPEN_MENU = "open_menu"
    CLOSE_MENU = "close_menu"
    # Actions
    CLICK_ELEMENT = "click_element"
    SUBMIT_FORM = "submit_form"
    CLEAR_FORM = "clear_form"
    SELECT_OPTION = "select_option"
    TOGGLE_ELEMENT = "toggle_element"
    COPY_CONTENT = "copy_content"
    PASTE_CONTENT = "paste_content"
    # Content
    EDIT_TEXT = "edit_text"
    ADD_CONTENT = "add_content"
    DELETE_CONTENT = "delete_content"
    REPLACE_CONTENT = "replace_content"
    FORMAT_CONTENT = "format_content"
    UNDO_ACTION = "undo_action"
    REDO_ACTION = "redo_action"
    # Queries
    SEARCH_CONTENT = "search_content"
    FILTER_RESULTS = "filter_results"
    SORT_RESULTS = "sort_results"
    GET_INFORMATION = "get_information"
    EXPLAIN_FEATURE = "explain_feature"
    SHOW_DETAILS = "show_details"
    # Commerce
    ADD_TO_CART = "add_to_cart"
    REMOVE_FROM_CART = "remove_from_cart"
    VIEW_PRODUCT = "view_product"
    COMPARE_PRODUCTS = "compare_products"
    CHECKOUT_PROCESS = "checkout_process"
    TRACK_ORDER = "track_order"
    # Control
    STOP_ACTION = "stop_action"
    CANCEL_OPERATION = "cancel_operation"
    PAUSE_PROCESS = "pause_process"
    RESUME_PROCESS = "resume_process"
    RESET_STATE = "reset_state"
    SAVE_PROGRESS = "save_progress"
    CONFIRM_ACTION = "confirm_action"
    DENY_ACTION = "deny_action"
    # Meta
    HELP_REQUEST = "help_request"
    TUTORIAL_REQUEST = "tutorial_request"
    FEEDBACK_PROVIDE = "feedback_provide"
    ERROR_REPORT = "error_report"
    UNKNOWN_INTENT = "unknown_intent"


class SuggestionCategory(str, Enum):
    NAVIGATION = "navigation"
    ACTION = "action"
    CONTENT = "content"
    QUERY = "query"
    CONTROL = "control"
    HELP = "help"
    DISCOVERY = "discovery"


class MatchType(str, Enum):
    EXACT = "exact"
    FUZZY = "fuzzy"
    SEMANTIC = "semantic"
    PATTERN = "pattern"


# Ranking weight per match type; higher sorts first regardless of confidence.
MATCH_TYPE_PRIORITY: Dict[MatchType, int] = {
    MatchType.EXACT: 1000,
    MatchType.FUZZY: 800,
    MatchType.SEMANTIC: 600,
    MatchType.PATTERN: 400,
}


_NAVIGATION = {
    IntentCategory.NAVIGATE_TO_PAGE, IntentCategory.NAVIGATE_TO_SECTION,
    IntentCategory.NAVIGATE_BACK, IntentCategory.NAVIGATE_FORWARD,
    IntentCategory.SCROLL_TO_ELEMENT, IntentCategory.OPEN_MENU,
    IntentCategory.CLOSE_MENU, IntentCategory.VIEW_PRODUCT,
}
_ACTION = {
    IntentCategory.CLICK_ELEMENT, IntentCategory.SUBMIT_FORM,
    IntentCategory.CLEAR_FORM, IntentCategory.SELECT_OPTION,
    IntentCategory.TOGGLE_ELEMENT, IntentCategory.COPY_CONTENT,
    IntentCategory.PASTE_CONTENT, IntentCategory.ADD_TO_CART,
    IntentCategory.REMOVE_FROM_CART, IntentCategory.CHECKOUT_PROCESS,
}
_CONTENT = {
    IntentCategory.EDIT_TEXT, IntentCategory.ADD_CONTENT,
    IntentCategory.DELETE_CONTENT, IntentCategory.REPLACE_CONTENT,
    IntentCategory.FORMAT_CONTENT, IntentCategory.UNDO_ACTION,
    IntentCategory.REDO_ACTION,
}
_QUERY = {
    IntentCategory.SEARCH_CONTENT, IntentCategory.FILTER_RESULTS,
    IntentCategory.SORT_RESULTS, IntentCategory.GET_INFORMATION,
    IntentCategory.EXPLAIN_FEATURE, IntentCategory.SHOW_DETAILS,
    IntentCategory.COMPARE_PRODUCTS, IntentCategory.TRACK_ORDER,
}
_CONTROL = {
    IntentCategory.STOP_ACTION, IntentCategory.CANCEL_OPERATION,
    IntentCategory.PAUSE_PROCESS, IntentCategory.RESUME_PROCESS,
    IntentCategory.RESET_STATE, IntentCategory.SAVE_PROGRESS,
    IntentCategory.CONFIRM_ACTION, IntentCategory.DENY_ACTION,
}
_HELP = {
    IntentCategory.HELP_REQUEST, IntentCategory.TUTORIAL_REQUEST,
    IntentCategory.FEEDBACK_PROVIDE, IntentCategory.ERROR_REPORT,
}


def intent_to_category(intent: IntentCategory) -> SuggestionCategory:
    """Map an intent onto the coarse category used for grouping suggestions."""
    for members, category in (
        (_NAVIGATION, SuggestionCategory.NAVIGATION),
        (_ACTION, SuggestionCategory.ACTION),
        (_CONTENT, SuggestionCategory.CONTENT),
        (_QUERY, SuggestionCategory.QUERY),
        (_CONTROL, SuggestionCategory.CONTROL),
        (_HELP, SuggestionCategory.HELP),
    ):
        if intent in members:
            return category
    return SuggestionCategory.DISCOVERY


# --------------------------------------------------------------------------- #
# Context
# --------------------------------------------------------------------------- #

@dataclass(frozen=True)
class SuggestionContext:
    """Page/user signature supplied by the embedding application."""
    page_type: str = "other"
    current_mode: str = "view"          # view | edit | preview
    user_role: str = "visitor"
    capabilities: Tuple[str, ...] = ()

    @property
    def partition_key(self) -> str:
        """Composite key for the context-partitioned cache tier."""
        caps = ",".join(self.capabilities[:3])
        return f"{self.page_type}-{self.current_mode}-{self.user_role}-{caps}"

    def matches(self, criteria: Dict[str, Any]) -> bool:
        """True when every field named in ``criteria`` has the same value."""
        return all(getattr(self, key, None) == value for key, value in criteria.items())


# --------------------------------------------------------------------------- #
# Index and completion types
# --------------------------------------------------------------------------- #

@dataclass
class IndexEntry:
    command: str
    intent: IntentCategory
    keywords: List[str] = field(default_factory=list)
    variations: List[str] = field(default_factory=list)
    frequency: int = 0
    last_used: float = field(default_factory=time.time)   # epoch secs

    def touch(self, now: Optional[float] = None) -> None:
        self.frequency += 1
        self.last_used = now if now is not None else time.time()


@dataclass(frozen=True)
class HighlightRange:
    """Half-open ``[start, end)`` span of the candidate text."""
    start: int
    end: int


@dataclass(frozen=True)
class CompletionMatch:
    text: str
    intent: IntentCategory
    confidence: float
    match_type: MatchType
    highlight_ranges: Tuple[HighlightRange, ...] = ()
    reasoning: str = ""
    parameters: Dict[str, Any] = field(default_factory=dict, hash=False, compare=False)

    @property
    def priority(self) -> int:
        return MATCH_TYPE_PRIORITY.get(self.match_type, 0)


@dataclass
class CommandSuggestion:
    """A generated (or templated) command offered to the user."""
    id: str
    command: str
    intent: IntentCategory
    confidence: float
    category: SuggestionCategory = SuggestionCategory.DISCOVERY
    priority: str = "medium"            # high | medium | low
    description: str = ""
    keywords: List[str] = field(default_factory=list)
    variations: List[str] = field(default_factory=list)
    examples: List[str] = field(default_factory=list)
    reasoning: str = ""
    source: str = "ai"                  # ai | template | user | pattern

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CompletionResult:
    matches: List[CompletionMatch]
    confidence: float
    partial_input: str = ""
    processing_time_ms: float = 0.0
    fallback_used: bool = False
    related: List[CommandSuggestion] = field(default_factory=list)

    @classmethod
    def empty(cls, partial_input: str = "") -> "CompletionResult":
        return cls(matches=[], confidence=0.0, partial_input=partial_input)


@dataclass
class SuggestionResponse:
    """Outward-facing result of a suggestion request; never an exception."""
    suggestions: List[CommandSuggestion]
    fallback_used: bool = False
    confidence: float = 0.0
    strategy: Optional[str] = None      # which fallback tier produced it
    cache_hit: bool = False
    error: Optional[str] = None
    processing_time_ms: float = 0.0
