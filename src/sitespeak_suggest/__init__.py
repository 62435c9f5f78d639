"""Command completion, caching and resilient suggestion generation."""

from .config import SuggestionConfig
from .models import (
    CommandSuggestion,
    CompletionMatch,
    CompletionResult,
    IndexEntry,
    IntentCategory,
    MatchType,
    SuggestionContext,
    SuggestionResponse,
)
from .service import SuggestionService

__version__ = "0.1.0"

__all__ = [
    "CommandSuggestion",
    "CompletionMatch",
    "CompletionResult",
    "IndexEntry",
    "IntentCategory",
    "MatchType",
    "SuggestionConfig",
    "SuggestionContext",
    "SuggestionResponse",
    "SuggestionService",
    "__version__",
]
