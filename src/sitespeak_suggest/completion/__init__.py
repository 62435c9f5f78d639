"""Auto-completion: similarity primitives, matchers, index and engine."""

from .engine import MatchEngine, merge_matches
from .index import CompletionIndex
from .matchers import (
    ExactMatcher,
    FuzzyMatcher,
    MatchQuery,
    PatternMatcher,
    SemanticMatcher,
    default_matchers,
)
from .similarity import string_similarity, token_overlap, tokenize

__all__ = [
    "CompletionIndex",
    "MatchEngine",
    "MatchQuery",
    "ExactMatcher",
    "FuzzyMatcher",
    "SemanticMatcher",
    "PatternMatcher",
    "default_matchers",
    "merge_matches",
    "string_similarity",
    "token_overlap",
    "tokenize",
]
