"""String similarity primitives used by the matchers."""

from __future__ import annotations

import re
from typing import Iterable, List, Set

from Levenshtein import distance as levenshtein_distance

from ..models import HighlightRange

_WHITESPACE = re.compile(r"\s+")


def tokenize(text: str) -> List[str]:
    """Lower-case whitespace split; empty tokens are dropped."""
    return [token for token in _WHITESPACE.split(text.lower().strip()) if token]


def string_similarity(first: str, second: str) -> float:
    """Normalised Levenshtein ratio ``1 - distance / len(longer)``.

    Symmetric in its arguments; two empty strings are identical (1.0).
    """
    longer, shorter = (first, second) if len(first) >= len(second) else (second, first)
    if not longer:
        return 1.0
    return (len(longer) - levenshtein_distance(longer, shorter)) / len(longer)


def token_overlap(input_tokens: Iterable[str], candidate_tokens: Iterable[str]) -> float:
    """Share of tokens the input has in common with a candidate.

    ``|input ∩ candidate| / max(|input|, |candidate|)``, computed on sets.
    """
    inputs: Set[str] = set(input_tokens)
    candidates: Set[str] = set(candidate_tokens)
    denominator = max(len(inputs), len(candidates))
    if denominator == 0:
        return 0.0
    return len(inputs & candidates) / denominator


def token_ranges(partial_input: str, candidate: str) -> List[HighlightRange]:
    """Ranges of ``candidate`` where the input's tokens occur as substrings."""
    lowered = candidate.lower()
    ranges: List[HighlightRange] = []
    for token in tokenize(partial_input):
        start = lowered.find(token)
        if start != -1:
            ranges.append(HighlightRange(start=start, end=start + len(token)))
    return ranges
