# recitation/similarity.py
"""
Pluggable similarity scorers. Every scorer takes two prepared (normalized/folded) strings
and returns a value in [0, 1]; the matcher never depends on the algorithm behind it.
"""
from typing import Callable

from rapidfuzz import fuzz
from rapidfuzz.distance import Levenshtein

Similarity = Callable[[str, str], float]


def name_similarity(a: str, b: str) -> float:
    """Whole-string similarity, for short names and aliases."""
    if not a or not b:
        return 0.0
    return fuzz.ratio(a, b) / 100.0


def text_similarity(query: str, text: str) -> float:
    """
    How well a (possibly partial) recitation matches a verse text.

    A query shorter than the verse is aligned against its best window, since partial
    recitation is expected. A query longer than the verse is compared whole, otherwise
    a two-letter verse would match any query containing those two letters.
    """
    if not query or not text:
        return 0.0
    if len(query) > len(text):
        return fuzz.ratio(query, text) / 100.0
    return fuzz.partial_ratio(query, text) / 100.0


def within_edit_distance(a: str, b: str, max_distance: int) -> bool:
    return Levenshtein.distance(a, b, score_cutoff=max_distance) <= max_distance
