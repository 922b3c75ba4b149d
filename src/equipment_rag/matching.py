"""Text normalisation and fuzzy string similarity.

Every comparison between query text and asset names, codes or aliases goes
through normalize_text() first so that case, accents and spacing never
decide a match. Edit-distance scoring uses rapidfuzz.
"""

from __future__ import annotations

import re
import unicodedata

from rapidfuzz.distance import Levenshtein

_ARABIC_RE = re.compile(r"[؀-ۿ]")
_ENGLISH_RE = re.compile(r"^[A-Za-z0-9\s\-_]+$")
_WHITESPACE_RE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    """Lowercase, strip diacritics and collapse whitespace."""
    decomposed = unicodedata.normalize("NFD", text.lower())
    stripped = "".join(c for c in decomposed if not unicodedata.combining(c))
    return _WHITESPACE_RE.sub(" ", stripped).strip()


def detect_language(text: str) -> str:
    """Guess the language tag of a short alias: "ar", "en" or "fr"."""
    if _ARABIC_RE.search(text):
        return "ar"
    if _ENGLISH_RE.match(text):
        return "en"
    return "fr"


def levenshtein_similarity(a: str, b: str) -> float:
    """Edit-distance similarity in [0, 1], 1.0 for identical strings.

    Computed as ``1 - distance / max(len(a), len(b))`` so that for strings
    of a fixed length the score strictly decreases with each extra edit.
    """
    if a == b:
        return 1.0
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - Levenshtein.distance(a, b) / longest


def word_similarity(query: str, target: str) -> float:
    """Share of the target's significant words that appear in the query.

    A target word counts fully when it is contained in (or contains) a query
    word; otherwise it earns its best Levenshtein similarity against the
    query words. Words of two characters or fewer are ignored.

    Args:
        query: Normalized query text.
        target: Normalized asset name or alias.

    Returns:
        Mean per-word score in [0, 1].
    """
    if not query or not target:
        return 0.0

    query_words = [w for w in query.split() if len(w) > 2]
    target_words = [w for w in target.split() if len(w) > 2]
    if not target_words or not query_words:
        return 0.0

    total = 0.0
    for target_word in target_words:
        if any(target_word in qw or qw in target_word for qw in query_words):
            total += 1.0
            continue
        total += max(levenshtein_similarity(qw, target_word) for qw in query_words)

    return total / len(target_words)


def _bigrams(text: str) -> set[str]:
    return {text[i : i + 2] for i in range(len(text) - 1)}


def bigram_similarity(a: str, b: str) -> float:
    """Jaccard overlap of character bigrams."""
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0

    first = _bigrams(a)
    second = _bigrams(b)
    if not first or not second:
        return 0.0

    overlap = len(first & second)
    return overlap / (len(first) + len(second) - overlap)
