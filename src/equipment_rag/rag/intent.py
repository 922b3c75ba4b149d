"""Keyword intent detection over French, English and Arabic queries.

Maps a question to the document content types worth searching. An empty
result means "search everything".
"""

from __future__ import annotations

import re

from pydantic import BaseModel, Field

# Pattern alternatives per content type; Arabic first, then English and French
INTENT_PATTERNS: dict[str, re.Pattern[str]] = {
    "parts": re.compile(
        r"قطع الغيار|قطع|spare parts?|\bparts?\b|pièces?|catalogue", re.IGNORECASE
    ),
    "maintenance": re.compile(r"صيانة|maintenance|entretien|maintain|servic", re.IGNORECASE),
    "installation": re.compile(r"تركيب|install|montage|monter|setup", re.IGNORECASE),
    "troubleshooting": re.compile(
        r"عطل|مشكل|خلل|troubleshoot|problem|issue|fault|panne|défaut|dépannage",
        re.IGNORECASE,
    ),
    "electrical": re.compile(r"كهرباء|كهربائي|electrical|electric|électrique", re.IGNORECASE),
    "mechanical": re.compile(r"ميكانيك|ميكانيكي|mechanical|mechanic|mécanique", re.IGNORECASE),
    "safety": re.compile(r"أمان|سلامة|safety|\bsafe\b|sécurité|sûreté", re.IGNORECASE),
}


class IntentResult(BaseModel):
    """Detected content types for a query.

    Attributes:
        types: Matched content types, in declaration order.
        confidence: 0.0 when nothing matched, rising with each extra keyword.
        matched_keywords: The literal text that triggered each match.
    """

    types: list[str] = Field(default_factory=list)
    confidence: float = 0.0
    matched_keywords: list[str] = Field(default_factory=list)

    @property
    def document_types(self) -> list[str]:
        """Filter for document search; empty means unrestricted."""
        return list(self.types)


def detect_query_intent(query: str) -> IntentResult:
    """Score a query against the multilingual intent patterns."""
    types: list[str] = []
    keywords: list[str] = []
    for doc_type, pattern in INTENT_PATTERNS.items():
        matches = [m.group(0).lower() for m in pattern.finditer(query)]
        if matches:
            types.append(doc_type)
            keywords.extend(dict.fromkeys(matches))

    if not types:
        return IntentResult()
    confidence = min(1.0, 0.6 + 0.1 * (len(keywords) - 1))
    return IntentResult(types=types, confidence=round(confidence, 2), matched_keywords=keywords)
