"""Document and section classification.

Three classifiers of increasing cost:

- detect_section_type(): keyword labelling of a single chunk (no AI).
- DocumentClassifier.classify_types(): multi-label content types. Keyword
  scoring first; the LLM is asked only when keywords find nothing.
- DocumentClassifier.classify(): primary document type via the LLM.

Every LLM path degrades to a default instead of raising.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel

from src.equipment_rag.llm_json import Parsed, parse_json_array, parse_json_object
from src.equipment_rag.matching import normalize_text

logger = logging.getLogger(__name__)

CLASSIFICATION_TYPES = {"manual", "installation", "catalogue", "schematic", "datasheet", "other"}

DOCUMENT_TYPES: list[str] = [
    "manual",
    "installation",
    "maintenance",
    "troubleshooting",
    "parts",
    "electrical",
    "mechanical",
    "safety",
]

# Accent-free keywords matched against normalize_text() output
TYPE_KEYWORDS: dict[str, list[str]] = {
    "installation": ["installation", "montage", "mise en service", "raccordement", "implantation"],
    "maintenance": ["maintenance", "entretien", "graissage", "lubrification", "vidange"],
    "troubleshooting": ["panne", "depannage", "anomalie", "defaut", "diagnostic", "troubleshooting"],
    "parts": ["pieces de rechange", "liste des pieces", "spare parts", "rechange", "code article"],
    "electrical": ["schema electrique", "electrique", "cablage", "armoire", "wiring", "electrical"],
    "mechanical": ["mecanique", "roulement", "reducteur", "engrenage", "mechanical"],
    "safety": ["securite", "consignes de securite", "danger", "avertissement", "safety"],
}

# A type needs this many keyword hits before the pattern tier claims it
_MIN_KEYWORD_HITS = 2

CLASSIFY_PROMPT = """Analyze this industrial document excerpt and classify its type.

Document types:
- manual: User/maintenance manual (operations, maintenance procedures, troubleshooting)
- installation: Installation guide (setup, commissioning, first-time configuration)
- catalogue: Parts catalog (spare parts list, reference codes, ordering info)
- schematic: Technical drawings (electrical, pneumatic, hydraulic diagrams)
- datasheet: Technical specifications (specs, characteristics, performance data)
- other: Other document type

Document excerpt:
\"\"\"
{excerpt}
\"\"\"

Respond ONLY with JSON:
{{
  "type": "manual|installation|catalogue|schematic|datasheet|other",
  "confidence": 0.0-1.0,
  "reasoning": "Brief explanation"
}}"""

CLASSIFY_TYPES_PROMPT = """You are analyzing an equipment manual to classify its content types.

Equipment Information:
- Name: {name}
- Manufacturer: {manufacturer}
- Category: {category}

Document Text Sample (first 3000 chars):
{excerpt}

Available document types:
{types}

Task: Determine which types of content this document contains.

Rules:
1. Select ALL applicable types (a document can have multiple)
2. Base your decision on actual content, not assumptions
3. If you're unsure, include 'manual' as fallback

Respond with ONLY a JSON array of type strings, nothing else.
Example: ["maintenance", "parts", "troubleshooting"]"""


class ClassificationResult(BaseModel):
    """Primary document type with the model's confidence."""

    type: str = "manual"
    confidence: float = 0.5
    reasoning: str = ""


def detect_section_type(content: str) -> str:
    """Label a chunk by keyword: safety, maintenance, installation,
    troubleshooting, specs, parts_list or general."""
    text = content.lower()
    if any(k in text for k in ("sécurité", "danger", "avertissement", "epi")):
        return "safety"
    if any(k in text for k in ("maintenance", "entretien", "lubrification", "graissage")):
        return "maintenance"
    if any(k in text for k in ("installation", "montage", "mise en service")):
        return "installation"
    if any(k in text for k in ("panne", "dépannage", "diagnostic", "erreur", "défaut")):
        return "troubleshooting"
    if any(k in text for k in ("caractéristiques", "spécifications", "dimensions", "poids")):
        return "specs"
    if any(k in text for k in ("pièce", "référence", "rechange", "code article")):
        return "parts_list"
    return "general"


def detect_types_by_keywords(text: str) -> list[str]:
    """Pattern tier of content-type classification."""
    normalized = normalize_text(text)
    detected = [
        doc_type
        for doc_type, keywords in TYPE_KEYWORDS.items()
        if sum(normalized.count(k) for k in keywords) >= _MIN_KEYWORD_HITS
    ]
    return [t for t in DOCUMENT_TYPES if t in detected]


class DocumentClassifier:
    """Classifies documents by primary type and by content types.

    Args:
        llm: LLM instance with an async ainvoke(prompt) method.
    """

    def __init__(self, llm: Any) -> None:
        self._llm = llm

    async def classify(self, text: str) -> ClassificationResult:
        """Classify the primary type of a document.

        Args:
            text: Cleaned document text. Only the first 3000 chars are sent.

        Returns:
            ClassificationResult, "manual" at 0.5 when the LLM fails.
        """
        prompt = CLASSIFY_PROMPT.format(excerpt=text[:3000])
        try:
            response = await self._llm.ainvoke(prompt)
        except Exception:
            logger.warning("Document classification failed, defaulting to manual", exc_info=True)
            return ClassificationResult(reasoning="Default classification (error occurred)")

        result = parse_json_object(response)
        if not isinstance(result, Parsed):
            logger.warning("Unparseable classification reply: %s", result.reason)
            return ClassificationResult(reasoning="Default classification (unparsed reply)")

        doc_type = str(result.data.get("type", "manual")).lower()
        if doc_type not in CLASSIFICATION_TYPES:
            doc_type = "other"
        try:
            confidence = float(result.data.get("confidence", 0.5))
        except (TypeError, ValueError):
            confidence = 0.5
        return ClassificationResult(
            type=doc_type,
            confidence=max(0.0, min(1.0, confidence)),
            reasoning=str(result.data.get("reasoning", "")),
        )

    async def classify_types(self, text: str, metadata: dict[str, Any] | None = None) -> list[str]:
        """Determine which content types a document contains.

        Args:
            text: Cleaned document text.
            metadata: Optional identity fields (name, manufacturer, category)
                included in the LLM prompt.

        Returns:
            Non-empty list drawn from DOCUMENT_TYPES, ["manual"] as fallback.
        """
        detected = detect_types_by_keywords(text)
        if detected:
            logger.info("Content types from keywords: %s", detected)
            return detected

        meta = metadata or {}
        prompt = CLASSIFY_TYPES_PROMPT.format(
            name=meta.get("name") or "Unknown",
            manufacturer=meta.get("manufacturer") or "Unknown",
            category=meta.get("category") or "Unknown",
            excerpt=text[:3000],
            types="\n".join(f"- {t}" for t in DOCUMENT_TYPES),
        )
        try:
            response = await self._llm.ainvoke(prompt)
        except Exception:
            logger.warning("Content type classification failed", exc_info=True)
            return ["manual"]

        result = parse_json_array(response)
        if not isinstance(result, Parsed):
            logger.warning("Unparseable content type reply: %s", result.reason)
            return ["manual"]

        valid = [t for t in result.data if isinstance(t, str) and t in DOCUMENT_TYPES]
        return valid or ["manual"]
