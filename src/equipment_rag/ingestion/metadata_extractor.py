"""Tiered extraction of equipment identity from document text.

Cheapest tier first:

  0. Metadata cache keyed by a hash of the document's first 5000 chars.
  1. Pattern tier: equipment keywords, context lines, title lines, known
     manufacturer fingerprints and labelled model numbers. No API cost.
  2. LLM tier, seeded with whatever the pattern tier found.

Whatever tier answers, the result is written back to the cache. Cache
read and write failures are logged and never abort extraction.
"""

from __future__ import annotations

import hashlib
import logging
import re
from typing import Any

from pydantic import BaseModel

from src.equipment_rag.config import EquipmentRAGConfig
from src.equipment_rag.errors import MetadataExtractionFailure, PersistenceError
from src.equipment_rag.llm_json import Parsed, parse_json_object
from src.equipment_rag.models import CachedMetadata, ExtractedMetadata
from src.equipment_rag.store.base import MaintenanceStore

logger = logging.getLogger(__name__)

EQUIPMENT_KEYWORDS: list[str] = [
    "MEGABLOC",
    "MALAXEUR",
    "TRANSBORDEUR",
    "TRANSPALETTE",
    "CENTRALE",
    "PRESSE",
    "VIBRATEUR",
    "CONVOYEUR",
    "TRANSPORTEUR",
    "DOSEUR",
    "MELANGEUR",
    "MULTIFOURCHE",
    "COMPRESSEUR",
]

CONTEXT_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"ENTRETIEN[^\n]*\n+\s*([A-Z][A-Z\s-]{4,40})", re.IGNORECASE),
    re.compile(r"MANUEL[^\n]*\n+\s*([A-Z][A-Z\s-]{4,40})", re.IGNORECASE),
    re.compile(r"LISTE.*RECHANGE[^\n]*\n+\s*([A-Z][A-Z\s-]{4,40})", re.IGNORECASE),
]

CONTEXT_BLACKLIST = [
    "LES GEANTS",
    "REVETEMENT",
    "MAROC",
    "POYATOS",
    "ESPANA",
    "ESPAÑA",
    "PIECES DE RECHANGE",
]

TITLE_BLACKLIST = [
    "ENTRETIEN",
    "MANUEL",
    "LISTE",
    "PIECES",
    "RECHANGE",
    "LES GEANTS",
    "REVETEMENT",
    "MAROC",
    "OCTOBRE",
    "PAGE",
    "INDEX",
]

# Addresses, domains and contact details that identify a manufacturer
MANUFACTURER_FINGERPRINTS: dict[str, list[re.Pattern[str]]] = {
    "POYATOS": [
        re.compile(r"pol[ií]gono.*juncaril", re.IGNORECASE),
        re.compile(r"albolote.*granada", re.IGNORECASE),
        re.compile(r"18220.*albolote", re.IGNORECASE),
        re.compile(r"poyatos\.com", re.IGNORECASE),
        re.compile(r"taller@poyatos", re.IGNORECASE),
        re.compile(r"\bpoyatos\b", re.IGNORECASE),
    ],
    "FIAC": [
        re.compile(r"fiac\.it", re.IGNORECASE),
        re.compile(r"pontecchio\s+marconi", re.IGNORECASE),
        re.compile(r"\bfiac\b", re.IGNORECASE),
    ],
    "ATLAS COPCO": [
        re.compile(r"atlascopco\.com", re.IGNORECASE),
        re.compile(r"\batlas\s+copco\b", re.IGNORECASE),
    ],
}

_MODEL_CODE = r"([A-Z]{2,4}-?\d{3,4}[A-Z]?)"

MODEL_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    ("Type:", re.compile(rf"Type[:\s]+{_MODEL_CODE}", re.IGNORECASE)),
    ("Ref:", re.compile(rf"Ref[:\s]+{_MODEL_CODE}", re.IGNORECASE)),
    ("Model:", re.compile(rf"Model[:\s]+{_MODEL_CODE}", re.IGNORECASE)),
    ("Modèle:", re.compile(rf"Modèle[:\s]+{_MODEL_CODE}", re.IGNORECASE)),
    ("MF-xxx", re.compile(r"\b(MF-?\d{3,4}[A-Z]?)\b", re.IGNORECASE)),
    ("MP-xxx", re.compile(r"\b(MP-?\d{3,4}[A-Z]?)\b", re.IGNORECASE)),
    ("TB-xxx", re.compile(r"\b(TB-?\d{3,4}[A-Z]?)\b", re.IGNORECASE)),
    ("DC-xxx", re.compile(r"\b(DC-?\d{3,4}[A-Z]?)\b", re.IGNORECASE)),
]

_TITLE_LINE_RE = re.compile(r"^[A-Z0-9\s-]+$")
_MAX_NAME_LENGTH = 35

AI_EXTRACTION_PROMPT = """You are extracting equipment metadata from an industrial manual.

**CONFIRMED PATTERNS FROM REGEX:**
{hint_manufacturer}
{hint_model}
{hint_name}

**YOUR TASK:**
Complete or verify the extraction for this document.

File: {file_name}

Text Sample:
\"\"\"
{excerpt}
\"\"\"

Return JSON only:
{{
  "name": "Equipment name from title/header",
  "manufacturer": "{manufacturer_slot}",
  "model": "{model_slot}",
  "serial_number": null,
  "category": "Equipment type (Malaxeur, Transbordeur, Compresseur, etc)",
  "description": "Brief description in French (1 sentence)"
}}

**RULES:**
- Keep confirmed values from regex
- If a manufacturer address or website is visible, use that manufacturer
- Model patterns: MF-1500, MP-500, TB-3000, DC-SPL
- Respond with ONLY valid JSON"""


class PatternMatch(BaseModel):
    """Output of the pattern tier."""

    name: str | None = None
    manufacturer: str | None = None
    model: str | None = None
    confidence: float = 0.0


def document_hash(text: str) -> str:
    """Cache key: SHA-256 of the first 5000 characters."""
    return hashlib.sha256(text[:5000].encode("utf-8")).hexdigest()


def infer_category(name: str) -> str:
    """Map an equipment name to a coarse category."""
    upper = name.upper()
    if "MALAXEUR" in upper:
        return "Malaxeur"
    if "TRANSBORDEUR" in upper:
        return "Transbordeur"
    if "TRANSPALETTE" in upper:
        return "Transpalette"
    if "CENTRALE" in upper:
        return "Centrale à béton"
    if "MEGABLOC" in upper or "PRESSE" in upper:
        return "Presse"
    if "COMPRESS" in upper:
        return "Compresseur"
    return "Équipement"


# ── Pattern tier ────────────────────────────────────────────────────────────


def _trim_descriptor(name: str) -> str:
    name = re.sub(r"\s+\d+\s*[xX×]\s*\d+.*$", "", name)
    name = re.sub(r"\s+BANDEJA.*$", "", name, flags=re.IGNORECASE)
    name = re.sub(r"\s+TABLE.*$", "", name, flags=re.IGNORECASE)
    if len(name) > _MAX_NAME_LENGTH:
        last_space = name[:_MAX_NAME_LENGTH].rfind(" ")
        name = name[:last_space] if last_space > 15 else name[:_MAX_NAME_LENGTH]
    return name.strip()


def _name_from_keywords(first_page: str) -> tuple[str, float] | None:
    for keyword in EQUIPMENT_KEYWORDS:
        if not re.search(rf"\b{keyword}\b", first_page, re.IGNORECASE):
            continue
        if re.search(rf"^\s*{keyword}\s*$", first_page, re.IGNORECASE | re.MULTILINE):
            return keyword, 0.98
        match = re.search(
            rf"\b({keyword}(?:\s+(?:AVEC|DE|TYPE|POUR)[^\n]{{0,20}})?)", first_page, re.IGNORECASE
        )
        if match:
            return _trim_descriptor(match.group(1).strip().upper()), 0.95
        return keyword, 0.90
    return None


def _name_from_context(first_page: str) -> str | None:
    for pattern in CONTEXT_PATTERNS:
        match = pattern.search(first_page)
        if not match:
            continue
        candidate = match.group(1).strip()
        if len(candidate) >= 4 and not any(t in candidate.upper() for t in CONTEXT_BLACKLIST):
            return candidate.upper()
    return None


def _name_from_title(first_page: str) -> str | None:
    lines = [line.strip() for line in first_page.split("\n") if line.strip()]
    for line in lines[:15]:
        if (
            line == line.upper()
            and 4 <= len(line) <= 30
            and _TITLE_LINE_RE.match(line)
            and not any(t in line for t in TITLE_BLACKLIST)
        ):
            return line
    return None


def detect_manufacturer(text: str) -> str | None:
    """First manufacturer whose fingerprint appears in the text."""
    for manufacturer, patterns in MANUFACTURER_FINGERPRINTS.items():
        if any(p.search(text) for p in patterns):
            return manufacturer
    return None


def extract_with_patterns(text: str) -> PatternMatch:
    """Run the pattern tier over the first pages of a document.

    Names come from the first 1500 chars, manufacturer and model from the
    first 5000.
    """
    first_page = text[:1500]
    first_5000 = text[:5000]
    result = PatternMatch()

    keyword_hit = _name_from_keywords(first_page)
    if keyword_hit:
        result.name, result.confidence = keyword_hit
    else:
        context_name = _name_from_context(first_page)
        if context_name:
            result.name = context_name
            result.confidence = max(result.confidence, 0.85)
        else:
            title = _name_from_title(first_page)
            if title:
                result.name = title
                result.confidence = max(result.confidence, 0.75)

    manufacturer = detect_manufacturer(first_5000)
    if manufacturer:
        result.manufacturer = manufacturer
        result.confidence = max(result.confidence, 0.95)

    for label, pattern in MODEL_PATTERNS:
        match = pattern.search(first_5000)
        if match:
            result.model = match.group(1).upper()
            result.confidence = max(result.confidence, 0.85)
            logger.debug("Model detected via %s: %s", label, result.model)
            break

    if result.manufacturer and result.model:
        result.confidence = 0.92
    elif result.manufacturer or result.model:
        result.confidence = max(result.confidence, 0.75)

    logger.info(
        "Pattern tier: name=%s manufacturer=%s model=%s confidence=%.2f",
        result.name,
        result.manufacturer,
        result.model,
        result.confidence,
    )
    return result


# ── Tiered extractor ────────────────────────────────────────────────────────


def _file_stem(file_name: str) -> str:
    return re.sub(r"\.pdf$", "", file_name, flags=re.IGNORECASE)


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text if text and text.lower() not in ("null", "none", "n/a") else None


class TieredMetadataExtractor:
    """Cache, then patterns, then LLM.

    Args:
        store: Backs the metadata cache.
        llm: LLM instance with an async ainvoke(prompt) method.
        config: Provides cache and pattern acceptance thresholds.
    """

    def __init__(self, store: MaintenanceStore, llm: Any, config: EquipmentRAGConfig) -> None:
        self._store = store
        self._llm = llm
        self._cache_min_confidence = config.metadata_cache_min_confidence
        self._regex_accept_confidence = config.regex_accept_confidence

    async def extract(self, text: str, file_name: str) -> ExtractedMetadata:
        """Extract identity metadata for a document.

        Args:
            text: Cleaned document text.
            file_name: Original upload name, used as a last-resort name.

        Returns:
            ExtractedMetadata tagged with the tier that produced it.
        """
        key = document_hash(text)
        try:
            cached = await self._store.get_cached_metadata(key)
        except PersistenceError:
            logger.warning("Metadata cache lookup failed for %s", file_name, exc_info=True)
            cached = None
        if cached and cached.manufacturer and cached.confidence > self._cache_min_confidence:
            logger.info("Metadata cache hit for %s", file_name)
            return ExtractedMetadata(
                **cached.model_dump(exclude={"document_hash", "method"}),
                method="cache",
            )

        hints = extract_with_patterns(text)

        if hints.manufacturer and hints.model and hints.confidence > self._regex_accept_confidence:
            name = hints.name or _file_stem(file_name).replace("_", " ")
            result = ExtractedMetadata(
                name=name,
                manufacturer=hints.manufacturer,
                model=hints.model,
                category=infer_category(hints.name or ""),
                description=f"Installation automatique {hints.manufacturer}",
                confidence=hints.confidence,
                method="regex",
            )
        else:
            try:
                result = await self._extract_with_llm(text, file_name, hints)
            except MetadataExtractionFailure:
                logger.warning("AI metadata extraction failed for %s", file_name, exc_info=True)
                name = hints.name or _file_stem(file_name)
                result = ExtractedMetadata(
                    name=name,
                    manufacturer=hints.manufacturer,
                    model=hints.model,
                    category="Equipment",
                    description="Installation automatique",
                    confidence=hints.confidence,
                    method="regex",
                )

        try:
            await self._store.put_cached_metadata(
                CachedMetadata(document_hash=key, **result.model_dump())
            )
        except PersistenceError:
            logger.warning("Metadata cache write failed for %s", file_name, exc_info=True)
        return result

    async def _extract_with_llm(
        self, text: str, file_name: str, hints: PatternMatch
    ) -> ExtractedMetadata:
        prompt = AI_EXTRACTION_PROMPT.format(
            hint_manufacturer=(
                f"- Manufacturer: {hints.manufacturer} (confirmed)"
                if hints.manufacturer
                else "- Manufacturer: Not detected"
            ),
            hint_model=f"- Model: {hints.model} (confirmed)" if hints.model else "- Model: Not detected",
            hint_name=f"- Name: {hints.name} (detected)" if hints.name else "- Name: Not detected",
            file_name=file_name,
            excerpt=text[:3000],
            manufacturer_slot=hints.manufacturer or "Extract from first page or null",
            model_slot=hints.model or "Model number or null",
        )
        try:
            response = await self._llm.ainvoke(prompt)
        except Exception as exc:
            raise MetadataExtractionFailure(f"LLM call failed: {exc}") from exc

        parsed = parse_json_object(response)
        if not isinstance(parsed, Parsed):
            raise MetadataExtractionFailure(parsed.reason)

        data = parsed.data
        # Pattern-confirmed values win over the model's answer
        return ExtractedMetadata(
            name=_clean(data.get("name")) or hints.name or _file_stem(file_name),
            manufacturer=hints.manufacturer or _clean(data.get("manufacturer")),
            model=hints.model or _clean(data.get("model")),
            serial_number=_clean(data.get("serial_number")),
            category=_clean(data.get("category")),
            description=_clean(data.get("description")),
            confidence=0.85,
            method="hybrid" if hints.confidence > 0 else "ai",
        )
