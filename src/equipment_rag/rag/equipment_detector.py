"""Identify which equipment a question is about when none was selected.

Each asset of the tenant is checked in priority order: exact name, exact
code, custom name, then fuzzy word similarity. The alias table is scanned
afterwards for assets not yet detected. Candidates are deduplicated by
asset, keeping the most confident match.
"""

from __future__ import annotations

import logging

from src.equipment_rag.matching import normalize_text, word_similarity
from src.equipment_rag.models import DetectedEquipment, DetectionResult
from src.equipment_rag.store.base import MaintenanceStore

logger = logging.getLogger(__name__)


class EquipmentDetector:
    """Fuzzy equipment detection over a tenant's assets.

    Args:
        store: Source of assets and aliases.
        fuzzy_threshold: Minimum word similarity for a fuzzy match.
    """

    def __init__(self, store: MaintenanceStore, fuzzy_threshold: float = 0.7) -> None:
        self._store = store
        self._threshold = fuzzy_threshold

    async def detect(self, query: str, organization_id: str | None) -> DetectionResult:
        """Detect equipment mentioned in a query.

        Args:
            query: Raw user question.
            organization_id: Tenant scope; None scans every asset.

        Returns:
            DetectionResult with mode "none", "single" or "multi".
        """
        normalized_query = normalize_text(query)
        assets = await self._store.list_assets(organization_id)
        detected: list[DetectedEquipment] = []

        for asset in assets:
            name = normalize_text(asset.name)
            code = normalize_text(asset.code) if asset.code else ""
            custom = normalize_text(asset.custom_name) if asset.custom_name else ""

            def hit(mentioned_as: str, confidence: float, match_type: str) -> DetectedEquipment:
                return DetectedEquipment(
                    equipment_id=asset.id,
                    equipment_name=asset.name,
                    custom_name=asset.custom_name,
                    code=asset.code,
                    mentioned_as=mentioned_as,
                    confidence=confidence,
                    match_type=match_type,
                )

            if len(name) > 3 and name in normalized_query:
                detected.append(hit(asset.name, 1.0, "exact_name"))
                continue
            if len(code) >= 3 and code in normalized_query:
                detected.append(hit(asset.code or "", 1.0, "exact_code"))
                continue
            if len(custom) >= 3 and custom in normalized_query:
                detected.append(hit(asset.custom_name or "", 1.0, "exact_alias"))
                continue

            name_score = word_similarity(normalized_query, name)
            custom_score = word_similarity(normalized_query, custom) if custom else 0.0
            best = max(name_score, custom_score)
            if best >= self._threshold:
                mentioned = (asset.custom_name or asset.name) if custom_score > name_score else asset.name
                detected.append(hit(mentioned, round(best, 3), "fuzzy"))

        already = {d.equipment_id for d in detected}
        for alias, asset in await self._store.list_aliases(organization_id):
            if asset.id in already:
                continue
            alias_normalized = normalize_text(alias.alias)
            if len(alias_normalized) >= 3 and alias_normalized in normalized_query:
                detected.append(
                    DetectedEquipment(
                        equipment_id=asset.id,
                        equipment_name=asset.name,
                        custom_name=asset.custom_name,
                        code=asset.code,
                        mentioned_as=alias.alias,
                        confidence=1.0,
                        match_type="exact_alias",
                    )
                )
                already.add(asset.id)

        unique = _deduplicate(detected)
        unique.sort(key=lambda d: d.confidence, reverse=True)
        mode = "none" if not unique else "single" if len(unique) == 1 else "multi"

        logger.info(
            "Equipment detection over %d assets: mode=%s found=%d", len(assets), mode, len(unique)
        )
        return DetectionResult(detected=unique, mode=mode, query=query)


def _deduplicate(detections: list[DetectedEquipment]) -> list[DetectedEquipment]:
    seen: dict[str, DetectedEquipment] = {}
    for detection in detections:
        existing = seen.get(detection.equipment_id)
        if existing is None or detection.confidence > existing.confidence:
            seen[detection.equipment_id] = detection
    return list(seen.values())


def format_detected_equipment(detected: list[DetectedEquipment]) -> str:
    """Numbered one-line-per-candidate listing."""
    if not detected:
        return "No equipment detected"
    lines = []
    for index, item in enumerate(detected, start=1):
        custom = f' ("{item.custom_name}")' if item.custom_name else ""
        lines.append(f"{index}. {item.equipment_name}{custom} [{round(item.confidence * 100)}%]")
    return "\n".join(lines)
