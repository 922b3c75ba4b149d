"""Alias resolution: rewrite shop-floor nicknames to canonical asset names.

Technicians refer to equipment by jargon ("le gros compresseur"), Darija or
abbreviations. Before search, each known alias found in the query is
replaced by the canonical asset name so embeddings and keyword checks see
the vocabulary used in the manuals.
"""

from __future__ import annotations

import logging
import re

from pydantic import BaseModel, Field

from src.equipment_rag.matching import bigram_similarity, normalize_text
from src.equipment_rag.models import ResolvedAlias
from src.equipment_rag.store.base import MaintenanceStore

logger = logging.getLogger(__name__)


class AliasResolution(BaseModel):
    """Query before and after alias rewriting."""

    original_query: str
    modified_query: str
    resolved: list[ResolvedAlias] = Field(default_factory=list)


class AliasResolver:
    """Finds known aliases in a query.

    Args:
        store: Source of the tenant's alias table.
        similarity_threshold: Minimum bigram similarity for a fuzzy hit.
    """

    def __init__(self, store: MaintenanceStore, similarity_threshold: float = 0.6) -> None:
        self._store = store
        self._threshold = similarity_threshold

    async def resolve(self, query: str, organization_id: str | None) -> list[ResolvedAlias]:
        """Aliases mentioned in the query, one per asset, best first."""
        normalized_query = normalize_text(query)
        best: dict[str, ResolvedAlias] = {}

        for alias, asset in await self._store.list_aliases(organization_id):
            alias_normalized = alias.alias_normalized or normalize_text(alias.alias)
            if alias_normalized and alias_normalized in normalized_query:
                confidence = 1.0
            else:
                confidence = bigram_similarity(normalized_query, alias_normalized)
                if confidence <= self._threshold:
                    continue

            current = best.get(asset.id)
            if current is None or confidence > current.confidence:
                best[asset.id] = ResolvedAlias(
                    alias=alias.alias,
                    canonical_name=asset.name,
                    asset_id=asset.id,
                    confidence=confidence,
                )

        return sorted(best.values(), key=lambda r: r.confidence, reverse=True)

    async def preprocess(self, query: str, organization_id: str | None) -> AliasResolution:
        """Resolve aliases and substitute canonical names into the query."""
        resolved = await self.resolve(query, organization_id)
        modified = query
        for item in resolved:
            modified = re.sub(
                re.escape(item.alias),
                lambda _match, name=item.canonical_name: name,
                modified,
                flags=re.IGNORECASE,
            )

        if resolved:
            logger.info(
                "Alias resolution: %r -> %r (%s)",
                query,
                modified,
                ", ".join(f"{r.alias} -> {r.canonical_name}" for r in resolved),
            )
        return AliasResolution(original_query=query, modified_query=modified, resolved=resolved)


def build_equipment_context(resolved: list[ResolvedAlias]) -> str:
    """Prompt block naming the equipment referenced through aliases."""
    if not resolved:
        return ""
    lines = [f'Equipment: {r.canonical_name} (also known as "{r.alias}")' for r in resolved]
    return "\n\nReferenced Equipment:\n" + "\n".join(lines)
