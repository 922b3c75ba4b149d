"""Context fusion: vector hits plus graph and hierarchy blocks.

Routes a single query embedding to the sources the analysis asks for:

1. Manual chunks of the asset, restricted to intent-filtered document
   types with an unfiltered retry when the filter finds nothing.
2. Schematic documents, boosted when they mention a queried component or
   error code.
3. A dependency block and, for troubleshooting, the closest upstream
   assets' manuals at a discount.
4. A descendants block for site, line and subsystem questions.

Everything is labelled with its source type, ranked by similarity and cut
to max_results. Supplementary sources that fail are skipped with a warning.
"""

from __future__ import annotations

import logging
from typing import Literal

from pydantic import BaseModel, Field

from src.equipment_rag.config import EquipmentRAGConfig
from src.equipment_rag.embeddings import EmbeddingService
from src.equipment_rag.errors import EmbeddingServiceError, PersistenceError
from src.equipment_rag.models import (
    Asset,
    ChunkMatch,
    DependencyNeighbor,
    QueryAnalysis,
    SearchResult,
)
from src.equipment_rag.store.base import MaintenanceStore

logger = logging.getLogger(__name__)

INTENT_KEYWORDS: dict[str, list[str]] = {
    "troubleshooting": ["diagnostic", "panne", "erreur", "solution", "cause"],
    "maintenance": ["entretien", "maintenance", "périodique", "préventif", "intervalle"],
    "installation": ["installation", "mise en service", "configuration", "branchement"],
    "parts": ["pièce", "référence", "rechange", "code article"],
    "specs": ["caractéristique", "spécification", "technique", "dimension"],
    "procedure": ["procédure", "étape", "méthode", "comment"],
}

UPSTREAM_MANUAL_THRESHOLD = 0.4
UPSTREAM_MANUAL_COUNT = 3
UPSTREAM_MANUAL_DISCOUNT = 0.8
UPSTREAM_MANUAL_ASSETS = 2

_LEVEL_LABELS = {
    "line": "Lignes",
    "subsystem": "Sous-systèmes",
    "equipment": "Équipements",
    "component": "Composants",
}

ContextQuality = Literal["high", "medium", "low"]


class SearchSummary(BaseModel):
    """Observability payload describing the assembled context."""

    sources_used: int = 0
    source_types: list[str] = Field(default_factory=list)
    avg_relevance: int = 0
    context_quality: ContextQuality = "low"


def build_enhanced_query(query: str, analysis: QueryAnalysis) -> str:
    """Append intent keywords, components and error codes to the query."""
    parts = [query]
    keywords = INTENT_KEYWORDS.get(analysis.intent, [])
    if keywords:
        parts.append(" ".join(keywords[:2]))
    if analysis.components_mentioned:
        parts.append(" ".join(analysis.components_mentioned))
    if analysis.error_codes:
        parts.append(" ".join(analysis.error_codes))
    return " ".join(parts)


def summarize_results(results: list[SearchResult]) -> SearchSummary:
    """Mean similarity and its quality bucket: > 0.6 high, > 0.4 medium."""
    if not results:
        return SearchSummary()
    avg = sum(r.similarity for r in results) / len(results)
    quality: ContextQuality = "high" if avg > 0.6 else "medium" if avg > 0.4 else "low"
    return SearchSummary(
        sources_used=len(results),
        source_types=list(dict.fromkeys(r.source_type for r in results)),
        avg_relevance=round(avg * 100),
        context_quality=quality,
    )


def format_search_context(results: list[SearchResult]) -> str:
    """Numbered, labelled source blocks for the system prompt."""
    labels = {"schematic": " - SCHÉMA", "dependency": " - DÉPENDANCES", "hierarchy": " - HIÉRARCHIE"}
    blocks = []
    for index, result in enumerate(results, start=1):
        header = f"[Source {index}{labels.get(result.source_type, '')}"
        if result.asset_name:
            header += f" - {result.asset_name}"
        if result.page_number:
            header += f" - Page {result.page_number}"
        header += f" - {round(result.similarity * 100)}%]"
        blocks.append(f"{header}\n{result.content}")
    return "\n\n---\n\n".join(blocks)


def _criticality_icon(criticality: str) -> str:
    return {"critical": "🔴", "high": "🟠"}.get(criticality, "🟡")


def format_dependencies_for_context(
    upstream: list[DependencyNeighbor], downstream: list[DependencyNeighbor]
) -> str:
    content = "\n🔗 DÉPENDANCES SYSTÈME\n\n"
    if upstream:
        content += "⬆️ AMONT (ce qui alimente cet équipement):\n"
        content += "".join(
            f"  {_criticality_icon(d.criticality)} {d.asset.name} [upstream]\n" for d in upstream
        )
        content += "\n"
    if downstream:
        content += "⬇️ AVAL (ce qui dépend de cet équipement):\n"
        content += "".join(
            f"  {_criticality_icon(d.criticality)} {d.asset.name} [downstream]\n" for d in downstream
        )
        content += "\n"
    content += "💡 En cas de panne: vérifier d'abord les équipements amont, puis avertir sur l'impact aval.\n"
    return content


def format_hierarchy_for_context(descendants: list[Asset]) -> str:
    content = "\n🏭 ÉQUIPEMENTS DANS CETTE ZONE\n\n"
    by_level: dict[str, list[Asset]] = {}
    for asset in descendants:
        by_level.setdefault(asset.level or "equipment", []).append(asset)
    for level, items in by_level.items():
        content += f"{_LEVEL_LABELS.get(level, level)}:\n"
        content += "".join(f"  • {item.name}\n" for item in items)
        content += "\n"
    return content


class SmartSearch:
    """Multi-source retrieval for one asset.

    Args:
        store: Vector search and graph lookups.
        embedder: Embeds the enhanced query once per search.
        config: Thresholds, counts and the default result cap.
    """

    def __init__(
        self, store: MaintenanceStore, embedder: EmbeddingService, config: EquipmentRAGConfig
    ) -> None:
        self._store = store
        self._embedder = embedder
        self._threshold = config.match_threshold
        self._count = config.match_count
        self._max_results = config.max_results

    async def search(
        self,
        asset_id: str,
        query: str,
        analysis: QueryAnalysis,
        intent_filter: list[str] | None = None,
        max_results: int | None = None,
        asset_name: str = "",
    ) -> list[SearchResult]:
        """Collect, label and rank context sources for a question.

        Args:
            asset_id: Asset whose documents are searched.
            query: Alias-resolved question.
            analysis: Decides which supplementary sources are consulted.
            intent_filter: Document content types to restrict chunks to.
            max_results: Result cap, defaults to the configured one.
            asset_name: Provenance label for the asset's own chunks.

        Returns:
            SearchResult list, highest similarity first.
        """
        limit = max_results or self._max_results
        results: list[SearchResult] = []

        embedding: list[float] | None = None
        try:
            embedding = await self._embedder.embed_query(build_enhanced_query(query, analysis))
        except EmbeddingServiceError:
            logger.warning("Query embedding failed, skipping vector sources", exc_info=True)

        if embedding is not None:
            results += await self._manual_chunks(embedding, asset_id, intent_filter, asset_name)
            if analysis.search_in_schematics:
                schematics = await self._schematics(embedding, asset_id, analysis, asset_name)
                schematic_ids = {r.metadata.get("chunk_id") for r in schematics}
                results = [r for r in results if r.metadata.get("chunk_id") not in schematic_ids]
                results += schematics

        if analysis.search_in_dependencies:
            results += await self._dependencies(embedding, asset_id, analysis)

        if analysis.scope in ("site", "line", "subsystem"):
            results += await self._descendants(asset_id)

        results.sort(key=lambda r: r.similarity, reverse=True)
        logger.info(
            "Smart search for asset %s: %d sources (%s)",
            asset_id,
            len(results),
            ", ".join(sorted({r.source_type for r in results})) or "none",
        )
        return results[:limit]

    # ── Sources ─────────────────────────────────────────────────────────

    async def _manual_chunks(
        self,
        embedding: list[float],
        asset_id: str,
        intent_filter: list[str] | None,
        asset_name: str,
    ) -> list[SearchResult]:
        try:
            matches = await self._store.match_chunks(
                embedding, asset_id, self._threshold, self._count, document_types=intent_filter or None
            )
            if not matches and intent_filter:
                logger.info("No chunks for types %s, retrying unfiltered", intent_filter)
                matches = await self._store.match_chunks(
                    embedding, asset_id, self._threshold, self._count
                )
        except PersistenceError:
            logger.warning("Document chunk search failed for %s", asset_id, exc_info=True)
            return []
        return [_to_result(m, "manual", m.similarity, asset_name) for m in matches]

    async def _schematics(
        self, embedding: list[float], asset_id: str, analysis: QueryAnalysis, asset_name: str
    ) -> list[SearchResult]:
        try:
            matches = await self._store.match_chunks(
                embedding, asset_id, self._threshold, self._count, document_types=["schematic"]
            )
        except PersistenceError:
            logger.warning("Schematic search failed for %s", asset_id, exc_info=True)
            return []

        terms = [t.lower() for t in analysis.components_mentioned + analysis.error_codes]
        results = []
        for match in matches:
            content = match.content.lower()
            relevant = any(term in content for term in terms)
            if relevant or analysis.intent == "troubleshooting":
                results.append(_to_result(match, "schematic", 0.9 if relevant else 0.7, asset_name))
        return results

    async def _dependencies(
        self, embedding: list[float] | None, asset_id: str, analysis: QueryAnalysis
    ) -> list[SearchResult]:
        try:
            upstream = await self._store.upstream_neighbors(asset_id)
            downstream = await self._store.downstream_neighbors(asset_id)
        except PersistenceError:
            logger.warning("Dependency lookup failed for %s", asset_id, exc_info=True)
            return []

        results: list[SearchResult] = []
        if upstream or downstream:
            results.append(
                SearchResult(
                    content=format_dependencies_for_context(upstream, downstream),
                    source_type="dependency",
                    similarity=0.85,
                )
            )

        if embedding is None or analysis.intent != "troubleshooting":
            return results

        for neighbor in upstream[:UPSTREAM_MANUAL_ASSETS]:
            try:
                matches = await self._store.match_chunks(
                    embedding, neighbor.asset.id, UPSTREAM_MANUAL_THRESHOLD, UPSTREAM_MANUAL_COUNT
                )
            except PersistenceError:
                logger.warning("Upstream manual search failed for %s", neighbor.asset.id, exc_info=True)
                continue
            for match in matches:
                result = _to_result(
                    match, "manual", match.similarity * UPSTREAM_MANUAL_DISCOUNT, neighbor.asset.name
                )
                result.metadata["from_dependency"] = True
                results.append(result)
        return results

    async def _descendants(self, asset_id: str) -> list[SearchResult]:
        try:
            descendants = await self._store.list_descendants(asset_id)
        except PersistenceError:
            logger.warning("Descendant lookup failed for %s", asset_id, exc_info=True)
            return []
        if not descendants:
            return []
        return [
            SearchResult(
                content=format_hierarchy_for_context(descendants),
                source_type="hierarchy",
                similarity=0.8,
            )
        ]


def _to_result(match: ChunkMatch, source_type: str, similarity: float, asset_name: str) -> SearchResult:
    return SearchResult(
        content=match.content,
        source_type=source_type,
        similarity=similarity,
        asset_name=asset_name,
        page_number=match.page_number,
        metadata={**match.metadata, "chunk_id": match.id, "document_id": match.document_id},
    )
