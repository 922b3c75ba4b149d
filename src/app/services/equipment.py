"""Wiring of the equipment_rag services for the HTTP app.

The core library has no module-level singletons. This module assembles one
IngestionPipeline and one QueryService per process from a store, an LLM
service and the EQUIPMENT_RAG_ configuration. The app lifespan stores them
on app.state; tests build them over fakes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from src.equipment_rag.config import EquipmentRAGConfig
from src.equipment_rag.embeddings import EmbeddingService
from src.equipment_rag.ingestion import (
    DocumentClassifier,
    FingerprintCache,
    IngestionPipeline,
    OCREngine,
    PDFTextExtractor,
    SectionAwareChunker,
    TieredMetadataExtractor,
)
from src.equipment_rag.rag import (
    AliasResolver,
    DependencyGraph,
    EquipmentDetector,
    HierarchyResolver,
    QueryAnalyzer,
    QueryService,
    SmartSearch,
)
from src.equipment_rag.store.base import MaintenanceStore


@dataclass
class EquipmentServices:
    """Process-wide service objects shared by the v1 endpoints."""

    store: MaintenanceStore
    pipeline: IngestionPipeline
    query: QueryService
    config: EquipmentRAGConfig


def build_services(
    store: MaintenanceStore,
    llm: Any,
    config: EquipmentRAGConfig,
    embedder: EmbeddingService | None = None,
    extractor: PDFTextExtractor | None = None,
) -> EquipmentServices:
    """Assemble ingestion and query services over a store and an LLM.

    Args:
        store: MaintenanceStore implementation.
        llm: Object with ainvoke() and streaming_completion().
        config: Ingestion and retrieval tuning.
        embedder: Embedding service; built from config when omitted.
        extractor: PDF text extractor; built with an OCREngine when omitted.
    """
    embedder = embedder or EmbeddingService(config)
    extractor = extractor or PDFTextExtractor(OCREngine(config), config)

    pipeline = IngestionPipeline(
        store=store,
        extractor=extractor,
        metadata_extractor=TieredMetadataExtractor(store, llm, config),
        classifier=DocumentClassifier(llm),
        chunker=SectionAwareChunker(config.chunk_size, config.chunk_overlap),
        embedder=embedder,
        fingerprints=FingerprintCache(store),
        config=config,
    )

    query = QueryService(
        store=store,
        llm=llm,
        detector=EquipmentDetector(store, config.fuzzy_threshold),
        aliases=AliasResolver(store, config.alias_similarity_threshold),
        analyzer=QueryAnalyzer(llm),
        search=SmartSearch(store, embedder, config),
        hierarchy=HierarchyResolver(store),
        graph=DependencyGraph(store, config.max_depth),
        config=config,
    )

    return EquipmentServices(store=store, pipeline=pipeline, query=query, config=config)
