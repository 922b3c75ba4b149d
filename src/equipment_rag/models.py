"""Pydantic models for the equipment maintenance domain.

Defines the types shared by ingestion, storage and retrieval: the asset
hierarchy and its dependency edges, documents and their chunks, cached
identity metadata, and the ephemeral per-query structures (analysis,
detected equipment, search results). Persisted models mirror the tables in
src.equipment_rag.store.tables.

Hierarchy levels, top to bottom: site > line > subsystem > equipment > component.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field

AssetLevel = Literal["site", "line", "subsystem", "equipment", "component"]
DependencyType = Literal["upstream", "downstream"]
Criticality = Literal["critical", "high", "medium", "low"]
DocumentStatus = Literal["processing", "completed", "error"]
ClassificationType = Literal[
    "manual", "installation", "catalogue", "schematic", "datasheet", "other"
]
ExtractionMethod = Literal["native", "ocr"]
MetadataMethod = Literal["regex", "ai", "hybrid", "cache"]

QueryIntent = Literal[
    "troubleshooting",
    "maintenance",
    "installation",
    "parts",
    "specs",
    "procedure",
    "general",
]
QueryUrgency = Literal["emergency", "planning", "information"]
QueryScope = Literal["component", "equipment", "subsystem", "line", "site", "unknown"]
ResponseFormat = Literal["steps", "list", "table", "explanation", "diagnostic"]
MatchType = Literal["exact_name", "exact_alias", "exact_code", "fuzzy"]
SourceType = Literal["manual", "schematic", "dependency", "hierarchy"]


def _new_id() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ── Assets ──────────────────────────────────────────────────────────────────


class Asset(BaseModel):
    """A node of the site/line/subsystem/equipment/component tree.

    Attributes:
        id: Unique identifier (UUID4).
        organization_id: Owning tenant.
        name: Canonical equipment name.
        code: Short shop-floor code (e.g. "MF-1500-1734019...").
        custom_name: Nickname used by technicians on site.
        level: Position in the hierarchy.
        parent_id: Containing asset, None for roots.
        path: Materialized path of ids from the root, dot separated.
        depth: Number of ancestors.
    """

    id: str = Field(default_factory=_new_id)
    organization_id: str
    name: str
    code: str | None = None
    custom_name: str | None = None
    level: AssetLevel = "equipment"
    parent_id: str | None = None
    path: str = ""
    depth: int = 0
    manufacturer: str | None = None
    model_number: str | None = None
    serial_number: str | None = None
    category: str | None = None
    description: str | None = None
    position_order: int = 0
    created_at: datetime = Field(default_factory=_now)


class AssetAlias(BaseModel):
    """Alternate name for an asset (jargon, Darija, abbreviations)."""

    id: str = Field(default_factory=_new_id)
    asset_id: str
    organization_id: str
    alias: str
    alias_normalized: str
    language: Literal["fr", "en", "ar"] = "fr"
    is_primary: bool = False


class AssetDependency(BaseModel):
    """Directed process edge between two pieces of equipment.

    For ``upstream`` edges ``depends_on_id`` feeds ``equipment_id``. For
    ``downstream`` edges ``equipment_id`` receives from ``depends_on_id``.
    """

    id: str = Field(default_factory=_new_id)
    equipment_id: str
    depends_on_id: str
    dependency_type: DependencyType
    description: str | None = None
    criticality: Criticality = "medium"


class DependencyNeighbor(BaseModel):
    """One-hop neighbour returned by the store for dependency lookups."""

    asset: Asset
    description: str | None = None
    criticality: Criticality = "medium"


# ── Documents ───────────────────────────────────────────────────────────────


class Document(BaseModel):
    """An uploaded equipment document and its processing state."""

    id: str = Field(default_factory=_new_id)
    asset_id: str
    organization_id: str
    file_name: str
    file_size: int = 0
    fingerprint: str | None = None
    status: DocumentStatus = "processing"
    document_type: ClassificationType = "manual"
    document_types: list[str] = Field(default_factory=lambda: ["manual"])
    classification_confidence: float = 0.0
    user_confirmed: bool = False
    total_chunks: int = 0
    extraction_method: ExtractionMethod | None = None
    created_at: datetime = Field(default_factory=_now)
    processed_at: datetime | None = None


class DocumentChunk(BaseModel):
    """A bounded passage of a document stored with its embedding.

    Attributes:
        chunk_index: Position of the chunk within its document.
        page_number: Page estimate derived from the character offset.
        metadata: Section information (section, section_index,
            chunk_in_section, total_in_section, is_complete, char_start,
            section_type, token_count).
    """

    id: str = Field(default_factory=_new_id)
    document_id: str
    asset_id: str
    content: str
    embedding: list[float] | None = None
    chunk_index: int
    page_number: int = 1
    extraction_method: ExtractionMethod = "native"
    metadata: dict[str, Any] = Field(default_factory=dict)


class CachedMetadata(BaseModel):
    """Identity fields extracted from a document, keyed by content hash."""

    document_hash: str
    name: str | None = None
    manufacturer: str | None = None
    model: str | None = None
    serial_number: str | None = None
    category: str | None = None
    description: str | None = None
    confidence: float = 0.0
    method: MetadataMethod = "regex"


class ExtractedMetadata(BaseModel):
    """Result of the tiered metadata extractor."""

    name: str | None = None
    manufacturer: str | None = None
    model: str | None = None
    serial_number: str | None = None
    category: str | None = None
    description: str | None = None
    confidence: float = 0.0
    method: MetadataMethod = "regex"


class DuplicateCheckResult(BaseModel):
    """Outcome of a fingerprint lookup."""

    is_duplicate: bool = False
    existing_document: dict[str, Any] | None = None


# ── Ingestion progress ──────────────────────────────────────────────────────


class ProgressEvent(BaseModel):
    """One step of the ingestion state machine.

    Terminal events carry ``stage`` "complete" (with ``result``) or "error"
    (with ``error``).
    """

    stage: Literal[
        "uploading",
        "loading",
        "ocr",
        "metadata",
        "chunking",
        "embedding",
        "storing",
        "complete",
        "error",
    ]
    progress: int = 0
    message: str = ""
    current_step: str | None = None
    current_page: int | None = None
    total_pages: int | None = None
    current_chunk: int | None = None
    total_chunks: int | None = None
    eta_seconds: int | None = None
    result: dict[str, Any] | None = None
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.stage in ("complete", "error")


class IngestionResult(BaseModel):
    """Success payload of an ingestion job."""

    asset_id: str | None = None
    document_id: str | None = None
    asset: dict[str, Any] = Field(default_factory=dict)
    classification: dict[str, Any] = Field(default_factory=dict)
    document_types: list[str] = Field(default_factory=list)
    extraction: dict[str, Any] = Field(default_factory=dict)
    chunks_created: int = 0
    chunks_persisted: int = 0
    partial: bool = False
    processing_time_ms: int = 0
    warnings: list[str] = Field(default_factory=list)
    is_duplicate: bool = False
    existing_document: dict[str, Any] | None = None


# ── Query understanding ─────────────────────────────────────────────────────


class QueryAnalysis(BaseModel):
    """Per-request interpretation of a technician's question."""

    intent: QueryIntent = "general"
    urgency: QueryUrgency = "information"
    scope: QueryScope = "equipment"
    equipment_mentioned: list[str] = Field(default_factory=list)
    components_mentioned: list[str] = Field(default_factory=list)
    error_codes: list[str] = Field(default_factory=list)
    symptoms: list[str] = Field(default_factory=list)
    search_document_types: list[str] = Field(default_factory=lambda: ["manual"])
    search_in_schematics: bool = False
    search_in_dependencies: bool = False
    response_format: ResponseFormat = "explanation"
    include_safety_warning: bool = False
    include_parts_list: bool = False
    confidence: float = 0.5
    reasoning: str = ""


class DetectedEquipment(BaseModel):
    """An asset recognised in a free-text query."""

    equipment_id: str
    equipment_name: str
    custom_name: str | None = None
    code: str | None = None
    mentioned_as: str
    confidence: float
    match_type: MatchType


class DetectionResult(BaseModel):
    """All assets recognised in a query, best first."""

    detected: list[DetectedEquipment] = Field(default_factory=list)
    mode: Literal["none", "single", "multi"] = "none"
    query: str = ""

    @property
    def primary(self) -> DetectedEquipment | None:
        return self.detected[0] if self.detected else None


class ResolvedAlias(BaseModel):
    """An alias found in a query and the canonical asset it stands for."""

    alias: str
    canonical_name: str
    asset_id: str
    confidence: float


# ── Retrieval ───────────────────────────────────────────────────────────────


class ChunkMatch(BaseModel):
    """A chunk returned by vector similarity search."""

    id: str
    document_id: str
    asset_id: str
    content: str
    page_number: int | None = None
    similarity: float
    metadata: dict[str, Any] = Field(default_factory=dict)


class SearchResult(BaseModel):
    """A context source handed to the completion model."""

    content: str
    source_type: SourceType
    similarity: float
    asset_name: str = ""
    page_number: int | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
