"""Repository contract consumed by ingestion and retrieval.

The core never talks to the database directly. Services receive an object
implementing MaintenanceStore, which keeps them testable with an in-memory
fake and lets the Postgres/pgvector implementation evolve independently.
Every read is tenant-scoped by organization_id where the row carries one.
"""

from __future__ import annotations

from typing import Any, Protocol

from src.equipment_rag.models import (
    Asset,
    AssetAlias,
    CachedMetadata,
    ChunkMatch,
    DependencyNeighbor,
    Document,
    DocumentChunk,
)


class MaintenanceStore(Protocol):
    """Persistence operations for assets, documents, chunks and caches."""

    # ── Assets ──────────────────────────────────────────────────────────

    async def get_asset(self, asset_id: str, organization_id: str | None = None) -> Asset | None: ...

    async def list_assets(self, organization_id: str | None) -> list[Asset]: ...

    async def create_asset(self, asset: Asset) -> Asset: ...

    async def get_children(self, asset_id: str) -> list[Asset]: ...

    async def get_siblings(self, asset: Asset) -> list[Asset]: ...

    async def get_asset_path(self, asset_id: str) -> list[Asset]: ...

    async def list_descendants(self, asset_id: str) -> list[Asset]: ...

    # ── Aliases and dependencies ────────────────────────────────────────

    async def list_aliases(self, organization_id: str | None) -> list[tuple[AssetAlias, Asset]]: ...

    async def upstream_neighbors(self, asset_id: str) -> list[DependencyNeighbor]: ...

    async def downstream_neighbors(self, asset_id: str) -> list[DependencyNeighbor]: ...

    # ── Documents ───────────────────────────────────────────────────────

    async def find_duplicate_document(
        self, fingerprint: str, organization_id: str
    ) -> dict[str, Any] | None: ...

    async def find_duplicate_document_via_assets(
        self, fingerprint: str, organization_id: str
    ) -> dict[str, Any] | None: ...

    async def create_document(self, document: Document) -> Document: ...

    async def update_document(self, document_id: str, **fields: Any) -> None: ...

    async def get_document(self, document_id: str, organization_id: str) -> Document | None: ...

    async def delete_document(self, document_id: str, organization_id: str) -> bool: ...

    # ── Chunks ──────────────────────────────────────────────────────────

    async def insert_chunks(self, chunks: list[DocumentChunk]) -> int: ...

    async def match_chunks(
        self,
        embedding: list[float],
        asset_id: str,
        threshold: float,
        count: int,
        document_types: list[str] | None = None,
    ) -> list[ChunkMatch]: ...

    # ── Metadata cache ──────────────────────────────────────────────────

    async def get_cached_metadata(self, document_hash: str) -> CachedMetadata | None: ...

    async def put_cached_metadata(self, entry: CachedMetadata) -> None: ...
