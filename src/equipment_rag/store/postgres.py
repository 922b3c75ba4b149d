"""PostgreSQL + pgvector implementation of MaintenanceStore.

Uses SQLAlchemy 2.0 async sessions over asyncpg. Vector search orders by
cosine distance and reports ``similarity = 1 - distance``. Driver errors are
wrapped in PersistenceError so callers only deal with the domain taxonomy.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import delete, or_, select, text, update
from sqlalchemy.dialects.postgresql import array
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import aliased

from src.equipment_rag.errors import PersistenceError
from src.equipment_rag.models import (
    Asset,
    AssetAlias,
    CachedMetadata,
    ChunkMatch,
    DependencyNeighbor,
    Document,
    DocumentChunk,
)
from src.equipment_rag.store.tables import (
    AssetAliasRow,
    AssetDependencyRow,
    AssetRow,
    DocumentChunkRow,
    DocumentRow,
    MetadataCacheRow,
)

logger = logging.getLogger(__name__)

_ASSET_PATH_SQL = text(
    """
    WITH RECURSIVE ancestry AS (
        SELECT id, parent_id, 0 AS hops FROM assets WHERE id = CAST(:asset_id AS uuid)
        UNION ALL
        SELECT a.id, a.parent_id, ancestry.hops + 1
        FROM assets a JOIN ancestry ON a.id = ancestry.parent_id
        WHERE ancestry.hops < 10
    )
    SELECT id FROM ancestry ORDER BY hops DESC
    """
)

_DESCENDANTS_SQL = text(
    """
    WITH RECURSIVE subtree AS (
        SELECT id, 0 AS hops FROM assets WHERE parent_id = CAST(:asset_id AS uuid)
        UNION ALL
        SELECT a.id, subtree.hops + 1
        FROM assets a JOIN subtree ON a.parent_id = subtree.id
        WHERE subtree.hops < 10
    )
    SELECT id FROM subtree
    """
)


def _asset(row: AssetRow) -> Asset:
    return Asset(
        id=str(row.id),
        organization_id=row.organization_id,
        name=row.name,
        code=row.code,
        custom_name=row.custom_name,
        level=row.level,
        parent_id=str(row.parent_id) if row.parent_id else None,
        path=row.path or "",
        depth=row.depth or 0,
        manufacturer=row.manufacturer,
        model_number=row.model_number,
        serial_number=row.serial_number,
        category=row.category,
        description=row.description,
        position_order=row.position_order or 0,
        created_at=row.created_at or datetime.now(timezone.utc),
    )


def _document(row: DocumentRow) -> Document:
    return Document(
        id=str(row.id),
        asset_id=str(row.asset_id),
        organization_id=row.organization_id,
        file_name=row.file_name,
        file_size=row.file_size or 0,
        fingerprint=row.fingerprint,
        status=row.status,
        document_type=row.document_type,
        document_types=list(row.document_types or ["manual"]),
        classification_confidence=row.classification_confidence or 0.0,
        user_confirmed=bool(row.user_confirmed),
        total_chunks=row.total_chunks or 0,
        extraction_method=row.extraction_method,
        created_at=row.created_at or datetime.now(timezone.utc),
        processed_at=row.processed_at,
    )


def _existing(document: DocumentRow, asset_name: str | None) -> dict[str, Any]:
    return {
        "id": str(document.id),
        "file_name": document.file_name,
        "asset_id": str(document.asset_id),
        "asset_name": asset_name,
        "uploaded_at": document.created_at.isoformat() if document.created_at else None,
    }


class PostgresMaintenanceStore:
    """MaintenanceStore backed by PostgreSQL with the pgvector extension.

    Args:
        engine: Async engine bound to the application database.
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self._sessions = async_sessionmaker(engine, expire_on_commit=False)

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._sessions() as session:
                yield session
        except SQLAlchemyError as exc:
            raise PersistenceError(str(exc)) from exc

    # ── Assets ──────────────────────────────────────────────────────────

    async def get_asset(self, asset_id: str, organization_id: str | None = None) -> Asset | None:
        async with self._session() as session:
            stmt = select(AssetRow).where(AssetRow.id == asset_id)
            if organization_id:
                stmt = stmt.where(AssetRow.organization_id == organization_id)
            row = (await session.execute(stmt)).scalar_one_or_none()
            return _asset(row) if row else None

    async def list_assets(self, organization_id: str | None) -> list[Asset]:
        async with self._session() as session:
            stmt = select(AssetRow)
            if organization_id:
                stmt = stmt.where(AssetRow.organization_id == organization_id)
            rows = (await session.execute(stmt)).scalars().all()
            return [_asset(r) for r in rows]

    async def create_asset(self, asset: Asset) -> Asset:
        async with self._session() as session:
            row = AssetRow(
                id=asset.id,
                organization_id=asset.organization_id,
                name=asset.name,
                code=asset.code,
                custom_name=asset.custom_name,
                level=asset.level,
                parent_id=asset.parent_id,
                path=asset.path or asset.id,
                depth=asset.depth,
                manufacturer=asset.manufacturer,
                model_number=asset.model_number,
                serial_number=asset.serial_number,
                category=asset.category,
                description=asset.description,
                position_order=asset.position_order,
            )
            session.add(row)
            await session.commit()
            await session.refresh(row)
            return _asset(row)

    async def get_children(self, asset_id: str) -> list[Asset]:
        async with self._session() as session:
            rows = (
                await session.execute(
                    select(AssetRow)
                    .where(AssetRow.parent_id == asset_id)
                    .order_by(AssetRow.position_order, AssetRow.name)
                )
            ).scalars().all()
            return [_asset(r) for r in rows]

    async def get_siblings(self, asset: Asset) -> list[Asset]:
        if not asset.parent_id:
            return []
        async with self._session() as session:
            rows = (
                await session.execute(
                    select(AssetRow)
                    .where(AssetRow.parent_id == asset.parent_id, AssetRow.id != asset.id)
                    .order_by(AssetRow.position_order, AssetRow.name)
                )
            ).scalars().all()
            return [_asset(r) for r in rows]

    async def get_asset_path(self, asset_id: str) -> list[Asset]:
        async with self._session() as session:
            ids = [str(r.id) for r in (await session.execute(_ASSET_PATH_SQL, {"asset_id": asset_id})).all()]
            if not ids:
                return []
            rows = (await session.execute(select(AssetRow).where(AssetRow.id.in_(ids)))).scalars().all()
            by_id = {str(r.id): r for r in rows}
            return [_asset(by_id[i]) for i in ids if i in by_id]

    async def list_descendants(self, asset_id: str) -> list[Asset]:
        async with self._session() as session:
            ids = [str(r.id) for r in (await session.execute(_DESCENDANTS_SQL, {"asset_id": asset_id})).all()]
            if not ids:
                return []
            rows = (
                await session.execute(
                    select(AssetRow).where(AssetRow.id.in_(ids)).order_by(AssetRow.depth, AssetRow.name)
                )
            ).scalars().all()
            return [_asset(r) for r in rows]

    # ── Aliases and dependencies ────────────────────────────────────────

    async def list_aliases(self, organization_id: str | None) -> list[tuple[AssetAlias, Asset]]:
        async with self._session() as session:
            stmt = select(AssetAliasRow, AssetRow).join(AssetRow, AssetAliasRow.asset_id == AssetRow.id)
            if organization_id:
                stmt = stmt.where(AssetRow.organization_id == organization_id)
            pairs = (await session.execute(stmt)).all()
            return [
                (
                    AssetAlias(
                        id=str(alias.id),
                        asset_id=str(alias.asset_id),
                        organization_id=alias.organization_id,
                        alias=alias.alias,
                        alias_normalized=alias.alias_normalized,
                        language=alias.language,
                        is_primary=bool(alias.is_primary),
                    ),
                    _asset(asset),
                )
                for alias, asset in pairs
            ]

    async def _neighbors(self, asset_id: str, direction: str) -> list[DependencyNeighbor]:
        other = aliased(AssetRow)
        if direction == "upstream":
            stmt = (
                select(AssetDependencyRow, other)
                .join(other, AssetDependencyRow.depends_on_id == other.id)
                .where(
                    AssetDependencyRow.equipment_id == asset_id,
                    AssetDependencyRow.dependency_type == "upstream",
                )
            )
        else:
            stmt = (
                select(AssetDependencyRow, other)
                .join(other, AssetDependencyRow.equipment_id == other.id)
                .where(
                    AssetDependencyRow.depends_on_id == asset_id,
                    AssetDependencyRow.dependency_type == "downstream",
                )
            )
        async with self._session() as session:
            pairs = (await session.execute(stmt)).all()
            return [
                DependencyNeighbor(
                    asset=_asset(asset),
                    description=edge.description,
                    criticality=edge.criticality or "medium",
                )
                for edge, asset in pairs
            ]

    async def upstream_neighbors(self, asset_id: str) -> list[DependencyNeighbor]:
        return await self._neighbors(asset_id, "upstream")

    async def downstream_neighbors(self, asset_id: str) -> list[DependencyNeighbor]:
        return await self._neighbors(asset_id, "downstream")

    # ── Documents ───────────────────────────────────────────────────────

    async def find_duplicate_document(
        self, fingerprint: str, organization_id: str
    ) -> dict[str, Any] | None:
        async with self._session() as session:
            pair = (
                await session.execute(
                    select(DocumentRow, AssetRow.name)
                    .join(AssetRow, DocumentRow.asset_id == AssetRow.id)
                    .where(
                        DocumentRow.fingerprint == fingerprint,
                        DocumentRow.organization_id == organization_id,
                    )
                    .order_by(DocumentRow.created_at)
                    .limit(1)
                )
            ).first()
            return _existing(pair[0], pair[1]) if pair else None

    async def find_duplicate_document_via_assets(
        self, fingerprint: str, organization_id: str
    ) -> dict[str, Any] | None:
        # Tenant scope taken from the owning asset rather than the document row
        async with self._session() as session:
            pair = (
                await session.execute(
                    select(DocumentRow, AssetRow.name)
                    .join(AssetRow, DocumentRow.asset_id == AssetRow.id)
                    .where(
                        DocumentRow.fingerprint == fingerprint,
                        AssetRow.organization_id == organization_id,
                    )
                    .limit(1)
                )
            ).first()
            return _existing(pair[0], pair[1]) if pair else None

    async def create_document(self, document: Document) -> Document:
        async with self._session() as session:
            row = DocumentRow(
                id=document.id,
                asset_id=document.asset_id,
                organization_id=document.organization_id,
                file_name=document.file_name,
                file_size=document.file_size,
                fingerprint=document.fingerprint,
                status=document.status,
                document_type=document.document_type,
                document_types=document.document_types,
                classification_confidence=document.classification_confidence,
                user_confirmed=document.user_confirmed,
                extraction_method=document.extraction_method,
            )
            session.add(row)
            await session.commit()
            await session.refresh(row)
            return _document(row)

    async def update_document(self, document_id: str, **fields: Any) -> None:
        async with self._session() as session:
            await session.execute(update(DocumentRow).where(DocumentRow.id == document_id).values(**fields))
            await session.commit()

    async def get_document(self, document_id: str, organization_id: str) -> Document | None:
        async with self._session() as session:
            row = (
                await session.execute(
                    select(DocumentRow).where(
                        DocumentRow.id == document_id,
                        DocumentRow.organization_id == organization_id,
                    )
                )
            ).scalar_one_or_none()
            return _document(row) if row else None

    async def delete_document(self, document_id: str, organization_id: str) -> bool:
        async with self._session() as session:
            result = await session.execute(
                delete(DocumentRow).where(
                    DocumentRow.id == document_id,
                    DocumentRow.organization_id == organization_id,
                )
            )
            await session.commit()
            return result.rowcount > 0

    # ── Chunks ──────────────────────────────────────────────────────────

    async def insert_chunks(self, chunks: list[DocumentChunk]) -> int:
        if not chunks:
            return 0
        async with self._session() as session:
            session.add_all(
                [
                    DocumentChunkRow(
                        id=c.id,
                        document_id=c.document_id,
                        asset_id=c.asset_id,
                        content=c.content,
                        embedding=c.embedding,
                        chunk_index=c.chunk_index,
                        page_number=c.page_number,
                        extraction_method=c.extraction_method,
                        chunk_metadata=c.metadata,
                    )
                    for c in chunks
                ]
            )
            await session.commit()
            return len(chunks)

    async def match_chunks(
        self,
        embedding: list[float],
        asset_id: str,
        threshold: float,
        count: int,
        document_types: list[str] | None = None,
    ) -> list[ChunkMatch]:
        distance = DocumentChunkRow.embedding.cosine_distance(embedding)
        stmt = (
            select(DocumentChunkRow, (1 - distance).label("similarity"))
            .join(DocumentRow, DocumentChunkRow.document_id == DocumentRow.id)
            .where(
                DocumentChunkRow.asset_id == asset_id,
                DocumentChunkRow.embedding.is_not(None),
                DocumentRow.status == "completed",
                (1 - distance) > threshold,
            )
            .order_by(distance)
            .limit(count)
        )
        if document_types:
            stmt = stmt.where(
                or_(
                    DocumentRow.document_type.in_(document_types),
                    DocumentRow.document_types.overlap(array(document_types)),
                )
            )
        async with self._session() as session:
            rows = (await session.execute(stmt)).all()
            return [
                ChunkMatch(
                    id=str(chunk.id),
                    document_id=str(chunk.document_id),
                    asset_id=str(chunk.asset_id),
                    content=chunk.content,
                    page_number=chunk.page_number,
                    similarity=float(similarity),
                    metadata=chunk.chunk_metadata or {},
                )
                for chunk, similarity in rows
            ]

    # ── Metadata cache ──────────────────────────────────────────────────

    async def get_cached_metadata(self, document_hash: str) -> CachedMetadata | None:
        async with self._session() as session:
            row = await session.get(MetadataCacheRow, document_hash)
            if row is None:
                return None
            return CachedMetadata(
                document_hash=row.document_hash,
                name=row.name,
                manufacturer=row.manufacturer,
                model=row.model,
                serial_number=row.serial_number,
                category=row.category,
                description=row.description,
                confidence=row.confidence or 0.0,
                method=row.method,
            )

    async def put_cached_metadata(self, entry: CachedMetadata) -> None:
        values = entry.model_dump()
        stmt = pg_insert(MetadataCacheRow).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[MetadataCacheRow.document_hash],
            set_={k: v for k, v in values.items() if k != "document_hash"},
        )
        async with self._session() as session:
            await session.execute(stmt)
            await session.commit()
        logger.debug("Cached metadata for hash %s", entry.document_hash[:12])
