"""SQLAlchemy tables for assets, documents, chunks and the metadata cache.

Chunk embeddings live in a pgvector column and are searched by cosine
distance. Deleting a document cascades to its chunks.
"""

from __future__ import annotations

from datetime import datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

EMBEDDING_DIMENSIONS = 1536


class EquipmentBase(DeclarativeBase):
    """Declarative base for equipment RAG tables."""


def _uuid_pk() -> Mapped[str]:
    return mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )


class AssetRow(EquipmentBase):
    """Node of the site/line/subsystem/equipment/component tree."""

    __tablename__ = "assets"
    __table_args__ = (
        Index("idx_assets_org", "organization_id"),
        Index("idx_assets_parent", "parent_id"),
    )

    id: Mapped[str] = _uuid_pk()
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    custom_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    level: Mapped[str] = mapped_column(String(20), default="equipment", server_default=text("'equipment'"))
    parent_id: Mapped[str | None] = mapped_column(
        UUID(as_uuid=False), ForeignKey("assets.id", ondelete="SET NULL"), nullable=True
    )
    path: Mapped[str] = mapped_column(Text, default="", server_default=text("''"))
    depth: Mapped[int] = mapped_column(Integer, default=0, server_default=text("0"))
    manufacturer: Mapped[str | None] = mapped_column(String(255), nullable=True)
    model_number: Mapped[str | None] = mapped_column(String(255), nullable=True)
    serial_number: Mapped[str | None] = mapped_column(String(255), nullable=True)
    category: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    position_order: Mapped[int] = mapped_column(Integer, default=0, server_default=text("0"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class AssetAliasRow(EquipmentBase):
    """Alternate names technicians use for an asset."""

    __tablename__ = "asset_aliases"
    __table_args__ = (
        UniqueConstraint("asset_id", "alias_normalized", name="uq_asset_aliases_asset_alias"),
        Index("idx_asset_aliases_org", "organization_id"),
    )

    id: Mapped[str] = _uuid_pk()
    asset_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), ForeignKey("assets.id", ondelete="CASCADE"), nullable=False
    )
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False)
    alias: Mapped[str] = mapped_column(String(255), nullable=False)
    alias_normalized: Mapped[str] = mapped_column(String(255), nullable=False)
    language: Mapped[str] = mapped_column(String(5), default="fr", server_default=text("'fr'"))
    is_primary: Mapped[bool] = mapped_column(Boolean, default=False, server_default=text("false"))


class AssetDependencyRow(EquipmentBase):
    """Directed process edge between two assets."""

    __tablename__ = "asset_dependencies"
    __table_args__ = (
        Index("idx_asset_dependencies_equipment", "equipment_id", "dependency_type"),
        Index("idx_asset_dependencies_depends_on", "depends_on_id", "dependency_type"),
    )

    id: Mapped[str] = _uuid_pk()
    equipment_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), ForeignKey("assets.id", ondelete="CASCADE"), nullable=False
    )
    depends_on_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), ForeignKey("assets.id", ondelete="CASCADE"), nullable=False
    )
    dependency_type: Mapped[str] = mapped_column(String(20), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    criticality: Mapped[str] = mapped_column(String(20), default="medium", server_default=text("'medium'"))


class DocumentRow(EquipmentBase):
    """Uploaded equipment document."""

    __tablename__ = "asset_documents"
    __table_args__ = (
        Index("idx_asset_documents_fingerprint", "fingerprint", "organization_id"),
        Index("idx_asset_documents_asset", "asset_id"),
    )

    id: Mapped[str] = _uuid_pk()
    asset_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), ForeignKey("assets.id", ondelete="CASCADE"), nullable=False
    )
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False)
    file_name: Mapped[str] = mapped_column(String(500), nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, default=0, server_default=text("0"))
    fingerprint: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="processing", server_default=text("'processing'"))
    document_type: Mapped[str] = mapped_column(String(20), default="manual", server_default=text("'manual'"))
    document_types: Mapped[list[str]] = mapped_column(
        ARRAY(String(30)), default=list, server_default=text("ARRAY['manual']::varchar[]")
    )
    classification_confidence: Mapped[float] = mapped_column(Float, default=0.0, server_default=text("0"))
    user_confirmed: Mapped[bool] = mapped_column(Boolean, default=False, server_default=text("false"))
    total_chunks: Mapped[int] = mapped_column(Integer, default=0, server_default=text("0"))
    extraction_method: Mapped[str | None] = mapped_column(String(20), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class DocumentChunkRow(EquipmentBase):
    """Embedded passage of a document."""

    __tablename__ = "document_chunks"
    __table_args__ = (
        Index("idx_document_chunks_asset", "asset_id"),
        Index("idx_document_chunks_document", "document_id"),
    )

    id: Mapped[str] = _uuid_pk()
    document_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), ForeignKey("asset_documents.id", ondelete="CASCADE"), nullable=False
    )
    asset_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), ForeignKey("assets.id", ondelete="CASCADE"), nullable=False
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    embedding: Mapped[list[float] | None] = mapped_column(Vector(EMBEDDING_DIMENSIONS), nullable=True)
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    page_number: Mapped[int] = mapped_column(Integer, default=1, server_default=text("1"))
    extraction_method: Mapped[str] = mapped_column(String(20), default="native", server_default=text("'native'"))
    chunk_metadata: Mapped[dict] = mapped_column("metadata", JSONB, default=dict, server_default=text("'{}'"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class MetadataCacheRow(EquipmentBase):
    """Identity fields keyed by a hash of the document's leading text."""

    __tablename__ = "metadata_cache"

    document_hash: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    manufacturer: Mapped[str | None] = mapped_column(String(255), nullable=True)
    model: Mapped[str | None] = mapped_column(String(255), nullable=True)
    serial_number: Mapped[str | None] = mapped_column(String(255), nullable=True)
    category: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    confidence: Mapped[float] = mapped_column(Float, default=0.0, server_default=text("0"))
    method: Mapped[str] = mapped_column(String(20), default="regex", server_default=text("'regex'"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
