"""Document lookup, deletion and content-type override endpoints."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, status

from src.app.api.deps import get_store, get_tenant
from src.app.core.tenant import TenantContext
from src.app.schemas.equipment import DocumentTypesUpdate
from src.equipment_rag.errors import NotFoundError
from src.equipment_rag.models import Document
from src.equipment_rag.store.base import MaintenanceStore

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/documents", tags=["documents"])


async def _load(store: MaintenanceStore, document_id: str, organization_id: str) -> Document:
    document = await store.get_document(document_id, organization_id)
    if document is None:
        raise NotFoundError(f"Document not found: {document_id}")
    return document


@router.get("/{document_id}", response_model=Document)
async def get_document(
    document_id: str,
    tenant: TenantContext = Depends(get_tenant),
    store: MaintenanceStore = Depends(get_store),
):
    """Return a document's metadata and processing state."""
    return await _load(store, document_id, tenant.organization_id)


@router.delete("/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_document(
    document_id: str,
    tenant: TenantContext = Depends(get_tenant),
    store: MaintenanceStore = Depends(get_store),
):
    """Delete a document and, by cascade, its chunks."""
    if not await store.delete_document(document_id, tenant.organization_id):
        raise NotFoundError(f"Document not found: {document_id}")
    logger.info("document_deleted", document_id=document_id, organization_id=tenant.organization_id)


@router.patch("/{document_id}", response_model=Document)
async def update_document_types(
    document_id: str,
    body: DocumentTypesUpdate,
    tenant: TenantContext = Depends(get_tenant),
    store: MaintenanceStore = Depends(get_store),
):
    """Record user-confirmed content types for a document."""
    await _load(store, document_id, tenant.organization_id)
    await store.update_document(
        document_id,
        document_types=body.document_types,
        user_confirmed=True,
        classification_confidence=1.0,
    )
    logger.info("document_types_confirmed", document_id=document_id, types=body.document_types)
    return await _load(store, document_id, tenant.organization_id)
