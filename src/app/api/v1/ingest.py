"""Document ingestion endpoint.

Uploads are validated synchronously (400 for a non-PDF, 413 above the size
ceiling, 404 for an unknown asset_id) and then processed while progress
events are streamed back as Server-Sent Events. A client disconnect cancels
the job at the next stage boundary.
"""

from __future__ import annotations

import json
from contextlib import aclosing

import structlog
from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from fastapi.responses import StreamingResponse

from src.app.api.deps import get_services, get_tenant
from src.app.core.tenant import TenantContext
from src.app.services.equipment import EquipmentServices
from src.equipment_rag.errors import NotFoundError
from src.equipment_rag.ingestion import CancellationToken, validate_upload
from src.equipment_rag.ingestion.pipeline import progress_to_dict

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1", tags=["ingestion"])

SSE_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive"}


@router.post("/ingest")
async def ingest_document(
    request: Request,
    file: UploadFile = File(..., description="PDF manual, catalogue or schematic"),
    asset_id: str | None = Form(default=None),
    document_type: str | None = Form(default=None),
    allow_duplicate: bool = Form(default=False),
    tenant: TenantContext = Depends(get_tenant),
    services: EquipmentServices = Depends(get_services),
):
    """Ingest a PDF and stream ProgressEvent objects until completion or error."""
    data = await file.read()
    file_name = file.filename or "document.pdf"
    validate_upload(data, file_name, services.config.max_upload_bytes)

    if asset_id and await services.store.get_asset(asset_id, tenant.organization_id) is None:
        raise NotFoundError(f"Asset not found: {asset_id}")

    cancel = CancellationToken()
    logger.info(
        "ingest_started",
        file_name=file_name,
        size=len(data),
        organization_id=tenant.organization_id,
        asset_id=asset_id,
    )

    async def event_generator():
        events = services.pipeline.run(
            data,
            file_name,
            tenant.organization_id,
            asset_id=asset_id,
            document_type=document_type,
            allow_duplicate=allow_duplicate,
            cancel=cancel,
        )
        async with aclosing(events):
            try:
                async for event in events:
                    yield f"data: {json.dumps(progress_to_dict(event), ensure_ascii=False)}\n\n"
                    if await request.is_disconnected():
                        logger.info("ingest_client_disconnected", file_name=file_name)
                        cancel.cancel()
            finally:
                cancel.cancel()

    return StreamingResponse(event_generator(), media_type="text/event-stream", headers=SSE_HEADERS)
