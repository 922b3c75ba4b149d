"""Maintenance question endpoint.

The asset and prompt are resolved before the response starts, so an
unknown asset_id is a 404. The answer is then streamed as Server-Sent
Events: ``{"content": ...}`` deltas followed by one ``{"done": true, ...}``
payload. Closing the connection closes the completion stream.
"""

from __future__ import annotations

import json
from contextlib import aclosing

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from src.app.api.deps import get_query_service, get_tenant
from src.app.core.tenant import TenantContext
from src.app.schemas.equipment import QueryRequest
from src.equipment_rag.errors import AuthError
from src.equipment_rag.rag import QueryService

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1", tags=["query"])

SSE_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive"}


@router.post("/query")
async def query_equipment(
    body: QueryRequest,
    tenant: TenantContext = Depends(get_tenant),
    service: QueryService = Depends(get_query_service),
):
    """Answer a maintenance question with document and process context."""
    if body.organization_id and body.organization_id != tenant.organization_id:
        raise AuthError("Organization does not match credentials")

    plan = await service.prepare(
        body.message,
        tenant.organization_id,
        asset_id=body.asset_id,
        conversation_history=[turn.model_dump() for turn in body.conversation_history],
    )
    logger.info(
        "query_prepared",
        organization_id=tenant.organization_id,
        asset_id=plan.asset.id if plan.asset else None,
        mode=plan.mode,
        intent=plan.analysis.intent,
        sources=len(plan.results),
    )

    async def event_generator():
        async with aclosing(service.stream(plan)) as chunks:
            try:
                async for chunk in chunks:
                    yield f"data: {json.dumps(chunk, ensure_ascii=False)}\n\n"
            except Exception:
                logger.error("query_stream_failed", exc_info=True)
                error = {"error": "La génération de la réponse a échoué", "done": True}
                yield f"data: {json.dumps(error, ensure_ascii=False)}\n\n"

    return StreamingResponse(event_generator(), media_type="text/event-stream", headers=SSE_HEADERS)
