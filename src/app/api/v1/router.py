"""V1 API router -- aggregates all v1 endpoint routers."""

from __future__ import annotations

from fastapi import APIRouter

from src.app.api.v1 import documents, health, ingest, query

router = APIRouter()

router.include_router(health.router)
router.include_router(ingest.router)
router.include_router(query.router)
router.include_router(documents.router)
