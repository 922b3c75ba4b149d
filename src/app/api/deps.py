"""FastAPI dependency injection for organization-scoped services.

These dependencies are used in endpoint function signatures to inject the
current organization and the service objects built at startup.
"""

from __future__ import annotations

from fastapi import Depends, Request

from src.app.core.tenant import TenantContext, get_current_tenant
from src.app.services.equipment import EquipmentServices
from src.equipment_rag.ingestion import IngestionPipeline
from src.equipment_rag.rag import QueryService
from src.equipment_rag.store.base import MaintenanceStore


async def get_tenant() -> TenantContext:
    """Get the current organization context (set by TenantAuthMiddleware)."""
    return get_current_tenant()


def get_services(request: Request) -> EquipmentServices:
    """Service objects assembled in the app lifespan."""
    return request.app.state.services


def get_store(services: EquipmentServices = Depends(get_services)) -> MaintenanceStore:
    return services.store


def get_pipeline(services: EquipmentServices = Depends(get_services)) -> IngestionPipeline:
    return services.pipeline


def get_query_service(services: EquipmentServices = Depends(get_services)) -> QueryService:
    return services.query
