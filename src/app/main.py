"""FastAPI application factory.

Creates the app with organization middleware, logging middleware, CORS,
domain exception handlers, lifespan events for database initialization and
service wiring, and the v1 API router.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

import structlog
from fastapi import FastAPI, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import JSONResponse

from src.app.config import get_settings
from src.app.core.database import close_db, get_engine, init_db
from src.app.api.middleware.tenant import TenantAuthMiddleware
from src.app.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.app.api.v1.router import router as v1_router
from src.app.services.equipment import build_services
from src.app.services.llm import get_llm_service
from src.equipment_rag.config import EquipmentRAGConfig
from src.equipment_rag.errors import (
    AuthError,
    EquipmentRAGError,
    NotFoundError,
    UploadValidationError,
)
from src.equipment_rag.store import PostgresMaintenanceStore

log = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB and services on startup, close on shutdown."""
    configure_structlog()
    await init_db()

    if getattr(app.state, "services", None) is None:
        app.state.services = build_services(
            store=PostgresMaintenanceStore(get_engine()),
            llm=get_llm_service(),
            config=EquipmentRAGConfig(),
        )
        log.info("services_initialized")

    yield

    await close_db()


# ── Exception handlers ──────────────────────────────────────────────────────


async def _upload_error(request: Request, exc: UploadValidationError) -> JSONResponse:
    code = status.HTTP_413_REQUEST_ENTITY_TOO_LARGE if exc.too_large else status.HTTP_400_BAD_REQUEST
    return JSONResponse(status_code=code, content={"detail": str(exc)})


async def _auth_error(request: Request, exc: AuthError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content={"detail": str(exc)},
        headers={"WWW-Authenticate": "Bearer"},
    )


async def _not_found(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


async def _domain_error(request: Request, exc: EquipmentRAGError) -> JSONResponse:
    log.error("domain_error", path=request.url.path, error=str(exc), error_type=type(exc).__name__)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"detail": str(exc)})


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Equipment RAG API",
        version="0.1.0",
        description="Maintenance knowledge engine for industrial equipment documentation",
        lifespan=lifespan,
    )

    app.add_exception_handler(UploadValidationError, _upload_error)
    app.add_exception_handler(AuthError, _auth_error)
    app.add_exception_handler(NotFoundError, _not_found)
    app.add_exception_handler(EquipmentRAGError, _domain_error)

    # Middleware is added in reverse order (last added = outermost)

    # Tenant middleware (inner -- resolves organization from JWT/header)
    app.add_middleware(TenantAuthMiddleware)

    # CORS middleware
    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (outermost -- logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    app.include_router(v1_router)

    return app


# Module-level app for uvicorn
app = create_app()
