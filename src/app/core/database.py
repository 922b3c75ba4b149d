"""Async SQLAlchemy engine for the equipment knowledge tables.

Provides:
- get_engine(): lazily created AsyncEngine singleton
- init_db(): enables pgvector and creates the EquipmentBase tables
- close_db(): disposes of the engine on shutdown

Organization isolation is enforced in queries (organization_id filters in
PostgresMaintenanceStore), not by schema.
"""

from __future__ import annotations

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from src.app.config import get_settings
from src.equipment_rag.store.tables import EquipmentBase

# ── Module-level engine (lazy init) ────────────────────────────────────────

_engine: AsyncEngine | None = None


def get_engine() -> AsyncEngine:
    """Get or create the async engine singleton."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_async_engine(
            settings.DATABASE_URL,
            pool_size=20,
            max_overflow=10,
            pool_pre_ping=True,
            echo=False,
        )
    return _engine


# ── Database Initialization ─────────────────────────────────────────────────


async def init_db() -> None:
    """Enable pgvector and create the knowledge tables if they don't exist."""
    engine = get_engine()
    async with engine.begin() as conn:
        await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        await conn.execute(text("CREATE EXTENSION IF NOT EXISTS pgcrypto"))
        await conn.run_sync(EquipmentBase.metadata.create_all)


async def close_db() -> None:
    """Dispose of the engine and close all connections."""
    global _engine
    if _engine:
        await _engine.dispose()
        _engine = None
