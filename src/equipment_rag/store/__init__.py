"""Persistence for assets, documents, chunks and the metadata cache."""

from src.equipment_rag.store.base import MaintenanceStore
from src.equipment_rag.store.postgres import PostgresMaintenanceStore

__all__ = ["MaintenanceStore", "PostgresMaintenanceStore"]
