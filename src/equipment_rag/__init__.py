"""Maintenance knowledge engine for industrial equipment.

Turns equipment manuals into searchable, asset-scoped knowledge and answers
technicians' questions with context drawn from documents, the plant
hierarchy and the process dependency graph.
"""

from src.equipment_rag.config import EquipmentRAGConfig
from src.equipment_rag.embeddings import EmbeddingService
from src.equipment_rag.errors import EquipmentRAGError

__all__ = [
    "EmbeddingService",
    "EquipmentRAGConfig",
    "EquipmentRAGError",
]
