"""Duplicate upload detection by content fingerprint."""

from __future__ import annotations

import hashlib
import logging

from src.equipment_rag.errors import PersistenceError
from src.equipment_rag.models import DuplicateCheckResult
from src.equipment_rag.store.base import MaintenanceStore

logger = logging.getLogger(__name__)


def compute_fingerprint(data: bytes) -> str:
    """SHA-256 hex digest of the raw file bytes."""
    return hashlib.sha256(data).hexdigest()


class FingerprintCache:
    """Looks up previously ingested documents by fingerprint.

    The direct lookup filters documents by organization. If it fails, a
    slower lookup scoping through the owning asset is tried before giving up.
    """

    def __init__(self, store: MaintenanceStore) -> None:
        self._store = store

    async def check_duplicate(self, fingerprint: str, organization_id: str) -> DuplicateCheckResult:
        """Return the existing document sharing this fingerprint, if any.

        Raises:
            PersistenceError: If the fallback lookup fails too.
        """
        try:
            existing = await self._store.find_duplicate_document(fingerprint, organization_id)
        except PersistenceError:
            logger.warning(
                "Direct fingerprint lookup failed, retrying through assets", exc_info=True
            )
            existing = await self._store.find_duplicate_document_via_assets(
                fingerprint, organization_id
            )

        if existing is None:
            return DuplicateCheckResult()

        logger.info(
            "Duplicate document %s found for fingerprint %s", existing.get("id"), fingerprint[:12]
        )
        return DuplicateCheckResult(is_duplicate=True, existing_document=existing)
