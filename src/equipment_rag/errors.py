"""Exception taxonomy for ingestion and retrieval.

Fatal errors end an ingestion progress stream with a terminal error event.
MetadataExtractionFailure and per-batch PersistenceError are handled inside
the pipeline and only degrade the result.
"""

from __future__ import annotations


class EquipmentRAGError(Exception):
    """Base class for all equipment RAG errors."""


class UploadValidationError(EquipmentRAGError):
    """Uploaded file is not a PDF or exceeds the size ceiling."""

    def __init__(self, message: str, *, too_large: bool = False) -> None:
        super().__init__(message)
        self.too_large = too_large


class ExtractionError(EquipmentRAGError):
    """Every text extraction path (native and OCR) failed."""


class InsufficientTextError(EquipmentRAGError):
    """Extracted text is too short to be worth indexing."""


class MetadataExtractionFailure(EquipmentRAGError):
    """The AI metadata tier failed or returned unparseable output."""


class EmbeddingServiceError(EquipmentRAGError):
    """The embedding provider rejected or failed a request."""


class PersistenceError(EquipmentRAGError):
    """A storage operation failed."""


class AuthError(EquipmentRAGError):
    """Caller is not authenticated."""


class NotFoundError(EquipmentRAGError):
    """A referenced asset or document does not exist in the tenant scope."""


class IngestionCancelledError(EquipmentRAGError):
    """The caller cancelled an ingestion job."""
