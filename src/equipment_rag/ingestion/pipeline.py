"""End-to-end ingestion of an equipment PDF.

Orchestrates the complete upload flow as a progress stream:

    validate + fingerprint -> PDFTextExtractor.extract() (native or OCR)
    -> clean_for_rag() -> TieredMetadataExtractor.extract()
    -> DocumentClassifier -> create/attach Asset + Document
    -> mark_sections() + SectionAwareChunker.chunk()
    -> EmbeddingService.iter_batches() -> MaintenanceStore.insert_chunks()

Each stage transition yields a ProgressEvent. The stream always ends with
exactly one terminal event, "complete" or "error". All operations are
tenant-scoped by organization_id.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from collections.abc import AsyncIterator
from datetime import datetime, timezone
from typing import Any

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.equipment_rag.config import EquipmentRAGConfig
from src.equipment_rag.embeddings import EmbeddingService
from src.equipment_rag.errors import (
    EquipmentRAGError,
    ExtractionError,
    IngestionCancelledError,
    InsufficientTextError,
    NotFoundError,
    PersistenceError,
    UploadValidationError,
)
from src.equipment_rag.ingestion.cancellation import CancellationToken
from src.equipment_rag.ingestion.chunker import SectionAwareChunker, TextChunk, validate_chunks
from src.equipment_rag.ingestion.classifier import (
    CLASSIFICATION_TYPES,
    ClassificationResult,
    DocumentClassifier,
)
from src.equipment_rag.ingestion.cleaning import clean_for_rag, mark_sections
from src.equipment_rag.ingestion.fingerprint import FingerprintCache, compute_fingerprint
from src.equipment_rag.ingestion.metadata_extractor import TieredMetadataExtractor
from src.equipment_rag.ingestion.ocr import OCRProgress
from src.equipment_rag.ingestion.pdf import ExtractedText, PDFTextExtractor
from src.equipment_rag.models import (
    Asset,
    Document,
    DocumentChunk,
    ExtractedMetadata,
    IngestionResult,
    ProgressEvent,
)
from src.equipment_rag.store.base import MaintenanceStore

logger = logging.getLogger(__name__)

PDF_MAGIC = b"%PDF-"

# Rough OCR cost per page, used for the ETA shown during OCR
OCR_SECONDS_PER_PAGE = 3


def validate_upload(data: bytes, file_name: str, max_bytes: int) -> None:
    """Reject anything that is not a PDF within the size ceiling.

    Raises:
        UploadValidationError: With too_large=True when over the ceiling.
    """
    if not file_name.lower().endswith(".pdf") or not data.startswith(PDF_MAGIC):
        raise UploadValidationError("Seuls les fichiers PDF sont acceptés")
    if len(data) > max_bytes:
        raise UploadValidationError(
            f"Fichier trop volumineux ({len(data) // (1024 * 1024)} MB, "
            f"max {max_bytes // (1024 * 1024)} MB)",
            too_large=True,
        )


class _Job:
    """Mutable state of one ingestion run."""

    def __init__(self, file_name: str, organization_id: str) -> None:
        self.file_name = file_name
        self.organization_id = organization_id
        self.started = time.monotonic()
        self.document_id: str | None = None
        self.completed = False
        self.warnings: list[str] = []

    @property
    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)


class IngestionPipeline:
    """Turns an uploaded PDF into an indexed equipment document.

    Args:
        store: Persistence for assets, documents and chunks.
        extractor: Native-first PDF text extractor with OCR fallback.
        metadata_extractor: Tiered identity extractor.
        classifier: Primary and multi-label document classifier.
        chunker: Section-aware chunker.
        embedder: Embedding service issuing sequential batches.
        fingerprints: Duplicate detection by content hash.
        config: Size limits, batch sizes and retry settings.

    Usage:
        async for event in pipeline.run(data, "manual.pdf", org_id):
            send(event)
    """

    def __init__(
        self,
        store: MaintenanceStore,
        extractor: PDFTextExtractor,
        metadata_extractor: TieredMetadataExtractor,
        classifier: DocumentClassifier,
        chunker: SectionAwareChunker,
        embedder: EmbeddingService,
        fingerprints: FingerprintCache,
        config: EquipmentRAGConfig,
    ) -> None:
        self._store = store
        self._extractor = extractor
        self._metadata = metadata_extractor
        self._classifier = classifier
        self._chunker = chunker
        self._embedder = embedder
        self._fingerprints = fingerprints
        self._config = config

    async def run(
        self,
        data: bytes,
        file_name: str,
        organization_id: str,
        *,
        asset_id: str | None = None,
        document_type: str | None = None,
        allow_duplicate: bool = False,
        cancel: CancellationToken | None = None,
    ) -> AsyncIterator[ProgressEvent]:
        """Ingest one PDF, yielding progress until a terminal event.

        Args:
            data: Raw PDF bytes.
            file_name: Original upload name.
            organization_id: Tenant owning the document.
            asset_id: Existing asset to attach the document to. A new asset
                is created from the extracted identity when omitted.
            document_type: Optional primary type hint that skips AI
                classification.
            allow_duplicate: Ingest even when the fingerprint already exists.
            cancel: Token checked between stages and embedding batches.

        Yields:
            ProgressEvent objects; the last one is "complete" or "error".
        """
        job = _Job(file_name, organization_id)
        cancel = cancel or CancellationToken()
        try:
            async for event in self._stages(
                job, data, asset_id, document_type, allow_duplicate, cancel
            ):
                yield event
        except (GeneratorExit, asyncio.CancelledError):
            # Consumer closed the stream or its task was cancelled; no more yields
            logger.info("Ingestion of %s interrupted by the consumer", file_name)
            await asyncio.shield(self._mark_failed(job))
            raise
        except IngestionCancelledError:
            logger.info("Ingestion of %s cancelled", file_name)
            await self._mark_failed(job)
            yield ProgressEvent(stage="error", progress=0, message="Import annulé", error="cancelled")
        except EquipmentRAGError as exc:
            logger.error("Ingestion of %s failed: %s", file_name, exc)
            await self._mark_failed(job)
            yield ProgressEvent(stage="error", progress=0, message=str(exc), error=str(exc))
        except Exception as exc:
            logger.exception("Unexpected ingestion failure for %s", file_name)
            await self._mark_failed(job)
            yield ProgressEvent(
                stage="error",
                progress=0,
                message="Erreur interne pendant l'import",
                error=str(exc) or exc.__class__.__name__,
            )

    # ── Stages ──────────────────────────────────────────────────────────

    async def _stages(
        self,
        job: _Job,
        data: bytes,
        asset_id: str | None,
        document_type: str | None,
        allow_duplicate: bool,
        cancel: CancellationToken,
    ) -> AsyncIterator[ProgressEvent]:
        # 1. Upload checks
        yield ProgressEvent(stage="uploading", progress=5, message="Vérification...")
        validate_upload(data, job.file_name, self._config.max_upload_bytes)
        fingerprint = compute_fingerprint(data)

        if not allow_duplicate:
            duplicate = await self._fingerprints.check_duplicate(fingerprint, job.organization_id)
            if duplicate.is_duplicate and duplicate.existing_document:
                existing = duplicate.existing_document
                result = IngestionResult(
                    asset_id=existing.get("asset_id"),
                    document_id=existing.get("id"),
                    is_duplicate=True,
                    existing_document=existing,
                    processing_time_ms=job.elapsed_ms,
                )
                yield ProgressEvent(
                    stage="complete",
                    progress=100,
                    message=f"Document déjà importé: {existing.get('file_name')}",
                    result=result.model_dump(mode="json"),
                )
                return

        yield ProgressEvent(stage="uploading", progress=10, message=f"Fichier reçu: {job.file_name}")

        # 2. Text extraction
        cancel.raise_if_cancelled()
        yield ProgressEvent(stage="loading", progress=15, message="Extraction du texte...")
        extracted: ExtractedText | None = None
        async for item in self._extract_with_progress(data, cancel):
            if isinstance(item, ExtractedText):
                extracted = item
            else:
                yield item
        if extracted is None:
            raise ExtractionError("Aucun texte retourné par l'extraction")

        cleaned = clean_for_rag(extracted.text)
        if len(cleaned.strip()) < self._config.min_text_length:
            raise InsufficientTextError("PDF contient trop peu de texte")
        yield ProgressEvent(
            stage="metadata",
            progress=65,
            message="Extraction terminée",
            total_pages=extracted.page_count,
        )

        # 3. Metadata and classification
        cancel.raise_if_cancelled()
        yield ProgressEvent(stage="metadata", progress=68, message="Extraction des métadonnées...")
        metadata = await self._metadata.extract(cleaned, job.file_name)

        cancel.raise_if_cancelled()
        yield ProgressEvent(stage="metadata", progress=72, message="Classification du document...")
        classification = await self._classify(cleaned, document_type)
        cancel.raise_if_cancelled()
        document_types = await self._classifier.classify_types(
            cleaned,
            {"name": metadata.name, "manufacturer": metadata.manufacturer, "category": metadata.category},
        )

        # 4. Asset and document rows
        cancel.raise_if_cancelled()
        if asset_id:
            yield ProgressEvent(
                stage="storing", progress=75, message="Ajout du document à l'équipement..."
            )
            asset = await self._store.get_asset(asset_id, job.organization_id)
            if asset is None:
                raise NotFoundError(f"Équipement introuvable: {asset_id}")
        else:
            yield ProgressEvent(stage="storing", progress=75, message="Création de l'équipement...")
            asset = await self._store.create_asset(self._asset_from_metadata(metadata, job))

        document = await self._store.create_document(
            Document(
                asset_id=asset.id,
                organization_id=job.organization_id,
                file_name=job.file_name,
                file_size=len(data),
                status="processing",
                document_type=classification.type,
                document_types=document_types,
                classification_confidence=classification.confidence,
                extraction_method=extracted.method,
            )
        )
        job.document_id = document.id

        # 5. Chunking
        cancel.raise_if_cancelled()
        yield ProgressEvent(stage="chunking", progress=78, message="Découpage en sections...")
        chunks = self._chunker.chunk(mark_sections(cleaned))
        if not chunks:
            raise InsufficientTextError("Aucun contenu exploitable après découpage")
        report = validate_chunks(chunks)
        for warning in report.warnings:
            logger.info("Chunk quality for %s: %s", job.file_name, warning)
        yield ProgressEvent(
            stage="chunking",
            progress=80,
            message=f"{len(chunks)} sections créées",
            total_chunks=len(chunks),
        )

        # 6. Embedding
        vectors: list[list[float]] = []
        async for event in self._embed(chunks, vectors, cancel):
            yield event

        # 7. Chunk inserts
        rows = [
            DocumentChunk(
                document_id=document.id,
                asset_id=asset.id,
                content=chunk.content,
                embedding=vector,
                chunk_index=chunk.chunk_index,
                page_number=chunk.page_number,
                extraction_method=extracted.method,
                metadata=chunk.metadata(),
            )
            for chunk, vector in zip(chunks, vectors, strict=True)
        ]
        yield ProgressEvent(stage="storing", progress=93, message="Sauvegarde...")
        persisted = 0
        batch_size = self._config.insert_batch_size
        for start in range(0, len(rows), batch_size):
            batch = rows[start : start + batch_size]
            try:
                persisted += await self._insert_with_retry(batch)
            except PersistenceError:
                logger.error(
                    "Chunk batch %d-%d of %s skipped after retries",
                    start,
                    start + len(batch) - 1,
                    job.file_name,
                    exc_info=True,
                )
            done = min(start + batch_size, len(rows))
            yield ProgressEvent(
                stage="storing",
                progress=93 + int(done / len(rows) * 5),
                message=f"Sauvegarde {done}/{len(rows)}",
                current_chunk=done,
                total_chunks=len(rows),
            )

        if persisted == 0:
            raise PersistenceError("Aucun chunk n'a pu être sauvegardé")
        partial = persisted < len(rows)
        if partial:
            job.warnings.append(f"{len(rows) - persisted} chunks sur {len(rows)} non sauvegardés")

        # 8. Finalize
        await self._store.update_document(
            document.id,
            status="completed",
            total_chunks=persisted,
            fingerprint=fingerprint,
            processed_at=datetime.now(timezone.utc),
        )
        job.completed = True

        result = IngestionResult(
            asset_id=asset.id,
            document_id=document.id,
            asset={
                "name": asset.name,
                "manufacturer": asset.manufacturer,
                "model": asset.model_number,
                "category": asset.category,
            },
            classification={"type": classification.type, "confidence": classification.confidence},
            document_types=document_types,
            extraction={
                "method": extracted.method,
                "pages": extracted.page_count,
                "confidence": extracted.confidence,
            },
            chunks_created=len(rows),
            chunks_persisted=persisted,
            partial=partial,
            processing_time_ms=job.elapsed_ms,
            warnings=job.warnings,
        )
        logger.info(
            "Ingested %s: %d/%d chunks in %dms (%s)",
            job.file_name,
            persisted,
            len(rows),
            result.processing_time_ms,
            extracted.method,
        )
        yield ProgressEvent(
            stage="complete",
            progress=100,
            message="Import terminé",
            result=result.model_dump(mode="json"),
        )

    async def _extract_with_progress(
        self, data: bytes, cancel: CancellationToken
    ) -> AsyncIterator[ProgressEvent | ExtractedText]:
        """Run extraction while relaying OCR page progress.

        The extractor runs as a task writing to a bounded queue; this
        generator drains the queue until the task finishes, then yields the
        ExtractedText last.
        """
        queue: asyncio.Queue[OCRProgress] = asyncio.Queue(maxsize=self._config.ocr_concurrency * 2)
        task = asyncio.create_task(self._extractor.extract(data, progress=queue, cancel=cancel))
        try:
            while not task.done():
                getter = asyncio.ensure_future(queue.get())
                done, _ = await asyncio.wait({getter, task}, return_when=asyncio.FIRST_COMPLETED)
                if getter in done:
                    yield self._ocr_event(getter.result())
                else:
                    getter.cancel()
            while not queue.empty():
                yield self._ocr_event(queue.get_nowait())
            yield await task
        finally:
            if not task.done():
                task.cancel()

    @staticmethod
    def _ocr_event(item: OCRProgress) -> ProgressEvent:
        total = max(item.total_pages, 1)
        return ProgressEvent(
            stage="ocr",
            progress=15 + int(item.completed_pages / total * 45),
            message=item.message,
            current_step="OCR en cours...",
            current_page=item.completed_pages,
            total_pages=item.total_pages,
            eta_seconds=(item.total_pages - item.completed_pages) * OCR_SECONDS_PER_PAGE,
        )

    async def _embed(
        self, chunks: list[TextChunk], vectors: list[list[float]], cancel: CancellationToken
    ) -> AsyncIterator[ProgressEvent]:
        """Embed chunk texts batch by batch, appending into ``vectors``."""
        cancel.raise_if_cancelled()
        started = time.monotonic()
        texts = [chunk.content for chunk in chunks]
        size = self._embedder.batch_size
        async for batch_no, total, batch_vectors in self._embedder.iter_batches(texts, size):
            vectors.extend(batch_vectors)
            elapsed = time.monotonic() - started
            eta = int(elapsed / batch_no * (total - batch_no))
            yield ProgressEvent(
                stage="embedding",
                progress=80 + int(batch_no / total * 12),
                message=f"Vectorisation batch {batch_no}/{total}",
                current_chunk=min(batch_no * size, len(texts)),
                total_chunks=len(texts),
                eta_seconds=eta,
            )
            cancel.raise_if_cancelled()

    async def _insert_with_retry(self, batch: list[DocumentChunk]) -> int:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._config.insert_retry_attempts),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception_type(PersistenceError),
            reraise=True,
        ):
            with attempt:
                return await self._store.insert_chunks(batch)
        return 0

    # ── Helpers ─────────────────────────────────────────────────────────

    async def _classify(self, text: str, hint: str | None) -> ClassificationResult:
        if hint and hint in CLASSIFICATION_TYPES:
            return ClassificationResult(type=hint, confidence=1.0, reasoning="Provided by uploader")
        return await self._classifier.classify(text)

    @staticmethod
    def _asset_from_metadata(metadata: ExtractedMetadata, job: _Job) -> Asset:
        name = metadata.name or re.sub(r"\.pdf$", "", job.file_name, flags=re.IGNORECASE)
        return Asset(
            organization_id=job.organization_id,
            name=name,
            code=f"{metadata.model or 'ASSET'}-{int(time.time() * 1000)}",
            level="equipment",
            manufacturer=metadata.manufacturer,
            model_number=metadata.model,
            serial_number=metadata.serial_number,
            category=metadata.category,
            description=metadata.description,
        )

    async def _mark_failed(self, job: _Job) -> None:
        if job.document_id is None or job.completed:
            return
        try:
            await self._store.update_document(job.document_id, status="error")
        except PersistenceError:
            logger.warning("Could not mark document %s as failed", job.document_id, exc_info=True)


def progress_to_dict(event: ProgressEvent) -> dict[str, Any]:
    """Serialize an event for the wire, dropping unset optional fields."""
    return event.model_dump(mode="json", exclude_none=True)
