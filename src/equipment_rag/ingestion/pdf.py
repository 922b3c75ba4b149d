"""PDF text extraction with automatic OCR fallback.

Tries the native text layer first (PyMuPDF). When the average text per page
is too thin to be a native document, or native parsing raises, the OCR
engine takes over. ExtractionError is raised only when both paths fail.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Literal

import fitz  # PyMuPDF

from src.equipment_rag.config import EquipmentRAGConfig
from src.equipment_rag.errors import ExtractionError, IngestionCancelledError
from src.equipment_rag.ingestion.cancellation import CancellationToken
from src.equipment_rag.ingestion.ocr import OCREngine, OCRProgress, clean_ocr_text, is_scanned_pdf

logger = logging.getLogger(__name__)


@dataclass
class ExtractedText:
    """Text pulled out of a PDF and how it was obtained."""

    text: str
    page_count: int
    method: Literal["native", "ocr"]
    confidence: float
    processing_time_ms: int


def extract_native_text(pdf_bytes: bytes) -> tuple[str, int]:
    """Read the embedded text layer of a PDF.

    Returns:
        Tuple of (text, page_count).
    """
    with fitz.open(stream=pdf_bytes, filetype="pdf") as doc:
        pages = [page.get_text("text") for page in doc]
        return "\n".join(pages), doc.page_count


class PDFTextExtractor:
    """Native-first PDF text extraction.

    Args:
        ocr: Engine used for scanned documents.
        config: Provides the native text density threshold.
    """

    def __init__(self, ocr: OCREngine, config: EquipmentRAGConfig) -> None:
        self._ocr = ocr
        self._min_chars_per_page = config.native_min_chars_per_page

    async def extract(
        self,
        pdf_bytes: bytes,
        progress: asyncio.Queue[OCRProgress] | None = None,
        cancel: CancellationToken | None = None,
    ) -> ExtractedText:
        """Extract text, switching to OCR for scanned documents.

        Args:
            pdf_bytes: Raw PDF content.
            progress: Queue forwarded to the OCR engine for per-page progress.
            cancel: Forwarded to the OCR engine.

        Returns:
            ExtractedText with method "native" or "ocr".

        Raises:
            ExtractionError: If native parsing and OCR both fail.
        """
        start = time.monotonic()
        try:
            text, page_count = await asyncio.to_thread(extract_native_text, pdf_bytes)
        except (RuntimeError, ValueError) as exc:
            # PyMuPDF reports corrupt or unreadable files as RuntimeError subclasses
            logger.warning("Native extraction failed, falling back to OCR: %s", exc)
        else:
            logger.info("Native extraction: %d chars over %d pages", len(text.strip()), page_count)
            if not is_scanned_pdf(text, page_count, self._min_chars_per_page):
                return ExtractedText(
                    text=text,
                    page_count=page_count,
                    method="native",
                    confidence=1.0,
                    processing_time_ms=int((time.monotonic() - start) * 1000),
                )
            logger.info("Low text density, switching to OCR")

        try:
            result = await self._ocr.extract(pdf_bytes, progress=progress, cancel=cancel)
        except IngestionCancelledError:
            raise
        except Exception as exc:
            logger.error("OCR extraction failed: %s", exc, exc_info=True)
            raise ExtractionError(f"Could not extract text from PDF: {exc}") from exc

        return ExtractedText(
            text=clean_ocr_text(result.text),
            page_count=result.pages,
            method="ocr",
            confidence=result.confidence,
            processing_time_ms=int((time.monotonic() - start) * 1000),
        )
