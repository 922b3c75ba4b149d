"""OCR extraction for scanned PDFs.

Pages are rasterized with PyMuPDF, preprocessed with Pillow (grayscale,
autocontrast, sharpen, median denoise, downscale to A4 @ 300 DPI) and
recognized with Tesseract through pytesseract.

Recognition runs on a bounded thread pool created per job. Pages are
dispatched in batches the size of the pool, and each result is written to
its page index so the final text is in page order whatever the completion
order. A page that fails recognition contributes empty text with zero
confidence instead of aborting the job.
"""

from __future__ import annotations

import asyncio
import io
import logging
import re
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

import fitz  # PyMuPDF
import pytesseract
from PIL import Image, ImageFilter, ImageOps

from src.equipment_rag.config import EquipmentRAGConfig
from src.equipment_rag.ingestion.cancellation import CancellationToken

logger = logging.getLogger(__name__)


@dataclass
class PageText:
    """Recognized text of one page. Confidence is in [0, 1]."""

    page_number: int
    text: str
    confidence: float


@dataclass
class OCRResult:
    """Concatenated OCR output of a whole document."""

    text: str
    pages: int
    confidence: float
    processing_time_ms: int


@dataclass
class OCRProgress:
    """Emitted on the progress queue after each recognized page."""

    completed_pages: int
    total_pages: int
    message: str


# ── Image helpers ───────────────────────────────────────────────────────────


def render_pages(pdf_bytes: bytes, scale: float = 2.0) -> list[bytes]:
    """Rasterize every page of a PDF to PNG bytes."""
    matrix = fitz.Matrix(scale, scale)
    with fitz.open(stream=pdf_bytes, filetype="pdf") as doc:
        return [page.get_pixmap(matrix=matrix).tobytes("png") for page in doc]


def preprocess_image(image: Image.Image, target_width: int = 2480) -> Image.Image:
    """Prepare a page raster for recognition.

    Grayscale, stretch contrast, sharpen text edges, remove speckle noise and
    shrink to ``target_width`` when wider. Never enlarges.
    """
    prepared = ImageOps.grayscale(image)
    prepared = ImageOps.autocontrast(prepared)
    prepared = prepared.filter(ImageFilter.UnsharpMask(radius=2, percent=150, threshold=3))
    prepared = prepared.filter(ImageFilter.MedianFilter(size=3))

    if prepared.width > target_width:
        ratio = target_width / prepared.width
        prepared = prepared.resize(
            (target_width, max(1, int(prepared.height * ratio))),
            Image.Resampling.LANCZOS,
        )
    return prepared


def _rebuild_text(data: dict) -> str:
    """Reassemble image_to_data word boxes into lines and paragraphs."""
    lines: dict[tuple[int, int, int], list[str]] = {}
    for i, word in enumerate(data.get("text", [])):
        if not word or not word.strip():
            continue
        key = (data["block_num"][i], data["par_num"][i], data["line_num"][i])
        lines.setdefault(key, []).append(word.strip())

    output: list[str] = []
    previous_block: tuple[int, int] | None = None
    for (block, par, _line), words in lines.items():
        if previous_block is not None and previous_block != (block, par):
            output.append("")
        output.append(" ".join(words))
        previous_block = (block, par)
    return "\n".join(output)


# ── Text helpers ────────────────────────────────────────────────────────────


def is_scanned_pdf(text: str, page_count: int, threshold: int = 200) -> bool:
    """Whether a PDF's text layer is too thin to be a native document.

    Native PDFs usually carry 1000+ characters per page; scanned ones have
    little or nothing extractable.
    """
    if page_count == 0:
        return True
    return len(text.strip()) / page_count < threshold


def clean_ocr_text(text: str) -> str:
    """Fix common Tesseract confusions and normalise whitespace."""
    cleaned = text.replace("|", "I")
    cleaned = re.sub(r"0(?=[a-zA-Z])", "O", cleaned)
    cleaned = re.sub(r"1(?=[a-zA-Z])", "l", cleaned)
    cleaned = re.sub(r"[ \t]+", " ", cleaned)
    cleaned = re.sub(r"\n{4,}", "\n\n\n", cleaned)
    return "\n".join(line.strip() for line in cleaned.split("\n")).strip()


# ── Engine ──────────────────────────────────────────────────────────────────


class OCREngine:
    """Bounded-concurrency Tesseract OCR over rasterized PDF pages.

    Args:
        config: Provides concurrency, render scale, target width and languages.
    """

    def __init__(self, config: EquipmentRAGConfig) -> None:
        self._concurrency = max(1, config.ocr_concurrency)
        self._scale = config.ocr_scale
        self._target_width = config.ocr_target_width
        self._languages = config.ocr_languages

    def recognize_page(self, page_number: int, image_bytes: bytes) -> PageText:
        """Recognize one page. Runs on a worker thread.

        Failures are logged and reported as an empty, zero-confidence page.
        """
        try:
            with Image.open(io.BytesIO(image_bytes)) as image:
                prepared = preprocess_image(image, self._target_width)
            data = pytesseract.image_to_data(
                prepared,
                lang=self._languages,
                output_type=pytesseract.Output.DICT,
            )
        except (pytesseract.TesseractError, RuntimeError, OSError, ValueError) as exc:
            logger.warning("OCR failed on page %d: %s", page_number, exc)
            return PageText(page_number=page_number, text="", confidence=0.0)

        confidences = [float(c) for c in data.get("conf", []) if float(c) >= 0]
        confidence = sum(confidences) / len(confidences) / 100 if confidences else 0.0
        return PageText(
            page_number=page_number,
            text=f"[Page {page_number}]\n{_rebuild_text(data)}",
            confidence=confidence,
        )

    async def extract(
        self,
        pdf_bytes: bytes,
        progress: asyncio.Queue[OCRProgress] | None = None,
        cancel: CancellationToken | None = None,
    ) -> OCRResult:
        """OCR every page of a PDF.

        Args:
            pdf_bytes: Raw PDF content.
            progress: Optional bounded queue receiving one OCRProgress per page.
            cancel: Checked between page batches.

        Returns:
            OCRResult with page-ordered text and mean page confidence.

        Raises:
            IngestionCancelledError: If cancellation is observed between batches.
        """
        start = time.monotonic()
        images = await asyncio.to_thread(render_pages, pdf_bytes, self._scale)
        total = len(images)
        if total == 0:
            return OCRResult(text="", pages=0, confidence=0.0, processing_time_ms=0)

        results: list[PageText | None] = [None] * total
        completed = 0
        workers = min(self._concurrency, total)
        loop = asyncio.get_running_loop()
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ocr")
        logger.info("OCR started: %d pages on %d workers", total, workers)

        async def run_page(index: int) -> None:
            nonlocal completed
            results[index] = await loop.run_in_executor(
                executor, self.recognize_page, index + 1, images[index]
            )
            completed += 1
            if progress is not None:
                await progress.put(
                    OCRProgress(
                        completed_pages=completed,
                        total_pages=total,
                        message=f"OCR: Page {index + 1}/{total}",
                    )
                )

        try:
            for batch_start in range(0, total, workers):
                if cancel is not None:
                    cancel.raise_if_cancelled()
                batch = range(batch_start, min(batch_start + workers, total))
                await asyncio.gather(*(run_page(i) for i in batch))
        finally:
            # In-flight pages finish on their threads; their results are dropped
            executor.shutdown(wait=False, cancel_futures=True)

        pages = [r or PageText(page_number=i + 1, text="", confidence=0.0) for i, r in enumerate(results)]
        confidence = sum(p.confidence for p in pages) / total
        elapsed_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            "OCR complete: %d pages in %.1fs, confidence %.2f",
            total,
            elapsed_ms / 1000,
            confidence,
        )
        return OCRResult(
            text="\n\n".join(p.text for p in pages),
            pages=total,
            confidence=confidence,
            processing_time_ms=elapsed_ms,
        )
