"""Tests for native PDF extraction, OCR fallback and the OCR engine."""

from __future__ import annotations

import asyncio
import io
import threading
import time

import fitz
import pytest
import pytesseract
from PIL import Image

from src.equipment_rag.errors import ExtractionError, IngestionCancelledError
from src.equipment_rag.ingestion import ocr as ocr_module
from src.equipment_rag.ingestion.cancellation import CancellationToken
from src.equipment_rag.ingestion.ocr import (
    OCREngine,
    OCRResult,
    PageText,
    clean_ocr_text,
    is_scanned_pdf,
    preprocess_image,
)
from src.equipment_rag.ingestion.pdf import PDFTextExtractor

MANUAL_LINES = [
    "COMPRESSEUR",
    "FIAC S.p.A. Pontecchio Marconi",
    "Type: AB-300",
    "Manuel d'utilisation et d'entretien du compresseur.",
    "Verifier le niveau d'huile avant chaque demarrage.",
    "Purger le reservoir d'air comprime chaque semaine.",
    "Remplacer le filtre d'aspiration toutes les 500 heures.",
]


def make_pdf(pages: list[list[str]]) -> bytes:
    doc = fitz.open()
    for lines in pages:
        page = doc.new_page()
        if lines:
            page.insert_text((50, 72), "\n".join(lines), fontsize=10)
    data = doc.tobytes()
    doc.close()
    return data


def png_bytes(width: int = 10, height: int = 10) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), "white").save(buffer, format="PNG")
    return buffer.getvalue()


class FakeOCR:
    def __init__(self, text: str = "Texte reconnu |ci", fail: bool = False):
        self.text = text
        self.fail = fail
        self.calls = 0

    async def extract(self, pdf_bytes, progress=None, cancel=None):
        self.calls += 1
        if self.fail:
            raise RuntimeError("tesseract missing")
        return OCRResult(text=self.text, pages=1, confidence=0.8, processing_time_ms=5)


class TestPDFTextExtractor:
    async def test_native_text_layer(self, config):
        ocr = FakeOCR()
        result = await PDFTextExtractor(ocr, config).extract(make_pdf([MANUAL_LINES]))

        assert result.method == "native"
        assert result.page_count == 1
        assert result.confidence == 1.0
        assert "Pontecchio Marconi" in result.text
        assert ocr.calls == 0

    async def test_blank_pages_fall_back_to_ocr(self, config):
        ocr = FakeOCR()
        result = await PDFTextExtractor(ocr, config).extract(make_pdf([[], []]))

        assert result.method == "ocr"
        assert result.text == "Texte reconnu Ici"
        assert result.confidence == pytest.approx(0.8)
        assert ocr.calls == 1

    async def test_corrupt_pdf_and_failed_ocr(self, config):
        with pytest.raises(ExtractionError):
            await PDFTextExtractor(FakeOCR(fail=True), config).extract(b"%PDF-not really a pdf")


class TestOCRHelpers:
    def test_is_scanned_pdf(self):
        assert is_scanned_pdf("", 0)
        assert is_scanned_pdf("x" * 100, 2)
        assert not is_scanned_pdf("x" * 3000, 2)

    def test_clean_ocr_text(self):
        assert clean_ocr_text("F|ltre  0uvert\n\n\n\n\n1ampe ") == "FIltre Ouvert\n\n\nlampe"

    def test_preprocess_downscales_to_grayscale(self):
        prepared = preprocess_image(Image.new("RGB", (4960, 100), "white"), target_width=2480)
        assert prepared.mode == "L"
        assert prepared.size == (2480, 50)

    def test_preprocess_never_enlarges(self):
        prepared = preprocess_image(Image.new("RGB", (800, 100), "white"), target_width=2480)
        assert prepared.width == 800


class TestOCREngine:
    def test_recognize_page_rebuilds_lines(self, config, monkeypatch):
        data = {
            "text": ["Pompe", "hydraulique", "", "Filtre"],
            "conf": ["90", "80", "-1", "70"],
            "block_num": [1, 1, 1, 2],
            "par_num": [1, 1, 1, 1],
            "line_num": [1, 1, 1, 1],
        }
        monkeypatch.setattr(pytesseract, "image_to_data", lambda *args, **kwargs: data)

        page = OCREngine(config).recognize_page(1, png_bytes())

        assert page.text == "[Page 1]\nPompe hydraulique\n\nFiltre"
        assert page.confidence == pytest.approx(0.8)

    def test_recognize_page_failure_is_empty(self, config, monkeypatch):
        def boom(*args, **kwargs):
            raise pytesseract.TesseractError(1, "boom")

        monkeypatch.setattr(pytesseract, "image_to_data", boom)

        page = OCREngine(config).recognize_page(2, png_bytes())

        assert page.text == ""
        assert page.confidence == 0.0

    async def test_pages_in_order_with_progress(self, config, monkeypatch):
        monkeypatch.setattr(ocr_module, "render_pages", lambda pdf, scale: [b"1", b"2", b"3"])
        engine = OCREngine(config.model_copy(update={"ocr_concurrency": 2}))
        monkeypatch.setattr(
            engine, "recognize_page", lambda n, image: PageText(n, f"[Page {n}]\ntexte {n}", 0.9)
        )
        queue: asyncio.Queue = asyncio.Queue()

        result = await engine.extract(b"%PDF-", progress=queue)

        assert result.pages == 3
        assert result.text.index("texte 1") < result.text.index("texte 2") < result.text.index("texte 3")
        assert result.confidence == pytest.approx(0.9)
        updates = [queue.get_nowait() for _ in range(queue.qsize())]
        assert [u.completed_pages for u in updates] == [1, 2, 3]
        assert all(u.total_pages == 3 for u in updates)

    async def test_cancelled_before_first_batch(self, config, monkeypatch):
        monkeypatch.setattr(ocr_module, "render_pages", lambda pdf, scale: [b"1"])
        token = CancellationToken()
        token.cancel()

        with pytest.raises(IngestionCancelledError):
            await OCREngine(config).extract(b"%PDF-", cancel=token)

    async def test_empty_document(self, config, monkeypatch):
        monkeypatch.setattr(ocr_module, "render_pages", lambda pdf, scale: [])
        result = await OCREngine(config).extract(b"%PDF-")
        assert result.pages == 0
        assert result.text == ""

    def test_recognize_page_timeout_is_empty(self, config, monkeypatch):
        def timeout(*args, **kwargs):
            raise RuntimeError("Tesseract process timeout")

        monkeypatch.setattr(pytesseract, "image_to_data", timeout)

        page = OCREngine(config).recognize_page(3, png_bytes())

        assert page.text == ""
        assert page.confidence == 0.0

    async def test_cancel_mid_batch_returns_without_waiting_for_workers(self, config, monkeypatch):
        monkeypatch.setattr(ocr_module, "render_pages", lambda pdf, scale: [b"1", b"2"])
        engine = OCREngine(config)
        started = threading.Event()
        release = threading.Event()

        def slow_page(n, image):
            started.set()
            release.wait(timeout=5)
            return PageText(n, f"texte {n}", 0.9)

        monkeypatch.setattr(engine, "recognize_page", slow_page)
        task = asyncio.create_task(engine.extract(b"%PDF-"))
        while not started.is_set():
            await asyncio.sleep(0.01)

        began = time.monotonic()
        task.cancel()
        try:
            with pytest.raises(asyncio.CancelledError):
                await task
            elapsed = time.monotonic() - began
        finally:
            release.set()

        assert elapsed < 0.5
