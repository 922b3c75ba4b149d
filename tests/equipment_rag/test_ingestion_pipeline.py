"""Tests for the streamed ingestion pipeline."""

from __future__ import annotations

import asyncio

import pytest

from src.equipment_rag.config import EquipmentRAGConfig
from src.equipment_rag.errors import UploadValidationError
from src.equipment_rag.ingestion import (
    CancellationToken,
    DocumentClassifier,
    FingerprintCache,
    IngestionPipeline,
    SectionAwareChunker,
    TieredMetadataExtractor,
    compute_fingerprint,
    validate_upload,
)
from src.equipment_rag.ingestion.ocr import OCRProgress
from src.equipment_rag.ingestion.pdf import ExtractedText
from src.equipment_rag.ingestion.pipeline import progress_to_dict
from src.equipment_rag.models import Document
from tests.fakes import FakeEmbedder, InMemoryStore, MockLLM

PDF_BYTES = b"%PDF-1.4\n% compressor manual\n"

SECTIONS = [
    ("CONSIGNES DE SECURITE GENERALES", "Danger: couper l'alimentation avant toute intervention sur le compresseur."),
    ("MAINTENANCE PREVENTIVE DU COMPRESSEUR", "Entretien hebdomadaire: graissage des roulements et vidange du reservoir."),
    ("ANOMALIES ET SOLUTIONS COURANTES", "Si le compresseur ne demarre pas, verifier le fusible et le pressostat."),
    ("CARACTERISTIQUES TECHNIQUES DU GROUPE", "Pression maximale 10 bar, debit 300 litres par minute."),
]

MANUAL_TEXT = "\n".join(
    [
        "COMPRESSEUR",
        "FIAC S.p.A. - Via Vizzano 23, 40037 Pontecchio Marconi",
        "Type: AB-300",
        "Manuel d'utilisation et d'entretien du compresseur a piston.",
    ]
    + [line for header, body in SECTIONS for line in (header, body)]
)

# Introduction plus one chunk per section
EXPECTED_CHUNKS = len(SECTIONS) + 1

CLASSIFY_REPLY = '{"type": "manual", "confidence": 0.9, "reasoning": "maintenance manual"}'


class StaticExtractor:
    """Returns fixed text, optionally reporting OCR progress first."""

    def __init__(self, text: str = MANUAL_TEXT, method: str = "native", ocr_pages: int = 0):
        self.text = text
        self.method = method
        self.ocr_pages = ocr_pages

    async def extract(self, pdf_bytes, progress=None, cancel=None):
        if progress is not None:
            for page in range(1, self.ocr_pages + 1):
                await progress.put(
                    OCRProgress(completed_pages=page, total_pages=self.ocr_pages, message=f"OCR: Page {page}")
                )
        return ExtractedText(
            text=self.text,
            page_count=max(self.ocr_pages, 2),
            method=self.method,
            confidence=1.0 if self.method == "native" else 0.8,
            processing_time_ms=10,
        )


def make_pipeline(
    store: InMemoryStore,
    config: EquipmentRAGConfig,
    llm: MockLLM | None = None,
    embedder: FakeEmbedder | None = None,
    extractor: StaticExtractor | None = None,
) -> IngestionPipeline:
    llm = llm or MockLLM(response_map={"classify its type": CLASSIFY_REPLY})
    return IngestionPipeline(
        store=store,
        extractor=extractor or StaticExtractor(),
        metadata_extractor=TieredMetadataExtractor(store, llm, config),
        classifier=DocumentClassifier(llm),
        chunker=SectionAwareChunker(config.chunk_size, config.chunk_overlap),
        embedder=embedder or FakeEmbedder(),
        fingerprints=FingerprintCache(store),
        config=config,
    )


class StalledEmbedder(FakeEmbedder):
    """Never finishes a batch; ``entered`` is set once embedding starts."""

    def __init__(self) -> None:
        super().__init__()
        self.entered = asyncio.Event()

    async def embed_batch(self, texts):
        self.entered.set()
        await asyncio.Event().wait()
        return []


async def collect(events):
    return [event async for event in events]


class TestValidateUpload:
    def test_accepts_pdf(self):
        validate_upload(PDF_BYTES, "manuel.PDF", 1024)

    def test_rejects_other_extensions(self):
        with pytest.raises(UploadValidationError) as exc_info:
            validate_upload(PDF_BYTES, "manuel.docx", 1024)
        assert not exc_info.value.too_large

    def test_rejects_bad_magic(self):
        with pytest.raises(UploadValidationError):
            validate_upload(b"PK\x03\x04", "manuel.pdf", 1024)

    def test_rejects_oversized(self):
        with pytest.raises(UploadValidationError) as exc_info:
            validate_upload(PDF_BYTES + b"0" * 2048, "manuel.pdf", 1024)
        assert exc_info.value.too_large


class TestIngestionPipeline:
    async def test_compressor_manual_end_to_end(self, store, config):
        embedder = FakeEmbedder()
        pipeline = make_pipeline(store, config, embedder=embedder)

        events = await collect(pipeline.run(PDF_BYTES, "fiac_ab300.pdf", "org-1"))

        progress = [e.progress for e in events]
        assert progress == sorted(progress)
        assert events[0].progress == 5
        assert [e.stage for e in events].count("complete") == 1
        assert events[-1].stage == "complete"
        assert events[-1].progress == 100

        result = events[-1].result
        assert result["asset"]["name"] == "COMPRESSEUR"
        assert result["asset"]["manufacturer"] == "FIAC"
        assert result["asset"]["model"] == "AB-300"
        assert result["asset"]["category"] == "Compresseur"
        assert result["classification"] == {"type": "manual", "confidence": 0.9}
        assert "maintenance" in result["document_types"]
        assert "safety" in result["document_types"]
        assert result["chunks_created"] == EXPECTED_CHUNKS
        assert result["chunks_persisted"] == EXPECTED_CHUNKS
        assert not result["partial"]

        document = store.documents[result["document_id"]]
        assert document.status == "completed"
        assert document.fingerprint == compute_fingerprint(PDF_BYTES)
        assert document.total_chunks == EXPECTED_CHUNKS
        assert store.assets[result["asset_id"]].code.startswith("AB-300-")
        assert len(store.chunks) == EXPECTED_CHUNKS
        assert all(c.embedding is not None for c in store.chunks)
        assert {c.metadata["section"] for c in store.chunks} >= {"Introduction", SECTIONS[0][0]}
        assert embedder.batches == [EXPECTED_CHUNKS]

    async def test_attaches_to_existing_asset(self, store, config):
        asset = store.add_asset("Compresseur atelier")
        pipeline = make_pipeline(store, config)

        events = await collect(pipeline.run(PDF_BYTES, "fiac.pdf", "org-1", asset_id=asset.id))

        assert events[-1].stage == "complete"
        assert events[-1].result["asset_id"] == asset.id
        assert len(store.assets) == 1

    async def test_unknown_asset(self, store, config):
        events = await collect(make_pipeline(store, config).run(PDF_BYTES, "fiac.pdf", "org-1", asset_id="missing"))

        assert events[-1].stage == "error"
        assert "missing" in events[-1].error
        assert store.documents == {}

    async def test_asset_of_other_organization_is_unknown(self, store, config):
        asset = store.add_asset("Compresseur", organization_id="org-2")
        events = await collect(make_pipeline(store, config).run(PDF_BYTES, "fiac.pdf", "org-1", asset_id=asset.id))
        assert events[-1].stage == "error"

    async def test_duplicate_short_circuits(self, store, config):
        asset = store.add_asset("Compresseur FIAC")
        existing = await store.create_document(
            Document(
                asset_id=asset.id,
                organization_id="org-1",
                file_name="fiac.pdf",
                fingerprint=compute_fingerprint(PDF_BYTES),
            )
        )
        llm = MockLLM()

        events = await collect(make_pipeline(store, config, llm=llm).run(PDF_BYTES, "fiac-copy.pdf", "org-1"))

        assert [e.progress for e in events] == [5, 100]
        assert events[-1].result["is_duplicate"]
        assert events[-1].result["existing_document"]["id"] == existing.id
        assert llm.call_history == []

    async def test_allow_duplicate(self, store, config):
        asset = store.add_asset("Compresseur FIAC")
        await store.create_document(
            Document(
                asset_id=asset.id,
                organization_id="org-1",
                file_name="fiac.pdf",
                fingerprint=compute_fingerprint(PDF_BYTES),
            )
        )

        events = await collect(make_pipeline(store, config).run(PDF_BYTES, "fiac.pdf", "org-1", allow_duplicate=True))

        assert events[-1].stage == "complete"
        assert not events[-1].result["is_duplicate"]

    async def test_invalid_upload(self, store, config):
        events = await collect(make_pipeline(store, config).run(b"hello", "notes.txt", "org-1"))
        assert events[-1].stage == "error"
        assert events[-1].message == "Seuls les fichiers PDF sont acceptés"

    async def test_insufficient_text(self, store, config):
        pipeline = make_pipeline(store, config, extractor=StaticExtractor(text="Page vide"))

        events = await collect(pipeline.run(PDF_BYTES, "scan.pdf", "org-1"))

        assert events[-1].stage == "error"
        assert events[-1].error == "PDF contient trop peu de texte"
        assert store.documents == {}

    async def test_ocr_progress_relayed(self, store, config):
        pipeline = make_pipeline(store, config, extractor=StaticExtractor(method="ocr", ocr_pages=3))

        events = await collect(pipeline.run(PDF_BYTES, "scan.pdf", "org-1"))

        ocr_events = [e for e in events if e.stage == "ocr"]
        progress = [e.progress for e in ocr_events]
        assert progress == sorted(set(progress))
        assert 15 < progress[0] and progress[-1] == 60
        assert [e.current_page for e in ocr_events] == [1, 2, 3]
        assert ocr_events[-1].eta_seconds == 0
        assert events[-1].result["extraction"]["method"] == "ocr"

    async def test_document_type_hint_skips_classification(self, store, config):
        llm = MockLLM(response_map={"classify its type": CLASSIFY_REPLY})

        events = await collect(
            make_pipeline(store, config, llm=llm).run(PDF_BYTES, "plan.pdf", "org-1", document_type="schematic")
        )

        assert events[-1].result["classification"] == {"type": "schematic", "confidence": 1.0}
        assert not any("classify its type" in prompt for prompt in llm.call_history)

    async def test_cancel_before_embedding(self, store, config):
        embedder = FakeEmbedder()
        token = CancellationToken()
        events = []

        async for event in make_pipeline(store, config, embedder=embedder).run(
            PDF_BYTES, "fiac.pdf", "org-1", cancel=token
        ):
            events.append(event)
            if event.stage == "chunking" and event.progress == 80:
                token.cancel()

        assert events[-1].stage == "error"
        assert events[-1].error == "cancelled"
        assert events[-1].message == "Import annulé"
        assert embedder.batches == []
        assert store.chunks == []
        assert [d.status for d in store.documents.values()] == ["error"]

    async def test_extractor_without_result_is_an_error(self, store, config):
        class SilentExtractor:
            async def extract(self, pdf_bytes, progress=None, cancel=None):
                return None

        events = await collect(
            make_pipeline(store, config, extractor=SilentExtractor()).run(PDF_BYTES, "fiac.pdf", "org-1")
        )

        assert events[-1].stage == "error"
        assert events[-1].error == "Aucun texte retourné par l'extraction"
        assert store.documents == {}

    async def test_consumer_closing_stream_marks_document_failed(self, store, config):
        events = make_pipeline(store, config).run(PDF_BYTES, "fiac.pdf", "org-1")
        async for event in events:
            if event.stage == "chunking":
                break
        await events.aclose()

        assert [d.status for d in store.documents.values()] == ["error"]

    async def test_closing_after_complete_keeps_document(self, store, config):
        events = make_pipeline(store, config).run(PDF_BYTES, "fiac.pdf", "org-1")
        async for event in events:
            if event.stage == "complete":
                break
        await events.aclose()

        assert [d.status for d in store.documents.values()] == ["completed"]

    async def test_cancelled_consumer_task_marks_document_failed(self, store, config):
        embedder = StalledEmbedder()

        async def consume():
            async for _ in make_pipeline(store, config, embedder=embedder).run(
                PDF_BYTES, "fiac.pdf", "org-1"
            ):
                pass

        task = asyncio.create_task(consume())
        await asyncio.wait_for(embedder.entered.wait(), timeout=5)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert [d.status for d in store.documents.values()] == ["error"]
        assert store.chunks == []

    async def test_partial_persistence(self, store):
        config = EquipmentRAGConfig(openai_api_key="test-key", insert_retry_attempts=1, insert_batch_size=2)
        store.fail_inserts = 1

        events = await collect(make_pipeline(store, config).run(PDF_BYTES, "fiac.pdf", "org-1"))

        result = events[-1].result
        assert events[-1].stage == "complete"
        assert result["partial"]
        assert result["chunks_persisted"] == EXPECTED_CHUNKS - 2
        assert result["warnings"] == [f"2 chunks sur {EXPECTED_CHUNKS} non sauvegardés"]
        assert store.documents[result["document_id"]].total_chunks == EXPECTED_CHUNKS - 2

    async def test_nothing_persisted_is_an_error(self, store, config):
        store.fail_inserts = 100

        events = await collect(make_pipeline(store, config).run(PDF_BYTES, "fiac.pdf", "org-1"))

        assert events[-1].stage == "error"
        assert [d.status for d in store.documents.values()] == ["error"]

    async def test_embedding_failure(self, store, config):
        events = await collect(make_pipeline(store, config, embedder=FakeEmbedder(fail=True)).run(PDF_BYTES, "fiac.pdf", "org-1"))

        assert events[-1].stage == "error"
        assert events[-1].error == "embedding provider down"
        assert [d.status for d in store.documents.values()] == ["error"]


class TestProgressToDict:
    def test_drops_unset_fields(self):
        from src.equipment_rag.models import ProgressEvent

        payload = progress_to_dict(ProgressEvent(stage="embedding", progress=84, message="batch 1/3"))
        assert payload == {"stage": "embedding", "progress": 84, "message": "batch 1/3"}
