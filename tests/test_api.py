"""Tests for the v1 HTTP endpoints: ingestion, query and documents.

Uses the in-memory store, MockLLM and FakeEmbedder from tests/fakes.py,
injected as app.state.services, and httpx AsyncClient with ASGITransport.
The lifespan is not run, so no database is touched.
"""

from __future__ import annotations

import json

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from src.app.core.security import create_access_token
from src.app.main import create_app
from src.app.services.equipment import build_services
from src.equipment_rag.config import EquipmentRAGConfig
from src.equipment_rag.ingestion.pdf import ExtractedText
from src.equipment_rag.models import Document
from tests.fakes import FakeEmbedder, InMemoryStore, MockLLM

ORG_HEADERS = {"X-Organization-ID": "org-1"}

PDF_BYTES = b"%PDF-1.4\n% test manual\n"

MANUAL_TEXT = "\n".join(
    [
        "COMPRESSEUR",
        "FIAC S.p.A. - Via Vizzano 23, 40037 Pontecchio Marconi",
        "Type: AB-300",
        "Manuel d'utilisation et d'entretien du compresseur a piston.",
        "MAINTENANCE PREVENTIVE DU COMPRESSEUR",
        "Entretien hebdomadaire: graissage des roulements et vidange du reservoir.",
        "ANOMALIES ET SOLUTIONS COURANTES",
        "Si le compresseur ne demarre pas, verifier le fusible et le pressostat.",
    ]
)


class StaticExtractor:
    """Returns MANUAL_TEXT for every PDF."""

    async def extract(self, pdf_bytes, progress=None, cancel=None):
        return ExtractedText(
            text=MANUAL_TEXT,
            page_count=2,
            method="native",
            confidence=1.0,
            processing_time_ms=5,
        )


def parse_sse(body: str) -> list[dict]:
    """Decode every ``data:`` line of an event-stream body."""
    return [
        json.loads(line[len("data: "):])
        for line in body.splitlines()
        if line.startswith("data: ")
    ]


@pytest.fixture
def api_store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def api_llm() -> MockLLM:
    return MockLLM(
        response_map={"classify its type": '{"type": "manual", "confidence": 0.9, "reasoning": "manual"}'},
        stream_chunks=["Vérifiez ", "le pressostat."],
    )


@pytest_asyncio.fixture
async def client(api_store, api_llm):
    """AsyncClient over the app with services built on in-memory fakes."""
    config = EquipmentRAGConfig(
        openai_api_key="test-key",
        insert_retry_attempts=1,
        max_upload_bytes=1024,
    )
    app = create_app()
    app.state.services = build_services(
        api_store,
        api_llm,
        config,
        embedder=FakeEmbedder(),
        extractor=StaticExtractor(),
    )
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


# ── Organization resolution ─────────────────────────────────────────────────


class TestOrganizationResolution:
    async def test_health_needs_no_organization(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    async def test_missing_organization_is_400(self, client):
        response = await client.get("/api/v1/documents/doc-1")
        assert response.status_code == 400
        assert "X-Organization-ID" in response.json()["detail"]

    async def test_invalid_bearer_is_401(self, client):
        response = await client.get(
            "/api/v1/documents/doc-1",
            headers={"Authorization": "Bearer not-a-token", **ORG_HEADERS},
        )
        assert response.status_code == 401

    async def test_jwt_organization_claim(self, client, api_store):
        document = await api_store.create_document(
            Document(asset_id="a-1", organization_id="org-jwt", file_name="manual.pdf")
        )
        token = create_access_token({"sub": "user-1", "organization_id": "org-jwt"})

        response = await client.get(
            f"/api/v1/documents/{document.id}", headers={"Authorization": f"Bearer {token}"}
        )

        assert response.status_code == 200
        assert response.json()["organization_id"] == "org-jwt"

    async def test_jwt_without_organization_claim_is_401(self, client):
        token = create_access_token({"sub": "user-1"})
        response = await client.get(
            "/api/v1/documents/doc-1", headers={"Authorization": f"Bearer {token}"}
        )
        assert response.status_code == 401


# ── Ingestion ───────────────────────────────────────────────────────────────


class TestIngestEndpoint:
    async def test_streams_progress_until_complete(self, client, api_store):
        response = await client.post(
            "/api/v1/ingest",
            headers=ORG_HEADERS,
            files={"file": ("manual.pdf", PDF_BYTES, "application/pdf")},
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        events = parse_sse(response.text)
        assert events[0]["stage"] == "uploading"
        assert events[-1]["stage"] == "complete"
        assert events[-1]["progress"] == 100
        progress = [e["progress"] for e in events]
        assert progress == sorted(progress)

        result = events[-1]["result"]
        assert result["chunks_persisted"] > 0
        document = api_store.documents[result["document_id"]]
        assert document.status == "completed"
        assert document.organization_id == "org-1"

    async def test_attaches_to_existing_asset(self, client, api_store):
        asset = api_store.add_asset("Compresseur AB-300")

        response = await client.post(
            "/api/v1/ingest",
            headers=ORG_HEADERS,
            files={"file": ("manual.pdf", PDF_BYTES, "application/pdf")},
            data={"asset_id": asset.id, "document_type": "schematic"},
        )

        events = parse_sse(response.text)
        assert events[-1]["stage"] == "complete"
        assert events[-1]["result"]["asset_id"] == asset.id
        assert len(api_store.assets) == 1

    async def test_non_pdf_is_400(self, client):
        response = await client.post(
            "/api/v1/ingest",
            headers=ORG_HEADERS,
            files={"file": ("notes.txt", b"plain text", "text/plain")},
        )
        assert response.status_code == 400

    async def test_oversized_upload_is_413(self, client):
        response = await client.post(
            "/api/v1/ingest",
            headers=ORG_HEADERS,
            files={"file": ("big.pdf", PDF_BYTES + b"0" * 2048, "application/pdf")},
        )
        assert response.status_code == 413

    async def test_unknown_asset_is_404(self, client):
        response = await client.post(
            "/api/v1/ingest",
            headers=ORG_HEADERS,
            files={"file": ("manual.pdf", PDF_BYTES, "application/pdf")},
            data={"asset_id": "missing"},
        )
        assert response.status_code == 404

    async def test_other_organization_asset_is_404(self, client, api_store):
        asset = api_store.add_asset("Presse", organization_id="org-2")
        response = await client.post(
            "/api/v1/ingest",
            headers=ORG_HEADERS,
            files={"file": ("manual.pdf", PDF_BYTES, "application/pdf")},
            data={"asset_id": asset.id},
        )
        assert response.status_code == 404

    async def test_second_upload_reports_duplicate(self, client):
        files = {"file": ("manual.pdf", PDF_BYTES, "application/pdf")}
        await client.post("/api/v1/ingest", headers=ORG_HEADERS, files=files)

        response = await client.post("/api/v1/ingest", headers=ORG_HEADERS, files=files)

        events = parse_sse(response.text)
        assert [e["progress"] for e in events] == [5, 100]
        assert events[-1]["result"]["is_duplicate"] is True


# ── Query ───────────────────────────────────────────────────────────────────


class TestQueryEndpoint:
    async def test_streams_content_then_done(self, client, api_store, api_llm):
        asset = api_store.add_asset("Compresseur AB-300")

        response = await client.post(
            "/api/v1/query",
            headers=ORG_HEADERS,
            json={"message": "Pression max?", "asset_id": asset.id},
        )

        assert response.status_code == 200
        events = parse_sse(response.text)
        assert [e["content"] for e in events if "content" in e] == ["Vérifiez ", "le pressostat."]
        assert events[-1]["done"] is True
        assert events[-1]["equipment"]["asset_id"] == asset.id
        assert len(api_llm.stream_calls) == 1

    async def test_history_is_forwarded(self, client, api_store, api_llm):
        asset = api_store.add_asset("Compresseur AB-300")

        await client.post(
            "/api/v1/query",
            headers=ORG_HEADERS,
            json={
                "message": "Et la vidange?",
                "asset_id": asset.id,
                "conversation_history": [
                    {"role": "user", "content": "Pression max?"},
                    {"role": "assistant", "content": "10 bar."},
                ],
            },
        )

        messages = api_llm.stream_calls[0]["messages"]
        contents = [m["content"] for m in messages]
        assert "Pression max?" in contents
        assert "10 bar." in contents
        assert messages[-1] == {"role": "user", "content": "Et la vidange?"}

    async def test_unknown_asset_is_404(self, client, api_llm):
        response = await client.post(
            "/api/v1/query",
            headers=ORG_HEADERS,
            json={"message": "Pression max?", "asset_id": "missing"},
        )
        assert response.status_code == 404
        assert api_llm.stream_calls == []

    async def test_organization_mismatch_is_401(self, client):
        response = await client.post(
            "/api/v1/query",
            headers=ORG_HEADERS,
            json={"message": "Pression max?", "organization_id": "org-2"},
        )
        assert response.status_code == 401

    async def test_empty_message_is_422(self, client):
        response = await client.post("/api/v1/query", headers=ORG_HEADERS, json={"message": ""})
        assert response.status_code == 422


# ── Documents ───────────────────────────────────────────────────────────────


class TestDocumentEndpoints:
    @pytest_asyncio.fixture
    async def document(self, api_store) -> Document:
        return await api_store.create_document(
            Document(asset_id="a-1", organization_id="org-1", file_name="manual.pdf")
        )

    async def test_get_document(self, client, document):
        response = await client.get(f"/api/v1/documents/{document.id}", headers=ORG_HEADERS)
        assert response.status_code == 200
        assert response.json()["file_name"] == "manual.pdf"

    async def test_get_other_organization_document_is_404(self, client, document):
        response = await client.get(
            f"/api/v1/documents/{document.id}", headers={"X-Organization-ID": "org-2"}
        )
        assert response.status_code == 404

    async def test_patch_document_types(self, client, document):
        response = await client.patch(
            f"/api/v1/documents/{document.id}",
            headers=ORG_HEADERS,
            json={"document_types": ["maintenance", "parts", "maintenance"]},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["document_types"] == ["maintenance", "parts"]
        assert body["user_confirmed"] is True
        assert body["classification_confidence"] == 1.0

    async def test_patch_unknown_type_is_422(self, client, document):
        response = await client.patch(
            f"/api/v1/documents/{document.id}",
            headers=ORG_HEADERS,
            json={"document_types": ["brochure"]},
        )
        assert response.status_code == 422

    async def test_delete_document(self, client, api_store, document):
        response = await client.delete(f"/api/v1/documents/{document.id}", headers=ORG_HEADERS)
        assert response.status_code == 204
        assert document.id not in api_store.documents

        again = await client.delete(f"/api/v1/documents/{document.id}", headers=ORG_HEADERS)
        assert again.status_code == 404
