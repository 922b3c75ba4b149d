"""Tests for the end-to-end question answering flow."""

from __future__ import annotations

import json

import pytest

from src.equipment_rag.config import EquipmentRAGConfig
from src.equipment_rag.errors import NotFoundError
from src.equipment_rag.rag import (
    AliasResolver,
    DependencyGraph,
    EquipmentDetector,
    HierarchyResolver,
    QueryAnalyzer,
    QueryService,
    SmartSearch,
)
from tests.fakes import FakeEmbedder, InMemoryStore, MockLLM


def make_service(
    store: InMemoryStore,
    llm: MockLLM,
    config: EquipmentRAGConfig,
    embedder: FakeEmbedder | None = None,
) -> QueryService:
    return QueryService(
        store=store,
        llm=llm,
        detector=EquipmentDetector(store, config.fuzzy_threshold),
        aliases=AliasResolver(store, config.alias_similarity_threshold),
        analyzer=QueryAnalyzer(llm),
        search=SmartSearch(store, embedder or FakeEmbedder(), config),
        hierarchy=HierarchyResolver(store),
        graph=DependencyGraph(store, config.max_depth),
        config=config,
    )


async def collect(items):
    return [item async for item in items]


class TestQueryService:
    async def test_selected_asset_short_question(self, store, mock_llm, config):
        asset = store.add_asset("Malaxeur principal", manufacturer="POYATOS")
        store.add_chunk(asset, "Graisser les roulements toutes les 50 heures.", 0.9, page_number=12)

        items = await collect(
            make_service(store, mock_llm, config).answer("Intervalle de graissage ?", "org-1", asset_id=asset.id)
        )

        assert [i["content"] for i in items[:-1]] == ["Vérifiez ", "le filtre."]
        final = items[-1]
        assert final["done"] is True
        assert final["analysis"] == {"intent": "maintenance", "urgency": "information", "response_format": "steps"}
        assert final["search"]["sources_used"] == 1
        assert final["search"]["context_quality"] == "high"
        assert final["equipment"] == {"mode": "single", "asset_id": asset.id, "candidates": []}

        assert mock_llm.call_history == []
        call = mock_llm.stream_calls[0]
        assert call["model"] == "reasoning"
        assert call["max_tokens"] == 2000
        assert call["temperature"] == 0.7
        system = call["messages"][0]
        assert system["role"] == "system"
        assert "ÉQUIPEMENT: Malaxeur principal" in system["content"]
        assert "Fabricant: POYATOS" in system["content"]
        assert "[Source 1 - Malaxeur principal - Page 12 - 90%]" in system["content"]
        assert call["messages"][-1] == {"role": "user", "content": "Intervalle de graissage ?"}

    async def test_unknown_asset(self, store, mock_llm, config):
        with pytest.raises(NotFoundError):
            await make_service(store, mock_llm, config).prepare("question", "org-1", asset_id="missing")

    async def test_asset_of_other_tenant(self, store, mock_llm, config):
        asset = store.add_asset("Malaxeur", organization_id="org-2")
        with pytest.raises(NotFoundError):
            await make_service(store, mock_llm, config).prepare("question", "org-1", asset_id=asset.id)

    async def test_detected_asset_fault_report(self, store, mock_llm, config):
        line = store.add_asset("Ligne 1", level="line")
        doseur = store.add_asset("Doseur ciment", parent_id=line.id)
        malaxeur = store.add_asset("Malaxeur principal", parent_id=line.id)
        store.feeds(doseur, malaxeur, criticality="critical")
        service = make_service(store, mock_llm, config)

        plan = await service.prepare("Le malaxeur principal ne marche pas, que faire ?", "org-1")
        items = await collect(service.stream(plan))

        assert plan.asset.id == malaxeur.id
        assert plan.mode == "single"
        assert plan.analysis.intent == "troubleshooting"
        assert plan.analysis.urgency == "emergency"
        assert "- Asset: Malaxeur principal" in mock_llm.call_history[0]
        system = plan.messages[0]["content"]
        assert "DÉPENDANCES AMONT" in system
        assert "VÉRIFIE D'ABORD: Doseur ciment" in system
        assert "Process Chain Context:" in system
        assert "🔗 Process Chain (Multi-Hop Dependencies):" in system
        assert "🚨 SITUATION URGENTE DÉTECTÉE" in system
        assert mock_llm.stream_calls[0]["temperature"] == 0.3
        final = items[-1]
        assert final["equipment"]["mode"] == "single"
        assert [c["equipment_id"] for c in final["equipment"]["candidates"]] == [malaxeur.id]
        assert "dependency" in final["search"]["source_types"]

    async def test_no_equipment_detected(self, store, mock_llm, config):
        store.add_asset("Malaxeur principal")
        embedder = FakeEmbedder()
        service = make_service(store, mock_llm, config, embedder)

        items = await collect(service.answer("Comment lubrifier une chaîne ?", "org-1"))

        system = mock_llm.stream_calls[0]["messages"][0]["content"]
        assert "Aucun équipement précis" in system
        assert embedder.queries == []
        assert items[-1]["equipment"] == {"mode": "none", "asset_id": None, "candidates": []}
        assert items[-1]["search"]["sources_used"] == 0

    async def test_alias_rewrites_search_query(self, store, mock_llm, config):
        asset = store.add_asset("Malaxeur principal")
        store.add_alias(asset, "la bête")
        embedder = FakeEmbedder()

        plan = await make_service(store, mock_llm, config, embedder).prepare(
            "la bête chauffe", "org-1", asset_id=asset.id
        )

        assert embedder.queries == ["Malaxeur principal chauffe"]
        assert 'Equipment: Malaxeur principal (also known as "la bête")' in plan.messages[0]["content"]
        assert plan.messages[-1]["content"] == "la bête chauffe"

    async def test_long_message_gets_full_analysis(self, store, config):
        asset = store.add_asset("Malaxeur principal")
        reply = json.dumps({"intent": "specs", "urgency": "planning", "response_format": "list"})
        llm = MockLLM(response_map={"maintenance query analyzer": reply})
        message = "Je voudrais connaître le réglage habituel de la tension " + "merci " * 12

        plan = await make_service(store, llm, config).prepare(message, "org-1", asset_id=asset.id)

        assert len(llm.call_history) == 1
        assert plan.analysis.intent == "specs"
        assert plan.analysis.response_format == "list"

    async def test_history_window(self, store, mock_llm):
        config = EquipmentRAGConfig(openai_api_key="test-key", history_window=2)
        asset = store.add_asset("Malaxeur principal")
        history = [
            {"role": "user", "content": "premier"},
            {"role": "assistant", "content": "réponse 1"},
            {"role": "system", "content": "ignorer"},
            {"role": "user", "content": "deuxième"},
        ]

        plan = await make_service(store, mock_llm, config).prepare(
            "troisième", "org-1", asset_id=asset.id, conversation_history=history
        )

        assert [m["content"] for m in plan.messages[1:]] == ["réponse 1", "deuxième", "troisième"]

    async def test_hierarchy_skipped_above_equipment_level(self, store, mock_llm, config):
        line = store.add_asset("Ligne 1", level="line")
        store.add_asset("Malaxeur", parent_id=line.id)

        plan = await make_service(store, mock_llm, config).prepare("Bonjour", "org-1", asset_id=line.id)

        system = plan.messages[0]["content"]
        assert "SOUS-COMPOSANTS" not in system
        assert plan.analysis.scope == "line"
        assert [r.source_type for r in plan.results] == ["hierarchy"]
