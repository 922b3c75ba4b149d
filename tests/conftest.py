"""Shared fixtures for equipment RAG tests.

Fakes live in tests/fakes.py; this module only exposes them as fixtures,
plus a config tuned for fast tests (single insert attempt, small batches).
"""

from __future__ import annotations

import pytest

from src.equipment_rag.config import EquipmentRAGConfig
from tests.fakes import FakeEmbedder, InMemoryStore, MockLLM


@pytest.fixture
def config() -> EquipmentRAGConfig:
    return EquipmentRAGConfig(
        openai_api_key="test-key",
        insert_retry_attempts=1,
        insert_batch_size=20,
        embedding_batch_size=40,
    )


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def mock_llm() -> MockLLM:
    return MockLLM()


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()
