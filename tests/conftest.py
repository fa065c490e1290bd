"""Shared fixtures for similarity search tests"""

import pytest

from src.config import AppConfig
from src.services.embedder import Embedder
from src.services.embedding_store import EmbeddingStore
from tests.helpers import DIMENSION, FakeProvider


@pytest.fixture
def settings():
    """Small-dimension configuration with telemetry off"""
    return AppConfig(
        db_path=":memory:",
        embedding_dimension=DIMENSION,
        otel_logging_enabled=False,
        otel_tracing_enabled=False,
    )


@pytest.fixture
async def store(settings):
    """In-memory store with schema and ANN index created"""
    embedding_store = EmbeddingStore(db_path=":memory:", settings=settings)
    await embedding_store.create_schema()
    yield embedding_store
    embedding_store.close()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def embedder(provider, settings):
    return Embedder(provider=provider, settings=settings)
