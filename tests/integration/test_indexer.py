"""Integration tests for embedding analyzed files during ingestion"""

import pytest

from src.services.embedder import Embedder
from src.services.errors import (
    InvalidEmbeddingShape,
    InvalidInput,
    NotFound,
    ProviderUnavailable,
)
from src.services.indexer import AnalysisIndexer
from tests.helpers import FakeProvider, save_document, unit_vector


@pytest.fixture
def indexer(store, embedder):
    return AnalysisIndexer(store, embedder)


class TestIndexFile:
    """Test embedding a single file"""

    @pytest.mark.asyncio
    async def test_index_file_stores_embedding(self, store, indexer, provider):
        provider.vectors["def retry(): ..."] = unit_vector(4)
        document = await save_document(store, {"retry.py": None})

        vector = await indexer.index_file(document.id, "retry.py", "def retry(): ...")

        assert vector == unit_vector(4)
        stored = await store.get_embedding(document.id, "retry.py")
        assert stored.embedding == pytest.approx(unit_vector(4))
        assert stored.model_name == FakeProvider.model_name
        assert await store.count_indexed() == 1

    @pytest.mark.asyncio
    async def test_index_file_unknown_file(self, store, indexer):
        document = await save_document(store, {"retry.py": None})

        with pytest.raises(NotFound):
            await indexer.index_file(document.id, "other.py", "print('hi')")

    @pytest.mark.asyncio
    async def test_index_file_empty_content(self, store, indexer, provider):
        document = await save_document(store, {"retry.py": None})

        with pytest.raises(InvalidInput):
            await indexer.index_file(document.id, "retry.py", "   ")

        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_provider_failure_propagates(self, store, indexer, provider):
        """Test that ingestion surfaces provider failures instead of skipping the file"""
        document = await save_document(store, {"retry.py": None})
        provider.error = TimeoutError("timed out")

        with pytest.raises(ProviderUnavailable):
            await indexer.index_file(document.id, "retry.py", "def retry(): ...")

        assert await store.get_embedding(document.id, "retry.py") is None


class TestIndexAnalysis:
    """Test embedding every file of an analysis document"""

    @pytest.mark.asyncio
    async def test_index_analysis_skips_empty_content(self, store, indexer, provider):
        document = await save_document(store, {"a.py": None, "b.py": None, "empty.py": None})

        count = await indexer.index_analysis(
            document.id, {"a.py": "import os", "b.py": "import sys", "empty.py": ""}
        )

        assert count == 2
        assert provider.calls == [["import os", "import sys"]]
        assert await store.count_indexed() == 2
        assert await store.get_embedding(document.id, "empty.py") is None

    @pytest.mark.asyncio
    async def test_index_analysis_nothing_to_embed(self, store, indexer, provider):
        document = await save_document(store, {"a.py": None})

        assert await indexer.index_analysis(document.id, {"a.py": "  "}) == 0
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_index_analysis_rejects_wrong_dimension(self, store, settings):
        """Test that a provider producing another dimension fails the whole file"""
        document = await save_document(store, {"a.py": None})
        wrong = FakeProvider(dimension=4)
        indexer = AnalysisIndexer(store, Embedder(provider=wrong, settings=settings))

        with pytest.raises(InvalidEmbeddingShape, match="wrong number of dimensions"):
            await indexer.index_analysis(document.id, {"a.py": "import os"})

        assert await store.count_indexed() == 0
