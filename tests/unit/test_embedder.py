"""Unit tests for embedding generation"""

import math
from unittest.mock import MagicMock, patch

import pytest

from src.config import AppConfig
from src.services.embedder import Embedder, FastEmbedProvider
from src.services.errors import (
    ConfigurationError,
    InvalidEmbeddingShape,
    InvalidInput,
    ProviderUnavailable,
)
from tests.helpers import DIMENSION, FakeProvider, unit_vector


class TestEmbedText:
    """Test single-text embedding and its validation"""

    @pytest.mark.asyncio
    async def test_returns_vector_of_configured_dimension(self, embedder, provider):
        provider.vectors["def add(a, b): return a + b"] = unit_vector(3)

        vector = await embedder.embed_text("def add(a, b): return a + b")

        assert vector == unit_vector(3)
        assert len(vector) == DIMENSION

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["", "   ", "\n\t"])
    async def test_empty_text_rejected_without_provider_call(self, embedder, provider, text):
        with pytest.raises(InvalidInput, match="cannot be empty"):
            await embedder.embed_text(text)

        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_long_text_truncated_before_provider_call(self, provider):
        settings = AppConfig(embedding_dimension=DIMENSION, embedding_max_input_chars=10)
        embedder = Embedder(provider=provider, settings=settings)

        await embedder.embed_text("x" * 50)

        assert provider.calls == [["x" * 10]]

    @pytest.mark.asyncio
    async def test_provider_failure_raises_provider_unavailable(self, embedder, provider):
        provider.error = TimeoutError("deadline exceeded")

        with pytest.raises(ProviderUnavailable, match="deadline exceeded"):
            await embedder.embed_text("some code")

    @pytest.mark.asyncio
    async def test_dimension_mismatch_rejected(self, embedder, provider):
        provider.raw_output = [[0.1] * (DIMENSION + 1)]

        with pytest.raises(InvalidEmbeddingShape, match="wrong number of dimensions"):
            await embedder.embed_text("some code")

    @pytest.mark.asyncio
    async def test_non_finite_values_rejected(self, embedder, provider):
        provider.raw_output = [[math.nan] + [0.1] * (DIMENSION - 1)]

        with pytest.raises(InvalidEmbeddingShape, match="non-finite"):
            await embedder.embed_text("some code")

    @pytest.mark.asyncio
    async def test_non_numeric_values_rejected(self, embedder, provider):
        provider.raw_output = [["a"] * DIMENSION]

        with pytest.raises(InvalidEmbeddingShape, match="non-numeric"):
            await embedder.embed_text("some code")

    @pytest.mark.asyncio
    async def test_empty_embedding_rejected(self, embedder, provider):
        provider.raw_output = [[]]

        with pytest.raises(InvalidEmbeddingShape, match="empty"):
            await embedder.embed_text("some code")

    @pytest.mark.asyncio
    async def test_wrong_number_of_embeddings_rejected(self, embedder, provider):
        provider.raw_output = []

        with pytest.raises(InvalidEmbeddingShape, match="Expected 1 embeddings"):
            await embedder.embed_text("some code")

    @pytest.mark.asyncio
    async def test_numpy_like_output_normalized(self, embedder, provider):
        array = MagicMock()
        array.tolist.return_value = unit_vector(1)
        provider.raw_output = [array]

        vector = await embedder.embed_text("some code")

        assert vector == unit_vector(1)
        assert all(isinstance(x, float) for x in vector)


class TestEmbedBatch:
    """Test batched embedding"""

    @pytest.mark.asyncio
    async def test_batches_preserve_order(self, provider, settings):
        embedder = Embedder(provider=provider, settings=settings)
        provider.vectors = {f"text {i}": unit_vector(i) for i in range(5)}

        vectors = await embedder.embed_batch([f"text {i}" for i in range(5)], batch_size=2)

        assert vectors == [unit_vector(i) for i in range(5)]
        assert len(provider.calls) == 3

    @pytest.mark.asyncio
    async def test_empty_input_returns_empty_list(self, embedder, provider):
        assert await embedder.embed_batch([]) == []
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_any_empty_text_rejects_whole_batch(self, embedder, provider):
        with pytest.raises(InvalidInput):
            await embedder.embed_batch(["valid", " "])

        assert provider.calls == []


class TestCheckDimension:
    """Test startup dimension verification"""

    def test_matching_dimension_passes(self, embedder):
        embedder.check_dimension()

    def test_mismatched_dimension_is_configuration_error(self, settings):
        embedder = Embedder(provider=FakeProvider(dimension=DIMENSION * 2), settings=settings)

        with pytest.raises(ConfigurationError, match="Re-index"):
            embedder.check_dimension()

    def test_unknown_dimension_is_tolerated(self, settings):
        provider = FakeProvider()
        provider.native_dimension = lambda: None

        Embedder(provider=provider, settings=settings).check_dimension()


class TestFastEmbedProvider:
    """Test the fastembed adapter without loading a model"""

    @patch("src.services.embedder.TextEmbedding")
    def test_native_dimension_from_supported_models(self, mock_text_embedding):
        mock_text_embedding.list_supported_models.return_value = [
            {"model": "BAAI/bge-small-en-v1.5", "dim": 384},
            {"model": "BAAI/bge-base-en-v1.5", "dim": 768},
        ]

        provider = FastEmbedProvider(AppConfig())

        assert provider.native_dimension() == 768

    @patch("src.services.embedder.TextEmbedding")
    def test_unknown_model_has_no_native_dimension(self, mock_text_embedding):
        mock_text_embedding.list_supported_models.return_value = []

        provider = FastEmbedProvider(AppConfig(embedding_model="custom/model"))

        assert provider.native_dimension() is None

    @patch("src.services.embedder.TextEmbedding")
    def test_embed_converts_arrays_to_lists(self, mock_text_embedding):
        array = MagicMock()
        array.tolist.return_value = [0.5, 0.25]
        mock_text_embedding.return_value.embed.return_value = iter([array])

        provider = FastEmbedProvider(AppConfig())

        assert provider.embed(["code"]) == [[0.5, 0.25]]
        mock_text_embedding.assert_called_once()

    @patch("src.services.embedder.TextEmbedding")
    def test_embed_count_mismatch_rejected(self, mock_text_embedding):
        mock_text_embedding.return_value.embed.return_value = iter([])

        provider = FastEmbedProvider(AppConfig())

        with pytest.raises(InvalidEmbeddingShape):
            provider.embed(["code"])

    @patch("src.services.embedder.TextEmbedding")
    def test_model_built_from_settings(self, mock_text_embedding):
        mock_text_embedding.return_value.embed.return_value = iter([[0.5, 0.25]])
        settings = AppConfig(fastembed_cache_dir="/tmp/models", embedding_threads=2)

        FastEmbedProvider(settings).embed(["code"])

        mock_text_embedding.assert_called_once_with(
            model_name="BAAI/bge-base-en-v1.5", cache_dir="/tmp/models", threads=2
        )
