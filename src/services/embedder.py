"""Embedding generation service using local models via fastembed"""

import logging
import math
from collections.abc import Iterable
from numbers import Real
from typing import Any, Protocol

from fastembed import TextEmbedding

from src.config import AppConfig, config
from src.services.errors import (
    ConfigurationError,
    InvalidEmbeddingShape,
    InvalidInput,
    ProviderUnavailable,
)

logger = logging.getLogger(__name__)


class EmbeddingProvider(Protocol):
    """Narrow interface to an external embedding model"""

    model_name: str

    def embed(self, texts: list[str]) -> list[list[float]]:
        """Return one vector per input text, in order"""
        ...

    def native_dimension(self) -> int | None:
        """Dimension the model produces, if the provider can tell without embedding"""
        ...


def _describe_shape(value: Any) -> str:
    """Short description of a provider response for diagnostics"""
    if isinstance(value, list | tuple):
        inner = type(value[0]).__name__ if value else "empty"
        return f"{type(value).__name__}[{len(value)}] of {inner}"
    shape = getattr(value, "shape", None)
    if shape is not None:
        return f"{type(value).__name__} shape={tuple(shape)}"
    return type(value).__name__


def _to_float_list(raw: Any) -> list[float]:
    """Normalize a single provider vector (numpy array, list, tuple) to list[float]"""
    if hasattr(raw, "tolist"):
        raw = raw.tolist()
    if not isinstance(raw, list | tuple):
        raise InvalidEmbeddingShape(f"Expected a sequence of numbers, got {_describe_shape(raw)}")
    if not all(isinstance(x, Real) and not isinstance(x, bool) for x in raw):
        raise InvalidEmbeddingShape("Embedding contains non-numeric values")
    return [float(x) for x in raw]


class FastEmbedProvider:
    """fastembed-backed provider; the only place that knows fastembed's output shape"""

    def __init__(self, settings: AppConfig | None = None):
        self.config = settings or config
        self.model_name = self.config.embedding_model
        self._model: TextEmbedding | None = None

    def _get_model(self) -> TextEmbedding:
        # Model files are downloaded on first use and cached in fastembed_cache_dir
        if self._model is None:
            self._model = TextEmbedding(
                model_name=self.model_name,
                cache_dir=self.config.fastembed_cache_dir,
                threads=self.config.embedding_threads,
            )
        return self._model

    def embed(self, texts: list[str]) -> list[list[float]]:
        # fastembed returns a generator of numpy arrays
        raw = list(self._get_model().embed(texts, batch_size=self.config.embedding_batch_size))
        if len(raw) != len(texts):
            raise InvalidEmbeddingShape(
                f"Provider returned {len(raw)} embeddings for {len(texts)} texts"
            )
        return [_to_float_list(vector) for vector in raw]

    def native_dimension(self) -> int | None:
        for model in TextEmbedding.list_supported_models():
            if model.get("model") == self.model_name:
                return int(model["dim"])
        return None

    def download_model(self) -> None:
        """
        Pre-download model to cache directory

        Call this during build to ensure model is cached locally.
        """
        logger.info(f"Downloading embedding model {self.model_name}...")
        self._get_model()
        logger.info(f"Model {self.model_name} cached in {self.config.fastembed_cache_dir}")


class Embedder:
    """Generate validated embeddings of exactly the configured dimension"""

    def __init__(
        self, provider: EmbeddingProvider | None = None, settings: AppConfig | None = None
    ):
        self.config = settings or config
        self.provider = provider or FastEmbedProvider(self.config)

    @property
    def model_name(self) -> str:
        return self.provider.model_name

    @property
    def dimension(self) -> int:
        return self.config.embedding_dimension

    def check_dimension(self) -> None:
        """
        Verify the provider's model produces the configured dimensionality

        Raises:
            ConfigurationError: If the model is known to produce another dimension
        """
        native = self.provider.native_dimension()
        if native is None:
            logger.warning(
                f"Cannot determine native dimension of {self.model_name}; "
                f"assuming configured {self.dimension}"
            )
            return
        if native != self.dimension:
            raise ConfigurationError(
                f"Embedding model {self.model_name} produces {native}-dimensional vectors "
                f"but embedding_dimension is {self.dimension}. Re-index and update the "
                f"configuration together."
            )

    def _prepare(self, text: str) -> str:
        if not text or not text.strip():
            raise InvalidInput("Text to embed cannot be empty")
        limit = self.config.embedding_max_input_chars
        if len(text) > limit:
            logger.warning(f"Text too long ({len(text)} chars), truncating to {limit}")
            text = text[:limit]
        return text

    def _validate(self, raw: Any, text: str) -> list[float]:
        try:
            vector = _to_float_list(raw)
        except InvalidEmbeddingShape as e:
            logger.error(
                f"Malformed embedding for text {text[:100]!r}: {e} "
                f"(response: {_describe_shape(raw)})"
            )
            raise

        if not vector:
            logger.error(f"Empty embedding for text {text[:100]!r}")
            raise InvalidEmbeddingShape("Provider returned an empty embedding")
        if not all(math.isfinite(x) for x in vector):
            logger.error(f"Non-finite values in embedding for text {text[:100]!r}")
            raise InvalidEmbeddingShape("Embedding contains non-finite values")
        if len(vector) != self.dimension:
            logger.warning(
                f"Embedding has {len(vector)} dimensions, expected {self.dimension}; "
                f"rejecting. Text: {text[:100]!r}"
            )
            raise InvalidEmbeddingShape(
                f"Embedding has wrong number of dimensions: expected {self.dimension}, "
                f"got {len(vector)}"
            )
        return vector

    def _call_provider(self, texts: list[str]) -> list[Any]:
        try:
            raw = self.provider.embed(texts)
        except InvalidEmbeddingShape:
            raise
        except Exception as e:
            logger.error(
                f"Embedding provider {self.model_name} failed for {len(texts)} text(s) "
                f"(first: {texts[0][:100]!r}): {e}"
            )
            raise ProviderUnavailable(f"Embedding generation failed: {e}") from e

        if not isinstance(raw, list | tuple) or len(raw) != len(texts):
            logger.error(
                f"Provider returned {_describe_shape(raw)} for {len(texts)} text(s) "
                f"(first: {texts[0][:100]!r})"
            )
            raise InvalidEmbeddingShape(
                f"Expected {len(texts)} embeddings, got {_describe_shape(raw)}"
            )
        return list(raw)

    async def embed_text(self, text: str) -> list[float]:
        """
        Generate embedding for a single text

        Inference runs inside the awaiting task, so a cancelled caller never
        leaves a provider call running in the background.

        Args:
            text: Text to embed (code or natural language)

        Returns:
            list[float]: Embedding vector of exactly `embedding_dimension` floats

        Raises:
            InvalidInput: Text is empty or whitespace-only (no provider call is made)
            ProviderUnavailable: Provider call failed
            InvalidEmbeddingShape: Provider output is malformed or has the wrong dimension
        """
        text = self._prepare(text)
        raw = self._call_provider([text])
        return self._validate(raw[0], text)

    async def embed_batch(
        self, texts: Iterable[str], batch_size: int | None = None
    ) -> list[list[float]]:
        """
        Generate embeddings for multiple texts in batches

        Args:
            texts: Texts to embed; every one must be non-empty
            batch_size: Number of texts to process per batch (default from config)

        Returns:
            list[list[float]]: List of embedding vectors, in input order
        """
        prepared = [self._prepare(text) for text in texts]
        if not prepared:
            return []

        batch_size = batch_size or self.config.embedding_batch_size

        embeddings: list[list[float]] = []
        for i in range(0, len(prepared), batch_size):
            batch = prepared[i : i + batch_size]
            raw = self._call_provider(batch)
            embeddings.extend(self._validate(vector, text) for vector, text in zip(raw, batch))
            logger.debug(f"Embedded {len(embeddings)}/{len(prepared)} texts")

        return embeddings

    async def close(self) -> None:
        """Cleanup resources (fastembed handles cleanup automatically)"""
        pass
