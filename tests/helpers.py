"""Test helpers: deterministic vectors, a fake embedding provider, document builders"""

import math

from src.models.analysis import AnalysisDocument, FileAnalysisItem, ReviewRun, SourceType
from src.services.embedding_store import EmbeddingStore

DIMENSION = 8


def unit_vector(index: int = 0, dimension: int = DIMENSION) -> list[float]:
    """Basis vector e_index"""
    vector = [0.0] * dimension
    vector[index] = 1.0
    return vector


def vector_with_cosine(cosine: float, dimension: int = DIMENSION) -> list[float]:
    """Unit vector whose cosine similarity to unit_vector(0) is exactly `cosine`"""
    vector = [0.0] * dimension
    vector[0] = cosine
    vector[1] = math.sqrt(1.0 - cosine**2)
    return vector


class FakeProvider:
    """Deterministic embedding provider that records every call"""

    model_name = "fake-embedder"

    def __init__(self, vectors: dict[str, list[float]] | None = None, dimension: int = DIMENSION):
        self.vectors = vectors or {}
        self.dimension = dimension
        self.calls: list[list[str]] = []
        self.error: Exception | None = None
        self.raw_output = None

    def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.error:
            raise self.error
        if self.raw_output is not None:
            return self.raw_output
        return [self.vectors.get(text, unit_vector(2, self.dimension)) for text in texts]

    def native_dimension(self) -> int | None:
        return self.dimension


async def save_document(
    store: EmbeddingStore,
    files: dict[str, list[float] | None],
    source_type: SourceType = SourceType.PULL_REQUEST,
    title: str = "Refactor request handlers",
    number: int | None = 42,
    insights: str = "Handler duplicates validation logic",
) -> AnalysisDocument:
    """Persist a review run with one analysis document holding `files`"""
    run = ReviewRun(source_type=source_type, title=title, author="octocat", number=number)
    document = AnalysisDocument(
        review_run_id=run.id,
        source_type=source_type,
        quality_score=7.5,
        files=[
            FileAnalysisItem(
                filename=filename, quality_score=6.0, ai_insights=insights, embedding=embedding
            )
            for filename, embedding in files.items()
        ],
    )
    await store.save_analysis(run, document)
    return document
