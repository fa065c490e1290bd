"""Data models for the similarity search server"""

from src.models.analysis import AnalysisDocument, FileAnalysisItem, ReviewRun, SourceType
from src.models.embedding import VectorEmbedding
from src.models.query import SearchKind, SimilarityQuery
from src.models.search_result import (
    ReviewRunContext,
    SearchInfo,
    SimilarityResult,
    SimilaritySearchOutput,
)

__all__ = [
    "AnalysisDocument",
    "FileAnalysisItem",
    "ReviewRun",
    "SourceType",
    "VectorEmbedding",
    "SearchKind",
    "SimilarityQuery",
    "ReviewRunContext",
    "SearchInfo",
    "SimilarityResult",
    "SimilaritySearchOutput",
]
