"""Unit tests for data models"""

import math
from datetime import timedelta

import pytest
from pydantic import ValidationError

from src.models.analysis import AnalysisDocument, FileAnalysisItem, ReviewRun, SourceType
from src.models.embedding import VectorEmbedding
from src.models.query import SimilarityQuery
from src.models.search_result import ReviewRunContext, SimilarityResult


class TestFileAnalysisItem:
    def test_valid_embedding(self):
        item = FileAnalysisItem(filename="a.ts", embedding=[0.1, 0.2, 0.3])

        assert item.has_valid_embedding(3) is True
        assert item.has_valid_embedding(4) is False

    def test_missing_or_empty_embedding_is_invalid(self):
        assert FileAnalysisItem(filename="a.ts").has_valid_embedding(3) is False
        assert FileAnalysisItem(filename="a.ts", embedding=[]).has_valid_embedding(0) is False

    def test_non_finite_embedding_is_invalid(self):
        item = FileAnalysisItem(filename="a.ts", embedding=[0.1, math.inf, 0.3])

        assert item.has_valid_embedding(3) is False


class TestAnalysisDocument:
    def test_duplicate_filenames_rejected(self):
        with pytest.raises(ValidationError, match="Duplicate filename"):
            AnalysisDocument(
                review_run_id="run-1",
                files=[FileAnalysisItem(filename="a.ts"), FileAnalysisItem(filename="a.ts")],
            )

    def test_get_file(self):
        document = AnalysisDocument(
            review_run_id="run-1",
            files=[FileAnalysisItem(filename="a.ts"), FileAnalysisItem(filename="b.ts")],
        )

        assert document.get_file("b.ts").filename == "b.ts"
        assert document.get_file("c.ts") is None
        assert document.source_type == SourceType.PULL_REQUEST


class TestTimestamps:
    def test_default_timestamps_are_utc(self):
        """Test that every model defaults to timezone-aware UTC timestamps"""
        timestamps = [
            ReviewRun(title="Add caching").created_at,
            AnalysisDocument(review_run_id="run-1").created_at,
            VectorEmbedding(document_id="d", filename="a.ts", embedding=[0.1]).created_at,
        ]

        assert all(ts.utcoffset() == timedelta(0) for ts in timestamps)


class TestVectorEmbedding:
    def test_non_finite_rejected(self):
        with pytest.raises(ValidationError, match="non-finite"):
            VectorEmbedding(document_id="d", filename="a.ts", embedding=[math.nan])

    def test_dimension(self):
        embedding = VectorEmbedding(document_id="d", filename="a.ts", embedding=[0.1, 0.2])

        assert embedding.dimension == 2


class TestSimilarityQuery:
    def test_defaults(self):
        query = SimilarityQuery()

        assert query.limit == 5
        assert query.min_score is None
        assert query.source_type == SourceType.PULL_REQUEST

    def test_filename_exclusion_requires_document(self):
        with pytest.raises(ValidationError, match="requires exclude_document_id"):
            SimilarityQuery(exclude_filename="a.ts")

    @pytest.mark.parametrize("limit", [0, 51])
    def test_limit_bounds(self, limit):
        with pytest.raises(ValidationError):
            SimilarityQuery(limit=limit)


class TestSimilarityResult:
    def test_score_bounds(self):
        with pytest.raises(ValidationError):
            SimilarityResult(
                document_id="d",
                filename="a.ts",
                source_type=SourceType.PULL_REQUEST,
                score=1.5,
                rank=1,
                review_run=ReviewRunContext(id="r", title="t"),
            )
