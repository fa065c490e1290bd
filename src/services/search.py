"""Similarity search over file embeddings"""

import logging
import math
import sqlite3
import time
from collections import defaultdict

from pydantic import ValidationError

from src.config import AppConfig, config
from src.models.analysis import SourceType
from src.models.query import SearchKind, SimilarityQuery
from src.models.search_result import SearchInfo, SimilarityResult, SimilaritySearchOutput
from src.services.embedder import Embedder
from src.services.embedding_store import CandidateFile, EmbeddingStore
from src.services.error_policy import best_effort
from src.services.errors import InvalidInput, InvalidQueryVector, MissingEmbedding
from src.services.threshold import resolve_min_score

logger = logging.getLogger(__name__)


def _preview(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return text[: max(max_chars - 3, 0)] + "..."


class SimilarityQueryEngine:
    """Rank stored file embeddings against a query vector"""

    def __init__(self, store: EmbeddingStore, settings: AppConfig | None = None):
        self.store = store
        self.config = settings or config

    def validate_query_vector(self, query_vector: list[float]) -> list[float]:
        """
        Raises:
            InvalidQueryVector: Wrong length, non-numeric or non-finite entries, or zero norm
        """
        expected = self.config.embedding_dimension
        if not isinstance(query_vector, list | tuple):
            raise InvalidQueryVector("Query vector must be a list of numbers")
        if len(query_vector) != expected:
            raise InvalidQueryVector(
                f"Embedding has wrong number of dimensions: expected {expected}, "
                f"got {len(query_vector)}"
            )
        if not all(
            isinstance(x, int | float) and not isinstance(x, bool) and math.isfinite(x)
            for x in query_vector
        ):
            raise InvalidQueryVector("Query vector must contain only finite numbers")
        if not any(query_vector):
            raise InvalidQueryVector("Query vector has zero norm; cosine similarity is undefined")
        return [float(x) for x in query_vector]

    def effective_min_score(self, query: SimilarityQuery) -> float:
        return resolve_min_score(query.min_score, query.exclude_document_id, self.config)

    async def find_similar(
        self, query_vector: list[float], query: SimilarityQuery
    ) -> list[SimilarityResult]:
        """
        Find files whose embeddings are closest to the query vector

        Validation failures are raised. Index or store failures are logged and
        yield an empty list.

        Args:
            query_vector: Embedding to search with
            query: Limit, floor, exclusions and source type

        Returns:
            list[SimilarityResult]: At most `query.limit` results, best first,
            all scoring at least the effective floor
        """
        vector = self.validate_query_vector(query_vector)
        min_score = self.effective_min_score(query)
        return await self._search(vector, query, min_score)

    @best_effort("similarity search")
    async def _search(
        self, vector: list[float], query: SimilarityQuery, min_score: float
    ) -> list[SimilarityResult]:
        # ANN ranks before any filtering, so over-fetch to keep the final list full
        candidate_count = query.limit * self.config.ann_candidate_multiplier
        pool_size = query.limit * self.config.ann_pool_multiplier

        hits = await self.store.nearest_neighbors(vector, candidate_count, query.source_type)
        scores = {file_id: score for file_id, score in hits[:pool_size] if score >= min_score}
        if not scores:
            logger.debug(f"No ANN hits at or above {min_score} among {len(hits)} candidates")
            return []

        candidates = await self.store.fetch_candidates(list(scores))

        by_document: dict[str, list[CandidateFile]] = defaultdict(list)
        for candidate in candidates:
            by_document[candidate.document_id].append(candidate)

        matches: list[tuple[float, CandidateFile]] = []
        for document_id, files in by_document.items():
            if self._excludes_document(query, document_id):
                continue
            for candidate in files:
                if not self._has_searchable_embedding(candidate):
                    continue
                if self._excludes_file(query, candidate):
                    continue
                if not candidate.is_resolved:
                    logger.debug(
                        f"Dropping {candidate.document_id}/{candidate.filename}: "
                        f"owning analysis or review run not found"
                    )
                    continue
                if candidate.source_type != query.source_type:
                    continue
                matches.append((scores[candidate.file_id], candidate))

        matches.sort(key=lambda match: match[0], reverse=True)

        return [
            self._to_result(candidate, score, rank)
            for rank, (score, candidate) in enumerate(matches[: query.limit], start=1)
        ]

    @staticmethod
    def _excludes_document(query: SimilarityQuery, document_id: str) -> bool:
        return (
            query.exclude_document_id is not None
            and query.exclude_filename is None
            and document_id == query.exclude_document_id
        )

    @staticmethod
    def _excludes_file(query: SimilarityQuery, candidate: CandidateFile) -> bool:
        return (
            query.exclude_document_id is not None
            and query.exclude_filename is not None
            and candidate.document_id == query.exclude_document_id
            and candidate.filename == query.exclude_filename
        )

    def _has_searchable_embedding(self, candidate: CandidateFile) -> bool:
        # The index may still point at a file whose embedding was cleared
        embedding = candidate.embedding
        return bool(embedding) and len(embedding) == self.config.embedding_dimension

    def _to_result(self, candidate: CandidateFile, score: float, rank: int) -> SimilarityResult:
        return SimilarityResult(
            document_id=candidate.document_id,
            filename=candidate.filename,
            source_type=candidate.source_type,
            score=max(-1.0, min(score, 1.0)),
            rank=rank,
            quality_score=candidate.quality_score,
            ai_insights_preview=_preview(candidate.ai_insights, self.config.preview_max_chars),
            review_run=candidate.review_run.model_copy(
                update={
                    "title": _preview(candidate.review_run.title, self.config.preview_max_chars)
                }
            ),
        )


class SimilaritySearchService:
    """Entry points for free-text and reference similarity searches"""

    def __init__(
        self,
        store: EmbeddingStore,
        embedder: Embedder,
        settings: AppConfig | None = None,
    ):
        self.config = settings or config
        self.store = store
        self.embedder = embedder
        self.engine = SimilarityQueryEngine(store, self.config)

    def _build_query(self, **kwargs) -> SimilarityQuery:
        try:
            return SimilarityQuery(**kwargs)
        except ValidationError as e:
            messages = "; ".join(err["msg"] for err in e.errors())
            raise InvalidInput(f"Invalid search parameters: {messages}") from e

    async def search_by_text(
        self,
        query_text: str,
        limit: int | None = None,
        source_type: SourceType = SourceType.PULL_REQUEST,
    ) -> SimilaritySearchOutput:
        """
        Embed free text and find similar files using the general similarity floor

        Args:
            query_text: Code snippet or natural-language description
            limit: Maximum number of results (default from config)
            source_type: Analysis source type to search within

        Returns:
            SimilaritySearchOutput: Results (empty if the provider or index failed)

        Raises:
            InvalidInput: Query text is empty, too long, or parameters are out of range
        """
        start_time = time.time()

        if not query_text or not query_text.strip():
            raise InvalidInput("Query text cannot be empty")
        if len(query_text) > self.config.query_max_chars:
            raise InvalidInput(
                f"Query text is too long (max {self.config.query_max_chars} chars)"
            )

        query = self._build_query(
            limit=limit if limit is not None else self.config.text_search_result_limit,
            source_type=source_type,
        )
        results = await self._embed_and_search(query_text, query)

        return self._output(SearchKind.TEXT, query, results, start_time)

    @best_effort("semantic text search")
    async def _embed_and_search(
        self, query_text: str, query: SimilarityQuery
    ) -> list[SimilarityResult]:
        query_vector = await self.embedder.embed_text(query_text)
        return await self.engine.find_similar(query_vector, query)

    async def search_by_reference(
        self,
        document_id: str,
        filename: str,
        limit: int | None = None,
        min_score: float | None = None,
    ) -> SimilaritySearchOutput:
        """
        Find files similar to one already analyzed, excluding that file itself

        Uses the contextual similarity floor unless `min_score` is given, and
        searches only analyses of the reference document's source type.

        Raises:
            NotFound: Reference document or file does not exist
            MissingEmbedding: Reference file has no stored embedding
            InvalidQueryVector: Stored embedding does not match the configured dimension
            InvalidInput: Parameters are out of range
        """
        start_time = time.time()

        if not document_id or not filename:
            raise InvalidInput("Both document_id and filename are required")

        try:
            source_type = await self.store.get_source_type(document_id)
            reference = await self.store.get_embedding(document_id, filename)
        except sqlite3.Error as e:
            # Lookup is part of a best-effort search; degrade like an index failure
            logger.error(f"Reference lookup for {document_id}/{filename} failed: {e}")
            query = self._build_query(
                limit=limit if limit is not None else self.config.reference_search_result_limit,
                min_score=min_score,
                exclude_document_id=document_id,
                exclude_filename=filename,
            )
            return self._output(SearchKind.REFERENCE, query, [], start_time)

        if reference is None:
            raise MissingEmbedding(
                f"No vector embedding found for {filename} in analysis {document_id}. "
                f"Cannot perform similarity search."
            )

        query = self._build_query(
            limit=limit if limit is not None else self.config.reference_search_result_limit,
            min_score=min_score,
            exclude_document_id=document_id,
            exclude_filename=filename,
            source_type=source_type,
        )
        results = await self.engine.find_similar(reference.embedding, query)

        return self._output(SearchKind.REFERENCE, query, results, start_time)

    def _output(
        self,
        kind: SearchKind,
        query: SimilarityQuery,
        results: list[SimilarityResult],
        start_time: float,
    ) -> SimilaritySearchOutput:
        return SimilaritySearchOutput(
            results=results,
            search_info=SearchInfo(
                search_kind=kind,
                effective_min_score=self.engine.effective_min_score(query),
                total_results=len(results),
                query_time_ms=(time.time() - start_time) * 1000,
            ),
        )

    async def close(self) -> None:
        """Cleanup resources"""
        await self.embedder.close()
