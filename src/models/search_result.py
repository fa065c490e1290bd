"""Search result models"""

from datetime import datetime

from pydantic import BaseModel, Field

from src.models.analysis import SourceType
from src.models.query import SearchKind


class ReviewRunContext(BaseModel):
    """Review run a matched file belongs to"""

    id: str = Field(description="ReviewRun.id")
    title: str = Field(description="Pull request title or scanned repository name")
    author: str | None = Field(default=None, description="Author login")
    number: int | None = Field(default=None, description="Pull request number")
    created_at: datetime | None = Field(default=None, description="When the review run started")


class SimilarityResult(BaseModel):
    """Matched file joined back to its analysis document and review run"""

    document_id: str = Field(description="Owning AnalysisDocument.id")
    filename: str = Field(description="Matched file")
    source_type: SourceType = Field(description="Source type of the owning document")
    score: float = Field(ge=-1.0, le=1.0, description="Cosine similarity to the query vector")
    rank: int = Field(ge=1, description="Position in result list (1-indexed)")
    quality_score: float | None = Field(default=None, description="Quality score of the file")
    ai_insights_preview: str = Field(default="", description="Truncated review notes")
    review_run: ReviewRunContext = Field(description="Context of the owning review run")


class SearchInfo(BaseModel):
    """Metadata about the search execution"""

    search_kind: SearchKind = Field(description="Free-text or reference search")
    effective_min_score: float = Field(description="Similarity floor that was applied")
    total_results: int = Field(ge=0, description="Number of results returned")
    query_time_ms: float = Field(ge=0.0, description="Search execution time in milliseconds")


class SimilaritySearchOutput(BaseModel):
    """Complete output of a similarity search"""

    results: list[SimilarityResult] = Field(description="Ranked matches, best first")
    search_info: SearchInfo = Field(description="Metadata about the search")
