"""Analysis document, file analysis item and review run data models"""

import math
from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator


class SourceType(str, Enum):
    """Kind of review run an analysis document was produced by"""

    PULL_REQUEST = "pull_request"
    REPOSITORY_SCAN = "repository_scan"


class ReviewRun(BaseModel):
    """Human-readable context of one review run (a pull request or a repository scan)"""

    id: str = Field(default_factory=lambda: str(uuid4()), description="Unique identifier")
    source_type: SourceType = Field(default=SourceType.PULL_REQUEST)
    title: str = Field(description="Pull request title or scanned repository name")
    author: str | None = Field(default=None, description="Author login")
    number: int | None = Field(default=None, ge=1, description="Pull request number")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the review run started",
    )


class FileAnalysisItem(BaseModel):
    """One analyzed file within an analysis document"""

    filename: str = Field(min_length=1, description="Path of the file, unique within its document")
    quality_score: float | None = Field(default=None, description="Quality score (0-10)")
    complexity: float | None = Field(default=None)
    maintainability: float | None = Field(default=None)
    ai_insights: str = Field(default="", description="Generated review notes for this file")
    embedding: list[float] | None = Field(
        default=None, description="Vector embedding of the file content, absent if skipped"
    )

    def has_valid_embedding(self, dimension: int) -> bool:
        """True when the embedding is present, finite and exactly `dimension` long"""
        if not self.embedding or len(self.embedding) != dimension:
            return False
        return all(math.isfinite(x) for x in self.embedding)


class AnalysisDocument(BaseModel):
    """Container produced by one code-review run"""

    id: str = Field(default_factory=lambda: str(uuid4()), description="Opaque unique id")
    review_run_id: str = Field(description="Foreign key to ReviewRun.id")
    source_type: SourceType = Field(default=SourceType.PULL_REQUEST)
    quality_score: float | None = Field(default=None)
    complexity: float | None = Field(default=None)
    maintainability: float | None = Field(default=None)
    ai_insights: str = Field(default="")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    files: list[FileAnalysisItem] = Field(default_factory=list)

    @field_validator("files")
    @classmethod
    def validate_unique_filenames(cls, v: list[FileAnalysisItem]) -> list[FileAnalysisItem]:
        """Filenames identify files within a document"""
        seen: set[str] = set()
        for item in v:
            if item.filename in seen:
                raise ValueError(f"Duplicate filename in analysis document: {item.filename}")
            seen.add(item.filename)
        return v

    def get_file(self, filename: str) -> FileAnalysisItem | None:
        for item in self.files:
            if item.filename == filename:
                return item
        return None
