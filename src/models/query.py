"""Similarity query models"""

from enum import Enum

from pydantic import BaseModel, Field, model_validator

from src.models.analysis import SourceType


class SearchKind(str, Enum):
    """Why a similarity search is being run"""

    TEXT = "text"
    REFERENCE = "reference"


class SimilarityQuery(BaseModel):
    """Parameters of one similarity search, independent of how the query vector was obtained"""

    limit: int = Field(default=5, ge=1, le=50, description="Maximum number of results to return")
    min_score: float | None = Field(
        default=None, ge=0.0, le=1.0, description="Explicit similarity floor (0.0-1.0)"
    )
    exclude_document_id: str | None = Field(
        default=None, description="Analysis document the query originates from"
    )
    exclude_filename: str | None = Field(
        default=None, description="File the query originates from (requires exclude_document_id)"
    )
    source_type: SourceType = Field(
        default=SourceType.PULL_REQUEST, description="Analysis source type to search within"
    )

    @model_validator(mode="after")
    def validate_exclusion(self) -> "SimilarityQuery":
        """A filename alone does not identify a file"""
        if self.exclude_filename is not None and self.exclude_document_id is None:
            raise ValueError("exclude_filename requires exclude_document_id")
        return self
