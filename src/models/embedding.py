"""Vector embedding data model"""

import math
from datetime import datetime, timezone

from pydantic import BaseModel, Field, field_validator


class VectorEmbedding(BaseModel):
    """Stored vector representation of one analyzed file"""

    document_id: str = Field(description="Foreign key to AnalysisDocument.id")
    filename: str = Field(description="File within the analysis document")
    embedding: list[float] = Field(min_length=1, description="Vector representation")
    model_name: str | None = Field(
        default=None, description="Embedding model used (e.g., BAAI/bge-base-en-v1.5)"
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When embedding was stored",
    )

    @field_validator("embedding")
    @classmethod
    def validate_finite(cls, v: list[float]) -> list[float]:
        """Validate every element is a finite number"""
        if not all(math.isfinite(x) for x in v):
            raise ValueError("Embedding contains non-finite values")
        return v

    @property
    def dimension(self) -> int:
        return len(self.embedding)
