"""Centralized configuration using Pydantic BaseSettings"""

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppConfig(BaseSettings):
    """Application configuration with environment variable support"""

    # Database
    db_path: str = Field(default="./data/analyses.db", description="SQLite database file path")
    vector_index_name: str = Field(
        default="vec_file_embeddings",
        description="Name of the cosine ANN index over file embeddings (created out-of-band)",
    )

    # Embedding (Local model using fastembed)
    embedding_model: str = Field(
        default="BAAI/bge-base-en-v1.5", description="Local embedding model name (fastembed)"
    )
    fastembed_cache_dir: str = Field(
        default="./data/models", description="Directory to cache embedding model"
    )
    embedding_batch_size: int = Field(
        default=32, ge=1, le=256, description="Batch size for embedding generation"
    )
    embedding_threads: int | None = Field(
        default=None,
        ge=1,
        description="ONNX runtime threads for the embedding model (unset: fastembed default)",
    )
    embedding_dimension: int = Field(
        default=768, ge=1, description="Embedding vector dimension (768 for bge-base-en-v1.5)"
    )
    embedding_max_input_chars: int = Field(
        default=8000, ge=1, description="Texts longer than this are truncated before embedding"
    )

    # Similarity search
    query_max_chars: int = Field(
        default=5000, ge=1, description="Maximum length of a free-text search query"
    )
    contextual_min_score: float = Field(
        default=0.75,
        ge=0.0,
        le=1.0,
        description="Similarity floor for 'find similar to this file' searches",
    )
    general_min_score: float = Field(
        default=0.45, ge=0.0, le=1.0, description="Similarity floor for free-text searches"
    )
    ann_candidate_multiplier: int = Field(
        default=20, ge=1, description="ANN candidates requested per result slot"
    )
    ann_pool_multiplier: int = Field(
        default=5, ge=1, description="ANN hits kept for post-filtering per result slot"
    )
    preview_max_chars: int = Field(
        default=250, ge=1, description="Maximum length of insight previews in results"
    )
    text_search_result_limit: int = Field(
        default=10, ge=1, le=50, description="Default result cap for free-text searches"
    )
    reference_search_result_limit: int = Field(
        default=5, ge=1, le=50, description="Default result cap for reference searches"
    )

    # MCP Server
    mcp_host: str = Field(default="0.0.0.0", description="MCP server bind address")
    mcp_port: int = Field(default=8080, ge=1024, le=65535, description="MCP server port")

    # OpenTelemetry
    otel_logging_enabled: bool = Field(default=True, description="Enable OpenTelemetry logging")
    otel_tracing_enabled: bool = Field(default=True, description="Enable OpenTelemetry tracing")
    otel_endpoint: str = Field(
        default="http://otel-collector.otel.svc.cluster.local:4318",
        description="OpenTelemetry collector endpoint (HTTP/protobuf)",
    )
    otel_service_name: str = Field(
        default="code-similarity-search", description="Service name for OpenTelemetry"
    )
    otel_service_version: str = Field(
        default="1.0.0", description="Service version for OpenTelemetry"
    )
    otel_log_full_results: bool = Field(
        default=False,
        description="Include full query results in telemetry logs (needed for analytics)",
    )

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    @field_validator("vector_index_name")
    @classmethod
    def validate_index_name(cls, v: str) -> str:
        """Index name is interpolated into SQL, so it must be a plain identifier"""
        if not v.isidentifier():
            raise ValueError(f"vector_index_name must be a valid identifier, got: {v!r}")
        return v

    @model_validator(mode="after")
    def validate_pool_multiplier(self) -> "AppConfig":
        """The post-filter pool is carved out of the ANN candidate set"""
        if self.ann_pool_multiplier > self.ann_candidate_multiplier:
            raise ValueError(
                f"ann_pool_multiplier ({self.ann_pool_multiplier}) cannot exceed "
                f"ann_candidate_multiplier ({self.ann_candidate_multiplier})"
            )
        return self


# Global config instance
config = AppConfig()
