"""MCP server exposing code similarity search using fastmcp"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastmcp import Context, FastMCP
from fastmcp.exceptions import McpError
from mcp.types import ErrorData
from starlette.responses import JSONResponse

from src.config import AppConfig, config
from src.models.analysis import SourceType
from src.models.search_result import SimilaritySearchOutput
from src.services.embedder import Embedder
from src.services.embedding_store import EmbeddingStore
from src.services.errors import ClientError, NotFound
from src.services.search import SimilaritySearchService
from src.services.telemetry import TelemetryService, get_telemetry_service

logger = logging.getLogger(__name__)

INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
RESOURCE_NOT_FOUND = -32002


class AppServices:
    """Process-wide handles, opened at startup and closed at shutdown"""

    def __init__(self, store: EmbeddingStore, search_service: SimilaritySearchService):
        self.store = store
        self.search_service = search_service

    @classmethod
    async def open(cls, settings: AppConfig | None = None) -> "AppServices":
        """
        Open the store and embedder, failing hard on configuration mismatches

        Raises:
            ConfigurationError: Schema/index missing or dimensions disagree
        """
        settings = settings or config
        store = EmbeddingStore(settings.db_path, settings)
        embedder = Embedder(settings=settings)
        try:
            await store.verify_schema()
            embedder.check_dimension()
        except Exception:
            store.close()
            raise

        logger.info(
            f"Services ready (db={settings.db_path}, model={embedder.model_name}, "
            f"dimension={settings.embedding_dimension})"
        )
        return cls(store, SimilaritySearchService(store, embedder, settings))

    async def close(self) -> None:
        await self.search_service.close()
        self.store.close()


@asynccontextmanager
async def lifespan(server: FastMCP) -> AsyncIterator[AppServices]:
    services = await AppServices.open()
    try:
        yield services
    finally:
        await services.close()
        logger.info("Services closed")


mcp = FastMCP(name="code-similarity-search", version="1.0.0", lifespan=lifespan)


def _to_mcp_error(error: Exception) -> McpError:
    if isinstance(error, NotFound):
        return McpError(ErrorData(code=RESOURCE_NOT_FOUND, message=str(error)))
    if isinstance(error, ClientError):
        return McpError(ErrorData(code=INVALID_PARAMS, message=str(error)))
    return McpError(ErrorData(code=INTERNAL_ERROR, message=f"Search failed: {error}"))


async def run_text_search(
    search_service: SimilaritySearchService,
    telemetry: TelemetryService,
    query: str,
    limit: int | None = None,
    source_type: str = SourceType.PULL_REQUEST.value,
) -> SimilaritySearchOutput:
    """Execute a free-text search, mapping errors to MCP errors and recording telemetry"""
    error: Exception | None = None
    response = None

    try:
        try:
            st = SourceType(source_type)
        except ValueError as e:
            error = e
            raise McpError(
                ErrorData(
                    code=INVALID_PARAMS,
                    message=(
                        f"Invalid source_type: {source_type}. "
                        f"Must be: pull_request or repository_scan"
                    ),
                )
            ) from e

        try:
            with telemetry.get_tracer().start_as_current_span("semantic_text_search"):
                result = await search_service.search_by_text(query, limit=limit, source_type=st)
            response = result.model_dump(mode="json")
            return result
        except Exception as e:
            error = e
            raise _to_mcp_error(e) from e

    finally:
        telemetry.log_query(
            tool_name="semantic_text_search",
            query=query,
            parameters={"limit": limit, "source_type": source_type},
            response=response,
            error=error,
        )


async def run_reference_search(
    search_service: SimilaritySearchService,
    telemetry: TelemetryService,
    document_id: str,
    filename: str,
    limit: int | None = None,
    min_score: float | None = None,
) -> SimilaritySearchOutput:
    """Execute a reference search, mapping errors to MCP errors and recording telemetry"""
    error: Exception | None = None
    response = None

    try:
        with telemetry.get_tracer().start_as_current_span("search_similar_code"):
            result = await search_service.search_by_reference(
                document_id, filename, limit=limit, min_score=min_score
            )
        response = result.model_dump(mode="json")
        return result
    except Exception as e:
        error = e
        raise _to_mcp_error(e) from e

    finally:
        telemetry.log_query(
            tool_name="search_similar_code",
            query=None,
            parameters={
                "document_id": document_id,
                "filename": filename,
                "limit": limit,
                "min_score": min_score,
            },
            response=response,
            error=error,
        )


def _services(ctx: Context) -> AppServices:
    return ctx.request_context.lifespan_context


@mcp.tool()
async def semantic_text_search(
    query: str, ctx: Context, limit: int | None = None, source_type: str = "pull_request"
) -> SimilaritySearchOutput:
    """Find analyzed files semantically similar to a code snippet or description

    Args:
        query: Code snippet or natural-language description (max 5000 chars)
        limit: Maximum number of results to return (1-50, default: 10)
        source_type: Analyses to search (pull_request or repository_scan)

    Returns:
        SimilaritySearchOutput: Ranked matches with review context
    """
    return await run_text_search(
        _services(ctx).search_service, get_telemetry_service(), query, limit, source_type
    )


@mcp.tool()
async def search_similar_code(
    document_id: str,
    filename: str,
    ctx: Context,
    limit: int | None = None,
    min_score: float | None = None,
) -> SimilaritySearchOutput:
    """Find files similar to a file from an existing analysis, excluding the file itself

    Args:
        document_id: ID of the analysis document containing the reference file
        filename: Reference file within that analysis
        limit: Maximum number of results to return (1-50, default: 5)
        min_score: Minimum similarity (0.0-1.0, default: 0.75)

    Returns:
        SimilaritySearchOutput: Ranked matches with review context
    """
    return await run_reference_search(
        _services(ctx).search_service,
        get_telemetry_service(),
        document_id,
        filename,
        limit,
        min_score,
    )


@mcp.custom_route("/", methods=["GET"])
@mcp.custom_route("/health", methods=["GET"])
def health_check(request):
    return JSONResponse({"status": "ok"})


def main() -> None:
    """Entry point for the MCP server"""
    logging.basicConfig(level=logging.INFO)
    mcp.run(transport="streamable-http", host=config.mcp_host, port=config.mcp_port)


if __name__ == "__main__":
    main()
