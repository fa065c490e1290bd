"""OpenTelemetry logging and tracing service for similarity search telemetry"""

import json
import logging
from datetime import datetime, timezone
from typing import Any

from opentelemetry import trace
from opentelemetry._logs import SeverityNumber, set_logger_provider
from opentelemetry.exporter.otlp.proto.http._log_exporter import OTLPLogExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk._logs import LoggerProvider
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from src.config import config

logger = logging.getLogger(__name__)

SEARCH_TOOLS = ("semantic_text_search", "search_similar_code")


class TelemetryService:
    """Handle OpenTelemetry logging and tracing for search calls"""

    def __init__(self):
        self.logging_enabled = config.otel_logging_enabled
        self.tracing_enabled = config.otel_tracing_enabled
        self.logger_provider = None
        self.tracer_provider = None
        self.otel_logger = None

        if self.logging_enabled:
            try:
                self._initialize_logging()
            except Exception as e:
                logger.warning(f"Failed to initialize OTel logging: {e}. Logging disabled.")
                self.logging_enabled = False

        if self.tracing_enabled:
            try:
                self._initialize_tracing()
            except Exception as e:
                logger.warning(f"Failed to initialize OTel tracing: {e}. Tracing disabled.")
                self.tracing_enabled = False

    def _resource(self) -> Resource:
        return Resource(
            attributes={
                SERVICE_NAME: config.otel_service_name,
                SERVICE_VERSION: config.otel_service_version,
            }
        )

    def _initialize_logging(self) -> None:
        """Initialize OpenTelemetry logging with OTLP log exporter"""
        self.logger_provider = LoggerProvider(resource=self._resource())

        log_endpoint = config.otel_endpoint
        if not log_endpoint.endswith("/v1/logs"):
            log_endpoint = f"{log_endpoint.rstrip('/')}/v1/logs"

        self.logger_provider.add_log_record_processor(
            BatchLogRecordProcessor(OTLPLogExporter(endpoint=log_endpoint))
        )
        set_logger_provider(self.logger_provider)
        self.otel_logger = self.logger_provider.get_logger(__name__)

        logger.info(f"OpenTelemetry logging initialized with endpoint: {log_endpoint}")

    def _initialize_tracing(self) -> None:
        """Initialize OpenTelemetry tracing with OTLP trace exporter"""
        self.tracer_provider = TracerProvider(resource=self._resource())

        trace_endpoint = config.otel_endpoint
        if not trace_endpoint.endswith("/v1/traces"):
            trace_endpoint = f"{trace_endpoint.rstrip('/')}/v1/traces"

        self.tracer_provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=trace_endpoint))
        )
        trace.set_tracer_provider(self.tracer_provider)

        logger.info(f"OpenTelemetry tracing initialized with endpoint: {trace_endpoint}")

    def get_tracer(self) -> trace.Tracer:
        """Tracer for search spans (no-op tracer when tracing is disabled)"""
        return trace.get_tracer(__name__)

    def log_query(  # noqa: C901
        self,
        tool_name: str,
        query: str | None,
        parameters: dict[str, Any],
        response: dict[str, Any] | None = None,
        error: Exception | None = None,
    ) -> None:
        """
        Log a search call and its response to OpenTelemetry

        Args:
            tool_name: Name of the MCP tool being called
            query: The query text (for semantic_text_search) or None
            parameters: All parameters passed to the tool
            response: The response data (if successful)
            error: The error (if failed)
        """
        if not self.logging_enabled or not self.otel_logger:
            return

        try:
            # Build structured attributes (LOW CARDINALITY ONLY)
            attributes: dict[str, str | int | float | bool] = {
                "mcp.tool.name": tool_name,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }

            if parameters.get("limit") is not None:
                attributes["query.param.limit"] = int(parameters["limit"])

            if parameters.get("min_score") is not None:
                attributes["query.param.min_score"] = float(parameters["min_score"])

            if parameters.get("source_type") is not None:
                attributes["query.param.source_type"] = str(parameters["source_type"])

            success = error is None
            attributes["response.success"] = success

            if response and tool_name in SEARCH_TOOLS:
                results = response.get("results", [])
                attributes["response.result_count"] = len(results)
                attributes["response.size_bytes"] = len(json.dumps(response, default=str))

                if results:
                    top_score = results[0].get("score")
                    if top_score is not None:
                        attributes["response.top_score"] = float(top_score)

                search_info = response.get("search_info", {})
                if "query_time_ms" in search_info:
                    attributes["response.query_time_ms"] = float(search_info["query_time_ms"])
                if "effective_min_score" in search_info:
                    attributes["response.effective_min_score"] = float(
                        search_info["effective_min_score"]
                    )

                if config.otel_log_full_results:
                    attributes["response.results_json"] = json.dumps(results, default=str)

            if error:
                attributes["error.type"] = type(error).__name__
                error_message = str(error)
                if len(error_message) > 500:
                    error_message = error_message[:500] + "..."
                attributes["error.message"] = error_message

            # Build log message (HIGH CARDINALITY DATA GOES HERE)
            log_body_parts = [f"[{tool_name}]", "SUCCESS" if success else "FAILED"]

            if query:
                truncated_query = query if len(query) <= 200 else query[:200] + "..."
                log_body_parts.append(f'query="{truncated_query}"')
                if config.otel_log_full_results:
                    attributes["query.full_text"] = query

            if "document_id" in parameters:
                log_body_parts.append(
                    f"reference={parameters['document_id']}/{parameters.get('filename')}"
                )

            if response:
                search_info = response.get("search_info", {})
                log_body_parts.append(
                    f"results={len(response.get('results', []))} "
                    f"time={search_info.get('query_time_ms', 0):.1f}ms"
                )

            if error:
                log_body_parts.append(f"error={type(error).__name__}")

            severity = logging.ERROR if error else logging.INFO

            self.otel_logger.emit(
                body=" ".join(log_body_parts),
                severity_number=SeverityNumber(self._severity_to_number(severity)),
                attributes=attributes,
                timestamp=int(datetime.now(timezone.utc).timestamp() * 1e9),
            )

        except Exception as e:
            # Don't let telemetry errors break the application
            logger.warning(f"Failed to log telemetry: {e}")

    def _severity_to_number(self, level: int) -> int:
        """Convert Python logging level to OpenTelemetry severity number"""
        if level >= logging.CRITICAL:
            return 21  # FATAL
        elif level >= logging.ERROR:
            return 17  # ERROR
        elif level >= logging.WARNING:
            return 13  # WARN
        elif level >= logging.INFO:
            return 9  # INFO
        else:
            return 5  # DEBUG


# Global telemetry service instance
_telemetry_service: TelemetryService | None = None


def get_telemetry_service() -> TelemetryService:
    """Get or create the global telemetry service instance"""
    global _telemetry_service
    if _telemetry_service is None:
        _telemetry_service = TelemetryService()
    return _telemetry_service
