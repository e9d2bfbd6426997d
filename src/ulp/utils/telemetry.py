"""OpenTelemetry tracing for proxied calls.

Every upstream call runs inside one span named after the provider operation
(``anthropic.messages``, ``gemini.generateContent``, ...). The helpers here
own the attribute vocabulary so the handler only says *what* happened.

Only the OpenTelemetry API is a hard dependency; until
:func:`configure_telemetry` installs an SDK tracer provider, spans are no-ops.
Exporting needs the ``otel`` extra (``pip install universal-llm-proxy[otel]``).
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from opentelemetry import trace

if TYPE_CHECKING:
    from ulp.core.interface.config import TelemetrySettings
    from ulp.core.interface.models import ToolCompressionStats, UsageView

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Span attribute keys
# ---------------------------------------------------------------------------

ATTR_PROVIDER = "ulp.provider"
ATTR_MODEL = "ulp.model"
ATTR_STREAMING = "ulp.streaming"
ATTR_INTERACTION_TYPE = "ulp.interaction_type"
ATTR_TOKENS_PROMPT = "ulp.tokens.prompt"
ATTR_TOKENS_COMPLETION = "ulp.tokens.completion"
ATTR_TOKENS_TOTAL = "ulp.tokens.total"
ATTR_FINISH_REASON = "ulp.finish_reason"
ATTR_TOOL_CALLS = "ulp.tool_calls"
ATTR_COMPRESSION_TOKENS_BEFORE = "ulp.compression.tokens_before"
ATTR_COMPRESSION_TOKENS_AFTER = "ulp.compression.tokens_after"
ATTR_COMPRESSION_COST_SAVINGS = "ulp.compression.cost_savings"
ATTR_TIME_TO_FIRST_CHUNK_MS = "ulp.stream.time_to_first_chunk_ms"

_INSTRUMENTATION_NAME = "ulp"

_SDK_HINT = "Install it with: pip install universal-llm-proxy[otel]"


def get_tracer(name: str | None = None) -> trace.Tracer:
    return trace.get_tracer(name or _INSTRUMENTATION_NAME)


# ---------------------------------------------------------------------------
# Span annotation
# ---------------------------------------------------------------------------


def annotate_call(
    span: trace.Span,
    *,
    provider: str,
    interaction_type: str,
    model: str,
    streaming: bool,
) -> None:
    """Tag *span* with the identity of one proxied call."""
    span.set_attribute(ATTR_PROVIDER, provider)
    span.set_attribute(ATTR_INTERACTION_TYPE, interaction_type)
    span.set_attribute(ATTR_MODEL, model)
    span.set_attribute(ATTR_STREAMING, streaming)


def record_usage(span: trace.Span, usage: UsageView) -> None:
    span.set_attribute(ATTR_TOKENS_PROMPT, usage.input_tokens)
    span.set_attribute(ATTR_TOKENS_COMPLETION, usage.output_tokens)
    span.set_attribute(ATTR_TOKENS_TOTAL, usage.total_tokens)


def record_outcome(span: trace.Span, finish_reason: str, tool_calls: int) -> None:
    span.set_attribute(ATTR_FINISH_REASON, finish_reason)
    span.set_attribute(ATTR_TOOL_CALLS, tool_calls)


def record_compression(span: trace.Span, stats: ToolCompressionStats | None) -> None:
    """Attach compression savings; a request without staged compression adds nothing."""
    if stats is None:
        return
    span.set_attribute(ATTR_COMPRESSION_TOKENS_BEFORE, stats.tokens_before)
    span.set_attribute(ATTR_COMPRESSION_TOKENS_AFTER, stats.tokens_after)
    span.set_attribute(ATTR_COMPRESSION_COST_SAVINGS, stats.cost_savings)


def record_failure(span: trace.Span, exc: BaseException, message: str) -> None:
    span.record_exception(exc)
    span.set_status(trace.StatusCode.ERROR, message)


# ---------------------------------------------------------------------------
# SDK setup
# ---------------------------------------------------------------------------


def configure_telemetry(settings: TelemetrySettings | None = None, *, export_to_console: bool = False) -> None:
    """Install an SDK tracer provider built from *settings*.

    Spans go to stdout when *export_to_console* is set and to the OTLP/gRPC
    collector at ``settings.otlp_endpoint`` when one is configured.

    Raises:
        ImportError: If ``opentelemetry-sdk`` (or, for OTLP export,
            ``opentelemetry-exporter-otlp``) is not installed.
    """
    from ulp.core.interface.config import TelemetrySettings

    settings = settings or TelemetrySettings()
    try:
        from opentelemetry.sdk.resources import Resource  # pyright: ignore[reportMissingImports,reportUnknownVariableType]
        from opentelemetry.sdk.trace import TracerProvider  # pyright: ignore[reportMissingImports,reportUnknownVariableType]
    except ImportError as exc:
        raise ImportError(f"opentelemetry-sdk is required for configure_telemetry(). {_SDK_HINT}") from exc

    provider = TracerProvider(resource=Resource.create({"service.name": settings.service_name}))  # pyright: ignore[reportUnknownVariableType,reportUnknownMemberType]
    for processor in _span_processors(export_to_console, settings.otlp_endpoint):
        provider.add_span_processor(processor)  # pyright: ignore[reportUnknownMemberType]

    trace.set_tracer_provider(provider)  # pyright: ignore[reportUnknownArgumentType]
    logger.debug(
        "Telemetry configured: service=%s console=%s otlp=%s",
        settings.service_name,
        export_to_console,
        settings.otlp_endpoint,
    )


def _span_processors(export_to_console: bool, otlp_endpoint: str | None) -> list[Any]:
    from opentelemetry.sdk.trace.export import (  # pyright: ignore[reportMissingImports,reportUnknownVariableType]
        BatchSpanProcessor,
        ConsoleSpanExporter,
        SimpleSpanProcessor,
    )

    processors: list[Any] = []
    if export_to_console:
        processors.append(SimpleSpanProcessor(ConsoleSpanExporter()))
    if otlp_endpoint:
        try:
            from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter  # pyright: ignore[reportMissingImports,reportUnknownVariableType]
        except ImportError as exc:
            raise ImportError(f"opentelemetry-exporter-otlp is required for OTLP export. {_SDK_HINT}") from exc
        processors.append(BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint)))
    return processors
