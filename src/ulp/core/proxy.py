"""ProxyHandler — one downstream Chat Completions call, any upstream provider.

The handler wires the pieces for a single request: it looks the provider up
in the registry, wraps the body in the provider's request adapter, stages
compression when enabled, builds the upstream client, executes, and renders
the upstream answer back into the downstream contract. Upstream failures are
normalized with the provider's error normalizer and re-raised as
:class:`~ulp.core.errors.UpstreamError`.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator, Mapping
from typing import Any

from opentelemetry import trace
from pydantic import BaseModel, ConfigDict

from ulp.core.compression.engine import CompressionEngine
from ulp.core.errors import RequestConstructionError, UpstreamError
from ulp.core.interface.adapter import RequestAdapter, StreamAdapter
from ulp.core.interface.config import ProxySettings
from ulp.core.interface.models import ToolCompressionStats, UsageView
from ulp.core.policy.capabilities import CapabilityRegistry
from ulp.core.policy.registry_data import build_default_registry
from ulp.core.pricing import PricingLookup, StaticPricingTable
from ulp.core.providers.factory import ClientOptions, ProviderFactory
from ulp.core.providers.registry import get_provider
from ulp.utils.telemetry import (
    ATTR_TIME_TO_FIRST_CHUNK_MS,
    annotate_call,
    get_tracer,
    record_compression,
    record_failure,
    record_outcome,
    record_usage,
)

logger = logging.getLogger(__name__)

_tracer = get_tracer(__name__)


class CompletionResult(BaseModel):
    """Outcome of a non-streamed proxied call."""

    model_config = ConfigDict(frozen=True)

    provider: str
    response: dict[str, Any]
    provider_response: dict[str, Any]
    usage: UsageView
    compression: ToolCompressionStats | None = None


def _upstream_error(factory: ProviderFactory, exc: Exception, span: trace.Span) -> UpstreamError:
    message = factory.extract_error_message(exc)
    record_failure(span, exc, message)
    logger.error("[%s] Upstream call failed: %s", factory.provider, message)
    return UpstreamError(
        message,
        status_code=getattr(exc, "status_code", None),
        body=getattr(exc, "body", None),
    )


class StreamSession:
    """A prepared streamed call.

    Iterate :meth:`events` to drive the upstream stream; each item is a
    downstream SSE fragment. Text is forwarded as it arrives, tool-call
    deltas are replayed once the upstream stream ends, and the closing chunk
    plus ``[DONE]`` come last. After iteration, :attr:`adapter` holds the
    accumulated state.
    """

    def __init__(
        self,
        factory: ProviderFactory,
        request_adapter: RequestAdapter,
        client: Any,
        compression: ToolCompressionStats | None,
    ) -> None:
        self.factory = factory
        self.request_adapter = request_adapter
        self.client = client
        self.compression = compression
        self.adapter: StreamAdapter = factory.create_stream_adapter()

    @property
    def headers(self) -> dict[str, str]:
        return self.adapter.get_sse_headers()

    @property
    def usage(self) -> UsageView | None:
        return self.adapter.state.usage

    async def events(self) -> AsyncIterator[str]:
        factory = self.factory
        span = _tracer.start_span(factory.get_span_name())
        annotate_call(
            span,
            provider=factory.provider,
            interaction_type=factory.interaction_type,
            model=self.request_adapter.get_model(),
            streaming=True,
        )
        record_compression(span, self.compression)
        try:
            try:
                chunks = await factory.execute_stream(self.client, self.request_adapter.to_provider_request())
                async for chunk in chunks:
                    result = self.adapter.process_chunk(chunk)
                    if result.sse_data is not None:
                        yield result.sse_data
                    if result.is_final:
                        self._log_final(span)
            except Exception as exc:
                raise _upstream_error(factory, exc, span) from exc

            for fragment in self.adapter.get_raw_tool_call_events():
                yield fragment
            yield self.adapter.format_end_sse()

            state = self.adapter.state
            if state.usage is not None:
                record_usage(span, state.usage)
            record_outcome(span, self.adapter.downstream_finish_reason(), len(state.tool_calls))
        finally:
            span.end()

    def _log_final(self, span: trace.Span) -> None:
        timing = self.adapter.state.timing
        if timing.first_chunk_time is None:
            return
        ttfc_ms = (timing.first_chunk_time - timing.start_time) * 1000
        total_ms = (time.monotonic() - timing.start_time) * 1000
        span.set_attribute(ATTR_TIME_TO_FIRST_CHUNK_MS, ttfc_ms)
        logger.info(
            "[%s] Stream finished: ttfc_ms=%.0f total_ms=%.0f text_chars=%d tool_calls=%d",
            self.factory.provider,
            ttfc_ms,
            total_ms,
            len(self.adapter.state.text),
            len(self.adapter.state.tool_calls),
        )

    def to_downstream_response(self) -> dict[str, Any]:
        """The accumulated stream rendered as a non-streamed downstream response."""
        native = self.adapter.to_provider_response()
        return self.factory.create_response_adapter(native).to_downstream_response()


class ProxyHandler:
    """Routes downstream requests to upstream providers.

    Args:
        settings: Feature flags and per-provider overrides.
        pricing: Token prices for compression savings. Defaults to the
            settings' pricing table.
        capabilities: Model capability registry for the image policy.
            Defaults to the built-in registry with the settings' vision
            overrides applied.
    """

    def __init__(
        self,
        settings: ProxySettings | None = None,
        pricing: PricingLookup | None = None,
        capabilities: CapabilityRegistry | None = None,
    ) -> None:
        self.settings = settings or ProxySettings()
        self.pricing = pricing if pricing is not None else StaticPricingTable(self.settings.pricing)
        self.capabilities = capabilities or build_default_registry().with_overrides(self.settings.vision)

    def _prepare(
        self,
        provider: str,
        body: dict[str, Any],
        headers: Mapping[str, str] | None,
    ) -> tuple[ProviderFactory, RequestAdapter, Any, ToolCompressionStats | None]:
        factory = get_provider(provider)

        if not body.get("model"):
            raise RequestConstructionError("Request is missing 'model'")
        if not isinstance(body.get("messages"), list):
            raise RequestConstructionError("Request 'messages' must be a list")

        request_adapter: RequestAdapter = factory.create_request_adapter(
            body,
            max_image_size_bytes=self.settings.max_image_size_bytes,
            capabilities=self.capabilities,
        )

        stats: ToolCompressionStats | None = None
        if self.settings.compression_enabled:
            engine = CompressionEngine.for_family(factory.tokenizer_family, self.pricing)
            stats = request_adapter.apply_toon_compression(engine)

        overrides = self.settings.for_provider(factory.provider)
        api_key = factory.extract_api_key(headers or {}) or overrides.api_key
        options = ClientOptions(
            mock_mode=self.settings.mock_mode,
            base_url=overrides.base_url,
            timeout=overrides.timeout,
        )
        client = factory.create_client(api_key, options)
        logger.debug(
            "[%s] Prepared request: model=%s streaming=%s base_url=%s",
            factory.provider,
            request_adapter.get_model(),
            request_adapter.is_streaming(),
            options.base_url or factory.get_base_url(),
        )
        return factory, request_adapter, client, stats

    async def complete(
        self,
        provider: str,
        body: dict[str, Any],
        headers: Mapping[str, str] | None = None,
    ) -> CompletionResult:
        """Proxy a non-streamed call and return the downstream response."""
        factory, request_adapter, client, stats = self._prepare(provider, {**body, "stream": False}, headers)

        with _tracer.start_as_current_span(
            factory.get_span_name(), record_exception=False, set_status_on_exception=False
        ) as span:
            annotate_call(
                span,
                provider=factory.provider,
                interaction_type=factory.interaction_type,
                model=request_adapter.get_model(),
                streaming=False,
            )
            record_compression(span, stats)

            try:
                native = await factory.execute(client, request_adapter.to_provider_request())
            except Exception as exc:
                raise _upstream_error(factory, exc, span) from exc

            response_adapter = factory.create_response_adapter(native)
            usage = response_adapter.get_usage()
            record_usage(span, usage)
            record_outcome(span, response_adapter.get_finish_reason(), len(response_adapter.get_tool_calls()))

        return CompletionResult(
            provider=factory.provider,
            response=response_adapter.to_downstream_response(),
            provider_response=native,
            usage=usage,
            compression=stats,
        )

    def open_stream(
        self,
        provider: str,
        body: dict[str, Any],
        headers: Mapping[str, str] | None = None,
    ) -> StreamSession:
        """Prepare a streamed call without touching the network yet."""
        factory, request_adapter, client, stats = self._prepare(provider, {**body, "stream": True}, headers)
        return StreamSession(factory, request_adapter, client, stats)

    async def stream(
        self,
        provider: str,
        body: dict[str, Any],
        headers: Mapping[str, str] | None = None,
    ) -> AsyncIterator[str]:
        """Proxy a streamed call, yielding downstream SSE fragments."""
        session = self.open_stream(provider, body, headers)
        async for fragment in session.events():
            yield fragment
