import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from fastapi import FastAPI

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (  # type: ignore[attr-defined]
    OTLPSpanExporter as OTLPGrpcExporter,
)
from opentelemetry.exporter.otlp.proto.http.trace_exporter import (  # type: ignore[attr-defined]
    OTLPSpanExporter as OTLPHttpExporter,
)
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SpanExporter
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased
from opentelemetry.trace import Span, Status, StatusCode

from .config import ServiceSettings

_LOGGER = logging.getLogger(__name__)
_TRACER_NAME = "services.inventory"
_FLUSH_TIMEOUT_MILLIS = 5_000
_INSTRUMENTED_APPS: set[int] = set()
_HTTPX_INSTRUMENTED = False


def _span_exporter(settings: ServiceSettings) -> SpanExporter | None:
    endpoint = settings.tracing_endpoint
    if endpoint is None:
        return None
    if settings.tracing_protocol == "grpc":
        return OTLPGrpcExporter(endpoint=endpoint, insecure=settings.tracing_insecure)
    return OTLPHttpExporter(endpoint=endpoint)


def _sdk_provider(settings: ServiceSettings) -> trace.TracerProvider:
    """Install the SDK provider for this process, or return the one already installed."""

    installed = trace.get_tracer_provider()
    if isinstance(installed, TracerProvider):
        return installed

    provider = TracerProvider(
        resource=Resource.create(
            {
                "service.name": settings.app_name,
                "service.namespace": "inventory",
                "deployment.environment": settings.environment,
            }
        ),
        # Sweep spans are roots; request spans follow the caller's sampling decision.
        sampler=ParentBased(TraceIdRatioBased(settings.tracing_sample_rate)),
    )
    exporter = _span_exporter(settings)
    if exporter is None:
        _LOGGER.warning("Tracing enabled for %s without an OTLP endpoint; spans stay in process", settings.app_name)
    else:
        provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    return trace.get_tracer_provider()


def configure_tracing(app: FastAPI, settings: ServiceSettings) -> None:
    """Trace inbound requests and outbound catalog lookups when tracing is enabled."""

    global _HTTPX_INSTRUMENTED
    if not settings.enable_tracing:
        return

    provider = _sdk_provider(settings)
    if id(app) not in _INSTRUMENTED_APPS:
        FastAPIInstrumentor().instrument_app(app, tracer_provider=provider, excluded_urls="health,metrics")
        _INSTRUMENTED_APPS.add(id(app))
    if not _HTTPX_INSTRUMENTED:
        HTTPXClientInstrumentor().instrument(tracer_provider=provider)
        _HTTPX_INSTRUMENTED = True


def flush_traces() -> None:
    """Push buffered spans to the exporter; a no-op when no SDK provider is installed."""

    provider = trace.get_tracer_provider()
    if isinstance(provider, TracerProvider) and not provider.force_flush(_FLUSH_TIMEOUT_MILLIS):
        _LOGGER.warning("Timed out flushing spans after %sms", _FLUSH_TIMEOUT_MILLIS)


@contextmanager
def background_span(name: str, **attributes: Any) -> Iterator[Span]:
    """Open a root span for work that does not originate from a request.

    The reservation sweep runs on its own schedule, so its log lines would
    otherwise carry no trace identifiers. Attributes are recorded with an
    ``inventory.`` prefix.
    """

    tracer = trace.get_tracer(_TRACER_NAME)
    prefixed = {f"inventory.{key}": value for key, value in attributes.items()}
    with tracer.start_as_current_span(
        name,
        context=trace.set_span_in_context(trace.INVALID_SPAN),
        attributes=prefixed or None,
        set_status_on_exception=False,
    ) as span:
        try:
            yield span
        except Exception as exc:
            span.set_status(Status(StatusCode.ERROR, str(exc)))
            raise
