"""OpenTelemetry setup and span helpers for the ledger service."""

from contextlib import contextmanager
from typing import Iterator

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Span, Status, StatusCode

from ledgerpay.common.config import settings

tracer = trace.get_tracer("ledgerpay")


def setup_tracing(service_name: str) -> None:
    """Register an OTLP HTTP tracer provider unless tracing is switched off."""

    if not settings.otel_enabled:
        return
    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    provider.add_span_processor(
        BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint))
    )
    trace.set_tracer_provider(provider)


def instrument_app(app: FastAPI) -> None:
    if not settings.otel_enabled:
        return
    FastAPIInstrumentor.instrument_app(app)


@contextmanager
def ledger_span(operation: str, **attributes) -> Iterator[Span]:
    """Span named `ledger.<operation>` carrying `ledger.*` attributes.

    Errors with a `code` attribute (ledger errors) are recorded on the span
    under `ledger.error_code` before being re-raised.
    """

    with tracer.start_as_current_span(f"ledger.{operation}") as span:
        for key, value in attributes.items():
            if value is not None:
                span.set_attribute(f"ledger.{key}", value)
        try:
            yield span
        except Exception as exc:
            code = getattr(exc, "code", None)
            if code is not None:
                span.set_attribute("ledger.error_code", code)
            span.set_status(Status(StatusCode.ERROR, str(exc)))
            raise
