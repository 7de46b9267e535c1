"""OpenTelemetry wiring for the payments API.

Spans go to an OTLP/HTTP collector. Health and scrape endpoints are excluded
so probes do not drown out payment traffic.
"""

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased

from rentpay.common.config import CommonSettings

EXCLUDED_URLS = "/payments/health,/metrics"


def configure_tracing(app: FastAPI, config: CommonSettings) -> bool:
    """Install the tracer provider and instrument `app`; False when disabled."""

    if not config.tracing_enabled:
        return False
    resource = Resource.create(
        {"service.name": config.service_name, "deployment.environment": config.environment}
    )
    provider = TracerProvider(resource=resource, sampler=ParentBased(TraceIdRatioBased(config.otel_sample_ratio)))
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=config.otel_exporter_otlp_endpoint)))
    trace.set_tracer_provider(provider)
    FastAPIInstrumentor.instrument_app(app, excluded_urls=EXCLUDED_URLS)
    return True
