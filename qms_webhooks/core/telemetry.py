from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from qms_webhooks.core.config import settings
from qms_webhooks.core.db import engine

# health probes would otherwise dominate the trace volume
EXCLUDED_URLS = "/v1/health"


def _tracer_provider(app_version: str) -> TracerProvider:
    resource = Resource.create({
        "service.name": settings.service_name,
        "service.version": app_version,
        "deployment.environment": settings.env,
    })
    provider = TracerProvider(resource=resource)
    exporter = OTLPSpanExporter(endpoint=f"{settings.otlp_endpoint.rstrip('/')}/v1/traces")
    provider.add_span_processor(BatchSpanProcessor(exporter))
    return provider


def setup_telemetry(app) -> bool:
    """
    Exports the API spans, the SQL spans and the webhook.deliver spans opened
    by the delivery executor. Returns False when telemetry is switched off.
    """
    if not settings.telemetry_enabled:
        return False

    trace.set_tracer_provider(_tracer_provider(app.version))
    FastAPIInstrumentor.instrument_app(app, excluded_urls=EXCLUDED_URLS)
    SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)
    return True
