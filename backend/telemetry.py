# telemetry.py — OpenTelemetry instrumentation for the Kanban API
"""
Configures distributed tracing. Exports to an OTLP collector when
OTEL_EXPORTER_OTLP_ENDPOINT is set, otherwise does nothing.
"""
import logging

from config import Settings

logger = logging.getLogger("kanban.telemetry")

SERVICE_NAME = "kanban-api"
SERVICE_VERSION = "1.0.0"


def setup_telemetry(settings: Settings, app=None, engine=None):
    """Initialise OpenTelemetry tracing and instrument FastAPI, SQLAlchemy and httpx.

    Safe to call in any environment: without an exporter endpoint, or without
    the optional ``telemetry`` extra installed, this is a no-op.
    """
    endpoint = settings.otel_exporter_otlp_endpoint
    if not endpoint:
        logger.info("OpenTelemetry disabled (OTEL_EXPORTER_OTLP_ENDPOINT not set)")
        return None

    try:
        from opentelemetry import trace
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
        from opentelemetry.sdk.resources import Resource, SERVICE_NAME as RES_SVC_NAME
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
        from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
        from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
    except ImportError:
        logger.warning("OpenTelemetry packages not installed (pip install '.[telemetry]'); tracing disabled")
        return None

    resource = Resource.create({
        RES_SVC_NAME: SERVICE_NAME,
        "service.version": SERVICE_VERSION,
        "deployment.environment": settings.environment,
    })
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint, insecure=True)))
    trace.set_tracer_provider(provider)

    if app is not None:
        FastAPIInstrumentor.instrument_app(app, excluded_urls="api/health", tracer_provider=provider)
    if engine is not None:
        SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine, tracer_provider=provider)
    HTTPXClientInstrumentor().instrument(tracer_provider=provider)

    logger.info(f"OpenTelemetry initialised → {endpoint}")
    return provider
