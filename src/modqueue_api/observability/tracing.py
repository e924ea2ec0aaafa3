from __future__ import annotations

from fastapi import FastAPI

from modqueue_api.settings import Settings, get_settings


def tracing_enabled(settings: Settings | None = None) -> bool:
    settings = settings or get_settings()
    return settings.mq_otel_enabled or bool(settings.otel_exporter_otlp_endpoint)


def configure_tracing(app: FastAPI, settings: Settings | None = None) -> None:
    settings = settings or get_settings()
    if not tracing_enabled(settings):
        return

    from opentelemetry import trace
    from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
    from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased

    provider = TracerProvider(
        resource=Resource.create(
            {
                "service.name": settings.otel_service_name,
                "service.version": app.version,
                "service.namespace": "moderation",
            }
        ),
        sampler=ParentBased(TraceIdRatioBased(settings.otel_traces_sample_ratio)),
    )
    if settings.otel_exporter_otlp_endpoint:
        exporter = OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint)
    else:
        exporter = ConsoleSpanExporter()
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
