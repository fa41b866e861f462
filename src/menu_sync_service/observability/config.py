"""OpenTelemetry and structured logging setup.

Traces and metrics go to an OTLP/HTTP collector (``OTEL_EXPORTER_OTLP_ENDPOINT``).
Exporters are skipped when ``ENVIRONMENT=test`` so spans and instruments are
still recorded in-process without a collector. Log records carry the current
trace and span ids so a sync run can be followed from its logs to its trace.
"""

import logging
import os
from typing import Any

from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.boto3sqs import Boto3SQSInstrumentor
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased
from pythonjsonlogger import jsonlogger

logger = logging.getLogger(__name__)

SERVICE_NAME = "menu-sync-svc"
DEFAULT_OTLP_ENDPOINT = "http://localhost:4318"

# Third-party loggers that are chatty at INFO
NOISY_LOGGERS = ("botocore", "boto3", "urllib3", "httpx", "httpcore")


def service_resource() -> Resource:
    return Resource.create(
        {
            "service.name": os.getenv("OTEL_SERVICE_NAME", SERVICE_NAME),
            "service.version": os.getenv("SERVICE_VERSION", "1.0.0"),
            "deployment.environment": os.getenv("ENVIRONMENT", "development"),
        }
    )


def build_tracer_provider(resource: Resource, export: bool) -> TracerProvider:
    """Create the tracer provider, sampling by ``OTEL_TRACES_SAMPLER_ARG`` (default: all)."""
    ratio = float(os.getenv("OTEL_TRACES_SAMPLER_ARG", "1.0"))
    provider = TracerProvider(resource=resource, sampler=ParentBased(TraceIdRatioBased(ratio)))
    if export:
        endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", DEFAULT_OTLP_ENDPOINT).rstrip("/")
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=f"{endpoint}/v1/traces")))
        logger.info(f"Exporting traces to {endpoint} (sample ratio {ratio})")
    return provider


def build_meter_provider(resource: Resource, export: bool) -> MeterProvider:
    if not export:
        return MeterProvider(resource=resource)

    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", DEFAULT_OTLP_ENDPOINT).rstrip("/")
    reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=f"{endpoint}/v1/metrics"),
        export_interval_millis=int(os.getenv("OTEL_METRIC_EXPORT_INTERVAL", "60000")),
    )
    logger.info(f"Exporting metrics to {endpoint}")
    return MeterProvider(resource=resource, metric_readers=[reader])


def setup_observability(app: Any = None, enable_exporters: bool = True) -> None:
    """Install tracer and meter providers and instrument httpx, SQS and FastAPI.

    Args:
        app: FastAPI application to instrument, if any
        enable_exporters: Push to the OTLP collector; ignored (off) when ENVIRONMENT=test
    """
    export = enable_exporters and os.getenv("ENVIRONMENT", "development") != "test"
    resource = service_resource()

    trace.set_tracer_provider(build_tracer_provider(resource, export))
    metrics.set_meter_provider(build_meter_provider(resource, export))

    # source and platform calls go through httpx, retries through SQS
    HTTPXClientInstrumentor().instrument()
    Boto3SQSInstrumentor().instrument()

    if app is not None:
        FastAPIInstrumentor.instrument_app(app)

    logger.info(f"Observability configured (exporters {'on' if export else 'off'})")


class TraceContextFilter(logging.Filter):
    """Adds ``trace_id`` and ``span_id`` of the active span to every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = trace.get_current_span().get_span_context()
        if context.is_valid:
            record.trace_id = format(context.trace_id, "032x")
            record.span_id = format(context.span_id, "016x")
        return True


def configure_logging(log_level: str = "INFO") -> None:
    """Send JSON log lines to stderr from the root logger.

    ``LOG_LEVEL`` in the environment overrides ``log_level``. Calling this
    again replaces the previous handler.
    """
    level_name = os.getenv("LOG_LEVEL", log_level).upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler()
    handler.addFilter(TraceContextFilter())
    handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"levelname": "level", "asctime": "timestamp"},
            static_fields={"service": os.getenv("OTEL_SERVICE_NAME", SERVICE_NAME)},
        )
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    logger.info(f"JSON logging configured at {level_name}")
