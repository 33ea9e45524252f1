"""Observability setup for OpenTelemetry, metrics, and structured logging."""

import logging

from opentelemetry import trace, metrics
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from prometheus_client import Counter, Gauge, generate_latest, CollectorRegistry
import structlog

from .config import settings

SERVICE_NAME = "fleetdesk-api"

# Prometheus metrics
REGISTRY = CollectorRegistry()

BOOKINGS_CREATED = Counter(
    'fleet_bookings_created_total',
    'Total bookings created',
    ['initial_status'],
    registry=REGISTRY
)

BOOKING_CONFLICTS = Counter(
    'fleet_booking_conflicts_total',
    'Booking attempts rejected because the car or driver was taken',
    registry=REGISTRY
)

BOOKING_TRANSITIONS = Counter(
    'fleet_booking_transitions_total',
    'Booking status transitions',
    ['to_status'],
    registry=REGISTRY
)

LEDGER_ENTRIES_POSTED = Counter(
    'fleet_ledger_entries_posted_total',
    'Ledger entries posted by the reconciler',
    ['category'],
    registry=REGISTRY
)

LEDGER_DUPLICATES_SUPPRESSED = Counter(
    'fleet_ledger_duplicates_suppressed_total',
    'Ledger posts skipped because the reference already existed',
    registry=REGISTRY
)

MARKETPLACE_REQUESTS_SENT = Counter(
    'fleet_marketplace_requests_sent_total',
    'Marketplace requests sent',
    registry=REGISTRY
)

MARKETPLACE_REQUESTS_RESOLVED = Counter(
    'fleet_marketplace_requests_resolved_total',
    'Marketplace requests resolved by the supplier',
    ['decision'],
    registry=REGISTRY
)

MARKETPLACE_REQUESTS_EXPIRED = Counter(
    'fleet_marketplace_requests_expired_total',
    'Marketplace requests expired',
    registry=REGISTRY
)

UNSYNCED_BOOKINGS = Gauge(
    'fleet_ledger_unsynced_bookings',
    'Bookings seen by the last ledger sweep with unposted entries',
    registry=REGISTRY
)


def setup_structured_logging():
    """Configure structured logging with structlog."""

    def add_trace_context(logger, method_name, event_dict):
        """Add trace context to log events."""
        span = trace.get_current_span()
        if span and span.is_recording():
            ctx = span.get_span_context()
            event_dict['trace_id'] = format(ctx.trace_id, '032x')
            event_dict['span_id'] = format(ctx.span_id, '016x')
        return event_dict

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_trace_context,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.ConsoleRenderer() if settings.debug else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, settings.log_level)
        ),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(level=getattr(logging, settings.log_level))


def _resource() -> Resource:
    return Resource.create({
        "service.name": SERVICE_NAME,
        "service.version": "1.0.0",
        "environment": settings.environment,
    })


def setup_tracing():
    """Setup OpenTelemetry tracing."""
    trace.set_tracer_provider(TracerProvider(resource=_resource()))

    if settings.otlp_endpoint:
        otlp_exporter = OTLPSpanExporter(endpoint=settings.otlp_endpoint)
        trace.get_tracer_provider().add_span_processor(BatchSpanProcessor(otlp_exporter))

    return trace.get_tracer(__name__)


def setup_metrics():
    """Setup OpenTelemetry metrics."""
    if settings.otlp_endpoint:
        otlp_exporter = OTLPMetricExporter(endpoint=settings.otlp_endpoint)
        reader = PeriodicExportingMetricReader(exporter=otlp_exporter, export_interval_millis=60000)
        metrics.set_meter_provider(MeterProvider(resource=_resource(), metric_readers=[reader]))

    return metrics.get_meter(__name__)


def instrument_fastapi(app):
    """Instrument FastAPI with OpenTelemetry."""
    FastAPIInstrumentor.instrument_app(app)


def instrument_sqlalchemy():
    """Instrument SQLAlchemy with OpenTelemetry."""
    SQLAlchemyInstrumentor().instrument()


class MetricsCollector:
    """Collector for business metrics."""

    @staticmethod
    def record_booking_created(initial_status: str):
        BOOKINGS_CREATED.labels(initial_status=initial_status).inc()

    @staticmethod
    def record_booking_conflict():
        BOOKING_CONFLICTS.inc()

    @staticmethod
    def record_transition(to_status: str):
        BOOKING_TRANSITIONS.labels(to_status=to_status).inc()

    @staticmethod
    def record_ledger_posted(category: str):
        LEDGER_ENTRIES_POSTED.labels(category=category).inc()

    @staticmethod
    def record_ledger_duplicate():
        LEDGER_DUPLICATES_SUPPRESSED.inc()

    @staticmethod
    def record_marketplace_sent():
        MARKETPLACE_REQUESTS_SENT.inc()

    @staticmethod
    def record_marketplace_resolved(decision: str):
        MARKETPLACE_REQUESTS_RESOLVED.labels(decision=decision).inc()

    @staticmethod
    def record_marketplace_expired(count: int = 1):
        if count > 0:
            MARKETPLACE_REQUESTS_EXPIRED.inc(count)

    @staticmethod
    def set_unsynced_bookings(count: int):
        """Set the number of bookings the last sweep found unsynced."""
        UNSYNCED_BOOKINGS.set(count)


def get_prometheus_metrics():
    """Get Prometheus metrics for the /metrics endpoint."""
    return generate_latest(REGISTRY)


# Global metrics collector instance
metrics_collector = MetricsCollector()
