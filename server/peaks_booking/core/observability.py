"""Observability setup for OpenTelemetry, metrics, and structured logging."""

import logging

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest
import structlog

from .config import settings

# Prometheus metrics
REGISTRY = CollectorRegistry()

# Request metrics
REQUEST_COUNT = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status_code'],
    registry=REGISTRY
)

REQUEST_DURATION = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    registry=REGISTRY
)

# Capacity metrics
CAPACITY_RESERVED = Counter(
    'capacity_reserved_seats_total',
    'Seats granted by the reservation controller',
    registry=REGISTRY
)

CAPACITY_RELEASED = Counter(
    'capacity_released_seats_total',
    'Seats returned to tour instances',
    registry=REGISTRY
)

CAPACITY_REJECTIONS = Counter(
    'capacity_rejections_total',
    'Reservations refused for lack of room',
    registry=REGISTRY
)

RESERVATION_CONFLICTS = Counter(
    'reservation_write_conflicts_total',
    'Conditional counter writes rejected because another writer got there first',
    registry=REGISTRY
)

RESERVATION_CONTENTION = Counter(
    'reservation_contention_exhausted_total',
    'Reservations that ran out of retry attempts',
    registry=REGISTRY
)

# Booking lifecycle metrics
BOOKINGS_CREATED = Counter(
    'bookings_created_total',
    'Total bookings created',
    registry=REGISTRY
)

BOOKINGS_CANCELLED = Counter(
    'bookings_cancelled_total',
    'Total bookings cancelled',
    ['actor'],
    registry=REGISTRY
)

BOOKINGS_EXPIRED = Counter(
    'bookings_expired_total',
    'Unpaid bookings cancelled by the expiry sweep',
    registry=REGISTRY
)

RECONCILIATION_ALERTS = Counter(
    'capacity_reconciliation_alerts_total',
    'Compensating capacity releases that failed and need manual correction',
    ['kind'],
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


def setup_tracing(app_name: str = "peaks-booking-api"):
    """Setup OpenTelemetry tracing."""
    resource = Resource.create({
        "service.name": app_name,
        "service.version": "1.0.0",
        "environment": settings.environment,
    })

    provider = TracerProvider(resource=resource)
    trace.set_tracer_provider(provider)

    if settings.otlp_endpoint:
        otlp_exporter = OTLPSpanExporter(endpoint=settings.otlp_endpoint)
        provider.add_span_processor(BatchSpanProcessor(otlp_exporter))

    return trace.get_tracer(__name__)


def instrument_fastapi(app):
    """Instrument FastAPI with OpenTelemetry."""
    FastAPIInstrumentor.instrument_app(app)


def instrument_sqlalchemy(engine):
    """Instrument SQLAlchemy with OpenTelemetry."""
    SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)


class MetricsCollector:
    """Collector for booking and capacity metrics."""

    @staticmethod
    def record_reserved(seats: int):
        CAPACITY_RESERVED.inc(seats)

    @staticmethod
    def record_released(seats: int):
        CAPACITY_RELEASED.inc(seats)

    @staticmethod
    def record_capacity_rejection():
        CAPACITY_REJECTIONS.inc()

    @staticmethod
    def record_write_conflict():
        RESERVATION_CONFLICTS.inc()

    @staticmethod
    def record_contention_exhausted():
        RESERVATION_CONTENTION.inc()

    @staticmethod
    def record_booking_created():
        BOOKINGS_CREATED.inc()

    @staticmethod
    def record_booking_cancelled(actor: str):
        """Record a cancellation; actor is collapsed to admin/system/customer to bound label cardinality."""
        label = actor if actor in ("admin", "system") else "customer"
        BOOKINGS_CANCELLED.labels(actor=label).inc()

    @staticmethod
    def record_booking_expired():
        BOOKINGS_EXPIRED.inc()

    @staticmethod
    def record_reconciliation_alert(kind: str):
        RECONCILIATION_ALERTS.labels(kind=kind).inc()

    @staticmethod
    def record_request(method: str, endpoint: str, status_code: int, duration: float):
        REQUEST_COUNT.labels(method=method, endpoint=endpoint, status_code=str(status_code)).inc()
        REQUEST_DURATION.labels(method=method, endpoint=endpoint).observe(duration)


def get_prometheus_metrics():
    """Get Prometheus metrics for the /metrics endpoint."""
    return generate_latest(REGISTRY)


# Global metrics collector instance
metrics_collector = MetricsCollector()
