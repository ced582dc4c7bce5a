"""Observability utilities for tracing, metrics, and logging."""

import inspect
import threading
from contextlib import asynccontextmanager
from typing import Dict, Any, Optional, Tuple
from functools import wraps

import structlog
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.instrumentation.asyncio import AsyncioInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.asyncpg import AsyncPGInstrumentor
from prometheus_client import Counter, Histogram, generate_latest, start_http_server, CONTENT_TYPE_LATEST
from prometheus_client.registry import CollectorRegistry

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)


def setup_tracing(service_name: str, service_version: str = "1.0.0"):
    """Setup OpenTelemetry tracing."""
    try:
        resource = Resource.create({
            "service.name": service_name,
            "service.version": service_version,
        })

        provider = TracerProvider(resource=resource)
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
        trace.set_tracer_provider(provider)

        # Remote fetches go through httpx, records through asyncpg
        AsyncioInstrumentor().instrument()
        HTTPXClientInstrumentor().instrument()
        AsyncPGInstrumentor().instrument()

        logger.info("OpenTelemetry tracing initialized", service_name=service_name)

    except Exception as e:
        logger.error("Failed to setup tracing", error=str(e))


METRIC_DESCRIPTIONS = {
    "legal_status_syncs_total": "Legal status sync runs",
    "legal_status_sync_errors_total": "Legal status sync failures by stage",
    "legal_status_sync_duration_seconds": "Legal status sync duration",
    "legal_status_changes_total": "Detected legal status transitions",
    "legal_status_batch_sync_duration_seconds": "Batch sync duration",
    "legal_status_cache_hits_total": "Current status cache hits",
    "legal_status_cache_misses_total": "Current status cache misses",
    "legal_status_summary_cache_hits_total": "Portfolio summary cache hits",
    "legal_status_summary_cache_misses_total": "Portfolio summary cache misses",
    "legal_status_anomalies_detected_total": "Anomalies detected",
    "legal_status_reconciliations_total": "Reconciliation runs",
    "legal_status_subscriptions_created_total": "Subscriptions created",
    "legal_status_subscriptions_deactivated_total": "Subscriptions deactivated",
    "legal_status_notifications_total": "Status change notifications sent",
}


class PrometheusMetrics:
    """Prometheus-backed metrics port.

    Counters and histograms are registered on first use. The label names of
    a metric are fixed by the first call that records it.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry if registry is not None else CollectorRegistry()
        self._counters: Dict[str, Counter] = {}
        self._histograms: Dict[str, Histogram] = {}
        self._lock = threading.Lock()

    def _describe(self, name: str) -> str:
        return METRIC_DESCRIPTIONS.get(name, name.replace("_", " "))

    def _counter(self, name: str, label_names: Tuple[str, ...]) -> Counter:
        with self._lock:
            if name not in self._counters:
                self._counters[name] = Counter(
                    name, self._describe(name), list(label_names), registry=self.registry
                )
            return self._counters[name]

    def _histogram(self, name: str, label_names: Tuple[str, ...]) -> Histogram:
        with self._lock:
            if name not in self._histograms:
                self._histograms[name] = Histogram(
                    name, self._describe(name), list(label_names), registry=self.registry
                )
            return self._histograms[name]

    def inc_counter(self, name: str, labels: Optional[Dict[str, str]] = None):
        """Increment a counter."""
        labels = labels or {}
        counter = self._counter(name, tuple(sorted(labels)))
        if labels:
            counter.labels(**labels).inc()
        else:
            counter.inc()

    def observe_histogram(self, name: str, value: float, labels: Optional[Dict[str, str]] = None):
        """Record a histogram observation."""
        labels = labels or {}
        histogram = self._histogram(name, tuple(sorted(labels)))
        if labels:
            histogram.labels(**labels).observe(value)
        else:
            histogram.observe(value)


def get_metrics(metrics: PrometheusMetrics):
    """Get Prometheus metrics exposition."""
    return generate_latest(metrics.registry), CONTENT_TYPE_LATEST


def start_metrics_server(metrics: PrometheusMetrics, port: int, addr: str = "0.0.0.0"):
    """Serve the metrics registry over HTTP for Prometheus scraping."""
    try:
        start_http_server(port, addr=addr, registry=metrics.registry)
        logger.info("Metrics endpoint started", port=port)
    except Exception as e:
        logger.error("Failed to start metrics endpoint", port=port, error=str(e))
        raise


# Tracing decorators
def trace_span(span_name: str, attributes: Optional[Dict[str, Any]] = None):
    """Decorator to create a trace span."""
    def decorator(func):
        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            tracer = trace.get_tracer(__name__)
            with tracer.start_as_current_span(span_name, attributes=attributes or {}) as span:
                try:
                    result = await func(*args, **kwargs)
                    span.set_status(Status(StatusCode.OK))
                    return result
                except Exception as e:
                    span.set_status(Status(StatusCode.ERROR, str(e)))
                    span.record_exception(e)
                    raise

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            tracer = trace.get_tracer(__name__)
            with tracer.start_as_current_span(span_name, attributes=attributes or {}) as span:
                try:
                    result = func(*args, **kwargs)
                    span.set_status(Status(StatusCode.OK))
                    return result
                except Exception as e:
                    span.set_status(Status(StatusCode.ERROR, str(e)))
                    span.record_exception(e)
                    raise

        if inspect.iscoroutinefunction(func):
            return async_wrapper
        else:
            return sync_wrapper

    return decorator


@asynccontextmanager
async def trace_operation(operation_name: str, attributes: Optional[Dict[str, Any]] = None):
    """Context manager for tracing operations."""
    tracer = trace.get_tracer(__name__)
    with tracer.start_as_current_span(operation_name, attributes=attributes or {}) as span:
        try:
            yield span
            span.set_status(Status(StatusCode.OK))
        except Exception as e:
            span.set_status(Status(StatusCode.ERROR, str(e)))
            span.record_exception(e)
            raise
