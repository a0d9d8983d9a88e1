"""
Prometheus Metrics & Monitoring Helpers
Exposes request, source fan-out and index metrics via prometheus-client.
"""
from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    generate_latest,
    CONTENT_TYPE_LATEST,
)

# --- Counters ---
REQUEST_COUNT = Counter(
    "medretrieval_request_count_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

API_ERRORS = Counter(
    "medretrieval_api_errors_total",
    "Total API errors by type",
    ["error_type"],
)

SOURCE_FETCHES = Counter(
    "medretrieval_source_fetch_total",
    "Knowledge source fetches by outcome",
    ["source", "outcome"],
)

INDEXED_POINTS = Counter(
    "medretrieval_indexed_points_total",
    "Vector points written by reindex and ingest",
    ["operation"],
)

# --- Histograms ---
REQUEST_LATENCY = Histogram(
    "medretrieval_request_latency_seconds",
    "HTTP request latency",
    ["method", "endpoint"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

SOURCE_LATENCY = Histogram(
    "medretrieval_source_latency_seconds",
    "Per-source fetch latency",
    ["source"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 8.0, 15.0],
)

# --- Gauges ---
VECTOR_STORE_POINTS = Gauge(
    "medretrieval_vector_store_points",
    "Points currently held in the vector store",
)


def get_metrics() -> bytes:
    """Generate Prometheus-format metrics output."""
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST


def record_request(method: str, endpoint: str, status: int, duration: float):
    """Record an HTTP request in metrics."""
    REQUEST_COUNT.labels(method=method, endpoint=endpoint, status=str(status)).inc()
    REQUEST_LATENCY.labels(method=method, endpoint=endpoint).observe(duration)


def record_source_fetch(source: str, outcome: str, duration: float):
    """Record one source fetch; cache hits are counted but not timed."""
    SOURCE_FETCHES.labels(source=source, outcome=outcome).inc()
    if outcome != "cache_hit":
        SOURCE_LATENCY.labels(source=source).observe(duration)


def record_indexed(operation: str, count: int):
    INDEXED_POINTS.labels(operation=operation).inc(count)


def record_error(error_type: str):
    """Record an API error."""
    API_ERRORS.labels(error_type=error_type).inc()


def update_vector_store_size(count: int):
    VECTOR_STORE_POINTS.set(count)
