"""
Prometheus metrics for the filedrop API.

This module provides:
- HTTP request counter (method, path, status)
- Message upload outcome counter (result)
- Message query outcome counter (result)
- Request latency histogram (method, path)

Metrics are stored in-memory using prometheus-client.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST


# =============================================================================
# Metric Definitions
# =============================================================================

# HTTP request counter with labels for method, path, and status code
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path", "status"]
)

# result: created, error
message_uploads_total = Counter(
    "message_uploads_total",
    "Total message upload outcomes",
    labelnames=["result"]
)

# result: ok, error
message_queries_total = Counter(
    "message_queries_total",
    "Total message listing outcomes",
    labelnames=["result"]
)

# Request latency histogram in seconds
request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)


# =============================================================================
# Helper Functions
# =============================================================================

def record_http_request(method: str, path: str, status: int, latency_seconds: float) -> None:
    """
    Record an HTTP request in metrics.

    Args:
        method: HTTP method (GET, POST, etc.)
        path: Request path
        status: HTTP status code
        latency_seconds: Request processing time in seconds
    """
    # Uploaded files are served under their own keys; fold them into one label
    normalized_path = path.split("?")[0]
    if normalized_path.startswith("/uploads/"):
        normalized_path = "/uploads"

    http_requests_total.labels(
        method=method,
        path=normalized_path,
        status=str(status)
    ).inc()

    request_latency_seconds.labels(
        method=method,
        path=normalized_path
    ).observe(latency_seconds)


def record_upload_outcome(result: str) -> None:
    """Record a POST /messages outcome ("created" or "error")."""
    message_uploads_total.labels(result=result).inc()


def record_query_outcome(result: str) -> None:
    """Record a GET /messages outcome ("ok" or "error")."""
    message_queries_total.labels(result=result).inc()


def get_metrics() -> bytes:
    """
    Generate Prometheus exposition format metrics.

    Returns:
        Metrics in Prometheus text format as bytes
    """
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
