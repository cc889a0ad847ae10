"""
Prometheus Metrics for requeue operations
"""

from prometheus_client import Counter, Histogram, start_http_server

# Counters
requeue_outcomes_total = Counter(
    "rts_requeue_outcomes_total",
    "Requeue attempts by outcome",
    ["outcome"],
)

requeue_failures_total = Counter(
    "rts_requeue_failures_total",
    "Requeue attempts that raised, by error type",
    ["error_type"],
)

lookup_timeouts_total = Counter(
    "rts_lookup_timeouts_total",
    "Direct lookups that timed out and fell back to a header scan",
)

messages_scanned_total = Counter(
    "rts_messages_scanned_total",
    "Messages examined during header scans",
)

# Histograms
requeue_duration_seconds = Histogram(
    "rts_requeue_duration_seconds",
    "Time taken by a single-message requeue",
    buckets=(0.001, 0.01, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)


def start_metrics_server(port: int = 9090) -> None:
    """
    Start Prometheus metrics HTTP server

    Args:
        port: HTTP port to expose /metrics endpoint (default 9090)
    """
    start_http_server(port)


def increment_outcome(outcome: str) -> None:
    """Increment requeue outcome counter"""
    requeue_outcomes_total.labels(outcome=outcome).inc()


def increment_failures(error_type: str) -> None:
    """Increment requeue failure counter"""
    requeue_failures_total.labels(error_type=error_type).inc()


def increment_lookup_timeouts() -> None:
    """Increment lookup timeout counter"""
    lookup_timeouts_total.inc()


def increment_scanned(count: int = 1) -> None:
    """Increment scanned messages counter"""
    messages_scanned_total.inc(count)


def observe_requeue_duration(duration_seconds: float) -> None:
    """Observe single-message requeue duration"""
    requeue_duration_seconds.observe(duration_seconds)
