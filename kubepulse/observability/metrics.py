"""Prometheus metric definitions for kubepulse self-instrumentation.

All metrics are module-level singletons registered with the default
prometheus_client registry.  Import them wherever instrumentation is needed.
"""

from prometheus_client import Counter, Gauge, Histogram, Info

# ---------------------------------------------------------------------------
# Histogram bucket definitions
# ---------------------------------------------------------------------------

PASS_DURATION_BUCKETS = (0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0)
QUERY_DURATION_BUCKETS = (0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 15.0)
REQUEST_DURATION_BUCKETS = (0.05, 0.1, 0.5, 1.0, 5.0, 15.0, 30.0, 60.0)

# ---------------------------------------------------------------------------
# HTTP request metrics
# ---------------------------------------------------------------------------

REQUEST_DURATION = Histogram(
    "kubepulse_request_duration_seconds",
    "Time spent handling API requests",
    labelnames=["endpoint"],
    buckets=REQUEST_DURATION_BUCKETS,
)

REQUESTS_TOTAL = Counter(
    "kubepulse_requests_total",
    "Total API requests",
    labelnames=["endpoint", "status"],
)

COMPONENT_HEALTHY = Gauge(
    "kubepulse_component_healthy",
    "Whether a dependency is reachable (1) or not (0)",
    labelnames=["component"],
)

# ---------------------------------------------------------------------------
# Pass-level metrics
# ---------------------------------------------------------------------------

PASSES_TOTAL = Counter(
    "kubepulse_passes_total",
    "Total number of pipeline passes",
    labelnames=["pass_type", "trigger", "status"],
)

PASS_DURATION = Histogram(
    "kubepulse_pass_duration_seconds",
    "Duration of a full pipeline pass in seconds",
    labelnames=["pass_type"],
    buckets=PASS_DURATION_BUCKETS,
)

CLUSTER_ERRORS_TOTAL = Counter(
    "kubepulse_cluster_errors_total",
    "Per-cluster failures isolated during a pass",
    labelnames=["stage"],
)

# ---------------------------------------------------------------------------
# Collection metrics
# ---------------------------------------------------------------------------

METRIC_QUERIES_TOTAL = Counter(
    "kubepulse_metric_queries_total",
    "Prometheus catalog queries executed",
    labelnames=["query", "status"],
)

METRIC_QUERY_DURATION = Histogram(
    "kubepulse_metric_query_duration_seconds",
    "Duration of individual Prometheus catalog queries",
    labelnames=["query"],
    buckets=QUERY_DURATION_BUCKETS,
)

SAMPLES_STORED_TOTAL = Counter(
    "kubepulse_samples_stored_total",
    "Metric samples written to the store",
    labelnames=["metric_type"],
)

# ---------------------------------------------------------------------------
# Analysis metrics
# ---------------------------------------------------------------------------

ORACLE_CALLS_TOTAL = Counter(
    "kubepulse_oracle_calls_total",
    "Oracle invocations by kind and outcome",
    labelnames=["kind", "status"],
)

ALERTS_OPENED_TOTAL = Counter(
    "kubepulse_alerts_opened_total",
    "Alerts created (threshold and pattern)",
    labelnames=["alert_type", "severity"],
)

HEALTH_SCORE = Gauge(
    "kubepulse_cluster_health_score",
    "Most recent overall health score per cluster",
    labelnames=["cluster"],
)

# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------

NOTIFICATIONS_TOTAL = Counter(
    "kubepulse_notifications_total",
    "Outbound notification deliveries",
    labelnames=["channel_kind", "status"],
)

APP_INFO = Info(
    "kubepulse",
    "kubepulse build information",
)
