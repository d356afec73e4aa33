"""
Prometheus collectors for the telemetry pipeline.
Registered in the global REGISTRY on import; expose them with
``prometheus_client.start_http_server`` or the host's own /metrics route.
"""

from prometheus_client import Counter, Gauge, Histogram


RECORDS_TOTAL = Counter(
    "telemetry_records_total",
    "Telemetry records by delivery outcome",
    ["pipeline", "kind", "outcome"],
)

BATCHES_TOTAL = Counter(
    "telemetry_batches_total",
    "Telemetry batches by delivery outcome",
    ["pipeline", "outcome"],
)

RATE_LIMIT_HITS_TOTAL = Counter(
    "telemetry_rate_limit_hits_total",
    "Sink responses classified as rate limited",
    ["pipeline"],
)

FLUSH_LATENCY_MS = Histogram(
    "telemetry_flush_latency_ms",
    "Flush duration in milliseconds",
    ["pipeline"],
    buckets=[1, 2.5, 5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000],
)

CIRCUIT_STATE = Gauge(
    "telemetry_circuit_state",
    "Circuit breaker state (0=closed, 1=half_open, 2=open)",
    ["pipeline"],
)

DLQ_SIZE = Gauge(
    "telemetry_dlq_size",
    "Records waiting in the dead-letter queue",
    ["pipeline"],
)


class MetricsRegistry:
    """Centralized access to the pipeline's Prometheus collectors."""

    records_total = RECORDS_TOTAL
    batches_total = BATCHES_TOTAL
    rate_limit_hits_total = RATE_LIMIT_HITS_TOTAL
    flush_latency_ms = FLUSH_LATENCY_MS
    circuit_state = CIRCUIT_STATE
    dlq_size = DLQ_SIZE


# Singleton instance
metrics_registry = MetricsRegistry()
