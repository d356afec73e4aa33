from __future__ import annotations

from collections import deque
from dataclasses import dataclass

from ..metrics.registry import metrics_registry
from .policy import CircuitBreakerState
from .types import CircuitState, RecordKind

_CIRCUIT_GAUGE = {CircuitState.CLOSED: 0, CircuitState.HALF_OPEN: 1, CircuitState.OPEN: 2}


@dataclass(frozen=True)
class MetricsSnapshot:
    """Point-in-time copy of pipeline counters.

    Flush times are in milliseconds.
    """

    events_tracked: int
    events_dropped: int
    events_failed: int
    batches_sent: int
    batches_failed: int
    rate_limit_hits: int
    average_flush_time: float
    last_flush_time: float
    circuit_breaker_state: CircuitBreakerState
    dead_letter_queue_size: int


class MetricsCollector:
    """Counters plus a bounded flush-time history.

    Every update is mirrored to the Prometheus collectors labelled with
    ``pipeline_id``. Only the in-process counters are cleared by ``reset``.
    """

    def __init__(self, pipeline_id: str = "default", history_size: int = 100):
        if history_size <= 0:
            raise ValueError("history_size must be > 0")
        self._pid = pipeline_id
        self._flush_times: deque[float] = deque(maxlen=history_size)
        self.reset()

    def reset(self) -> None:
        self.events_tracked = 0
        self.events_dropped = 0
        self.events_failed = 0
        self.batches_sent = 0
        self.batches_failed = 0
        self.rate_limit_hits = 0
        self.last_flush_time = 0.0
        self._flush_times.clear()

    # --------------------------- recording

    def record_sent(self, kind: RecordKind, count: int) -> None:
        self.events_tracked += count
        self.batches_sent += 1
        metrics_registry.records_total.labels(self._pid, kind.value, "sent").inc(count)
        metrics_registry.batches_total.labels(self._pid, "sent").inc()

    def record_failed(self, kind: RecordKind, count: int) -> None:
        self.events_failed += count
        self.batches_failed += 1
        metrics_registry.records_total.labels(self._pid, kind.value, "failed").inc(count)
        metrics_registry.batches_total.labels(self._pid, "failed").inc()

    def record_dropped(self, kind: RecordKind, count: int = 1) -> None:
        if count <= 0:
            return
        self.events_dropped += count
        metrics_registry.records_total.labels(self._pid, kind.value, "dropped").inc(count)

    def record_rate_limit(self) -> None:
        self.rate_limit_hits += 1
        metrics_registry.rate_limit_hits_total.labels(self._pid).inc()

    def record_flush_time(self, ms: float) -> None:
        self.last_flush_time = ms
        self._flush_times.append(ms)
        metrics_registry.flush_latency_ms.labels(self._pid).observe(ms)

    def observe_circuit(self, state: CircuitState) -> None:
        metrics_registry.circuit_state.labels(self._pid).set(_CIRCUIT_GAUGE[state])

    def observe_dlq(self, size: int) -> None:
        metrics_registry.dlq_size.labels(self._pid).set(size)

    # --------------------------- reading

    @property
    def average_flush_time(self) -> float:
        if not self._flush_times:
            return 0.0
        return sum(self._flush_times) / len(self._flush_times)

    @property
    def flush_history_len(self) -> int:
        return len(self._flush_times)

    def snapshot(self, circuit: CircuitBreakerState, dlq_size: int) -> MetricsSnapshot:
        return MetricsSnapshot(
            events_tracked=self.events_tracked,
            events_dropped=self.events_dropped,
            events_failed=self.events_failed,
            batches_sent=self.batches_sent,
            batches_failed=self.batches_failed,
            rate_limit_hits=self.rate_limit_hits,
            average_flush_time=self.average_flush_time,
            last_flush_time=self.last_flush_time,
            circuit_breaker_state=circuit,
            dead_letter_queue_size=dlq_size,
        )
