"""Telemetry delivery pipeline

Host producers -> buffer -> batcher -> sink, with:
- RecordBuffer (non-blocking, drop-oldest)
- RetryExecutor with linear backoff and rate-limit cool-down
- CircuitBreaker for an unhealthy sink
- In-memory Dead Letter Queue, drained on healthy flushes
- FlushScheduler driven by a timer and lifecycle hooks
- Prometheus metrics
- Environment-based settings
"""

from .types import Record, RecordKind, Sink, SinkResult, CircuitState
from ..errors import SinkErrorKind
from .policy import (
    RetryPolicy,
    RetryExecutor,
    SendOutcome,
    default_error_classifier,
    CircuitBreaker,
    CircuitBreakerState,
)
from .dlq import DeadLetterQueue, DeadLetterEntry
from .metrics import MetricsCollector, MetricsSnapshot
from .buffer import RecordBuffer, PendingRecords
from .batcher import TelemetryBatchProcessor
from .lifecycle import Lifecycle, ProcessLifecycle, FlushScheduler
from .relay import TelemetryPipeline
from .settings import PipelineSettings, get_settings

__all__ = [
    # types
    "Record",
    "RecordKind",
    "Sink",
    "SinkResult",
    "SinkErrorKind",
    "CircuitState",
    "SendOutcome",
    "CircuitBreakerState",
    "DeadLetterEntry",
    "MetricsSnapshot",
    "PendingRecords",
    # policies
    "RetryPolicy",
    "RetryExecutor",
    "default_error_classifier",
    "CircuitBreaker",
    # runtime
    "DeadLetterQueue",
    "MetricsCollector",
    "RecordBuffer",
    "TelemetryBatchProcessor",
    "Lifecycle",
    "ProcessLifecycle",
    "FlushScheduler",
    "TelemetryPipeline",
    "PipelineSettings",
    "get_settings",
]
