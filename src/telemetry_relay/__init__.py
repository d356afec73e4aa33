"""
Telemetry Relay

Background delivery of host telemetry (usage events, workflow snapshots,
mutation logs) to a remote analytics store. Sends are batched, retried,
isolated behind a circuit breaker and backed by a bounded dead-letter queue;
none of it ever raises into the host.

Usage:
    from telemetry_relay import TelemetryPipeline, TelemetryEvent
    from telemetry_relay.sinks import PostgrestSink

    sink = PostgrestSink("https://project.supabase.co", api_key="...")
    async with TelemetryPipeline(sink) as relay:
        relay.track_event(TelemetryEvent(user_id="u1", event="tool_used"))
"""

from .errors import (
    TelemetryError,
    SinkError,
    RateLimitedError,
    TransientSinkError,
    PermanentSinkError,
)
from .models import TelemetryEvent, WorkflowTelemetry, WorkflowMutation
from .pipeline import (
    Record,
    RecordKind,
    Sink,
    SinkResult,
    SinkErrorKind,
    TelemetryBatchProcessor,
    TelemetryPipeline,
    FlushScheduler,
    Lifecycle,
    ProcessLifecycle,
    PipelineSettings,
    MetricsSnapshot,
)

__version__ = "1.0.0"
__all__ = [
    "TelemetryError",
    "SinkError",
    "RateLimitedError",
    "TransientSinkError",
    "PermanentSinkError",
    "TelemetryEvent",
    "WorkflowTelemetry",
    "WorkflowMutation",
    "Record",
    "RecordKind",
    "Sink",
    "SinkResult",
    "SinkErrorKind",
    "TelemetryBatchProcessor",
    "TelemetryPipeline",
    "FlushScheduler",
    "Lifecycle",
    "ProcessLifecycle",
    "PipelineSettings",
    "MetricsSnapshot",
]
