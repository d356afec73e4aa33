"""
Demo for the telemetry relay pipeline.

Shows:
- Prometheus metrics (exposed on :8000/metrics)
- Retries, circuit breaker and in-memory dead-letter queue
- Environment-based settings (TELEMETRY_*)
- Final flush on shutdown
"""

import asyncio
from typing import Any, Mapping, Sequence

from loguru import logger
from prometheus_client import start_http_server

from telemetry_relay import (
    Lifecycle,
    PipelineSettings,
    SinkErrorKind,
    SinkResult,
    TelemetryEvent,
    TelemetryPipeline,
    WorkflowTelemetry,
)


class FlakySink:
    """Fails every Nth insert to demonstrate retries + circuit breaker + DLQ."""

    def __init__(self, fail_every: int = 7):
        self._n = 0
        self.fail_every = max(2, fail_every)

    async def insert(self, destination: str, rows: Sequence[Mapping[str, Any]]) -> SinkResult:
        self._n += 1
        await asyncio.sleep(0.005)  # simulate I/O
        if self._n % self.fail_every == 0:
            return SinkResult.failure(SinkErrorKind.TRANSIENT, "simulated network error")
        return SinkResult.success()


async def main():
    start_http_server(8000)
    logger.info("📊 Prometheus metrics available at http://localhost:8000/metrics")

    cfg = PipelineSettings(flush_interval_sec=0.5, retry_base_delay_sec=0.05)
    logger.info(f"⚙️  Loaded settings: batch={cfg.max_batch_size}, retries={cfg.max_retries}")

    async with TelemetryPipeline(
        FlakySink(fail_every=5), cfg, lifecycle=Lifecycle(), pipeline_id="demo"
    ) as relay:
        logger.info("📦 Tracking 500 events and 50 workflow snapshots...")
        for i in range(500):
            relay.track_event(TelemetryEvent(user_id=f"u{i % 20}", event="tool_used"))
            if i % 10 == 0:
                relay.track_snapshot(
                    WorkflowTelemetry(user_id="u1", workflow_hash=f"wf-{i % 30}", node_count=3)
                )
            if i % 100 == 0:
                await asyncio.sleep(0.6)
                m = relay.get_metrics()
                logger.info(
                    f"Progress: {i}/500 | tracked={m.events_tracked} failed={m.events_failed} "
                    f"dlq={m.dead_letter_queue_size} circuit={m.circuit_breaker_state.state.value}"
                )

    m = relay.get_metrics()
    logger.info(
        f"📊 Final: tracked={m.events_tracked} dropped={m.events_dropped} "
        f"failed={m.events_failed} batches={m.batches_sent}/{m.batches_failed} "
        f"avg_flush={m.average_flush_time:.1f}ms dlq={m.dead_letter_queue_size}"
    )
    logger.info("✅ Relay demo complete")


if __name__ == "__main__":
    asyncio.run(main())
