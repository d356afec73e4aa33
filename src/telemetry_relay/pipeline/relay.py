from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional

from loguru import logger

from .batcher import TelemetryBatchProcessor
from .buffer import RecordBuffer
from .lifecycle import FlushScheduler, Lifecycle
from .metrics import MetricsSnapshot
from .settings import PipelineSettings, get_settings
from .types import Record, RecordKind, Sink


class TelemetryPipeline:
    """
    Producer buffer + batch processor + scheduler, wired together.

    Usage:

        async with TelemetryPipeline(sink, lifecycle=Lifecycle()) as relay:
            relay.track_event(TelemetryEvent(user_id="u1", event="tool_used").to_record())
        # final flush on exit

    Tracking never blocks. Reaching the buffer's high watermark schedules an
    early flush instead of waiting for the next tick.
    """

    def __init__(
        self,
        sink: Optional[Sink],
        settings: Optional[PipelineSettings] = None,
        *,
        lifecycle: Optional[Lifecycle] = None,
        is_enabled: Optional[Callable[[], bool]] = None,
        pipeline_id: str = "default",
    ):
        cfg = settings or get_settings()
        self.processor = TelemetryBatchProcessor(
            sink, cfg, is_enabled=is_enabled, pipeline_id=pipeline_id
        )
        self.buffer = RecordBuffer(
            cfg.buffer_capacity,
            on_high=self._on_buffer_high,
            drop_callback=self._on_buffer_drop,
        )
        self.scheduler = FlushScheduler(self.processor, self.buffer, lifecycle=lifecycle)
        self._early_flush: Optional[asyncio.Task] = None

    # --------------- context management

    async def __aenter__(self) -> "TelemetryPipeline":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()
        await self.flush()

    # --------------- producers

    def track_event(self, record: Any) -> None:
        self._track(RecordKind.EVENT, record)

    def track_snapshot(self, record: Any) -> None:
        self._track(RecordKind.SNAPSHOT, record)

    def track_mutation(self, record: Any) -> None:
        self._track(RecordKind.MUTATION, record)

    # --------------- lifecycle

    def start(self) -> None:
        self.scheduler.start()

    async def stop(self) -> None:
        await self.scheduler.stop()
        if self._early_flush is not None:
            await asyncio.gather(self._early_flush, return_exceptions=True)

    async def flush(self) -> None:
        """Flush whatever is buffered right now and wait for it."""
        await self.scheduler.flush_pending()

    def get_metrics(self) -> MetricsSnapshot:
        return self.processor.get_metrics()

    def reset_metrics(self) -> None:
        self.processor.reset_metrics()

    # --------------- internals

    def _track(self, kind: RecordKind, record: Any) -> None:
        if not self.processor.is_active():
            return
        try:
            self.buffer.put(kind, record)
        except (TypeError, ValueError) as exc:
            self.processor.metrics.record_dropped(kind)
            logger.warning(f"Rejected {kind.value} record: {exc}")

    def _on_buffer_high(self) -> None:
        if self._early_flush is not None and not self._early_flush.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return  # no loop; the next tick or shutdown flush picks it up
        logger.debug(f"Record buffer at high watermark ({self.buffer.size}); flushing early")
        self._early_flush = loop.create_task(self.flush())

    def _on_buffer_drop(self, record: Record) -> None:
        self.processor.metrics.record_dropped(record.kind)
