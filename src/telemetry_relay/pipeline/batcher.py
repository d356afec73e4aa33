from __future__ import annotations

import asyncio
from time import monotonic
from typing import Any, Awaitable, Callable, Iterable, Iterator, Mapping, Optional, Sequence

from loguru import logger

from .dlq import DeadLetterEntry, DeadLetterQueue
from .metrics import MetricsCollector, MetricsSnapshot
from .policy import CircuitBreaker, RetryExecutor, RetryPolicy, SendOutcome
from .settings import PipelineSettings, get_settings
from .types import CircuitState, Record, RecordKind, Sink

RecordLike = Any  # Record, a model exposing to_record(), or a plain mapping


def chunked(items: Sequence[Any], size: int) -> Iterator[Sequence[Any]]:
    """Consecutive slices of at most ``size`` items; only the last may be short."""
    for start in range(0, len(items), size):
        yield items[start : start + size]


def dedupe_by_hash(records: Iterable[Record]) -> list[Record]:
    """First occurrence of each content_hash wins; unhashed records always pass."""
    seen: set[str] = set()
    out: list[Record] = []
    for r in records:
        if r.content_hash is not None:
            if r.content_hash in seen:
                continue
            seen.add(r.content_hash)
        out.append(r)
    return out


def as_record(item: RecordLike, kind: RecordKind) -> Record:
    if isinstance(item, Record):
        return item
    if hasattr(item, "to_record"):
        return item.to_record()
    if isinstance(item, Mapping):
        return Record(kind=kind, payload=dict(item), content_hash=item.get("content_hash"))
    raise TypeError(f"Cannot ship {type(item).__name__} as a {kind.value} record")


class TelemetryBatchProcessor:
    """
    Chunks telemetry records and ships them through a pluggable Sink.

    Each flush: circuit check -> per-kind dedupe and chunking -> RetryExecutor
    per chunk -> dead-letter exhausted chunks -> circuit update -> opportunistic
    DLQ drain. Flushes are serialized by one lock; a concurrent caller waits
    for the running flush and then performs its own.

    Usage:

        processor = TelemetryBatchProcessor(sink, PipelineSettings(max_batch_size=100))
        await processor.flush(events=[...], snapshots=[...])
        processor.get_metrics().events_tracked

    ``flush`` never raises; with telemetry disabled or no sink it is a no-op.
    """

    def __init__(
        self,
        sink: Optional[Sink],
        settings: Optional[PipelineSettings] = None,
        *,
        is_enabled: Optional[Callable[[], bool]] = None,
        pipeline_id: str = "default",
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        cfg = settings or get_settings()
        self._sink = sink
        self._cfg = cfg
        self._is_enabled = is_enabled
        self._pipeline_id = pipeline_id

        self._metrics = MetricsCollector(pipeline_id, cfg.flush_history_size)
        self._circuit = CircuitBreaker(
            cfg.failure_threshold,
            cfg.circuit_cooldown_sec,
            on_state_change=self._metrics.observe_circuit,
        )
        self._dlq = DeadLetterQueue(cfg.dlq_capacity, on_evict=self._on_evict)
        self._executor: Optional[RetryExecutor] = None
        if sink is not None:
            policy = RetryPolicy(
                max_attempts=cfg.max_retries,
                base_delay_sec=cfg.retry_base_delay_sec,
                rate_limit_cooldown_sec=cfg.rate_limit_cooldown_sec,
                operation_timeout_sec=cfg.operation_timeout_sec or None,
            )
            self._executor = RetryExecutor(
                sink, policy, on_rate_limited=self._metrics.record_rate_limit, sleep=sleep
            )

        self._lock = asyncio.Lock()
        self._background: set[asyncio.Task] = set()

    # --------------- state

    @property
    def settings(self) -> PipelineSettings:
        return self._cfg

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        return self._circuit

    @property
    def dead_letter_queue(self) -> DeadLetterQueue:
        return self._dlq

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics

    def is_active(self) -> bool:
        """Telemetry enabled and a sink configured."""
        if not self._cfg.enabled or self._executor is None:
            return False
        if self._is_enabled is not None:
            return bool(self._is_enabled())
        return True

    # --------------- public API

    async def flush(
        self,
        events: Optional[Iterable[RecordLike]] = None,
        snapshots: Optional[Iterable[RecordLike]] = None,
        mutations: Optional[Iterable[RecordLike]] = None,
    ) -> None:
        """Ship the given records. Never raises."""
        try:
            if not self.is_active():
                return
            incoming: dict[RecordKind, list[Record]] = {k: [] for k in RecordKind}
            for items, kind in (
                (events, RecordKind.EVENT),
                (snapshots, RecordKind.SNAPSHOT),
                (mutations, RecordKind.MUTATION),
            ):
                for record in self._convert(items, kind):
                    incoming[record.kind].append(record)
            async with self._lock:
                await self._flush_locked(incoming)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Telemetry flush failed")

    def flush_nowait(
        self,
        events: Optional[Iterable[RecordLike]] = None,
        snapshots: Optional[Iterable[RecordLike]] = None,
        mutations: Optional[Iterable[RecordLike]] = None,
    ) -> Optional[asyncio.Task]:
        """Fire-and-forget flush on the running loop. Returns the task, or None without a loop."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("flush_nowait called outside an event loop; records not sent")
            return None
        task = loop.create_task(self.flush(events, snapshots, mutations))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    def get_metrics(self) -> MetricsSnapshot:
        return self._metrics.snapshot(self._circuit.snapshot(), self._dlq.size())

    def reset_metrics(self) -> None:
        self._metrics.reset()
        self._circuit.reset()

    # --------------- flush internals

    def _convert(self, items: Optional[Iterable[RecordLike]], kind: RecordKind) -> list[Record]:
        records: list[Record] = []
        rejected = 0
        for item in items or ():
            try:
                records.append(as_record(item, kind))
            except (TypeError, ValueError) as exc:
                rejected += 1
                logger.warning(f"Rejected {kind.value} record: {exc}")
        self._metrics.record_dropped(kind, rejected)
        return records

    async def _flush_locked(self, incoming: dict[RecordKind, list[Record]]) -> None:
        total = sum(len(recs) for recs in incoming.values())
        if total == 0 and self._dlq.size() == 0:
            return

        if not self._circuit.can_attempt():
            for kind, recs in incoming.items():
                self._metrics.record_dropped(kind, len(recs))
            if total:
                logger.warning(f"Circuit open: dropped {total} records without sending")
            return

        trial = self._circuit.state is CircuitState.HALF_OPEN
        try:
            await self._send_all(incoming)
        except asyncio.CancelledError:
            if trial and self._circuit.state is CircuitState.HALF_OPEN:
                # trial abandoned; count it as failed so the breaker re-opens
                self._circuit.record_failure()
            raise

    async def _send_all(self, incoming: dict[RecordKind, list[Record]]) -> None:
        t0 = monotonic()
        trial = self._circuit.state is CircuitState.HALF_OPEN
        sent_any = False
        failed_any = False

        for kind, recs in incoming.items():
            if kind is RecordKind.SNAPSHOT:
                recs = dedupe_by_hash(recs)
            for chunk in chunked(recs, self._cfg.max_batch_size):
                if trial and failed_any:
                    # half-open trial already failed; do not keep hammering the sink
                    self._dead_letter(kind, chunk)
                    continue
                outcome = await self._send(kind, chunk)
                if outcome.success:
                    sent_any = True
                    self._metrics.record_sent(kind, len(chunk))
                else:
                    failed_any = True
                    self._dead_letter(kind, chunk)

        if failed_any:
            self._circuit.record_failure()
        elif sent_any:
            self._circuit.record_success()

        if not failed_any:
            await self._drain_dead_letters()

        self._metrics.observe_dlq(self._dlq.size())
        self._metrics.record_flush_time((monotonic() - t0) * 1000.0)

    async def _send(self, kind: RecordKind, records: Sequence[Record]) -> SendOutcome:
        if self._executor is None:
            raise RuntimeError("no sink configured")
        destination = self._cfg.destination_for(kind)
        logger.debug(f"Sending batch: destination={destination} rows={len(records)}")
        return await self._executor.send([r.to_row() for r in records], destination)

    def _dead_letter(self, kind: RecordKind, records: Sequence[Record]) -> None:
        self._metrics.record_failed(kind, len(records))
        self._dlq.enqueue_records(records)
        logger.warning(
            f"Batch moved to dead-letter queue: kind={kind.value} rows={len(records)} "
            f"dlq_size={self._dlq.size()}"
        )

    async def _drain_dead_letters(self) -> None:
        entries = self._dlq.drain_if_healthy(self._circuit)
        if not entries:
            return
        logger.debug(f"Draining dead-letter queue: {len(entries)} entries")

        by_kind: dict[RecordKind, list[DeadLetterEntry]] = {}
        for e in entries:
            by_kind.setdefault(e.kind, []).append(e)

        delivered: list[DeadLetterEntry] = []
        failed = False
        for kind, group in by_kind.items():
            for chunk in chunked(group, self._cfg.max_batch_size):
                outcome = await self._send(kind, [e.payload for e in chunk])
                if not outcome.success:
                    failed = True
                    break
                delivered.extend(chunk)
                self._metrics.record_sent(kind, len(chunk))
            if failed:
                break

        self._dlq.ack(delivered)
        if failed:
            self._circuit.record_failure()
            logger.debug(f"Dead-letter drain stopped early; {self._dlq.size()} entries remain")
        elif delivered:
            self._circuit.record_success()

    def _on_evict(self, entry: DeadLetterEntry) -> None:
        self._metrics.record_dropped(entry.kind)
