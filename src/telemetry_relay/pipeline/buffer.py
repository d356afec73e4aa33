from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Optional

from loguru import logger

from .batcher import RecordLike, as_record
from .types import Record, RecordKind

HighWatermarkCallback = Callable[[], None]


@dataclass
class PendingRecords:
    """Everything drained from a RecordBuffer in one go."""

    events: list[Record] = field(default_factory=list)
    snapshots: list[Record] = field(default_factory=list)
    mutations: list[Record] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.events) + len(self.snapshots) + len(self.mutations)


class RecordBuffer:
    """Host-side producer buffer. Adding never blocks and never does I/O.

    Bounded by ``capacity`` records in total; on overflow the oldest record of
    the incoming kind (or of any kind, if that one is empty) is dropped and
    passed to ``drop_callback``. ``on_high`` fires once when the size reaches
    ``high_watermark`` and re-arms after the next drain.
    """

    def __init__(
        self,
        capacity: int = 1000,
        high_watermark: int | None = None,
        *,
        on_high: Optional[HighWatermarkCallback] = None,
        drop_callback: Optional[Callable[[Record], None]] = None,
    ):
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        self._capacity = capacity
        self._high_wm = (
            high_watermark if high_watermark is not None else max(1, int(0.8 * capacity))
        )
        self._on_high = on_high
        self._drop_cb = drop_callback
        self._high_fired = False  # avoid duplicate signals

        self._queues: dict[RecordKind, deque[Record]] = {k: deque() for k in RecordKind}
        self._size = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def size(self) -> int:
        return self._size

    def add_event(self, record: RecordLike) -> None:
        self.put(RecordKind.EVENT, record)

    def add_snapshot(self, record: RecordLike) -> None:
        self.put(RecordKind.SNAPSHOT, record)

    def add_mutation(self, record: RecordLike) -> None:
        self.put(RecordKind.MUTATION, record)

    def add(self, record: RecordLike) -> None:
        """File a Record or model under its own kind; bare mappings count as events."""
        self.put(getattr(record, "kind", RecordKind.EVENT), record)

    def drain(self) -> PendingRecords:
        """Take everything currently buffered."""
        pending = PendingRecords(
            events=list(self._queues[RecordKind.EVENT]),
            snapshots=list(self._queues[RecordKind.SNAPSHOT]),
            mutations=list(self._queues[RecordKind.MUTATION]),
        )
        for q in self._queues.values():
            q.clear()
        self._size = 0
        self._high_fired = False
        return pending

    def put(self, kind: RecordKind, item: RecordLike) -> None:
        """Convert ``item`` and file it under its own kind (``kind`` is the hint for mappings)."""
        record = as_record(item, kind)
        if record.kind is not kind:
            logger.debug(f"Filing {record.kind.value} record offered as {kind.value}")
        if self._size >= self._capacity:
            self._drop_oldest(record.kind)
        self._queues[record.kind].append(record)
        self._size += 1
        self._maybe_signal_high()

    def _drop_oldest(self, kind: RecordKind) -> None:
        q = self._queues[kind]
        if not q:
            q = max(self._queues.values(), key=len)
        oldest = q.popleft()
        self._size -= 1
        logger.debug(f"Record buffer full ({self._capacity}); dropped oldest {oldest.kind.value}")
        if self._drop_cb:
            self._drop_cb(oldest)

    def _maybe_signal_high(self) -> None:
        if not self._high_fired and self._size >= self._high_wm:
            self._high_fired = True
            if self._on_high:
                self._on_high()
