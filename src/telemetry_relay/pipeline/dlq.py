"""
In-memory dead-letter queue for records that exhausted their retries.

Bounded: once full, the oldest entries are evicted first and reported through
``on_evict`` so the caller can account for them. Contents do not survive a
process restart.
"""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

from loguru import logger

from .types import CircuitState, Record, RecordKind
from .policy import CircuitBreaker


@dataclass(frozen=True, eq=False)
class DeadLetterEntry:
    """A single undelivered record.

    Compared by identity so that acking removes exactly the entries that were
    handed out, even when two payloads are equal.
    """

    payload: Record
    enqueued_at: float = field(default_factory=time.time)

    @property
    def kind(self) -> RecordKind:
        return self.payload.kind


class DeadLetterQueue:
    """Bounded FIFO of DeadLetterEntry with drop-oldest eviction."""

    def __init__(
        self,
        capacity: int = 100,
        *,
        on_evict: Optional[Callable[[DeadLetterEntry], None]] = None,
    ):
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        self._capacity = capacity
        self._entries: deque[DeadLetterEntry] = deque()
        self._on_evict = on_evict

    @property
    def capacity(self) -> int:
        return self._capacity

    def size(self) -> int:
        return len(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def enqueue(self, entries: Iterable[DeadLetterEntry]) -> int:
        """Append entries, evicting the oldest beyond capacity. Returns the eviction count."""
        self._entries.extend(entries)
        evicted = 0
        while len(self._entries) > self._capacity:
            oldest = self._entries.popleft()
            evicted += 1
            if self._on_evict:
                self._on_evict(oldest)
        if evicted:
            logger.warning(
                f"Dead-letter queue full: evicted {evicted} oldest entries "
                f"(capacity={self._capacity})"
            )
        return evicted

    def enqueue_records(self, records: Iterable[Record]) -> int:
        now = time.time()
        return self.enqueue(DeadLetterEntry(payload=r, enqueued_at=now) for r in records)

    def drain_if_healthy(self, circuit: CircuitBreaker) -> list[DeadLetterEntry]:
        """Hand back resend candidates unless the circuit is open.

        Entries stay queued until ``ack`` confirms they were delivered.
        """
        if circuit.state is CircuitState.OPEN or not self._entries:
            return []
        return list(self._entries)

    def ack(self, entries: Iterable[DeadLetterEntry]) -> int:
        """Remove delivered entries. Returns how many were removed."""
        done = {id(e) for e in entries}
        if not done:
            return 0
        before = len(self._entries)
        self._entries = deque(e for e in self._entries if id(e) not in done)
        return before - len(self._entries)

    def clear(self) -> None:
        self._entries.clear()
