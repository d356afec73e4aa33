from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional, Protocol, Sequence

from ..errors import SinkErrorKind


class RecordKind(str, Enum):
    """Record families shipped by the pipeline."""

    EVENT = "event"
    SNAPSHOT = "snapshot"
    MUTATION = "mutation"


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class Record:
    """Immutable payload produced by the host.

    Attributes:
        kind: Record family; selects the destination table
        payload: Row shipped to the sink as-is
        content_hash: Dedup key for snapshot records (None = never deduplicated)
    """

    kind: RecordKind
    payload: Mapping[str, Any] = field(default_factory=dict)
    content_hash: Optional[str] = None

    def to_row(self) -> dict[str, Any]:
        return dict(self.payload)


@dataclass(frozen=True)
class SinkResult:
    """Outcome of a single insert call."""

    ok: bool
    error: Optional[SinkErrorKind] = None
    detail: Optional[str] = None

    @classmethod
    def success(cls) -> "SinkResult":
        return cls(ok=True)

    @classmethod
    def failure(cls, error: SinkErrorKind, detail: str | None = None) -> "SinkResult":
        return cls(ok=False, error=error, detail=detail)


class Sink(Protocol):
    """Remote analytics store consumed by the pipeline.

    Implementations either return a failed SinkResult or raise; both are
    handled by the RetryExecutor.
    """

    async def insert(self, destination: str, rows: Sequence[Mapping[str, Any]]) -> SinkResult:
        ...
