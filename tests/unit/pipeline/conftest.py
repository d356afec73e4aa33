"""
Fake sinks shared by the pipeline unit tests.
"""

import asyncio
from typing import Any, Mapping, Sequence

import pytest

from telemetry_relay.pipeline import SinkResult, SinkErrorKind


class RecordingSink:
    """Sink that records every insert and replays scripted results.

    Scripted entries may be SinkResults or exceptions to raise; once the
    script runs out, ``default`` is returned.
    """

    def __init__(self, script: Sequence[Any] = (), default: SinkResult | None = None):
        self.calls: list[tuple[str, list[Mapping[str, Any]]]] = []
        self._script = list(script)
        self.default = default or SinkResult.success()
        self.in_flight = 0
        self.max_in_flight = 0

    async def insert(self, destination: str, rows: Sequence[Mapping[str, Any]]) -> SinkResult:
        self.calls.append((destination, list(rows)))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)  # simulate I/O
            if self._script:
                nxt = self._script.pop(0)
                if isinstance(nxt, BaseException):
                    raise nxt
                return nxt
            return self.default
        finally:
            self.in_flight -= 1

    def calls_to(self, destination: str) -> list[list[Mapping[str, Any]]]:
        return [rows for dest, rows in self.calls if dest == destination]


FAIL = SinkResult.failure(SinkErrorKind.TRANSIENT, "network error")


@pytest.fixture
def ok_sink():
    return RecordingSink()


@pytest.fixture
def failing_sink():
    return RecordingSink(default=FAIL)


@pytest.fixture
def make_sink():
    """Factory for scripted RecordingSinks."""
    return RecordingSink
