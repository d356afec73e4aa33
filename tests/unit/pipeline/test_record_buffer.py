"""
Unit tests for RecordBuffer watermarks and overflow.
"""

import pytest

from telemetry_relay.models import TelemetryEvent, WorkflowTelemetry
from telemetry_relay.pipeline import Record, RecordBuffer, RecordKind


def ev(i: int) -> Record:
    return Record(kind=RecordKind.EVENT, payload={"i": i})


def test_add_and_drain_by_kind():
    buf = RecordBuffer(capacity=10)
    buf.add_event(ev(1))
    buf.add_snapshot(Record(kind=RecordKind.SNAPSHOT, payload={}, content_hash="h"))
    buf.add_mutation(Record(kind=RecordKind.MUTATION, payload={}))
    buf.add(ev(2))
    assert buf.size == 4

    pending = buf.drain()

    assert [r.payload["i"] for r in pending.events] == [1, 2]
    assert len(pending.snapshots) == 1
    assert len(pending.mutations) == 1
    assert len(pending) == 4
    assert buf.size == 0
    assert len(buf.drain()) == 0


def test_accepts_models():
    buf = RecordBuffer(capacity=10)
    buf.add_event(TelemetryEvent(user_id="u1", event="tool_used"))
    rec = buf.drain().events[0]
    assert isinstance(rec, Record)
    assert rec.payload["event"] == "tool_used"


def test_drop_oldest_strategy():
    dropped = []
    buf = RecordBuffer(capacity=3, drop_callback=dropped.append)

    for i in range(5):
        buf.add_event(ev(i))

    assert buf.size == 3
    assert [r.payload["i"] for r in dropped] == [0, 1]
    assert [r.payload["i"] for r in buf.drain().events] == [2, 3, 4]


def test_overflow_from_other_kind():
    dropped = []
    buf = RecordBuffer(capacity=2, drop_callback=dropped.append)
    buf.add_event(ev(0))
    buf.add_event(ev(1))
    buf.add_mutation(Record(kind=RecordKind.MUTATION, payload={"m": 1}))

    assert [r.payload["i"] for r in dropped] == [0]
    pending = buf.drain()
    assert len(pending.events) == 1
    assert len(pending.mutations) == 1


def test_high_watermark_fires_once_and_rearms():
    high_called = 0

    def on_high():
        nonlocal high_called
        high_called += 1

    buf = RecordBuffer(capacity=10, high_watermark=3, on_high=on_high)
    for i in range(5):
        buf.add_event(ev(i))
    assert high_called == 1

    buf.drain()
    for i in range(3):
        buf.add_event(ev(i))
    assert high_called == 2


def test_invalid_capacity():
    with pytest.raises(ValueError):
        RecordBuffer(capacity=0)


def test_models_filed_under_their_own_kind():
    buf = RecordBuffer(capacity=10)
    buf.add_event(WorkflowTelemetry(user_id="u1", workflow_hash="h1"))

    pending = buf.drain()

    assert pending.events == []
    assert pending.snapshots[0].content_hash == "h1"


def test_unconvertible_item_raises():
    buf = RecordBuffer(capacity=10)
    with pytest.raises(TypeError):
        buf.add_event(object())
    assert buf.size == 0
