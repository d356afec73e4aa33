"""
Unit tests for RetryPolicy / RetryExecutor.
"""

import asyncio

import pytest

from telemetry_relay.errors import PermanentSinkError, RateLimitedError, SinkErrorKind
from telemetry_relay.pipeline import (
    RetryExecutor,
    RetryPolicy,
    SinkResult,
    default_error_classifier,
)

ROWS = [{"event": "a"}, {"event": "b"}]


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def _sleep(delay: float) -> None:
        sleeps.append(delay)

    return _sleep


def test_default_error_classifier():
    assert default_error_classifier(TimeoutError("socket timeout")) is SinkErrorKind.TRANSIENT
    assert default_error_classifier(Exception("Rate limit exceeded")) is SinkErrorKind.RATE_LIMITED
    assert default_error_classifier(Exception("HTTP 429")) is SinkErrorKind.RATE_LIMITED
    assert default_error_classifier(ValueError("whatever")) is SinkErrorKind.TRANSIENT
    assert default_error_classifier(PermanentSinkError("bad row")) is SinkErrorKind.PERMANENT


def test_linear_backoff_and_rate_limit_cooldown():
    rp = RetryPolicy(base_delay_sec=0.5, rate_limit_cooldown_sec=7.0)
    assert [rp.next_delay_sec(i, SinkErrorKind.TRANSIENT) for i in (1, 2, 3)] == [0.5, 1.0, 1.5]
    assert rp.next_delay_sec(1, SinkErrorKind.RATE_LIMITED) == 7.0
    assert rp.next_delay_sec(3, SinkErrorKind.RATE_LIMITED) == 7.0


def test_policy_validation():
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)


@pytest.mark.asyncio
async def test_success_first_attempt(make_sink, fake_sleep, sleeps):
    sink = make_sink()
    ex = RetryExecutor(sink, RetryPolicy(max_attempts=3, base_delay_sec=1), sleep=fake_sleep)

    out = await ex.send(ROWS, "telemetry_events")

    assert out.success and out.attempts == 1
    assert sink.calls == [("telemetry_events", ROWS)]
    assert sleeps == []


@pytest.mark.asyncio
async def test_retries_then_succeeds(make_sink, fake_sleep, sleeps):
    fail = SinkResult.failure(SinkErrorKind.TRANSIENT, "blip")
    sink = make_sink(script=[fail, fail])
    ex = RetryExecutor(sink, RetryPolicy(max_attempts=3, base_delay_sec=1), sleep=fake_sleep)

    out = await ex.send(ROWS, "t")

    assert out.success and out.attempts == 3
    assert len(sink.calls) == 3
    assert sleeps == [1, 2]


@pytest.mark.asyncio
async def test_exhausts_retries(make_sink, fake_sleep, sleeps):
    sink = make_sink(default=SinkResult.failure(SinkErrorKind.TRANSIENT, "down"))
    ex = RetryExecutor(sink, RetryPolicy(max_attempts=3, base_delay_sec=2), sleep=fake_sleep)

    out = await ex.send(ROWS, "t")

    assert not out.success
    assert out.attempts == 3
    assert out.error is SinkErrorKind.TRANSIENT
    assert len(sink.calls) == 3
    assert sleeps == [2, 4]  # no wait after the final attempt


@pytest.mark.asyncio
async def test_rate_limited_uses_cooldown_and_reports(make_sink, fake_sleep, sleeps):
    hits = []
    sink = make_sink(script=[SinkResult.failure(SinkErrorKind.RATE_LIMITED), RateLimitedError()])
    ex = RetryExecutor(
        sink,
        RetryPolicy(max_attempts=3, base_delay_sec=1, rate_limit_cooldown_sec=30),
        on_rate_limited=lambda: hits.append(1),
        sleep=fake_sleep,
    )

    out = await ex.send(ROWS, "t")

    assert out.success and out.attempts == 3
    assert len(hits) == 2
    assert sleeps == [30, 30]


@pytest.mark.asyncio
async def test_permanent_error_not_retried(make_sink, fake_sleep, sleeps):
    sink = make_sink(default=SinkResult.failure(SinkErrorKind.PERMANENT, "schema mismatch"))
    ex = RetryExecutor(sink, RetryPolicy(max_attempts=5), sleep=fake_sleep)

    out = await ex.send(ROWS, "t")

    assert not out.success
    assert out.attempts == 1
    assert out.error is SinkErrorKind.PERMANENT
    assert sleeps == []


@pytest.mark.asyncio
async def test_raised_exceptions_are_classified(make_sink, fake_sleep):
    sink = make_sink(script=[ConnectionError("reset by peer"), RuntimeError("Operation timed out")])
    ex = RetryExecutor(sink, RetryPolicy(max_attempts=3, base_delay_sec=0), sleep=fake_sleep)

    out = await ex.send(ROWS, "t")

    assert out.success
    assert len(sink.calls) == 3


@pytest.mark.asyncio
async def test_operation_timeout_is_transient(fake_sleep):
    class SlowSink:
        calls = 0

        async def insert(self, destination, rows):
            SlowSink.calls += 1
            await asyncio.sleep(1.0)
            return SinkResult.success()

    ex = RetryExecutor(
        SlowSink(),
        RetryPolicy(max_attempts=2, base_delay_sec=0, operation_timeout_sec=0.01),
        sleep=fake_sleep,
    )

    out = await ex.send(ROWS, "t")

    assert not out.success
    assert out.error is SinkErrorKind.TRANSIENT
    assert out.detail == "operation timed out"
    assert SlowSink.calls == 2


@pytest.mark.asyncio
async def test_sink_returning_none_counts_as_success(fake_sleep):
    class QuietSink:
        async def insert(self, destination, rows):
            return None

    out = await RetryExecutor(QuietSink(), sleep=fake_sleep).send(ROWS, "t")
    assert out.success
