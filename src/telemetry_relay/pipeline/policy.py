from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Optional, Sequence

from loguru import logger

from ..errors import SinkError, SinkErrorKind
from .types import CircuitState, Sink, SinkResult

_RATE_LIMIT_HINTS = ("rate limit", "ratelimit", "too many requests", "429")


def default_error_classifier(exc: BaseException) -> SinkErrorKind:
    """Heuristic classification for exceptions raised by a sink.

    Explicit SinkErrors keep their kind. Rate-limit wording maps to
    RATE_LIMITED; anything else is retried as TRANSIENT.
    """
    if isinstance(exc, SinkError):
        return exc.kind
    msg = str(exc).lower()
    if any(h in msg for h in _RATE_LIMIT_HINTS):
        return SinkErrorKind.RATE_LIMITED
    return SinkErrorKind.TRANSIENT


@dataclass
class RetryPolicy:
    """Bounded retry schedule for one batch.

    Ordinary failures wait ``base_delay_sec * attempt``. Rate-limited
    attempts wait a fixed ``rate_limit_cooldown_sec`` instead.
    """

    max_attempts: int = 3
    base_delay_sec: float = 1.0
    rate_limit_cooldown_sec: float = 5.0
    operation_timeout_sec: Optional[float] = 5.0
    classify_error: Callable[[BaseException], SinkErrorKind] = default_error_classifier

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    def next_delay_sec(self, attempt: int, error: SinkErrorKind) -> float:
        if error is SinkErrorKind.RATE_LIMITED:
            return self.rate_limit_cooldown_sec
        return self.base_delay_sec * attempt

    def should_retry(self, attempt: int, error: SinkErrorKind) -> bool:
        if error is SinkErrorKind.PERMANENT:
            return False
        return attempt < self.max_attempts


@dataclass(frozen=True)
class SendOutcome:
    """Result of RetryExecutor.send for one chunk."""

    success: bool
    attempts: int
    error: Optional[SinkErrorKind] = None
    detail: Optional[str] = None


class RetryExecutor:
    """Sends one chunk with bounded retries and backoff.

    Pure with respect to pipeline state: it neither touches the circuit
    breaker nor the dead-letter queue. The caller decides what an outcome
    means.
    """

    def __init__(
        self,
        sink: Sink,
        policy: RetryPolicy | None = None,
        *,
        on_rate_limited: Optional[Callable[[], None]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._sink = sink
        self._policy = policy or RetryPolicy()
        self._on_rate_limited = on_rate_limited
        self._sleep = sleep

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    async def send(self, chunk: Sequence[Mapping[str, Any]], destination: str) -> SendOutcome:
        attempt = 0
        while True:
            attempt += 1
            result = await self._attempt(chunk, destination)
            if result.ok:
                if attempt > 1:
                    logger.debug(f"Insert into {destination} succeeded on attempt {attempt}")
                return SendOutcome(success=True, attempts=attempt)

            error = result.error or SinkErrorKind.TRANSIENT
            if error is SinkErrorKind.RATE_LIMITED:
                logger.warning(f"Rate limited by sink: destination={destination} attempt={attempt}")
                if self._on_rate_limited:
                    self._on_rate_limited()

            if not self._policy.should_retry(attempt, error):
                logger.debug(
                    f"Giving up on {destination}: rows={len(chunk)} attempts={attempt} "
                    f"error={error.value} detail={result.detail}"
                )
                return SendOutcome(
                    success=False, attempts=attempt, error=error, detail=result.detail
                )

            delay = self._policy.next_delay_sec(attempt, error)
            logger.debug(
                f"Retrying {destination} in {delay:.3f}s "
                f"(attempt {attempt}/{self._policy.max_attempts}, error={error.value})"
            )
            await self._sleep(delay)

    async def _attempt(self, chunk: Sequence[Mapping[str, Any]], destination: str) -> SinkResult:
        try:
            call = self._sink.insert(destination, chunk)
            if self._policy.operation_timeout_sec:
                result = await asyncio.wait_for(call, timeout=self._policy.operation_timeout_sec)
            else:
                result = await call
        except asyncio.TimeoutError:
            return SinkResult.failure(SinkErrorKind.TRANSIENT, "operation timed out")
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            return SinkResult.failure(
                self._policy.classify_error(exc), f"{type(exc).__name__}: {exc}"
            )
        if result is None:
            # sinks that return nothing and do not raise are treated as successful
            return SinkResult.success()
        return result


@dataclass(frozen=True)
class CircuitBreakerState:
    """Point-in-time view of a CircuitBreaker."""

    state: CircuitState = CircuitState.CLOSED
    consecutive_failures: int = 0
    opened_at: Optional[float] = None

    @property
    def failure_count(self) -> int:
        return self.consecutive_failures


class CircuitBreaker:
    """Closed -> Open -> HalfOpen gate around sink sends.

    Opens after ``failure_threshold`` consecutive failures and allows a single
    trial once ``cooldown_sec`` has elapsed since opening. A trial whose
    outcome is never reported (e.g. a cancelled flush) expires after another
    ``cooldown_sec``, and a fresh trial is allowed.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        cooldown_sec: float = 60.0,
        *,
        clock: Callable[[], float] = time.monotonic,
        on_state_change: Optional[Callable[[CircuitState], None]] = None,
    ):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        self._threshold = failure_threshold
        self._cooldown = cooldown_sec
        self._clock = clock
        self._on_state_change = on_state_change
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._opened_at: Optional[float] = None
        self._trial_started_at: Optional[float] = None

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def consecutive_failures(self) -> int:
        return self._failures

    def snapshot(self) -> CircuitBreakerState:
        return CircuitBreakerState(
            state=self._state, consecutive_failures=self._failures, opened_at=self._opened_at
        )

    def cooldown_elapsed(self) -> bool:
        if self._opened_at is None:
            return True
        return self._clock() - self._opened_at >= self._cooldown

    def _trial_expired(self) -> bool:
        if self._trial_started_at is None:
            return True
        return self._clock() - self._trial_started_at >= self._cooldown

    def can_attempt(self) -> bool:
        """True when a send may go out. Flips Open -> HalfOpen once the cool-down is over."""
        if self._state is CircuitState.CLOSED:
            return True
        if self._state is CircuitState.OPEN and self.cooldown_elapsed():
            self._set_state(CircuitState.HALF_OPEN)
            self._trial_started_at = self._clock()
            logger.info("Circuit half-open: allowing a trial flush")
            return True
        if self._state is CircuitState.HALF_OPEN and self._trial_expired():
            self._trial_started_at = self._clock()
            logger.warning("Half-open trial never reported an outcome; allowing a new trial")
            return True
        return False

    def record_success(self) -> None:
        self._failures = 0
        if self._state is not CircuitState.CLOSED:
            self._opened_at = None
            self._set_state(CircuitState.CLOSED)
            logger.info("Circuit closed: sink recovered")

    def record_failure(self) -> None:
        self._failures += 1
        if self._state is CircuitState.HALF_OPEN:
            self._trip()
        elif self._state is CircuitState.CLOSED and self._failures >= self._threshold:
            self._trip()

    def reset(self) -> None:
        self._failures = 0
        self._opened_at = None
        self._trial_started_at = None
        self._set_state(CircuitState.CLOSED)

    def _trip(self) -> None:
        self._opened_at = self._clock()
        self._set_state(CircuitState.OPEN)
        logger.warning(
            f"Circuit opened after {self._failures} consecutive failures; "
            f"pausing sends for {self._cooldown:.1f}s"
        )

    def _set_state(self, state: CircuitState) -> None:
        if state is not CircuitState.HALF_OPEN:
            self._trial_started_at = None
        self._state = state
        if self._on_state_change:
            self._on_state_change(state)
