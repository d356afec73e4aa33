"""
Custom exceptions for Telemetry Relay.

Sinks may raise these to tell the retry loop how a failure should be handled.
Anything else raised by a sink is classified by the retry policy.
"""

from __future__ import annotations

from enum import Enum


class SinkErrorKind(str, Enum):
    """How a failed insert should be treated by the retry loop."""

    RATE_LIMITED = "rate_limited"  # retried after a fixed cool-down
    TRANSIENT = "transient"  # retried with backoff
    PERMANENT = "permanent"  # not retried


class TelemetryError(Exception):
    """Base error for telemetry relay."""

    pass


class SinkError(TelemetryError):
    """Insert failure carrying its retry classification."""

    kind: SinkErrorKind = SinkErrorKind.TRANSIENT

    def __init__(self, message: str = "", *, kind: SinkErrorKind | None = None):
        super().__init__(message)
        if kind is not None:
            self.kind = kind


class RateLimitedError(SinkError):
    """Remote store asked us to slow down (HTTP 429 and friends)."""

    kind = SinkErrorKind.RATE_LIMITED


class TransientSinkError(SinkError):
    """Network blips, timeouts, 5xx responses."""

    kind = SinkErrorKind.TRANSIENT


class PermanentSinkError(SinkError):
    """Payload rejected; re-sending it unchanged will not help."""

    kind = SinkErrorKind.PERMANENT


def map_http_status(status: int) -> SinkErrorKind | None:
    """Classify an HTTP status code. Returns None for success codes."""
    if status < 400:
        return None
    if status == 429:
        return SinkErrorKind.RATE_LIMITED
    if status == 408 or status >= 500:
        return SinkErrorKind.TRANSIENT
    return SinkErrorKind.PERMANENT
