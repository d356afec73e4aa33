"""
Pytest configuration and fixtures for telemetry-relay.

Provides cross-platform event loop configuration and fast pipeline settings.
"""

import asyncio
import sys

import pytest

from telemetry_relay.pipeline import PipelineSettings

# Set policy *before* pytest-asyncio creates any loops
if sys.platform.startswith("win"):
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch):
    """Keep host TELEMETRY_* variables out of the tests."""
    import os

    for key in list(os.environ):
        if key.upper().startswith("TELEMETRY_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def fast_settings():
    """Settings with no real waiting between retries."""
    return PipelineSettings(
        enabled=True,
        flush_interval_sec=0.05,
        max_batch_size=50,
        max_retries=3,
        retry_base_delay_sec=0.0,
        rate_limit_cooldown_sec=0.0,
        operation_timeout_sec=1.0,
        failure_threshold=5,
        circuit_cooldown_sec=60.0,
        dlq_capacity=100,
        _env_file=None,
    )
