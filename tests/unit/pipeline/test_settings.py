import pytest
from pydantic import ValidationError

from telemetry_relay.pipeline import PipelineSettings, RecordKind


def test_defaults():
    s = PipelineSettings(_env_file=None)
    assert s.enabled is True
    assert s.flush_interval_sec == 5.0
    assert s.max_batch_size == 50
    assert s.max_retries == 3
    assert s.retry_base_delay_sec == 1.0
    assert s.rate_limit_cooldown_sec == 5.0
    assert s.failure_threshold == 5
    assert s.circuit_cooldown_sec == 60.0
    assert s.dlq_capacity == 100


def test_env_override(monkeypatch):
    monkeypatch.setenv("TELEMETRY_MAX_BATCH_SIZE", "10")
    monkeypatch.setenv("TELEMETRY_ENABLED", "false")
    monkeypatch.setenv("TELEMETRY_EVENTS_TABLE", "usage")

    s = PipelineSettings(_env_file=None)

    assert s.max_batch_size == 10
    assert s.enabled is False
    assert s.destination_for(RecordKind.EVENT) == "usage"


def test_destination_for_each_kind():
    s = PipelineSettings(_env_file=None)
    assert s.destination_for(RecordKind.EVENT) == "telemetry_events"
    assert s.destination_for(RecordKind.SNAPSHOT) == "telemetry_workflows"
    assert s.destination_for(RecordKind.MUTATION) == "workflow_mutations"


@pytest.mark.parametrize(
    "field,value",
    [("max_batch_size", 0), ("max_retries", 0), ("flush_interval_sec", 0), ("dlq_capacity", -1)],
)
def test_rejects_invalid_values(field, value):
    with pytest.raises(ValidationError):
        PipelineSettings(_env_file=None, **{field: value})
