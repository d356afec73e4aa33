from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .types import RecordKind


class PipelineSettings(BaseSettings):
    """Environment-driven pipeline knobs (``TELEMETRY_*``)."""

    model_config = SettingsConfigDict(
        env_prefix="TELEMETRY_", env_file=".env", case_sensitive=False, extra="ignore"
    )

    enabled: bool = True

    flush_interval_sec: float = Field(5.0, gt=0)
    max_batch_size: int = Field(50, gt=0)

    max_retries: int = Field(3, ge=1)
    retry_base_delay_sec: float = Field(1.0, ge=0)
    rate_limit_cooldown_sec: float = Field(5.0, ge=0)
    operation_timeout_sec: float = Field(5.0, ge=0)  # 0 disables the per-attempt timeout

    failure_threshold: int = Field(5, ge=1)
    circuit_cooldown_sec: float = Field(60.0, ge=0)

    dlq_capacity: int = Field(100, gt=0)
    flush_history_size: int = Field(100, gt=0)
    buffer_capacity: int = Field(1000, gt=0)

    events_table: str = "telemetry_events"
    snapshots_table: str = "telemetry_workflows"
    mutations_table: str = "workflow_mutations"

    def destination_for(self, kind: RecordKind) -> str:
        if kind is RecordKind.EVENT:
            return self.events_table
        if kind is RecordKind.SNAPSHOT:
            return self.snapshots_table
        return self.mutations_table


@lru_cache()
def get_settings() -> PipelineSettings:
    return PipelineSettings()
