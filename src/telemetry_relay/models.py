"""
Pydantic models for the records a host typically ships.

Each model converts itself to a pipeline ``Record`` via ``to_record()``.
"""

import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .pipeline.types import Record, RecordKind

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def to_snake_case(key: str) -> str:
    """``workflowHashBefore`` -> ``workflow_hash_before``; snake_case passes through."""
    return _CAMEL_BOUNDARY.sub("_", key).lower()


def snake_case_keys(row: Dict[str, Any]) -> Dict[str, Any]:
    """Convert top-level keys only. Nested values are left untouched."""
    return {to_snake_case(k): v for k, v in row.items()}


class TelemetryEvent(BaseModel):
    """Usage event (tool used, session started, ...)."""

    user_id: str
    event: str
    properties: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None

    @field_validator("event")
    @classmethod
    def _non_empty(cls, v):
        if not v.strip():
            raise ValueError("event name must not be empty")
        return v

    def to_record(self) -> Record:
        payload = self.model_dump(mode="json", exclude_none=True)
        return Record(kind=RecordKind.EVENT, payload=payload)


class WorkflowTelemetry(BaseModel):
    """Sanitized workflow structure snapshot. Deduplicated by workflow_hash."""

    user_id: str
    workflow_hash: str
    node_count: int = 0
    node_types: List[str] = Field(default_factory=list)
    has_trigger: bool = False
    has_webhook: bool = False
    complexity: str = "simple"
    sanitized_workflow: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("complexity")
    @classmethod
    def _validate_complexity(cls, v):
        valid = {"simple", "medium", "complex"}
        if v not in valid:
            raise ValueError(f"Invalid complexity: {v}. Must be one of {valid}")
        return v

    @field_validator("node_count")
    @classmethod
    def _non_negative(cls, v):
        if v < 0:
            raise ValueError("node_count must be >= 0")
        return v

    def to_record(self) -> Record:
        return Record(
            kind=RecordKind.SNAPSHOT,
            payload=self.model_dump(mode="json"),
            content_hash=self.workflow_hash,
        )


class WorkflowMutation(BaseModel):
    """Before/after record of a workflow edit.

    Accepts camelCase or snake_case input and tolerates extra fields. The row
    sent to the store has snake_case top-level keys; nested structures (node
    names used as connection keys, node fields such as ``typeVersion``) are
    kept exactly as given.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    user_id: str
    session_id: str
    workflow_before: Dict[str, Any] = Field(default_factory=dict)
    workflow_after: Dict[str, Any] = Field(default_factory=dict)
    workflow_hash_before: Optional[str] = None
    workflow_hash_after: Optional[str] = None
    user_intent: Optional[str] = None
    tool_name: Optional[str] = None
    operations: List[Dict[str, Any]] = Field(default_factory=list)
    operation_count: int = 0
    mutation_success: bool = True
    duration_ms: Optional[int] = None

    def to_record(self) -> Record:
        row = self.model_dump(mode="json", by_alias=False)
        return Record(kind=RecordKind.MUTATION, payload=snake_case_keys(row))
