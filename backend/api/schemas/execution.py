"""Execution, event and analytics schemas."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from core.constants import EventKind, ObjectType


class StepExecutionResponse(BaseModel):
    """One step attempt in the execution's audit trail."""

    id: str
    step_id: Optional[str] = None
    step_key: str
    step_type: str
    sequence: int
    attempt: int
    status: str
    input: Optional[Dict[str, Any]] = None
    output: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ExecutionResponse(BaseModel):
    """Execution run information response."""

    id: str = Field(description="Execution ID")
    workflow_id: str = Field(description="Workflow ID")
    record_type: str
    record_id: str
    trigger_type: str = Field(description="What started the run (record_create, manual, ...)")
    status: str = Field(description="running, waiting, completed, failed or cancelled")
    current_step_key: Optional[str] = None
    last_step_key: Optional[str] = None
    error_message: Optional[str] = Field(default=None, description="Last step failure")
    retry_count: int = Field(default=0, description="Consecutive failed attempts on the current step")
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    next_run_at: Optional[datetime] = None
    waiting_for: Optional[str] = None
    duration_ms: Optional[int] = None

    class Config:
        from_attributes = True


class ExecutionDetailResponse(ExecutionResponse):
    context: Optional[Dict[str, Any]] = None
    step_executions: List[StepExecutionResponse] = Field(default_factory=list)


class RecordEventRequest(BaseModel):
    """A record mutation reported by the CRM write path."""

    object_type: ObjectType
    record_id: str = Field(min_length=1)
    event_kind: EventKind = EventKind.CREATE
    record: Dict[str, Any] = Field(default_factory=dict, description="Values after the change")
    previous: Dict[str, Any] = Field(default_factory=dict, description="Values before the change")
    changed_fields: Optional[List[str]] = None


class TriggerOutcomeResponse(BaseModel):
    workflow_id: str
    triggered: bool
    reason: str
    execution_id: Optional[str] = None
    error: Optional[str] = None


class RecordEventResponse(BaseModel):
    outcomes: List[TriggerOutcomeResponse]
    started: int


class AnalyticsResponse(BaseModel):
    workflow_id: str
    range: str
    summary: Dict[str, Any]
    step_funnel: List[Dict[str, Any]]
    errors: List[Dict[str, Any]]
    daily: List[Dict[str, Any]]
