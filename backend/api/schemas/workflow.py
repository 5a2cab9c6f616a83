"""Workflow schemas."""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from core.constants import ObjectType, ReentryMode, StepType, TriggerType


class EntryCondition(BaseModel):
    field: str = Field(min_length=1)
    operator: str = Field(default="equals")
    value: Any = None


class EntryCriteria(BaseModel):
    """Condition tree gating entry: all (AND) or any (OR) of the conditions."""

    conditions: List[EntryCondition] = Field(default_factory=list)
    match_type: Literal["all", "any"] = "all"


class WorkflowStepIn(BaseModel):
    """One canvas node as saved by the editor."""

    step_key: str = Field(min_length=1, description="Unique within the workflow")
    step_type: StepType
    step_order: Optional[int] = Field(default=None, ge=0)
    step_config: Dict[str, Any] = Field(default_factory=dict)
    next_step_key: Optional[str] = None
    position_x: float = 0.0
    position_y: float = 0.0


class WorkflowStepResponse(BaseModel):
    id: str
    step_key: str
    step_type: str
    step_order: int
    step_config: Optional[Dict[str, Any]] = None
    next_step_key: Optional[str] = None
    position_x: float
    position_y: float

    class Config:
        from_attributes = True


class WorkflowCreate(BaseModel):
    """Request to create a workflow. New workflows start inactive."""

    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    object_type: ObjectType
    trigger_type: TriggerType
    trigger_config: Dict[str, Any] = Field(default_factory=dict)
    entry_criteria: Optional[EntryCriteria] = None
    reentry_mode: str = Field(default=ReentryMode.ALLOW_ALL.value)
    reentry_wait_days: Optional[int] = Field(default=None, ge=1)
    evaluation_order: int = 0
    steps: List[WorkflowStepIn] = Field(default_factory=list)


class WorkflowUpdate(BaseModel):
    """Settings form. Omitted fields are left unchanged."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    trigger_config: Optional[Dict[str, Any]] = None
    entry_criteria: Optional[EntryCriteria] = None
    reentry_mode: Optional[str] = None
    reentry_wait_days: Optional[int] = Field(default=None, ge=1)
    evaluation_order: Optional[int] = None


class CanvasSave(BaseModel):
    steps: List[WorkflowStepIn]
    canvas_data: Optional[Dict[str, Any]] = None


class ToggleRequest(BaseModel):
    active: bool
    force: bool = Field(default=False, description="Activate despite warnings")


class ManualTriggerRequest(BaseModel):
    object_type: ObjectType
    record_id: str = Field(min_length=1)


class WorkflowResponse(BaseModel):
    id: str
    organization_id: str
    name: str
    description: Optional[str] = None
    object_type: str
    trigger_type: str
    trigger_config: Optional[Dict[str, Any]] = None
    entry_criteria: Optional[Dict[str, Any]] = None
    reentry_mode: str
    reentry_wait_days: Optional[int] = None
    is_active: bool
    is_template: bool
    canvas_data: Optional[Dict[str, Any]] = None
    evaluation_order: int
    execution_count: int
    last_executed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class WorkflowDetailResponse(WorkflowResponse):
    steps: List[WorkflowStepResponse] = Field(default_factory=list)


class WorkflowListResponse(BaseModel):
    """Paginated list of workflows."""

    workflows: List[WorkflowResponse]
    total: int
    page: int
    per_page: int


class ValidationResponse(BaseModel):
    is_valid: bool
    errors: List[str]
    warnings: List[str]


class ToggleResponse(BaseModel):
    workflow: WorkflowResponse
    validation: ValidationResponse


class TemplateResponse(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    category: str
    object_type: str
    trigger_type: str
    template_data: Dict[str, Any]

    class Config:
        from_attributes = True


class InstantiateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)


class RecordSummary(BaseModel):
    """Record offered in the manual-trigger picker."""

    id: str
    object_type: str
    client_id: Optional[str] = None
    data: Dict[str, Any]

    class Config:
        from_attributes = True
