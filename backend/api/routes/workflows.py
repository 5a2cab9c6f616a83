"""Workflow endpoints: CRUD, canvas, validation, activation, manual trigger, history, analytics."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from api.schemas.common import MessageResponse, PaginationParams
from api.schemas.execution import AnalyticsResponse, ExecutionResponse
from api.schemas.workflow import (
    CanvasSave,
    ManualTriggerRequest,
    RecordSummary,
    ToggleRequest,
    ToggleResponse,
    ValidationResponse,
    WorkflowCreate,
    WorkflowDetailResponse,
    WorkflowListResponse,
    WorkflowResponse,
    WorkflowStepResponse,
    WorkflowUpdate,
)
from app.dependencies import get_current_tenant, get_db
from core.constants import AnalyticsRange, ObjectType
from core.security import TokenPayload
from core.utils import calculate_offset
from services.analytics_service import AnalyticsService
from services.execution_service import ExecutionService, dispatch_execution
from services.record_service import RecordService
from services.workflow_service import WorkflowService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["workflows"])


def _detail(workflow, steps) -> WorkflowDetailResponse:
    response = WorkflowDetailResponse.model_validate(workflow)
    response.steps = [WorkflowStepResponse.model_validate(step) for step in steps]
    return response


@router.get("/", response_model=WorkflowListResponse)
async def list_workflows(
    object_type: Optional[ObjectType] = Query(default=None),
    pagination: PaginationParams = Depends(),
    current_user: TokenPayload = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
) -> WorkflowListResponse:
    """List workflows in the current organization (paginated)."""
    svc = WorkflowService(db)
    workflows, total = await svc.list_workflows(
        organization_id=current_user.org_id,
        object_type=object_type.value if object_type else None,
        offset=calculate_offset(pagination.page, pagination.per_page),
        limit=pagination.per_page,
    )
    return WorkflowListResponse(
        workflows=[WorkflowResponse.model_validate(wf) for wf in workflows],
        total=total,
        page=pagination.page,
        per_page=pagination.per_page,
    )


@router.post("/", response_model=WorkflowDetailResponse, status_code=status.HTTP_201_CREATED)
async def create_workflow(
    request: WorkflowCreate,
    current_user: TokenPayload = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
) -> WorkflowDetailResponse:
    """Create a workflow (inactive until toggled on)."""
    svc = WorkflowService(db)
    workflow = await svc.create_workflow(current_user.org_id, request.model_dump(mode="json"))
    return _detail(workflow, await svc.get_steps(workflow.id))


@router.get("/{workflow_id}", response_model=WorkflowDetailResponse)
async def get_workflow(
    workflow_id: str,
    current_user: TokenPayload = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
) -> WorkflowDetailResponse:
    svc = WorkflowService(db)
    workflow = await svc.get_or_404(workflow_id, current_user.org_id)
    return _detail(workflow, await svc.get_steps(workflow.id))


@router.put("/{workflow_id}", response_model=WorkflowResponse)
async def update_workflow(
    workflow_id: str,
    request: WorkflowUpdate,
    current_user: TokenPayload = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
) -> WorkflowResponse:
    workflow = await WorkflowService(db).update_workflow(
        workflow_id, current_user.org_id, request.model_dump(mode="json", exclude_unset=True)
    )
    return WorkflowResponse.model_validate(workflow)


@router.delete("/{workflow_id}", response_model=MessageResponse)
async def delete_workflow(
    workflow_id: str,
    current_user: TokenPayload = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    """Soft-delete and deactivate; execution history is kept."""
    await WorkflowService(db).delete_workflow(workflow_id, current_user.org_id)
    return MessageResponse(message="Workflow deleted")


@router.put("/{workflow_id}/canvas", response_model=WorkflowDetailResponse)
async def save_canvas(
    workflow_id: str,
    request: CanvasSave,
    current_user: TokenPayload = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
) -> WorkflowDetailResponse:
    """Save the editor's steps and layout in one go."""
    workflow, steps = await WorkflowService(db).save_canvas(
        workflow_id,
        current_user.org_id,
        [step.model_dump(mode="json", exclude_none=True) for step in request.steps],
        request.canvas_data,
    )
    return _detail(workflow, steps)


@router.post("/{workflow_id}/duplicate", response_model=WorkflowDetailResponse, status_code=status.HTTP_201_CREATED)
async def duplicate_workflow(
    workflow_id: str,
    current_user: TokenPayload = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
) -> WorkflowDetailResponse:
    svc = WorkflowService(db)
    copy = await svc.duplicate(workflow_id, current_user.org_id)
    return _detail(copy, await svc.get_steps(copy.id))


@router.get("/{workflow_id}/validate", response_model=ValidationResponse)
async def validate_workflow(
    workflow_id: str,
    current_user: TokenPayload = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
) -> ValidationResponse:
    report = await WorkflowService(db).validate(workflow_id, current_user.org_id)
    return ValidationResponse(**report.to_dict())


@router.post("/{workflow_id}/toggle", response_model=ToggleResponse)
async def toggle_workflow(
    workflow_id: str,
    request: ToggleRequest,
    current_user: TokenPayload = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
) -> ToggleResponse:
    """Activate (validation must pass; warnings need ``force``) or deactivate."""
    workflow, report = await WorkflowService(db).toggle_active(
        workflow_id, current_user.org_id, request.active, force=request.force
    )
    return ToggleResponse(
        workflow=WorkflowResponse.model_validate(workflow),
        validation=ValidationResponse(**report.to_dict()),
    )


@router.post("/{workflow_id}/trigger", response_model=ExecutionResponse, status_code=status.HTTP_201_CREATED)
async def trigger_workflow(
    workflow_id: str,
    request: ManualTriggerRequest,
    current_user: TokenPayload = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
) -> ExecutionResponse:
    """Run the workflow for one record now, bypassing entry criteria and re-entry rules."""
    execution = await ExecutionService(db).trigger_manually(
        current_user.org_id, workflow_id, request.object_type.value, request.record_id
    )
    await db.commit()
    dispatch_execution(execution.id)
    return ExecutionResponse.model_validate(execution)


@router.get("/{workflow_id}/executions", response_model=List[ExecutionResponse])
async def list_workflow_executions(
    workflow_id: str,
    limit: int = Query(default=50, ge=1, le=500),
    current_user: TokenPayload = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
) -> List[ExecutionResponse]:
    await WorkflowService(db).get_or_404(workflow_id, current_user.org_id)
    executions = await ExecutionService(db).list_for_workflow(workflow_id, current_user.org_id, limit)
    return [ExecutionResponse.model_validate(e) for e in executions]


@router.get("/{workflow_id}/analytics", response_model=AnalyticsResponse)
async def workflow_analytics(
    workflow_id: str,
    range: AnalyticsRange = Query(default=AnalyticsRange.LAST_30_DAYS),
    current_user: TokenPayload = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
) -> AnalyticsResponse:
    payload = await AnalyticsService(db).workflow_analytics(workflow_id, current_user.org_id, range)
    return AnalyticsResponse(**payload)


@router.get("/{workflow_id}/records", response_model=List[RecordSummary])
async def list_trigger_records(
    workflow_id: str,
    limit: int = Query(default=100, ge=1, le=500),
    current_user: TokenPayload = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
) -> List[RecordSummary]:
    """Records of the workflow's object type, for the manual-trigger picker."""
    workflow = await WorkflowService(db).get_or_404(workflow_id, current_user.org_id)
    records = await RecordService(db).list_for_object_type(current_user.org_id, workflow.object_type, limit)
    return [RecordSummary.model_validate(r) for r in records]
