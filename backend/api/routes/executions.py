"""Execution endpoints: detail with step trail, retry, cancel."""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from api.schemas.execution import ExecutionDetailResponse, ExecutionResponse, StepExecutionResponse
from app.dependencies import get_current_tenant, get_db
from core.security import TokenPayload
from services.execution_service import ExecutionService, dispatch_execution

logger = logging.getLogger(__name__)

router = APIRouter(tags=["executions"])


@router.get("/{execution_id}", response_model=ExecutionDetailResponse)
async def get_execution(
    execution_id: str,
    current_user: TokenPayload = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
) -> ExecutionDetailResponse:
    """Execution with its step executions in the order they ran."""
    execution, steps = await ExecutionService(db).get_execution_detail(execution_id, current_user.org_id)
    response = ExecutionDetailResponse.model_validate(execution)
    response.step_executions = [StepExecutionResponse.model_validate(s) for s in steps]
    return response


@router.post("/{execution_id}/retry", response_model=ExecutionResponse)
async def retry_execution(
    execution_id: str,
    current_user: TokenPayload = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
) -> ExecutionResponse:
    """Resume a failed or cancelled execution; 409 for any other status."""
    execution = await ExecutionService(db).retry_execution(execution_id, current_user.org_id)
    await db.commit()
    dispatch_execution(execution.id)
    return ExecutionResponse.model_validate(execution)


@router.post("/{execution_id}/cancel", response_model=ExecutionResponse)
async def cancel_execution(
    execution_id: str,
    current_user: TokenPayload = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
) -> ExecutionResponse:
    """Cancel a running or waiting execution; already finished ones are returned as is."""
    execution = await ExecutionService(db).cancel_execution(execution_id, current_user.org_id)
    return ExecutionResponse.model_validate(execution)
