"""Workflow template gallery: browse and instantiate into the current practice."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from api.schemas.workflow import InstantiateRequest, TemplateResponse, WorkflowDetailResponse, WorkflowStepResponse
from app.dependencies import get_current_tenant, get_db
from core.constants import TemplateCategory
from core.security import TokenPayload
from services.workflow_service import TemplateService, WorkflowService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/", response_model=List[TemplateResponse])
async def list_templates(
    category: Optional[TemplateCategory] = Query(default=None),
    current_user: TokenPayload = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
) -> List[TemplateResponse]:
    templates = await TemplateService(db).list_templates(category.value if category else None)
    return [TemplateResponse.model_validate(t) for t in templates]


@router.post("/{template_id}/instantiate", response_model=WorkflowDetailResponse, status_code=status.HTTP_201_CREATED)
async def instantiate_template(
    template_id: str,
    request: Optional[InstantiateRequest] = None,
    current_user: TokenPayload = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
) -> WorkflowDetailResponse:
    """Create an inactive workflow (with steps) from a template."""
    workflow = await TemplateService(db).instantiate(
        template_id, current_user.org_id, name=request.name if request else None
    )
    steps = await WorkflowService(db).get_steps(workflow.id)
    logger.info(f"Template {template_id} instantiated as workflow {workflow.id}")
    response = WorkflowDetailResponse.model_validate(workflow)
    response.steps = [WorkflowStepResponse.model_validate(s) for s in steps]
    return response
