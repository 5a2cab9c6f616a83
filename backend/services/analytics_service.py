"""Analytics service: loads a workflow's executions for a date window and aggregates them."""

from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.constants import AnalyticsRange
from core.utils import utc_now_naive
from db.models.execution import WorkflowExecution
from db.models.step_execution import StepExecution
from db.models.workflow_step import WorkflowStep
from services.workflow_service import WorkflowService
from workflow.analytics import compute_workflow_analytics, range_start


class AnalyticsService:
    """Read-only; every query is scoped to the workflow's organization."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def workflow_analytics(
        self,
        workflow_id: str,
        organization_id: str,
        range_: AnalyticsRange = AnalyticsRange.LAST_30_DAYS,
        now: Optional[datetime] = None,
    ) -> dict:
        workflow = await WorkflowService(self.db).get_or_404(workflow_id, organization_id)
        since = range_start(range_, now or utc_now_naive())

        query = select(WorkflowExecution).where(
            WorkflowExecution.workflow_id == workflow.id,
            WorkflowExecution.organization_id == organization_id,
        )
        if since is not None:
            query = query.where(WorkflowExecution.started_at >= since)
        executions = (await self.db.execute(query)).scalars().all()

        step_rows = []
        execution_ids = [e.id for e in executions]
        if execution_ids:
            result = await self.db.execute(
                select(StepExecution).where(StepExecution.execution_id.in_(execution_ids))
            )
            step_rows = result.scalars().all()

        steps = (await self.db.execute(
            select(WorkflowStep).where(WorkflowStep.workflow_id == workflow.id)
        )).scalars().all()

        payload = compute_workflow_analytics(executions, step_rows, steps, range_)
        payload["workflow_id"] = workflow.id
        return payload
