"""Execution lifecycle: start, manual trigger, retry, cancel, reads.

Status changes go through workflow.state so the rules are the same here as
in the interpreter: ``running <-> waiting -> completed | failed | cancelled``
and back to ``running`` only through ``retry_execution``.
"""

import logging
from typing import Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from core.constants import ExecutionStatus, StepExecutionStatus, TriggerType
from core.exceptions import ConflictError, InvalidStateTransition, NotFoundError, ValidationError
from core.utils import utc_now_naive
from db.models.execution import WorkflowExecution
from db.models.step_execution import StepExecution
from db.models.workflow import Workflow
from db.models.workflow_step import WorkflowStep
from services.base import BaseService
from services.record_service import RecordService
from triggers.base import CreateIntent
from workflow.context import ExecutionContext
from workflow.graph import StepGraph
from workflow.state import is_terminal, transition

logger = logging.getLogger(__name__)

RETRYABLE_FROM = (ExecutionStatus.FAILED.value, ExecutionStatus.CANCELLED.value)


def dispatch_execution(execution_id: str) -> bool:
    """Hand a freshly committed execution to a worker.

    Best effort: when the broker is unreachable the beat-driven dispatch
    cycle picks the execution up within a minute.
    """
    if not get_settings().DISPATCH_ON_CREATE:
        return False
    try:
        from worker.tasks.workflow import process_execution
        process_execution.delay(execution_id)
        return True
    except Exception as e:
        logger.warning(f"Could not dispatch execution {execution_id}, leaving it to the scheduler: {e}")
        return False


class ExecutionService(BaseService[WorkflowExecution]):
    """Service for execution lifecycle and history."""

    not_found_message = "Execution not found"

    def __init__(self, db: AsyncSession):
        super().__init__(WorkflowExecution, db)

    # ─── Start ─────────────────────────────────────────────

    async def _workflow_steps(self, workflow_id: str) -> list[WorkflowStep]:
        result = await self.db.execute(
            select(WorkflowStep)
            .where(WorkflowStep.workflow_id == workflow_id)
            .order_by(WorkflowStep.step_order, WorkflowStep.step_key)
        )
        return list(result.scalars().all())

    async def start_execution(self, intent: CreateIntent, workflow: Optional[Workflow] = None) -> WorkflowExecution:
        """Create a running execution positioned at ``intent.initial_step_key``.

        The workflow's steps are frozen into ``step_snapshot``; later edits
        to the workflow do not affect this execution.
        """
        now = utc_now_naive()
        if workflow is None:
            workflow = await self.db.get(Workflow, intent.workflow_id)
        steps = await self._workflow_steps(intent.workflow_id)

        context = ExecutionContext.start(intent.trigger_type, intent.record_data, now)
        execution = await self.create({
            "organization_id": intent.organization_id,
            "workflow_id": intent.workflow_id,
            "record_type": intent.record_type,
            "record_id": intent.record_id,
            "trigger_type": intent.trigger_type,
            "status": ExecutionStatus.RUNNING.value,
            "current_step_key": intent.initial_step_key,
            "context": context.to_dict(),
            "step_snapshot": StepGraph.from_steps(steps).to_snapshot(),
            "retry_count": 0,
            "started_at": now,
        })

        if workflow is not None:
            workflow.execution_count = (workflow.execution_count or 0) + 1
            workflow.last_executed_at = now
            await self.db.flush()

        logger.info(
            f"Execution {execution.id} started for workflow {intent.workflow_id} "
            f"on {intent.record_type} {intent.record_id} at step {intent.initial_step_key}"
        )
        return execution

    async def trigger_manually(
        self,
        organization_id: str,
        workflow_id: str,
        object_type: str,
        record_id: str,
    ) -> WorkflowExecution:
        """Start an execution from the UI. Entry criteria and re-entry rules do not apply.

        Raises:
            NotFoundError: workflow or record does not exist
            ConflictError: workflow is not active
            ValidationError: object type mismatch or trigger not connected
        """
        result = await self.db.execute(
            select(Workflow).where(
                Workflow.id == workflow_id,
                Workflow.organization_id == organization_id,
                Workflow.is_deleted == False,  # noqa: E712
            )
        )
        workflow = result.scalar_one_or_none()
        if workflow is None:
            raise NotFoundError("Workflow not found")
        if not workflow.is_active:
            raise ConflictError("Workflow must be active to run it manually")
        if workflow.object_type != object_type:
            raise ValidationError(
                f"Workflow runs on {workflow.object_type} records, not {object_type}"
            )

        record = await RecordService(self.db).get_record(organization_id, object_type, record_id)
        entry = StepGraph.from_steps(await self._workflow_steps(workflow_id)).entry_step_key()
        if not entry:
            raise ValidationError("Workflow trigger is not connected to any step")

        return await self.start_execution(
            CreateIntent(
                workflow_id=workflow.id,
                organization_id=organization_id,
                record_type=object_type,
                record_id=record.id,
                trigger_type=TriggerType.MANUAL.value,
                initial_step_key=entry,
                record_data=record.snapshot(),
            ),
            workflow=workflow,
        )

    # ─── Admin actions ─────────────────────────────────────

    async def retry_execution(self, execution_id: str, organization_id: str) -> WorkflowExecution:
        """Resume a failed or cancelled execution at the step that stopped it.

        Raises:
            InvalidStateTransition: the execution is not failed or cancelled
        """
        execution = await self.get_or_404(execution_id, organization_id)
        if execution.status not in RETRYABLE_FROM:
            raise InvalidStateTransition(
                execution.status,
                ExecutionStatus.RUNNING.value,
                f"Only failed or cancelled executions can be retried (this one is {execution.status})",
            )

        if execution.current_step_key is None and execution.last_step_key:
            graph = StepGraph.from_snapshot(execution.step_snapshot)
            last = graph.get(execution.last_step_key)
            execution.current_step_key = last.next_step_key if last else None

        transition(execution, ExecutionStatus.RUNNING)
        execution.error_message = None
        execution.completed_at = None
        execution.next_run_at = None
        execution.waiting_for = None
        execution.retry_count = 0
        await self.db.flush()
        logger.info(f"Execution {execution_id} retried at step {execution.current_step_key}")
        return execution

    async def _get_locked(self, execution_id: str, organization_id: str) -> WorkflowExecution:
        """Load the latest committed row and hold its lock until commit.

        A scheduler session mid-step holds the same lock, so its commit lands
        first and the status seen here is current.
        """
        execution = await self.db.scalar(
            select(WorkflowExecution)
            .where(
                WorkflowExecution.id == execution_id,
                WorkflowExecution.organization_id == organization_id,
                WorkflowExecution.is_deleted == False,  # noqa: E712
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        if execution is None:
            raise NotFoundError(self.not_found_message)
        return execution

    async def cancel_execution(self, execution_id: str, organization_id: str) -> WorkflowExecution:
        """Cancel a running or waiting execution. Terminal executions are returned unchanged."""
        execution = await self._get_locked(execution_id, organization_id)
        if is_terminal(execution.status):
            return execution

        now = utc_now_naive()
        transition(execution, ExecutionStatus.CANCELLED)
        execution.completed_at = now
        execution.next_run_at = None
        execution.waiting_for = None

        await self.db.execute(
            update(StepExecution)
            .where(
                StepExecution.execution_id == execution_id,
                StepExecution.status.in_((
                    StepExecutionStatus.PENDING.value,
                    StepExecutionStatus.RUNNING.value,
                )),
            )
            .values(
                status=StepExecutionStatus.SKIPPED.value,
                error_message="Execution cancelled",
                completed_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.flush()
        logger.info(f"Execution {execution_id} cancelled")
        return execution

    # ─── Reads ─────────────────────────────────────────────

    async def get_execution_detail(
        self, execution_id: str, organization_id: str
    ) -> tuple[WorkflowExecution, Sequence[StepExecution]]:
        """Execution plus its step executions in the order they ran."""
        execution = await self.get_or_404(execution_id, organization_id)
        result = await self.db.execute(
            select(StepExecution)
            .where(StepExecution.execution_id == execution_id)
            .order_by(StepExecution.sequence)
        )
        return execution, result.scalars().all()

    async def list_for_workflow(
        self,
        workflow_id: str,
        organization_id: str,
        limit: int = 50,
    ) -> Sequence[WorkflowExecution]:
        result = await self.db.execute(
            select(WorkflowExecution)
            .where(
                WorkflowExecution.workflow_id == workflow_id,
                WorkflowExecution.organization_id == organization_id,
                WorkflowExecution.is_deleted == False,  # noqa: E712
            )
            .order_by(WorkflowExecution.started_at.desc(), WorkflowExecution.id)
            .limit(limit)
        )
        return result.scalars().all()
