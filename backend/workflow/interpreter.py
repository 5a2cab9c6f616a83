"""Step Interpreter: runs the step an execution is positioned at.

One call to ``execute_step`` runs exactly one step and writes exactly one
StepExecution row for it. The interpreter moves the execution along the
graph (``current_step_key``, ``status``, ``context``) but leaves retry
bookkeeping to the scheduler: a failed step comes back as
``StepOutcome.FAILED`` with the execution still on that step.

The step graph is read from ``execution.step_snapshot``, frozen when the
execution was created, so edits to the workflow never affect runs in flight.

Nothing is committed here; the caller owns the transaction.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.constants import ExecutionStatus, StepExecutionStatus
from core.exceptions import ConflictError
from core.utils import utc_now_naive
from db.models.execution import WorkflowExecution
from db.models.step_execution import StepExecution
from db.models.workflow_step import WorkflowStep
from services.record_service import RecordService
from tasks.base_task import StepContext, TaskResult
from tasks.registry import TaskRegistry, get_task_registry
from workflow.conditions import evaluate_condition
from workflow.context import ExecutionContext
from workflow.graph import StepGraph, StepNode
from workflow.state import is_terminal, transition
from workflow.step_configs import parse_step_config

logger = logging.getLogger(__name__)


class StepOutcome(str, Enum):
    """What happened to the execution after one step."""
    ADVANCE = "advance"      # moved to the next step, keep going
    SKIPPED = "skipped"      # step gate was false, moved on
    WAIT = "wait"            # parked until next_run_at
    END = "end"              # execution completed
    FAILED = "failed"        # step failed; scheduler decides retry or fail
    CANCELLED = "cancelled"  # cancelled while the step was running


@dataclass
class StepRunResult:
    status: StepOutcome
    step_key: Optional[str] = None
    next_step_key: Optional[str] = None
    output: Any = None
    error: Optional[str] = None
    retryable: bool = False
    retry_policy: Optional[str] = None
    step_execution_id: Optional[str] = None

    @property
    def continues(self) -> bool:
        return self.status in (StepOutcome.ADVANCE, StepOutcome.SKIPPED)


def _as_output(value: Any) -> Optional[dict]:
    if value is None or isinstance(value, dict):
        return value
    return {"value": value}


class StepInterpreter:
    """Executes one step of a workflow execution.

    Args:
        db: Session the execution is attached to
        registry: Step handlers by type (defaults to the global registry)
        channels: notifications.channels.StepChannels for messaging and webhooks
    """

    def __init__(self, db: AsyncSession, registry: Optional[TaskRegistry] = None, channels: Any = None):
        self.db = db
        self.registry = registry or get_task_registry()
        self.channels = channels

    async def execute_step(self, execution: WorkflowExecution, now: Optional[datetime] = None) -> StepRunResult:
        now = now or utc_now_naive()
        if is_terminal(execution.status):
            raise ConflictError(f"Execution {execution.id} is already {execution.status}")

        if execution.current_step_key is None:
            # Nothing left to run; the trigger had no successor
            transition(execution, ExecutionStatus.COMPLETED)
            execution.completed_at = now
            return StepRunResult(status=StepOutcome.END)

        graph = StepGraph.from_snapshot(execution.step_snapshot)
        node = graph.get(execution.current_step_key)
        if node is None:
            row = await self._open_row(execution, StepNode(execution.current_step_key, "unknown"), now)
            return self._fail(
                execution, row, now,
                f"Step '{execution.current_step_key}' does not exist in this workflow",
                retryable=False,
            )

        row = await self._open_row(execution, node, now)
        data = ExecutionContext.from_dict(execution.context)

        try:
            config = parse_step_config(node.step_type, node.config)
        except KeyError:
            return self._fail(execution, row, now, f"Unknown step type '{node.step_type}'", retryable=False)
        except PydanticValidationError as e:
            return self._fail(execution, row, now, f"Invalid step configuration: {e}", retryable=False)

        if config.condition is not None and config.condition.field:
            if not evaluate_condition(config.condition.as_dict(), data.lookup_data()):
                return await self._skip(execution, row, node, data, now)

        problems = config.problems()
        if problems:
            return self._fail(
                execution, row, now, f"Invalid step configuration: {'; '.join(problems)}", retryable=False
            )

        handler = self.registry.create_instance(node.step_type)
        if handler is None:
            return self._fail(execution, row, now, f"No handler for step type '{node.step_type}'", retryable=False)

        record = await RecordService(self.db).find(
            execution.organization_id, execution.record_type, execution.record_id
        )
        step_ctx = StepContext(
            db=self.db,
            execution=execution,
            node=node,
            data=data,
            now=now,
            channels=self.channels,
            record=record,
        )
        result = await handler.run(config, step_ctx)

        if await self._was_cancelled(execution):
            row.status = StepExecutionStatus.SKIPPED.value
            row.error_message = "Execution was cancelled while the step was running"
            row.output = _as_output(result.output)
            row.completed_at = now
            await self.db.flush()
            await self.db.refresh(execution)
            logger.info("Execution %s cancelled during step %s", execution.id, node.key)
            return StepRunResult(
                status=StepOutcome.CANCELLED, step_key=node.key, step_execution_id=row.id
            )

        if not result.success:
            if config.continue_on_error:
                row.status = StepExecutionStatus.FAILED.value
                row.error_message = result.error
                row.completed_at = now
                data.record_step_result(node.key, {"error": result.error})
                logger.info("Step %s failed but continues: %s", node.key, result.error)
                return self._advance(execution, node, data, node.next_step_key, now, row, error=result.error)
            return self._fail(
                execution, row, now, result.error or "Step failed",
                retryable=result.retryable, retry_policy=config.retry_policy,
            )

        return self._succeed(execution, node, data, result, now, row)

    # ─── Rows ──────────────────────────────────────────────

    async def _open_row(self, execution: WorkflowExecution, node: StepNode, now: datetime) -> StepExecution:
        count = await self.db.scalar(
            select(func.count()).select_from(StepExecution).where(StepExecution.execution_id == execution.id)
        )
        row = StepExecution(
            execution_id=execution.id,
            step_id=await self._live_step_id(node.step_id),
            step_key=node.key,
            step_type=node.step_type,
            sequence=(count or 0) + 1,
            attempt=(execution.retry_count or 0) + 1,
            status=StepExecutionStatus.PENDING.value,
            input={"config": node.config},
            started_at=now,
        )
        self.db.add(row)
        await self.db.flush()
        row.status = StepExecutionStatus.RUNNING.value
        return row

    async def _live_step_id(self, step_id: Optional[str]) -> Optional[str]:
        """The snapshot's step id, unless that step has since been removed."""
        if not step_id:
            return None
        found = await self.db.scalar(select(WorkflowStep.id).where(WorkflowStep.id == step_id))
        return found

    async def _was_cancelled(self, execution: WorkflowExecution) -> bool:
        # Row stays locked until the scheduler commits this step
        status = await self.db.scalar(
            select(WorkflowExecution.status).where(WorkflowExecution.id == execution.id).with_for_update()
        )
        return status == ExecutionStatus.CANCELLED.value

    # ─── Outcomes ──────────────────────────────────────────

    def _fail(
        self,
        execution: WorkflowExecution,
        row: StepExecution,
        now: datetime,
        error: str,
        retryable: bool,
        retry_policy: Optional[str] = None,
    ) -> StepRunResult:
        row.status = StepExecutionStatus.FAILED.value
        row.error_message = error
        row.completed_at = now
        execution.error_message = error
        logger.warning("Step %s of execution %s failed: %s", row.step_key, execution.id, error)
        return StepRunResult(
            status=StepOutcome.FAILED,
            step_key=row.step_key,
            error=error,
            retryable=retryable,
            retry_policy=retry_policy,
            step_execution_id=row.id,
        )

    async def _skip(
        self,
        execution: WorkflowExecution,
        row: StepExecution,
        node: StepNode,
        data: ExecutionContext,
        now: datetime,
    ) -> StepRunResult:
        row.status = StepExecutionStatus.SKIPPED.value
        row.output = {"skipped": True, "reason": "Step condition not met"}
        row.completed_at = now
        result = self._advance(execution, node, data, node.next_step_key, now, row)
        if result.status == StepOutcome.ADVANCE:
            result.status = StepOutcome.SKIPPED
        return result

    def _succeed(
        self,
        execution: WorkflowExecution,
        node: StepNode,
        data: ExecutionContext,
        result: TaskResult,
        now: datetime,
        row: StepExecution,
    ) -> StepRunResult:
        row.status = StepExecutionStatus.COMPLETED.value
        row.output = _as_output(result.output)
        row.completed_at = now
        data.record_step_result(node.key, result.output)

        if result.wait_until is not None:
            row.status = StepExecutionStatus.WAITING.value
            transition(execution, ExecutionStatus.WAITING)
            execution.next_run_at = result.wait_until
            execution.waiting_for = (
                f"{node.config.get('label') or node.key} until {result.wait_until.isoformat(timespec='minutes')}"
            )
            execution.context = data.to_dict()
            return StepRunResult(
                status=StepOutcome.WAIT, step_key=node.key, output=result.output, step_execution_id=row.id
            )

        if result.end:
            return self._complete(execution, node, data, now, row, result.output)

        return self._advance(
            execution, node, data, result.next_step_key or node.next_step_key, now, row, output=result.output
        )

    def _advance(
        self,
        execution: WorkflowExecution,
        node: StepNode,
        data: ExecutionContext,
        next_key: Optional[str],
        now: datetime,
        row: StepExecution,
        output: Any = None,
        error: Optional[str] = None,
    ) -> StepRunResult:
        if execution.status == ExecutionStatus.WAITING.value:
            transition(execution, ExecutionStatus.RUNNING)
        execution.next_run_at = None
        execution.waiting_for = None
        execution.retry_count = 0
        execution.error_message = None

        if not next_key:
            return self._complete(execution, node, data, now, row, output)

        execution.last_step_key = node.key
        execution.current_step_key = next_key
        execution.context = data.to_dict()
        return StepRunResult(
            status=StepOutcome.ADVANCE,
            step_key=node.key,
            next_step_key=next_key,
            output=output,
            error=error,
            step_execution_id=row.id,
        )

    def _complete(
        self,
        execution: WorkflowExecution,
        node: StepNode,
        data: ExecutionContext,
        now: datetime,
        row: StepExecution,
        output: Any = None,
    ) -> StepRunResult:
        transition(execution, ExecutionStatus.COMPLETED)
        execution.completed_at = now
        execution.next_run_at = None
        execution.waiting_for = None
        execution.error_message = None
        execution.last_step_key = node.key
        execution.current_step_key = None
        execution.context = data.to_dict()
        logger.info("Execution %s completed at step %s", execution.id, node.key)
        return StepRunResult(status=StepOutcome.END, step_key=node.key, output=output, step_execution_id=row.id)
