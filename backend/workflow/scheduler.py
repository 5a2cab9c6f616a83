"""Execution Scheduler: the dispatch cycle.

Each cycle selects due executions, claims each one with a conditional UPDATE
(``lock_token`` + ``locked_until`` lease), then runs the interpreter on it
step by step until it completes, parks on a wait step, fails or is
cancelled. Cycles may overlap and may run on several workers at once: the
claim guarantees at most one interpreter per execution, and no in-process
lock is involved.

Usage (Celery beat, or the in-process loop in development):
    scheduler = ExecutionScheduler(session_factory)
    report = await scheduler.run_cycle()
"""

from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional
from uuid import uuid4

import structlog
from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import get_settings
from core.constants import ACTIVE_STATUSES, ExecutionStatus
from core.logging_config import bound_log_context
from core.utils import utc_now_naive
from db.models.execution import WorkflowExecution
from notifications.channels import build_step_channels
from tasks.registry import TaskRegistry
from workflow.interpreter import StepInterpreter, StepOutcome, StepRunResult
from workflow.retry_strategies import RetryStrategy, get_preset
from workflow.state import is_terminal, transition

logger = structlog.get_logger(__name__)


@dataclass
class CycleReport:
    """Counters for one dispatch cycle (or one direct ``process_execution``)."""
    claimed: int = 0
    advanced: int = 0   # steps executed
    completed: int = 0
    waiting: int = 0
    failed: int = 0
    retried: int = 0
    skipped: int = 0    # claim lost to another worker
    errors: int = 0     # unexpected exceptions, execution left due

    def to_dict(self) -> dict:
        return asdict(self)


def _due_clause(now: datetime):
    return (
        WorkflowExecution.status.in_(ACTIVE_STATUSES),
        or_(WorkflowExecution.next_run_at.is_(None), WorkflowExecution.next_run_at <= now),
        or_(WorkflowExecution.locked_until.is_(None), WorkflowExecution.locked_until < now),
    )


class ExecutionScheduler:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        registry: Optional[TaskRegistry] = None,
        channels_factory: Callable = build_step_channels,
        retry_strategy: Optional[RetryStrategy] = None,
        batch_size: Optional[int] = None,
        lease_seconds: Optional[int] = None,
        max_steps: Optional[int] = None,
    ):
        settings = get_settings()
        self.session_factory = session_factory
        self.registry = registry
        self.channels_factory = channels_factory
        self.retry_strategy = retry_strategy or RetryStrategy.from_settings(settings)
        self.batch_size = batch_size or settings.SCHEDULER_BATCH_SIZE
        self.lease_seconds = lease_seconds or settings.SCHEDULER_LEASE_SECONDS
        self.max_steps = max_steps or settings.SCHEDULER_MAX_STEPS_PER_RUN

    # ─── Entry points ──────────────────────────────────────

    async def run_cycle(self, now: Optional[datetime] = None) -> CycleReport:
        """Process every due execution once (up to ``batch_size``)."""
        now = now or utc_now_naive()
        report = CycleReport()

        async with self.session_factory() as db:
            result = await db.execute(
                select(WorkflowExecution.id)
                .where(*_due_clause(now))
                .order_by(WorkflowExecution.next_run_at.asc(), WorkflowExecution.started_at.asc())
                .limit(self.batch_size)
            )
            due_ids = list(result.scalars().all())

        for execution_id in due_ids:
            await self._process(execution_id, now, report)

        if due_ids:
            logger.info("Dispatch cycle finished", due=len(due_ids), **report.to_dict())
        return report

    async def process_execution(self, execution_id: str, now: Optional[datetime] = None) -> CycleReport:
        """Run one execution now, if it is due and nobody else holds it."""
        report = CycleReport()
        await self._process(execution_id, now or utc_now_naive(), report)
        return report

    # ─── Claim / release ───────────────────────────────────

    async def _claim(self, db: AsyncSession, execution_id: str, now: datetime) -> Optional[str]:
        token = str(uuid4())
        result = await db.execute(
            update(WorkflowExecution)
            .where(WorkflowExecution.id == execution_id, *_due_clause(now))
            .values(lock_token=token, locked_until=now + timedelta(seconds=self.lease_seconds))
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        return token if result.rowcount == 1 else None

    async def _release(self, db: AsyncSession, execution_id: str, token: str) -> None:
        await db.execute(
            update(WorkflowExecution)
            .where(WorkflowExecution.id == execution_id, WorkflowExecution.lock_token == token)
            .values(lock_token=None, locked_until=None)
            .execution_options(synchronize_session=False)
        )
        await db.commit()

    # ─── Processing ────────────────────────────────────────

    async def _process(self, execution_id: str, now: datetime, report: CycleReport) -> None:
        async with self.session_factory() as db:
            token = await self._claim(db, execution_id, now)
            if token is None:
                report.skipped += 1
                return
            report.claimed += 1

            try:
                execution = await db.get(WorkflowExecution, execution_id, populate_existing=True)
                with bound_log_context(execution_id=execution_id, workflow_id=execution.workflow_id):
                    await self._run_claimed(db, execution, now, report)
            except Exception:
                # Leave the execution due; the next cycle tries again
                await db.rollback()
                report.errors += 1
                logger.exception("Execution processing crashed", execution_id=execution_id)
            finally:
                await self._release(db, execution_id, token)

    async def _run_claimed(
        self,
        db: AsyncSession,
        execution: WorkflowExecution,
        now: datetime,
        report: CycleReport,
    ) -> None:
        interpreter = StepInterpreter(db, registry=self.registry, channels=self.channels_factory(db))

        for _ in range(self.max_steps):
            # Picks up a cancel committed by another session since the last step
            await db.refresh(execution)
            if is_terminal(execution.status):
                return
            result = await interpreter.execute_step(execution, now)
            report.advanced += 1

            if result.continues:
                await db.commit()
                continue

            if result.status == StepOutcome.WAIT:
                report.waiting += 1
            elif result.status == StepOutcome.END:
                report.completed += 1
            elif result.status == StepOutcome.FAILED:
                self._apply_failure(execution, result, now, report)
            await db.commit()
            return

        # Step limit reached (long chain or a loop in the graph); pick up next cycle
        logger.warning("Step limit reached", max_steps=self.max_steps, current_step=execution.current_step_key)
        await db.commit()

    def _apply_failure(
        self,
        execution: WorkflowExecution,
        result: StepRunResult,
        now: datetime,
        report: CycleReport,
    ) -> None:
        execution.retry_count = (execution.retry_count or 0) + 1
        strategy = get_preset(result.retry_policy) or self.retry_strategy

        if strategy.should_retry(execution.retry_count, retryable=result.retryable):
            if execution.status == ExecutionStatus.WAITING.value:
                transition(execution, ExecutionStatus.RUNNING)
            execution.next_run_at = strategy.next_run_at(now, execution.retry_count)
            execution.error_message = result.error
            report.retried += 1
            logger.info(
                "Step failed, retry scheduled",
                step_key=result.step_key,
                attempt=execution.retry_count,
                next_run_at=execution.next_run_at.isoformat(),
            )
            return

        transition(execution, ExecutionStatus.FAILED)
        execution.error_message = result.error
        execution.completed_at = now
        execution.next_run_at = None
        execution.waiting_for = None
        report.failed += 1
        logger.warning(
            "Execution failed",
            step_key=result.step_key,
            attempts=execution.retry_count,
            error=result.error,
        )
