"""Trigger evaluator: decides which workflows a record event starts.

For each active workflow of the organization that listens to the event's
object type and kind, in ``evaluation_order``:

1. field-change filter (watched field changed; optional from/to values)
2. entry criteria (all/any of field conditions)
3. re-entry rule against this record's previous executions
4. the trigger step must be connected to a first step

Anything malformed makes that workflow not match; nothing is raised for it.
"""

from datetime import datetime, timedelta
from typing import Optional, Sequence

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.constants import EVENT_TRIGGER_TYPES, TERMINAL_STATUSES, ReentryMode, TriggerType
from core.utils import utc_now_naive
from db.models.execution import WorkflowExecution
from db.models.workflow import Workflow
from db.models.workflow_step import WorkflowStep
from triggers.base import CreateIntent, RecordEvent, TriggerDecision
from workflow.conditions import as_text, evaluate_criteria, resolve_field, values_differ
from workflow.graph import StepGraph

logger = structlog.get_logger(__name__)


def _is_set(value) -> bool:
    return value is not None and as_text(value) != ""


def match_trigger_config(workflow: Workflow, event: RecordEvent) -> tuple[bool, str]:
    """Apply the trigger-type specific filter (only field_change has one)."""
    if workflow.trigger_type != TriggerType.FIELD_CHANGE:
        return True, "trigger type matches"

    config = workflow.trigger_config or {}
    watched = config.get("field")
    if not watched:
        return False, "field change trigger has no watched field"

    changed = values_differ(event.previous, event.record, watched)
    if not changed and not event.previous and event.changed_fields:
        changed = watched in event.changed_fields
    if not changed:
        return False, f"field '{watched}' did not change"

    from_value = config.get("from_value")
    if _is_set(from_value) and as_text(resolve_field(event.previous, watched)) != as_text(from_value):
        return False, f"field '{watched}' did not change from '{from_value}'"

    to_value = config.get("to_value")
    if _is_set(to_value) and as_text(resolve_field(event.record, watched)) != as_text(to_value):
        return False, f"field '{watched}' did not change to '{to_value}'"

    return True, f"field '{watched}' changed"


class TriggerEvaluator:
    """Turns record events into execution create-intents."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def evaluate(self, event: RecordEvent, now: Optional[datetime] = None) -> list[CreateIntent]:
        decisions = await self.evaluate_detailed(event, now)
        return [d.intent for d in decisions if d.matched and d.intent]

    async def evaluate_detailed(
        self,
        event: RecordEvent,
        now: Optional[datetime] = None,
    ) -> list[TriggerDecision]:
        """Evaluate every candidate workflow, keeping the reason for each verdict."""
        now = now or utc_now_naive()
        workflows = await self.candidate_workflows(event)
        if not workflows:
            return []

        steps_by_workflow = await self._load_steps([wf.id for wf in workflows])
        decisions = []
        for workflow in workflows:
            try:
                decision = await self._decide(
                    workflow, steps_by_workflow.get(workflow.id, []), event, now
                )
            except (ValueError, TypeError, KeyError, AttributeError) as e:
                logger.warning(
                    "Trigger evaluation error, workflow skipped",
                    workflow_id=workflow.id,
                    record_id=event.record_id,
                    error=str(e),
                )
                decision = TriggerDecision(workflow.id, False, f"evaluation error: {e}")
            decisions.append(decision)
        return decisions

    async def candidate_workflows(self, event: RecordEvent) -> Sequence[Workflow]:
        trigger_types = EVENT_TRIGGER_TYPES.get(event.event_kind, ())
        if not trigger_types:
            logger.info("Event kind has no workflow triggers", event_kind=event.event_kind)
            return []
        result = await self.db.execute(
            select(Workflow)
            .where(
                Workflow.organization_id == event.organization_id,
                Workflow.object_type == event.object_type,
                Workflow.trigger_type.in_(trigger_types),
                Workflow.is_active == True,  # noqa: E712
                Workflow.is_deleted == False,  # noqa: E712
                Workflow.is_template == False,  # noqa: E712
            )
            .order_by(Workflow.evaluation_order.asc(), Workflow.id.asc())
        )
        return result.scalars().all()

    async def _load_steps(self, workflow_ids: list[str]) -> dict[str, list[WorkflowStep]]:
        result = await self.db.execute(
            select(WorkflowStep)
            .where(
                WorkflowStep.workflow_id.in_(workflow_ids),
                WorkflowStep.is_deleted == False,  # noqa: E712
            )
            .order_by(WorkflowStep.step_order.asc())
        )
        grouped: dict[str, list[WorkflowStep]] = {}
        for step in result.scalars().all():
            grouped.setdefault(step.workflow_id, []).append(step)
        return grouped

    async def _decide(
        self,
        workflow: Workflow,
        steps: list[WorkflowStep],
        event: RecordEvent,
        now: datetime,
    ) -> TriggerDecision:
        matched, reason = match_trigger_config(workflow, event)
        if not matched:
            return TriggerDecision(workflow.id, False, reason)

        if not evaluate_criteria(workflow.entry_criteria, event.record):
            return TriggerDecision(workflow.id, False, "entry criteria not met")

        allowed, reason = await self.reentry_allowed(workflow, event.record_id, now)
        if not allowed:
            return TriggerDecision(workflow.id, False, reason)

        graph = StepGraph.from_steps(steps)
        if graph.trigger is None:
            logger.warning("Active workflow has no trigger step", workflow_id=workflow.id)
            return TriggerDecision(workflow.id, False, "workflow has no trigger step")
        entry = graph.entry_step_key()
        if not entry:
            logger.warning("Active workflow trigger is not connected", workflow_id=workflow.id)
            return TriggerDecision(workflow.id, False, "trigger is not connected")

        intent = CreateIntent(
            workflow_id=workflow.id,
            organization_id=workflow.organization_id,
            record_type=event.object_type,
            record_id=event.record_id,
            trigger_type=workflow.trigger_type,
            initial_step_key=entry,
            record_data=dict(event.record),
        )
        return TriggerDecision(workflow.id, True, "matched", intent)

    async def recheck_entry(self, intent: CreateIntent, now: Optional[datetime] = None) -> tuple[bool, str]:
        """Re-run the re-entry rule with the workflow row locked.

        The lock (``SELECT ... FOR UPDATE``) is held until the caller commits
        the new execution, so concurrent events for the same workflow start
        one at a time. SQLite ignores the lock clause.
        """
        now = now or utc_now_naive()
        workflow = await self.db.scalar(
            select(Workflow).where(Workflow.id == intent.workflow_id).with_for_update()
        )
        if workflow is None:
            return False, "workflow no longer exists"
        return await self.reentry_allowed(workflow, intent.record_id, now)

    async def reentry_allowed(
        self,
        workflow: Workflow,
        record_id: str,
        now: datetime,
    ) -> tuple[bool, str]:
        mode = ReentryMode.parse(workflow.reentry_mode)
        if mode == ReentryMode.ALLOW_ALL:
            return True, "re-entry allowed"

        result = await self.db.execute(
            select(WorkflowExecution)
            .where(
                WorkflowExecution.workflow_id == workflow.id,
                WorkflowExecution.record_id == record_id,
            )
            .order_by(WorkflowExecution.started_at.desc(), WorkflowExecution.created_at.desc())
            .limit(1)
        )
        last = result.scalars().first()
        if last is None:
            return True, "first entry"

        if mode == ReentryMode.BLOCK_REENTRY:
            return False, "record already entered this workflow"

        if mode == ReentryMode.REENTRY_AFTER_EXIT:
            if last.status not in TERMINAL_STATUSES:
                return False, "record is still in this workflow"
            return True, "previous execution finished"

        # reentry_after_days
        wait_days = workflow.reentry_wait_days or 0
        if last.started_at and last.started_at + timedelta(days=wait_days) > now:
            return False, f"record entered less than {wait_days} day(s) ago"
        return True, "re-entry wait elapsed"
