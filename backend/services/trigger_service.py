"""Trigger service: turns CRM record events into started executions.

Called from the record write path (``POST /events``). It must never make
that write fail: every problem is logged and reported per workflow in the
returned outcomes.
"""

from typing import Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import WorkflowEngineError
from services.execution_service import ExecutionService, dispatch_execution
from triggers.base import RecordEvent, TriggerOutcome
from triggers.evaluator import TriggerEvaluator

logger = structlog.get_logger(__name__)


class TriggerService:
    """Evaluates an event and starts one execution per matching workflow."""

    def __init__(self, db: AsyncSession, dispatch: bool = True):
        self.db = db
        self.dispatch = dispatch
        self.evaluator = TriggerEvaluator(db)
        self.executions = ExecutionService(db)

    async def handle_record_event(self, event: RecordEvent) -> list[TriggerOutcome]:
        try:
            decisions = await self.evaluator.evaluate_detailed(event)
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Trigger evaluation failed", record_id=event.record_id, error=str(e))
            return []

        outcomes = []
        for decision in decisions:
            if not decision.matched or decision.intent is None:
                outcomes.append(TriggerOutcome(decision.workflow_id, False, decision.reason))
                continue

            execution_id: Optional[str] = None
            try:
                allowed, reason = await self.evaluator.recheck_entry(decision.intent)
                if not allowed:
                    # Releases the workflow row lock
                    await self.db.commit()
                    outcomes.append(TriggerOutcome(decision.workflow_id, False, reason))
                    continue
                execution = await self.executions.start_execution(decision.intent)
                execution_id = execution.id
                # Committed one by one so a later failure cannot undo earlier starts
                await self.db.commit()
            except (SQLAlchemyError, WorkflowEngineError) as e:
                await self.db.rollback()
                logger.error(
                    "Could not start execution",
                    workflow_id=decision.workflow_id,
                    record_id=event.record_id,
                    error=str(e),
                )
                outcomes.append(TriggerOutcome(decision.workflow_id, False, "start failed", error=str(e)))
                continue

            if self.dispatch:
                dispatch_execution(execution_id)
            outcomes.append(TriggerOutcome(decision.workflow_id, True, decision.reason, execution_id))

        logger.info(
            "Record event handled",
            object_type=event.object_type,
            record_id=event.record_id,
            event_kind=event.event_kind,
            started=sum(1 for o in outcomes if o.triggered),
            candidates=len(outcomes),
        )
        return outcomes
