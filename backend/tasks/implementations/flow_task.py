"""Control-flow steps: trigger, wait, decision, end."""

from datetime import timedelta

from core.constants import ExecutionStatus
from core.exceptions import StepExecutionError
from core.utils import parse_datetime
from tasks.base_task import BaseTask, StepContext, TaskResult
from workflow.conditions import evaluate_condition, resolve_field
from workflow.step_configs import DecisionConfig, EndStepConfig, TriggerStepConfig, WaitConfig


class TriggerTask(BaseTask):
    """Entry node; only hands control to its successor."""

    task_type = "trigger"
    display_name = "Trigger"
    description = "Where the workflow starts"

    async def execute(self, config: TriggerStepConfig, context: StepContext) -> TaskResult:
        return TaskResult(success=True, next_step_key=context.node.next_step_key)


class EndTask(BaseTask):
    task_type = "end"
    display_name = "End"
    description = "Completes the workflow"

    async def execute(self, config: EndStepConfig, context: StepContext) -> TaskResult:
        return TaskResult(success=True, output={"completed": True}, end=True)


class DecisionTask(BaseTask):
    """Branch on a field of the record, the context or an earlier step's output."""

    task_type = "decision"
    display_name = "Decision"
    description = "Choose the true or false branch from a condition"

    async def execute(self, config: DecisionConfig, context: StepContext) -> TaskResult:
        data = context.data.lookup_data()
        condition = config.as_condition()
        condition["value"] = context.render_value(condition["value"])
        outcome = evaluate_condition(condition, data)

        branch = "true" if outcome else "false"
        target = config.branch_target(outcome) or context.node.branches.get(branch)
        if not target:
            raise StepExecutionError(f"Decision has no '{branch}' branch", retryable=False)

        return TaskResult(
            success=True,
            output={
                "field": config.field,
                "operator": config.operator,
                "value": condition["value"],
                "actual": resolve_field(data, config.field or ""),
                "result": outcome,
                "branch": branch,
            },
            next_step_key=target,
        )


class WaitTask(BaseTask):
    """Park the execution until a duration passes or a date is reached.

    First visit computes the target and returns ``wait_until``; the
    interpreter parks the execution in ``waiting`` with that ``next_run_at``.
    The visit after that instant completes the step.
    """

    task_type = "wait"
    display_name = "Wait"
    description = "Pause for a duration or until a date"

    async def execute(self, config: WaitConfig, context: StepContext) -> TaskResult:
        execution = context.execution
        if execution.status == ExecutionStatus.WAITING.value and execution.next_run_at is not None:
            if execution.next_run_at <= context.now:
                return TaskResult(
                    success=True,
                    output={"resumed": True, "waited_until": execution.next_run_at.isoformat()},
                )
            return TaskResult(
                success=True,
                wait_until=execution.next_run_at,
                output={"resumed": False, "wait_until": execution.next_run_at.isoformat()},
            )

        wait_until = self._target(config, context)
        if wait_until is None or wait_until <= context.now:
            return TaskResult(success=True, output={"resumed": True, "wait_until": None})

        return TaskResult(
            success=True,
            wait_until=wait_until,
            output={
                "resumed": False,
                "wait_until": wait_until.isoformat(),
                "wait_days": config.wait_days,
                "wait_hours": config.wait_hours,
                "wait_minutes": config.wait_minutes,
            },
        )

    def _target(self, config: WaitConfig, context: StepContext):
        duration = timedelta(
            days=config.wait_days or 0,
            hours=config.wait_hours or 0,
            minutes=config.wait_minutes or 0,
        )
        if duration.total_seconds() > 0:
            return context.now + duration

        if config.wait_until:
            target = parse_datetime(context.render(config.wait_until))
            if target is None:
                raise StepExecutionError(f"Invalid wait date '{config.wait_until}'", retryable=False)
            return target

        if config.wait_until_field:
            raw = resolve_field(context.data.record_data, config.wait_until_field)
            if raw in (None, ""):
                raise StepExecutionError(
                    f"Field {config.wait_until_field} not found or empty", retryable=False
                )
            target = parse_datetime(raw)
            if target is None:
                raise StepExecutionError(
                    f"Field {config.wait_until_field} is not a date: {raw!r}", retryable=False
                )
            return target

        return None


FLOW_TASK_TYPES = {
    "trigger": TriggerTask,
    "wait": WaitTask,
    "decision": DecisionTask,
    "end": EndTask,
}
