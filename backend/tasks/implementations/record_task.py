"""Record steps: client action items, field updates and new records."""

from datetime import timedelta

from core.exceptions import StepExecutionError
from db.models.client_task import ClientTask
from services.record_service import RecordService
from tasks.base_task import BaseTask, StepContext, TaskResult
from workflow.step_configs import CreateRecordConfig, CreateTaskConfig, UpdateFieldConfig


class CreateActionItemTask(BaseTask):
    """Create one or more portal action items for the record's client."""

    task_type = "create_task"
    display_name = "Create Task"
    description = "Assign action items to the client"

    async def execute(self, config: CreateTaskConfig, context: StepContext) -> TaskResult:
        client_id = context.client_id
        if not client_id:
            raise StepExecutionError("Record has no client to assign tasks to", retryable=False)

        created = []
        for spec in config.task_specs():
            item = ClientTask(
                organization_id=context.organization_id,
                client_id=client_id,
                execution_id=context.execution.id,
                title=context.render(spec.title),
                description=context.render(spec.description) or None,
                action_type=spec.action_type,
                priority=spec.priority,
                due_date=context.now + timedelta(days=spec.due_days) if spec.due_days else None,
            )
            context.db.add(item)
            created.append(item)
        await context.db.flush()

        return TaskResult(success=True, output={
            "client_id": client_id,
            "task_ids": [item.id for item in created],
            "count": len(created),
        })


class UpdateFieldTask(BaseTask):
    task_type = "update_field"
    display_name = "Update Field"
    description = "Set a field on the triggering record"

    async def execute(self, config: UpdateFieldConfig, context: StepContext) -> TaskResult:
        if context.record is None:
            raise StepExecutionError(
                f"{context.execution.record_type} record {context.execution.record_id} not found",
                retryable=False,
            )

        value = context.render_value(config.value)
        old_value = (context.record.data or {}).get(config.field)
        await RecordService(context.db).set_field(context.record, config.field, value)
        # Later steps render against the updated values
        context.data.record_data[config.field] = value

        return TaskResult(success=True, output={
            "field": config.field,
            "old_value": old_value,
            "new_value": value,
        })


class CreateRecordTask(BaseTask):
    task_type = "create_record"
    display_name = "Create Record"
    description = "Create a new record linked to the same client"

    async def execute(self, config: CreateRecordConfig, context: StepContext) -> TaskResult:
        data = context.render_value(config.record_data) or {}
        record = await RecordService(context.db).create_record(
            organization_id=context.organization_id,
            object_type=config.record_type,
            data=data,
            client_id=context.client_id,
        )
        return TaskResult(success=True, output={"record_id": record.id, "record_type": record.object_type})


RECORD_TASK_TYPES = {
    "create_task": CreateActionItemTask,
    "update_field": UpdateFieldTask,
    "create_record": CreateRecordTask,
}
