"""Workflow service: CRUD, canvas save, validation-gated activation, templates."""

import logging
from typing import Any, Optional, Sequence

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.constants import ReentryMode
from core.exceptions import NotFoundError, WorkflowValidationFailed
from db.models.workflow import Workflow
from db.models.workflow_step import WorkflowStep
from db.models.workflow_template import WorkflowTemplate
from services.base import BaseService
from workflow.validation import ValidationReport, validate_workflow

logger = logging.getLogger(__name__)

STEP_FIELDS = ("step_type", "step_order", "step_config", "next_step_key", "position_x", "position_y")


class WorkflowService(BaseService[Workflow]):
    """Service for workflow definitions and their step graphs."""

    not_found_message = "Workflow not found"

    def __init__(self, db: AsyncSession):
        super().__init__(Workflow, db)

    async def create_workflow(self, organization_id: str, data: dict[str, Any]) -> Workflow:
        """Create an inactive workflow. ``steps`` in ``data`` are saved with it."""
        steps = data.pop("steps", None) or []
        data["reentry_mode"] = ReentryMode.parse(data.get("reentry_mode")).value
        workflow = await self.create({
            **data,
            "organization_id": organization_id,
            "is_active": False,
        })
        if steps:
            await self._replace_steps(workflow.id, steps)
        return workflow

    async def update_workflow(self, workflow_id: str, organization_id: str, data: dict[str, Any]) -> Workflow:
        """Update settings. Activation only goes through ``toggle_active``."""
        data.pop("is_active", None)
        if data.get("reentry_mode"):
            data["reentry_mode"] = ReentryMode.parse(data["reentry_mode"]).value
        return await self.update(workflow_id, data, organization_id)

    async def delete_workflow(self, workflow_id: str, organization_id: str) -> Workflow:
        """Soft-delete and deactivate; executions keep pointing at the row."""
        workflow = await self.soft_delete(workflow_id, organization_id)
        workflow.is_active = False
        await self.db.flush()
        return workflow

    async def list_workflows(
        self,
        organization_id: str,
        object_type: Optional[str] = None,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[Sequence[Workflow], int]:
        filters = {"is_template": False}
        if object_type:
            filters["object_type"] = object_type
        return await self.list(
            organization_id=organization_id,
            offset=offset,
            limit=limit,
            filters=filters,
        )

    # ─── Steps ─────────────────────────────────────────────

    async def get_steps(self, workflow_id: str) -> list[WorkflowStep]:
        result = await self.db.execute(
            select(WorkflowStep)
            .where(WorkflowStep.workflow_id == workflow_id)
            .order_by(WorkflowStep.step_order, WorkflowStep.step_key)
        )
        return list(result.scalars().all())

    async def _replace_steps(self, workflow_id: str, steps: list[dict[str, Any]]) -> list[WorkflowStep]:
        """Upsert steps by ``step_key``; steps no longer on the canvas are removed.

        Running executions are unaffected because they run from their own
        step snapshot.
        """
        existing = {step.step_key: step for step in await self.get_steps(workflow_id)}
        keep = set()

        for index, item in enumerate(steps):
            key = item["step_key"]
            keep.add(key)
            values = {field: item.get(field) for field in STEP_FIELDS if field in item}
            values.setdefault("step_order", index)
            values["step_config"] = values.get("step_config") or {}

            step = existing.get(key)
            if step is None:
                self.db.add(WorkflowStep(workflow_id=workflow_id, step_key=key, **values))
            else:
                for field, value in values.items():
                    setattr(step, field, value)

        removed = [key for key in existing if key not in keep]
        if removed:
            await self.db.execute(
                delete(WorkflowStep).where(
                    WorkflowStep.workflow_id == workflow_id,
                    WorkflowStep.step_key.in_(removed),
                )
            )
        await self.db.flush()
        return await self.get_steps(workflow_id)

    async def save_canvas(
        self,
        workflow_id: str,
        organization_id: str,
        steps: list[dict[str, Any]],
        canvas_data: Optional[dict] = None,
    ) -> tuple[Workflow, list[WorkflowStep]]:
        workflow = await self.get_or_404(workflow_id, organization_id)
        saved = await self._replace_steps(workflow.id, steps)
        if canvas_data is not None:
            workflow.canvas_data = canvas_data
            await self.db.flush()
        logger.info(f"Canvas saved for workflow {workflow_id}: {len(saved)} steps")
        return workflow, saved

    async def duplicate(self, workflow_id: str, organization_id: str) -> Workflow:
        """Copy settings and steps into a new inactive workflow."""
        source = await self.get_or_404(workflow_id, organization_id)
        steps = await self.get_steps(source.id)
        copy = await self.create_workflow(organization_id, {
            "name": f"{source.name} (Copy)",
            "description": source.description,
            "object_type": source.object_type,
            "trigger_type": source.trigger_type,
            "trigger_config": dict(source.trigger_config or {}),
            "entry_criteria": dict(source.entry_criteria or {}),
            "reentry_mode": source.reentry_mode,
            "reentry_wait_days": source.reentry_wait_days,
            "canvas_data": dict(source.canvas_data or {}),
            "evaluation_order": source.evaluation_order,
            "steps": [
                {
                    "step_key": step.step_key,
                    **{field: getattr(step, field) for field in STEP_FIELDS},
                }
                for step in steps
            ],
        })
        return copy

    # ─── Validation & activation ───────────────────────────

    async def validate(self, workflow_id: str, organization_id: str) -> ValidationReport:
        workflow = await self.get_or_404(workflow_id, organization_id)
        return validate_workflow(workflow, await self.get_steps(workflow.id))

    async def toggle_active(
        self,
        workflow_id: str,
        organization_id: str,
        active: bool,
        force: bool = False,
    ) -> tuple[Workflow, ValidationReport]:
        """Activate or deactivate.

        Activation is refused while validation reports errors. Warnings
        refuse it too unless ``force`` (the "activate anyway" confirmation).

        Raises:
            WorkflowValidationFailed: carrying the errors and warnings
        """
        workflow = await self.get_or_404(workflow_id, organization_id)
        report = ValidationReport()

        if active:
            report = validate_workflow(workflow, await self.get_steps(workflow.id))
            if not report.is_valid:
                raise WorkflowValidationFailed(report.errors, report.warnings)
            if report.warnings and not force:
                raise WorkflowValidationFailed(
                    [], report.warnings, message="Workflow has warnings; confirm to activate"
                )

        workflow.is_active = active
        await self.db.flush()
        logger.info(f"Workflow {workflow_id} {'activated' if active else 'deactivated'}")
        return workflow, report


class TemplateService(BaseService[WorkflowTemplate]):
    """Read-only gallery of workflow templates and instantiation into an organization."""

    not_found_message = "Template not found"

    def __init__(self, db: AsyncSession):
        super().__init__(WorkflowTemplate, db)

    async def list_templates(self, category: Optional[str] = None) -> Sequence[WorkflowTemplate]:
        query = select(WorkflowTemplate).where(
            WorkflowTemplate.is_active == True,  # noqa: E712
            WorkflowTemplate.is_deleted == False,  # noqa: E712
        )
        if category:
            query = query.where(WorkflowTemplate.category == category)
        result = await self.db.execute(query.order_by(WorkflowTemplate.category, WorkflowTemplate.name))
        return result.scalars().all()

    async def instantiate(
        self,
        template_id: str,
        organization_id: str,
        name: Optional[str] = None,
    ) -> Workflow:
        template = await self.get_by_id(template_id)
        if template is None or not template.is_active:
            raise NotFoundError(self.not_found_message)

        data = template.template_data or {}
        return await WorkflowService(self.db).create_workflow(organization_id, {
            "name": name or data.get("name") or template.name,
            "description": data.get("description") or template.description,
            "object_type": template.object_type,
            "trigger_type": template.trigger_type,
            "trigger_config": dict(data.get("trigger_config") or {}),
            "entry_criteria": dict(data.get("entry_criteria") or {}),
            "reentry_mode": data.get("reentry_mode"),
            "reentry_wait_days": data.get("reentry_wait_days"),
            "steps": [dict(step) for step in data.get("steps") or []],
        })
