"""Workflow model."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import ReentryMode, TriggerType
from db.base import BaseModel, TenantMixin


class Workflow(TenantMixin, BaseModel):
    """An automation attached to one business object type.

    Attributes:
        name / description: Shown in the workflow list
        object_type: lead, meeting, payment, invoice, service, document, contract, intake_form
        trigger_type: record_create, record_update, field_change, scheduled, manual,
            form_submit, payment_received
        trigger_config: {field, from_value, to_value, schedule}
        entry_criteria: {conditions: [{field, operator, value}], match_type: all|any}
        reentry_mode: allow_all, block_reentry, reentry_after_days, reentry_after_exit
        reentry_wait_days: Cool-down for reentry_after_days
        is_active: Only active workflows are evaluated for record events
        is_template: Marks practice-owned starting points
        canvas_data: Viewport / layout blob owned by the editor
        evaluation_order: Lower runs first when several workflows match one event
        execution_count / last_executed_at: Bumped when an execution is created
    """

    __tablename__ = "workflows"

    name: Mapped[str] = mapped_column(nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    object_type: Mapped[str] = mapped_column(nullable=False, index=True)
    trigger_type: Mapped[str] = mapped_column(
        nullable=False, default=TriggerType.RECORD_CREATE.value, index=True
    )
    trigger_config: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    entry_criteria: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    reentry_mode: Mapped[str] = mapped_column(
        nullable=False, default=ReentryMode.ALLOW_ALL.value
    )
    reentry_wait_days: Mapped[Optional[int]] = mapped_column(nullable=True)
    is_active: Mapped[bool] = mapped_column(default=False, index=True)
    is_template: Mapped[bool] = mapped_column(default=False)
    canvas_data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    evaluation_order: Mapped[int] = mapped_column(default=0)
    execution_count: Mapped[int] = mapped_column(default=0)
    last_executed_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    organization: Mapped["Organization"] = relationship(
        "Organization", back_populates="workflows", lazy="noload"
    )
    steps: Mapped[list["WorkflowStep"]] = relationship(
        "WorkflowStep",
        back_populates="workflow",
        cascade="all, delete-orphan",
        order_by="WorkflowStep.step_order",
        lazy="noload",
    )
    executions: Mapped[list["WorkflowExecution"]] = relationship(
        "WorkflowExecution",
        back_populates="workflow",
        lazy="noload",
    )
