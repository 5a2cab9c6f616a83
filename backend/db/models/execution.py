"""WorkflowExecution model."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, ForeignKey, Index, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import ExecutionStatus, TriggerType
from db.base import BaseModel, TenantMixin


class WorkflowExecution(TenantMixin, BaseModel):
    """One run of one workflow for one business record.

    Attributes:
        workflow_id: Workflow being run
        record_type / record_id: The business record the run is about
        trigger_type: What started it (manual runs included)
        status: running, waiting, completed, failed, cancelled
        current_step_key: Step the scheduler will execute next
        last_step_key: Last step that finished successfully
        context: {trigger_type, triggered_at, record_data, step_results, variables}
        step_snapshot: Step graph frozen when the run was created
        error_message: Last failure, cleared by retry
        retry_count: Consecutive failed attempts on the current step
        started_at / completed_at: Naive UTC
        next_run_at: Not due before this instant (wait steps and retry back-off)
        waiting_for: What a waiting run is parked on, e.g. "Wait 2 days until 2025-01-03T09:00"
        locked_until / lock_token: Scheduler lease
    """

    __tablename__ = "workflow_executions"
    __table_args__ = (
        Index("ix_workflow_executions_due", "status", "next_run_at"),
        Index("ix_workflow_executions_record", "workflow_id", "record_id"),
    )

    workflow_id: Mapped[str] = mapped_column(
        ForeignKey("workflows.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    record_type: Mapped[str] = mapped_column(nullable=False)
    record_id: Mapped[str] = mapped_column(nullable=False, index=True)
    trigger_type: Mapped[str] = mapped_column(
        default=TriggerType.MANUAL.value
    )
    status: Mapped[str] = mapped_column(
        default=ExecutionStatus.RUNNING.value, index=True
    )
    current_step_key: Mapped[Optional[str]] = mapped_column(nullable=True)
    last_step_key: Mapped[Optional[str]] = mapped_column(nullable=True)
    context: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    step_snapshot: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(default=0)
    started_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    next_run_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    waiting_for: Mapped[Optional[str]] = mapped_column(nullable=True)
    locked_until: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    lock_token: Mapped[Optional[str]] = mapped_column(nullable=True)

    workflow: Mapped["Workflow"] = relationship(
        "Workflow", back_populates="executions", lazy="noload"
    )
    step_executions: Mapped[list["StepExecution"]] = relationship(
        "StepExecution",
        back_populates="execution",
        cascade="all, delete-orphan",
        order_by="StepExecution.sequence",
        lazy="noload",
    )

    @property
    def duration_ms(self) -> Optional[int]:
        if self.started_at and self.completed_at:
            return int((self.completed_at - self.started_at).total_seconds() * 1000)
        return None
