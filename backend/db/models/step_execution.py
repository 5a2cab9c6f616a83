"""StepExecution model."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import StepExecutionStatus
from db.base import BaseModel


class StepExecution(BaseModel):
    """Audit row for a single step attempt inside an execution.

    ``step_key`` and ``step_type`` are copied from the snapshot so the trail
    still reads correctly after the workflow is edited or the step deleted.
    ``sequence`` orders rows within one execution.
    """

    __tablename__ = "step_executions"

    execution_id: Mapped[str] = mapped_column(
        ForeignKey("workflow_executions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    step_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("workflow_steps.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    step_key: Mapped[str] = mapped_column(nullable=False, index=True)
    step_type: Mapped[str] = mapped_column(nullable=False)
    sequence: Mapped[int] = mapped_column(nullable=False, default=1)
    attempt: Mapped[int] = mapped_column(default=1)
    status: Mapped[str] = mapped_column(
        default=StepExecutionStatus.PENDING.value, index=True
    )
    input: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    output: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    execution: Mapped["WorkflowExecution"] = relationship(
        "WorkflowExecution", back_populates="step_executions", lazy="noload"
    )
