"""WorkflowStep model."""

from typing import Optional

from sqlalchemy import JSON, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.base import BaseModel


class WorkflowStep(BaseModel):
    """One node on the workflow canvas.

    Attributes:
        workflow_id: Owning workflow
        step_key: Canvas node id, unique within the workflow
        step_type: See core.constants.StepType
        step_order: Display order
        step_config: Type-specific settings (see workflow.step_configs)
        next_step_key: Successor for every type except decision and end
        position_x / position_y: Canvas coordinates
    """

    __tablename__ = "workflow_steps"
    __table_args__ = (
        UniqueConstraint("workflow_id", "step_key", name="uq_workflow_steps_workflow_key"),
    )

    workflow_id: Mapped[str] = mapped_column(
        ForeignKey("workflows.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    step_key: Mapped[str] = mapped_column(nullable=False)
    step_type: Mapped[str] = mapped_column(nullable=False, index=True)
    step_order: Mapped[int] = mapped_column(nullable=False, default=0)
    step_config: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    next_step_key: Mapped[Optional[str]] = mapped_column(nullable=True)
    position_x: Mapped[float] = mapped_column(default=0.0)
    position_y: Mapped[float] = mapped_column(default=0.0)

    workflow: Mapped["Workflow"] = relationship(
        "Workflow", back_populates="steps", lazy="noload"
    )
