"""WorkflowTemplate model."""

from typing import Optional

from sqlalchemy import JSON, Text
from sqlalchemy.orm import Mapped, mapped_column

from core.constants import TemplateCategory
from db.base import BaseModel


class WorkflowTemplate(BaseModel):
    """Gallery entry a practice can instantiate into its own workflow.

    ``template_data`` holds ``{name, description, trigger_config, entry_criteria,
    reentry_mode, reentry_wait_days, steps: [{step_key, step_type, step_config,
    next_step_key, step_order, position_x, position_y}]}``.
    """

    __tablename__ = "workflow_templates"

    name: Mapped[str] = mapped_column(nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(
        nullable=False, default=TemplateCategory.CUSTOM.value, index=True
    )
    object_type: Mapped[str] = mapped_column(nullable=False)
    trigger_type: Mapped[str] = mapped_column(nullable=False)
    template_data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    is_active: Mapped[bool] = mapped_column(default=True, index=True)
