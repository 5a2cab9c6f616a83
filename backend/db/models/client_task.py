"""ClientTask model."""

from datetime import datetime
from typing import Optional

from sqlalchemy import Text
from sqlalchemy.orm import Mapped, mapped_column

from db.base import BaseModel, TenantMixin


class ClientTask(TenantMixin, BaseModel):
    """Action item shown to a client in the portal, created by ``create_task`` steps."""

    __tablename__ = "client_action_items"

    client_id: Mapped[str] = mapped_column(nullable=False, index=True)
    execution_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    title: Mapped[str] = mapped_column(nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    action_type: Mapped[str] = mapped_column(default="custom")
    priority: Mapped[str] = mapped_column(default="medium")
    due_date: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(default="pending")
