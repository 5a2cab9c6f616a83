"""PortalMessage model."""

from typing import Optional

from sqlalchemy import Text
from sqlalchemy.orm import Mapped, mapped_column

from db.base import BaseModel, TenantMixin


class PortalMessage(TenantMixin, BaseModel):
    """In-app message delivered to a client's portal inbox."""

    __tablename__ = "portal_messages"

    client_id: Mapped[str] = mapped_column(nullable=False, index=True)
    execution_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    subject: Mapped[Optional[str]] = mapped_column(nullable=True)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    sender: Mapped[str] = mapped_column(default="automation")
    is_read: Mapped[bool] = mapped_column(default=False)
