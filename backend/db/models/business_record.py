"""BusinessRecord model."""

from typing import Optional

from sqlalchemy import JSON
from sqlalchemy.orm import Mapped, mapped_column

from db.base import BaseModel, TenantMixin


class BusinessRecord(TenantMixin, BaseModel):
    """A CRM record (lead, meeting, invoice, ...) as seen by workflows.

    Field values live in ``data``; ``client_id`` links the record to the
    portal client that messages and action items are addressed to.
    """

    __tablename__ = "business_records"

    object_type: Mapped[str] = mapped_column(nullable=False, index=True)
    client_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    def snapshot(self) -> dict:
        """Field values plus identifiers, as stored in execution context."""
        values = dict(self.data or {})
        values.setdefault("id", self.id)
        if self.client_id:
            values.setdefault("client_id", self.client_id)
        return values
