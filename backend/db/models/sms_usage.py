"""SmsUsage model."""

from datetime import date

from sqlalchemy import Date, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from db.base import BaseModel, TenantMixin


class SmsUsage(TenantMixin, BaseModel):
    """Per-practice SMS counters for one calendar-month billing period.

    Counters are only ever changed with ``SET col = col + n`` updates
    (see services.sms_usage_service) so concurrent sends never lose counts.
    ``segments_included`` is -1 for unlimited plans.
    """

    __tablename__ = "sms_usage"
    __table_args__ = (
        UniqueConstraint("organization_id", "billing_period_start", name="uq_sms_usage_org_period"),
    )

    billing_period_start: Mapped[date] = mapped_column(Date, nullable=False)
    billing_period_end: Mapped[date] = mapped_column(Date, nullable=False)
    messages_sent: Mapped[int] = mapped_column(default=0)
    segments_sent: Mapped[int] = mapped_column(default=0)
    messages_failed: Mapped[int] = mapped_column(default=0)
    segments_included: Mapped[int] = mapped_column(default=0)
    segments_overage: Mapped[int] = mapped_column(default=0)
