"""SMS usage tracking per practice and billing period.

Soft limits: starter plans cannot send at all, professional plans may exceed
their allowance (the overage is billed), enterprise is unlimited.
"""

import calendar
from dataclasses import dataclass
from datetime import date
from typing import Optional

import structlog
from sqlalchemy import case, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.constants import SMS_INCLUDED_SEGMENTS, SubscriptionTier
from core.utils import utc_now_naive
from db.models.organization import Organization
from db.models.sms_usage import SmsUsage
from services.base import BaseService

logger = structlog.get_logger(__name__)

WARNING_THRESHOLD = 0.8


@dataclass
class SmsLimitCheck:
    can_send: bool
    is_over_limit: bool
    segments_used: int
    segments_included: int
    overage_segments: int
    warning: Optional[str] = None


def billing_period(today: date) -> tuple[date, date]:
    """Calendar month containing ``today``."""
    last_day = calendar.monthrange(today.year, today.month)[1]
    return today.replace(day=1), today.replace(day=last_day)


class SmsUsageService(BaseService[SmsUsage]):
    """Reads and atomically increments the per-period SMS counters."""

    def __init__(self, db: AsyncSession):
        super().__init__(SmsUsage, db)

    async def get_or_create(self, organization_id: str, today: Optional[date] = None) -> SmsUsage:
        today = today or utc_now_naive().date()
        start, end = billing_period(today)

        usage = await self._find(organization_id, start)
        if usage is not None:
            return usage

        org = await self.db.get(Organization, organization_id)
        tier = org.subscription_tier if org else SubscriptionTier.STARTER.value
        try:
            async with self.db.begin_nested():
                usage = SmsUsage(
                    organization_id=organization_id,
                    billing_period_start=start,
                    billing_period_end=end,
                    segments_included=SMS_INCLUDED_SEGMENTS.get(tier, 0),
                )
                self.db.add(usage)
        except IntegrityError:
            # Another sender created the row first
            usage = await self._find(organization_id, start)
        return usage

    async def _find(self, organization_id: str, period_start: date) -> Optional[SmsUsage]:
        result = await self.db.execute(
            select(SmsUsage).where(
                SmsUsage.organization_id == organization_id,
                SmsUsage.billing_period_start == period_start,
            )
        )
        return result.scalar_one_or_none()

    async def check_limit(self, organization_id: str, segments: int = 1) -> SmsLimitCheck:
        usage = await self.current_usage(organization_id)
        used, included = usage.segments_sent, usage.segments_included

        if included == 0:
            return SmsLimitCheck(
                can_send=False,
                is_over_limit=False,
                segments_used=used,
                segments_included=0,
                overage_segments=0,
                warning="SMS is not available on your current plan. Upgrade to Professional or higher to enable SMS.",
            )
        if included < 0:
            return SmsLimitCheck(True, False, used, -1, 0)

        over = used + segments > included
        warning = None
        if over:
            warning = (
                f"You have used {used} of {included} included SMS segments this billing period. "
                "Additional segments will be billed."
            )
        elif used + segments > included * WARNING_THRESHOLD:
            warning = (
                f"You have used {round(used / included * 100)}% of your {included} "
                "included SMS segments this billing period."
            )
        return SmsLimitCheck(True, over, used, included, max(0, used - included), warning)

    async def record_sent(self, organization_id: str, segments: int) -> None:
        """Single UPDATE; right-hand sides read the pre-update row values."""
        usage = await self.get_or_create(organization_id)
        new_total = SmsUsage.segments_sent + segments
        await self.db.execute(
            update(SmsUsage)
            .where(SmsUsage.id == usage.id)
            .values(
                messages_sent=SmsUsage.messages_sent + 1,
                segments_sent=new_total,
                segments_overage=case(
                    (
                        (SmsUsage.segments_included >= 0) & (new_total > SmsUsage.segments_included),
                        new_total - SmsUsage.segments_included,
                    ),
                    else_=0,
                ),
            )
            .execution_options(synchronize_session=False)
        )
        logger.info("SMS usage recorded", organization_id=organization_id, segments=segments)

    async def record_failed(self, organization_id: str) -> None:
        usage = await self.get_or_create(organization_id)
        await self.db.execute(
            update(SmsUsage)
            .where(SmsUsage.id == usage.id)
            .values(messages_failed=SmsUsage.messages_failed + 1)
            .execution_options(synchronize_session=False)
        )

    async def current_usage(self, organization_id: str) -> SmsUsage:
        """Fresh copy of this period's counters."""
        usage = await self.get_or_create(organization_id)
        await self.db.refresh(usage)
        return usage
