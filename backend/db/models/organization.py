"""Organization (practice) model."""

from typing import Optional

from sqlalchemy import JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import SubscriptionTier
from db.base import BaseModel


class Organization(BaseModel):
    """A doula practice; every workflow and record belongs to exactly one.

    Attributes:
        name: Practice name
        slug: URL-friendly identifier
        subscription_tier: starter, professional or enterprise (drives SMS allowance)
        is_active: Whether the practice can run automations
        settings: Practice-level preferences (timezone, sender name, ...)
    """

    __tablename__ = "organizations"

    name: Mapped[str] = mapped_column(nullable=False, index=True)
    slug: Mapped[str] = mapped_column(nullable=False, unique=True, index=True)
    subscription_tier: Mapped[str] = mapped_column(
        nullable=False, default=SubscriptionTier.STARTER.value
    )
    is_active: Mapped[bool] = mapped_column(default=True, index=True)
    settings: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    workflows: Mapped[list["Workflow"]] = relationship(
        "Workflow",
        back_populates="organization",
        cascade="all, delete-orphan",
        lazy="noload",
    )
