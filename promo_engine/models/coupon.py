"""
Coupon Model for the Storefront

A coupon is a redeemable code that activates a Promotion, optionally
restricted to a single customer.
"""

import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import String, Boolean, DateTime, Integer, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from promo_engine.database import Base
from promo_engine.db_types import UUIDType, utcnow, as_utc

if TYPE_CHECKING:
    from promo_engine.models.promotion import Promotion


class Coupon(Base):
    """
    Coupon/Promo code model.

    A coupon without an assigned user is usable by anyone; one with an
    assignment is usable only by that customer.
    """
    __tablename__ = "coupons"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )

    # Coupon Code
    code: Mapped[str] = mapped_column(
        String(50),
        unique=True,
        nullable=False,
        index=True,
        comment="Unique coupon code (stored UPPERCASE)"
    )

    promotion_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("promotions.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Customer Restriction
    assigned_to_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        nullable=True,
        index=True,
        comment="Only this customer may redeem the coupon (null = anyone)"
    )

    # Usage Limits
    usage_limit: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        comment="Total times this coupon can be used"
    )
    usage_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Number of times coupon has been used"
    )

    # Validity Period (null = open-ended)
    start_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    end_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False
    )

    promotion: Mapped["Promotion"] = relationship("Promotion", back_populates="coupons")

    def is_usable_by(self, user_id: Optional[uuid.UUID]) -> bool:
        """Unassigned coupons are public; assigned ones belong to one customer."""
        if self.assigned_to_user_id is None:
            return True
        return user_id is not None and str(self.assigned_to_user_id) == str(user_id)

    def is_within_window(self, now: datetime) -> bool:
        start = as_utc(self.start_date)
        end = as_utc(self.end_date)
        if start and start > now:
            return False
        if end and end < now:
            return False
        return True

    @property
    def is_exhausted(self) -> bool:
        return self.usage_limit is not None and (self.usage_count or 0) >= self.usage_limit

    def __repr__(self) -> str:
        return f"<Coupon(code='{self.code}', promotion_id={self.promotion_id})>"
