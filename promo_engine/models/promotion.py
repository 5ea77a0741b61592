"""Promotion and promotion usage models.

A Promotion is an admin-defined discount rule: a discount type, its
targeting (products/categories/segments) and eligibility constraints
(validity window, order value and quantity bounds, usage caps).
PromotionUsage is the immutable audit trail written once per completed
order that consumed a promotion.
"""
import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Integer, Text, Numeric
from sqlalchemy import UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from promo_engine.database import Base
from promo_engine.db_types import UUIDType, JSONType, utcnow

if TYPE_CHECKING:
    from promo_engine.models.coupon import Coupon


# ==================== ENUMS ====================

class PromotionType(str, Enum):
    """How the discount amount is computed."""
    PERCENTAGE = "PERCENTAGE"          # e.g. 15% off applicable items
    FIXED_AMOUNT = "FIXED_AMOUNT"      # e.g. AED 50 off
    FREE_SHIPPING = "FREE_SHIPPING"
    BUY_X_GET_Y = "BUY_X_GET_Y"        # e.g. buy 3 get 1 free
    BULK_DISCOUNT = "BULK_DISCOUNT"    # percentage once a quantity is reached


class PromotionTargetType(str, Enum):
    """What the promotion is aimed at."""
    ALL_PRODUCTS = "ALL_PRODUCTS"
    SPECIFIC_PRODUCT = "SPECIFIC_PRODUCT"
    PRODUCT_CATEGORY = "PRODUCT_CATEGORY"
    CART_TOTAL = "CART_TOTAL"
    CUSTOMER_SEGMENT = "CUSTOMER_SEGMENT"
    FIRST_ORDER = "FIRST_ORDER"        # Only customers without prior orders
    BULK_ORDER = "BULK_ORDER"


class PromotionStatus(str, Enum):
    """Promotion status."""
    DRAFT = "DRAFT"
    SCHEDULED = "SCHEDULED"
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    EXPIRED = "EXPIRED"


# ==================== PROMOTION MASTER ====================

class Promotion(Base):
    """
    Promotion master.

    Optional bounds (order value, quantity, usage limits, dates) are
    nullable: NULL means unbounded on that side.
    """
    __tablename__ = "promotions"
    __table_args__ = (
        Index("ix_promotions_dates", "start_date", "end_date"),
        Index("ix_promotions_status_priority", "status", "priority"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )

    # Identification
    code: Mapped[Optional[str]] = mapped_column(
        String(50),
        unique=True,
        nullable=True,
        index=True,
        comment="Public promotion code (UPPERCASE)"
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Type & Targeting
    type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="PERCENTAGE, FIXED_AMOUNT, FREE_SHIPPING, BUY_X_GET_Y, BULK_DISCOUNT"
    )
    target_type: Mapped[str] = mapped_column(
        String(50),
        default="CART_TOTAL",
        nullable=False,
        comment="ALL_PRODUCTS, SPECIFIC_PRODUCT, PRODUCT_CATEGORY, CART_TOTAL, CUSTOMER_SEGMENT, FIRST_ORDER, BULK_ORDER"
    )
    discount_value: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        default=0,
        comment="Percentage or amount, depending on type"
    )
    max_discount_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(10, 2),
        nullable=True,
        comment="Cap on discount for PERCENTAGE type"
    )

    # Status
    status: Mapped[str] = mapped_column(
        String(50),
        default="DRAFT",
        nullable=False,
        comment="DRAFT, SCHEDULED, ACTIVE, INACTIVE, EXPIRED"
    )

    # Validity (null = open-ended)
    start_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    end_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Evaluation order & combination
    priority: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        comment="Higher priority is evaluated first"
    )
    stackable: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    requires_coupon: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
        comment="Only applied when redeemed through a coupon"
    )

    # Cart conditions
    minimum_order_value: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    maximum_order_value: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    minimum_quantity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    maximum_quantity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Targeting lists (stored as JSON lists of id strings, empty = no restriction)
    applicable_products: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    applicable_categories: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    exclude_products: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    exclude_categories: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    customer_segments: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)

    # Usage limits
    usage_limit: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        comment="Total redemptions allowed (null = unlimited)"
    )
    usage_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    usage_limit_per_customer: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # BUY_X_GET_Y
    buy_quantity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    get_quantity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    get_discount_percent: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(5, 2),
        nullable=True,
        comment="Discount on the free units, defaults to 100"
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False
    )

    coupons: Mapped[List["Coupon"]] = relationship(
        "Coupon",
        back_populates="promotion",
        cascade="all, delete-orphan",
    )

    @property
    def is_targeted(self) -> bool:
        """True when the promotion is restricted to specific products or categories."""
        return bool(self.applicable_products) or bool(self.applicable_categories)

    def __repr__(self) -> str:
        return f"<Promotion(name='{self.name}', type='{self.type}', priority={self.priority})>"


class PromotionUsage(Base):
    """
    Immutable record of a promotion consumed by a completed order.

    (promotion_id, order_id) is unique so retried order-completion
    webhooks cannot count the same redemption twice.
    """
    __tablename__ = "promotion_usage"
    __table_args__ = (
        UniqueConstraint("promotion_id", "order_id", name="uq_promotion_usage_promotion_order"),
        Index("ix_promotion_usage_promotion_user", "promotion_id", "user_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    promotion_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("promotions.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    coupon_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("coupons.id", ondelete="SET NULL"),
        nullable=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        nullable=False,
        index=True
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        nullable=False
    )
    discount_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        comment="Actual discount applied"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<PromotionUsage(promotion_id={self.promotion_id}, order_id={self.order_id})>"
