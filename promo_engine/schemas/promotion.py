"""Pydantic schemas for promotions, coupons and promotion usage."""
from datetime import datetime
from typing import Optional, List
from decimal import Decimal
from uuid import UUID
from pydantic import BaseModel, Field, field_validator, model_validator

from promo_engine.schemas.base import BaseResponseSchema, BaseCreateSchema, BaseUpdateSchema
from promo_engine.core.enum_utils import (
    create_uppercase_validator, normalize_code,
    VALID_PROMOTION_TYPES, VALID_PROMOTION_STATUSES, VALID_PROMOTION_TARGET_TYPES,
)
from promo_engine.models.promotion import PromotionType, PromotionTargetType, PromotionStatus
from promo_engine.db_types import as_utc


def create_utc_dates_validator(*field_names: str) -> classmethod:
    """Offsets sent by clients are folded into UTC so SQLite stores the same instant."""

    @field_validator(*field_names)
    @classmethod
    def validate(cls, v):
        return as_utc(v)

    return validate


# ==================== Promotion Schemas ====================

class PromotionBase(BaseCreateSchema):
    """Base schema for Promotion."""
    code: Optional[str] = Field(None, min_length=3, max_length=50)
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None

    # Type & Targeting
    type: PromotionType
    target_type: PromotionTargetType = PromotionTargetType.CART_TOTAL
    discount_value: Decimal = Field(Decimal("0"), ge=0)
    max_discount_amount: Optional[Decimal] = Field(None, ge=0)

    # Lifecycle
    status: PromotionStatus = PromotionStatus.DRAFT
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    priority: int = 0
    stackable: bool = False
    requires_coupon: bool = False

    # Cart conditions
    minimum_order_value: Optional[Decimal] = Field(None, ge=0)
    maximum_order_value: Optional[Decimal] = Field(None, ge=0)
    minimum_quantity: Optional[int] = Field(None, ge=0)
    maximum_quantity: Optional[int] = Field(None, ge=0)

    # Targeting
    applicable_products: List[UUID] = Field(default_factory=list)
    applicable_categories: List[UUID] = Field(default_factory=list)
    exclude_products: List[UUID] = Field(default_factory=list)
    exclude_categories: List[UUID] = Field(default_factory=list)
    customer_segments: List[UUID] = Field(default_factory=list)

    # Usage limits
    usage_limit: Optional[int] = Field(None, ge=0)
    usage_limit_per_customer: Optional[int] = Field(None, ge=0)

    # BUY_X_GET_Y
    buy_quantity: Optional[int] = Field(None, ge=1)
    get_quantity: Optional[int] = Field(None, ge=1)
    get_discount_percent: Optional[Decimal] = Field(None, ge=0, le=100)

    _normalize_type = create_uppercase_validator('type', VALID_PROMOTION_TYPES)
    _normalize_target_type = create_uppercase_validator('target_type', VALID_PROMOTION_TARGET_TYPES)
    _normalize_status = create_uppercase_validator('status', VALID_PROMOTION_STATUSES)
    _dates_to_utc = create_utc_dates_validator('start_date', 'end_date')

    @field_validator('code', mode='before')
    @classmethod
    def normalize_promotion_code(cls, v):
        return normalize_code(v) if isinstance(v, str) else v

    @model_validator(mode='after')
    def check_rules(self):
        if self.type == PromotionType.PERCENTAGE and self.discount_value > 100:
            raise ValueError("Percentage discount cannot exceed 100")
        if self.type == PromotionType.BULK_DISCOUNT and self.discount_value > 100:
            raise ValueError("Bulk discount percentage cannot exceed 100")
        if self.type == PromotionType.BUY_X_GET_Y and (not self.buy_quantity or not self.get_quantity):
            raise ValueError("buy_quantity and get_quantity are required for BUY_X_GET_Y")
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must be after start_date")
        return self


class PromotionCreate(PromotionBase):
    """Schema for creating Promotion."""
    pass


class PromotionUpdate(BaseUpdateSchema):
    """Schema for updating Promotion."""
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    status: Optional[PromotionStatus] = None
    discount_value: Optional[Decimal] = Field(None, ge=0)
    max_discount_amount: Optional[Decimal] = Field(None, ge=0)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    priority: Optional[int] = None
    stackable: Optional[bool] = None
    requires_coupon: Optional[bool] = None

    minimum_order_value: Optional[Decimal] = Field(None, ge=0)
    maximum_order_value: Optional[Decimal] = Field(None, ge=0)
    minimum_quantity: Optional[int] = Field(None, ge=0)
    maximum_quantity: Optional[int] = Field(None, ge=0)

    applicable_products: Optional[List[UUID]] = None
    applicable_categories: Optional[List[UUID]] = None
    exclude_products: Optional[List[UUID]] = None
    exclude_categories: Optional[List[UUID]] = None
    customer_segments: Optional[List[UUID]] = None

    usage_limit: Optional[int] = Field(None, ge=0)
    usage_limit_per_customer: Optional[int] = Field(None, ge=0)

    buy_quantity: Optional[int] = Field(None, ge=1)
    get_quantity: Optional[int] = Field(None, ge=1)
    get_discount_percent: Optional[Decimal] = Field(None, ge=0, le=100)

    _normalize_status = create_uppercase_validator('status', VALID_PROMOTION_STATUSES)
    _dates_to_utc = create_utc_dates_validator('start_date', 'end_date')


class PromotionResponse(BaseResponseSchema):
    """Response schema for Promotion."""
    id: UUID
    code: Optional[str] = None
    name: str
    description: Optional[str] = None
    type: str
    target_type: str
    discount_value: Decimal
    max_discount_amount: Optional[Decimal] = None
    status: str
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    priority: int
    stackable: bool
    requires_coupon: bool
    minimum_order_value: Optional[Decimal] = None
    maximum_order_value: Optional[Decimal] = None
    minimum_quantity: Optional[int] = None
    maximum_quantity: Optional[int] = None
    applicable_products: List[str] = []
    applicable_categories: List[str] = []
    exclude_products: List[str] = []
    exclude_categories: List[str] = []
    customer_segments: List[str] = []
    usage_limit: Optional[int] = None
    usage_count: int
    usage_limit_per_customer: Optional[int] = None
    buy_quantity: Optional[int] = None
    get_quantity: Optional[int] = None
    get_discount_percent: Optional[Decimal] = None
    created_at: datetime
    updated_at: datetime


class PromotionBrief(BaseResponseSchema):
    """Brief promotion info for lists and coupon validation."""
    id: UUID
    code: Optional[str] = None
    name: str
    description: Optional[str] = None
    type: str
    discount_value: Decimal
    status: str
    priority: int
    stackable: bool
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    usage_count: int


class PromotionListResponse(BaseModel):
    """Response for listing Promotions."""
    items: List[PromotionBrief]
    total: int
    skip: int = 0
    limit: int = 50


# ==================== Coupon Schemas ====================

class CouponCreate(BaseCreateSchema):
    """Schema for issuing a coupon against a promotion."""
    code: str = Field(..., min_length=3, max_length=50)
    active: bool = True
    assigned_to_user_id: Optional[UUID] = None
    usage_limit: Optional[int] = Field(None, ge=0)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    _dates_to_utc = create_utc_dates_validator('start_date', 'end_date')

    @field_validator('code', mode='before')
    @classmethod
    def normalize_coupon_code(cls, v):
        return normalize_code(v) if isinstance(v, str) else v


class CouponResponse(BaseResponseSchema):
    """Response schema for Coupon."""
    id: UUID
    code: str
    promotion_id: UUID
    active: bool
    assigned_to_user_id: Optional[UUID] = None
    usage_limit: Optional[int] = None
    usage_count: int
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    created_at: datetime


class CouponValidateRequest(BaseCreateSchema):
    """Request to validate a coupon code."""
    code: str = Field(..., min_length=1, max_length=50)


class CouponValidateResponse(BaseModel):
    """Coupon validation response. Invalid codes are reported, not raised."""
    valid: bool
    code: str
    message: str
    promotion: Optional[PromotionBrief] = None


# ==================== Usage Schemas ====================

class PromotionUsageCreate(BaseCreateSchema):
    """Order-completion payload recording a consumed promotion."""
    promotion_id: UUID
    user_id: UUID
    order_id: UUID
    discount_amount: Decimal = Field(..., ge=0)
    coupon_code: Optional[str] = Field(None, max_length=50)


class PromotionUsageResponse(BaseResponseSchema):
    """Response schema for PromotionUsage."""
    id: UUID
    promotion_id: UUID
    coupon_id: Optional[UUID] = None
    user_id: UUID
    order_id: UUID
    discount_amount: Decimal
    created_at: datetime


class UsageRecordResponse(BaseModel):
    """Outcome of recording usage: RECORDED, DUPLICATE or LIMIT_REACHED."""
    status: str
    usage: Optional[PromotionUsageResponse] = None
