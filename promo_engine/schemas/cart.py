"""Pydantic schemas for the cart promotion calculation endpoint."""
from datetime import datetime
from typing import Optional, List
from decimal import Decimal
from pydantic import BaseModel, Field, AliasChoices

from promo_engine.schemas.base import BaseCreateSchema


class CartItemIn(BaseCreateSchema):
    """One cart line as sent by the storefront (snake_case or camelCase)."""
    product_id: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("product_id", "productId"),
    )
    quantity: int = Field(..., ge=1)
    price: Decimal = Field(..., ge=0)


class CartCalculateRequest(BaseCreateSchema):
    """Cart contents plus the coupon codes the customer entered."""
    items: List[CartItemIn] = Field(default_factory=list)
    applied_coupons: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("applied_coupons", "appliedCoupons"),
    )


class AppliedPromotionResponse(BaseModel):
    promotion_id: str
    promotion_name: str
    promotion_code: Optional[str] = None
    discount_amount: float
    free_shipping: bool = False
    applicable_items: List[str] = []
    description: str


class AvailablePromotionResponse(BaseModel):
    """Promotion the cart qualifies for but that did not apply."""
    id: str
    name: str
    description: Optional[str] = None
    type: str
    code: Optional[str] = None
    discount_value: float
    minimum_order_value: Optional[float] = None
    end_date: Optional[datetime] = None


class CartCalculationResponse(BaseModel):
    """Cart totals. All amounts are rounded to 2 decimal places."""
    subtotal: float
    applied_promotions: List[AppliedPromotionResponse] = []
    total_discount: float
    shipping_cost: float
    tax_amount: float
    total: float
    available_promotions: List[AvailablePromotionResponse] = []
