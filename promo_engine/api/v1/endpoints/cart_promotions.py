"""
Storefront promotion endpoints.

Cart preview calculation and coupon pre-validation. Both are open to
anonymous shoppers; a bearer token, when present, identifies the customer
for segment, first-order and per-customer checks.
"""

import logging

from fastapi import APIRouter

from promo_engine.api.deps import DB, CustomerId
from promo_engine.core.enum_utils import normalize_code
from promo_engine.schemas.cart import CartCalculateRequest, CartCalculationResponse
from promo_engine.schemas.promotion import (
    CouponValidateRequest, CouponValidateResponse, PromotionBrief,
)
from promo_engine.services.coupon_service import CouponService
from promo_engine.services.promotion_service import PromotionService

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/calculate", response_model=CartCalculationResponse)
async def calculate_cart_promotions(
    request: CartCalculateRequest,
    db: DB,
    customer_id: CustomerId,
):
    """
    Calculate applicable promotions, shipping, tax and total for a cart.

    Read-only: nothing is counted until the order completes and usage is
    recorded through POST /promotions/usage.
    """
    service = PromotionService(db)
    items = await service.build_cart_lines(request.items)

    result = await service.calculate_cart_promotions(
        items,
        applied_coupons=request.applied_coupons,
        customer_id=customer_id,
    )

    logger.info(
        f"Cart calculated: subtotal {result.subtotal}, "
        f"{len(result.applied_promotions)} promotion(s), discount {result.total_discount}"
    )
    return CartCalculationResponse(**result.to_dict())


@router.post("/validate", response_model=CouponValidateResponse)
async def validate_coupon(
    request: CouponValidateRequest,
    db: DB,
    customer_id: CustomerId,
):
    """
    Validate a coupon code.
    Returns the linked promotion if valid, the reason if not.
    """
    service = CouponService(db)
    validation = await service.validate_coupon_code(request.code, user_id=customer_id)

    return CouponValidateResponse(
        valid=validation.valid,
        code=normalize_code(request.code),
        message=validation.message,
        promotion=PromotionBrief.model_validate(validation.promotion) if validation.promotion else None,
    )
