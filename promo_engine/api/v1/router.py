from fastapi import APIRouter

from promo_engine.api.v1.endpoints import (
    # Storefront
    cart_promotions,
    # Back office
    promotions,
    coupons,
)

# Create main API router
api_router = APIRouter(prefix="/api/v1")

# ==================== Storefront (cart preview, coupon check) ====================
# Registered before the admin router so /promotions/calculate and
# /promotions/validate are matched ahead of /promotions/{promotion_id}
api_router.include_router(
    cart_promotions.router,
    prefix="/promotions",
    tags=["Cart Promotions"]
)

# ==================== Promotions (admin) ====================
api_router.include_router(
    promotions.router,
    prefix="/promotions",
    tags=["Promotions"]
)

# ==================== Coupons ====================
api_router.include_router(coupons.router)
