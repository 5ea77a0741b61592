# Services module
from promo_engine.services.coupon_service import CouponService, CouponValidationResult
from promo_engine.services.promotion_service import (
    PromotionService,
    UsageRecordResult,
    UsageRecordStatus,
)

__all__ = [
    "CouponService",
    "CouponValidationResult",
    "PromotionService",
    "UsageRecordResult",
    "UsageRecordStatus",
]
