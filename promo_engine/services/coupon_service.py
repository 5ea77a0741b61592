"""Coupon Service - coupon code validation and resolution to promotions."""
from typing import Optional, List, Tuple
from datetime import datetime, timezone
import uuid
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from promo_engine.core.enum_utils import normalize_code, is_status
from promo_engine.db_types import as_utc
from promo_engine.models.coupon import Coupon
from promo_engine.models.promotion import Promotion, PromotionStatus

logger = logging.getLogger(__name__)


class CouponValidationResult:
    """Outcome of validating a coupon code. Invalid codes are a result, not an error."""
    def __init__(
        self,
        valid: bool,
        message: str,
        promotion: Optional[Promotion] = None,
        coupon: Optional[Coupon] = None,
    ):
        self.valid = valid
        self.message = message
        self.promotion = promotion
        self.coupon = coupon


class CouponService:
    """
    Service for coupon lookups.

    validate_coupon_code() is the pre-check the "apply coupon" endpoint runs;
    resolve_coupon_promotions() is what cart calculation uses, silently
    dropping codes that do not resolve.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_code(self, code: str) -> Optional[Coupon]:
        result = await self.db.execute(
            select(Coupon)
            .options(selectinload(Coupon.promotion))
            .where(Coupon.code == normalize_code(code))
        )
        return result.scalar_one_or_none()

    async def validate_coupon_code(
        self,
        code: str,
        user_id: Optional[uuid.UUID] = None,
        now: Optional[datetime] = None,
    ) -> CouponValidationResult:
        """
        Validate a coupon code for a customer.

        Checks in order, first failure wins:
        exists -> active -> assignment -> usage limit -> validity window
        -> linked promotion ACTIVE.
        """
        now = now or datetime.now(timezone.utc)
        coupon = await self.get_by_code(code)

        if not coupon:
            return CouponValidationResult(False, "Invalid coupon code")

        if not coupon.active:
            return CouponValidationResult(False, "This coupon is no longer active")

        if not coupon.is_usable_by(user_id):
            return CouponValidationResult(False, "This coupon is not assigned to your account")

        if coupon.is_exhausted:
            return CouponValidationResult(False, "This coupon has reached its usage limit")

        start_date = as_utc(coupon.start_date)
        if start_date and start_date > now:
            return CouponValidationResult(False, "This coupon is not yet active")

        end_date = as_utc(coupon.end_date)
        if end_date and end_date < now:
            return CouponValidationResult(False, "This coupon has expired")

        if not is_status(coupon.promotion.status, PromotionStatus.ACTIVE):
            return CouponValidationResult(False, "The associated promotion is not active")

        return CouponValidationResult(
            True,
            "Coupon is valid",
            promotion=coupon.promotion,
            coupon=coupon,
        )

    async def resolve_coupon_promotions(
        self,
        codes: List[str],
        user_id: Optional[uuid.UUID] = None,
        now: Optional[datetime] = None,
    ) -> List[Tuple[Promotion, Coupon]]:
        """
        Resolve submitted codes to their promotions.

        Only active, in-window, non-exhausted coupons that are public or
        assigned to the caller resolve. Order follows the submitted codes.
        """
        now = now or datetime.now(timezone.utc)
        normalized = []
        for code in codes:
            code = normalize_code(code)
            if code and code not in normalized:
                normalized.append(code)
        if not normalized:
            return []

        result = await self.db.execute(
            select(Coupon)
            .options(selectinload(Coupon.promotion))
            .where(
                Coupon.code.in_(normalized),
                Coupon.active == True,
            )
        )
        coupons = {coupon.code: coupon for coupon in result.scalars().all()}

        resolved = []
        for code in normalized:
            coupon = coupons.get(code)
            if coupon is None:
                logger.debug(f"Coupon {code} not found or inactive, ignoring")
                continue
            if not coupon.is_usable_by(user_id) or coupon.is_exhausted or not coupon.is_within_window(now):
                logger.debug(f"Coupon {code} not redeemable for this cart, ignoring")
                continue
            resolved.append((coupon.promotion, coupon))

        return resolved
