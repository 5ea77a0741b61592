"""
Coupon API Endpoints

Back-office listing and deactivation of coupon codes, plus the public list
of codes the storefront can advertise.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, List
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query
from sqlalchemy import select, or_

from promo_engine.api.deps import DB, AdminUser
from promo_engine.models.coupon import Coupon
from promo_engine.models.promotion import Promotion, PromotionStatus
from promo_engine.schemas.promotion import CouponResponse

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/coupons", tags=["Coupons"])


# ==================== Public Endpoints ====================

@router.get("/active", response_model=List[CouponResponse])
async def list_active_coupons(db: DB):
    """
    Get public coupons that can currently be redeemed.
    Coupons assigned to a specific customer are never listed.
    """
    now = datetime.now(timezone.utc)

    result = await db.execute(
        select(Coupon)
        .join(Promotion, Coupon.promotion_id == Promotion.id)
        .where(
            Coupon.active == True,
            Coupon.assigned_to_user_id.is_(None),
            Promotion.status == PromotionStatus.ACTIVE.value,
            or_(Coupon.start_date.is_(None), Coupon.start_date <= now),
            or_(Coupon.end_date.is_(None), Coupon.end_date >= now),
            or_(Coupon.usage_limit.is_(None), Coupon.usage_count < Coupon.usage_limit),
        )
        .order_by(Coupon.created_at.desc())
        .limit(10)
    )
    return result.scalars().all()


# ==================== Admin Endpoints ====================

@router.get("", response_model=List[CouponResponse])
async def list_coupons(
    db: DB,
    admin: AdminUser,
    promotion_id: Optional[UUID] = None,
    active: Optional[bool] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
):
    """List coupons, optionally for one promotion."""
    query = select(Coupon)
    if promotion_id:
        query = query.where(Coupon.promotion_id == promotion_id)
    if active is not None:
        query = query.where(Coupon.active == active)

    result = await db.execute(
        query.order_by(Coupon.created_at.desc()).offset(skip).limit(limit)
    )
    return result.scalars().all()


@router.patch("/{coupon_id}/deactivate", response_model=CouponResponse)
async def deactivate_coupon(
    coupon_id: UUID,
    db: DB,
    admin: AdminUser,
):
    """Deactivate a coupon. Usage history is kept."""
    coupon = await db.get(Coupon, coupon_id)
    if not coupon:
        raise HTTPException(status_code=404, detail="Coupon not found")

    coupon.active = False
    await db.commit()
    await db.refresh(coupon)

    logger.info(f"Coupon {coupon.code} deactivated by {admin.get('sub')}")
    return coupon
