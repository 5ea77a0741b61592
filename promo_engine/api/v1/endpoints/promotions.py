"""Back-office API endpoints for Promotions, their coupons and usage."""
import logging
from typing import Optional
from uuid import UUID
from enum import Enum

from fastapi import APIRouter, HTTPException, status, Query
from pydantic import ValidationError
from sqlalchemy import select, func, and_, or_

from promo_engine.api.deps import DB, AdminUser
from promo_engine.core.enum_utils import get_enum_value
from promo_engine.models.coupon import Coupon
from promo_engine.models.promotion import Promotion, PromotionType, PromotionStatus, PromotionUsage
from promo_engine.schemas.promotion import (
    PromotionCreate, PromotionUpdate, PromotionResponse, PromotionBrief, PromotionListResponse,
    CouponCreate, CouponResponse,
    PromotionUsageCreate, PromotionUsageResponse, UsageRecordResponse,
)
from promo_engine.services.promotion_service import PromotionService, UsageRecordStatus

logger = logging.getLogger(__name__)

router = APIRouter()

LIST_FIELDS = (
    "applicable_products", "applicable_categories",
    "exclude_products", "exclude_categories", "customer_segments",
)
REQUIRED_FIELDS = ("name", "status", "discount_value", "priority", "stackable", "requires_coupon")


def _column_values(data: dict) -> dict:
    """Enums are stored as their VARCHAR value, id lists as lists of strings."""
    values = {}
    for key, value in data.items():
        if isinstance(value, Enum):
            value = get_enum_value(value)
        elif key in LIST_FIELDS and value is not None:
            value = [str(v) for v in value]
        values[key] = value
    return values


async def _get_promotion_or_404(db, promotion_id: UUID) -> Promotion:
    promotion = await db.get(Promotion, promotion_id)
    if not promotion:
        raise HTTPException(status_code=404, detail="Promotion not found")
    return promotion


async def _ensure_code_available(db, code: str) -> None:
    promotion_clash = await db.execute(select(Promotion.id).where(Promotion.code == code))
    coupon_clash = await db.execute(select(Coupon.id).where(Coupon.code == code))
    if promotion_clash.first() or coupon_clash.first():
        raise HTTPException(status_code=400, detail=f"Code {code} already exists")


# ==================== Promotions ====================

@router.post("", response_model=PromotionResponse, status_code=status.HTTP_201_CREATED)
async def create_promotion(
    promo_in: PromotionCreate,
    db: DB,
    admin: AdminUser,
):
    """Create a new promotion."""
    if promo_in.code:
        await _ensure_code_available(db, promo_in.code)

    promotion = Promotion(**_column_values(promo_in.model_dump()))

    db.add(promotion)
    await db.commit()
    await db.refresh(promotion)
    logger.info(f"Promotion {promotion.name} created by {admin.get('sub')}")

    return promotion


@router.get("", response_model=PromotionListResponse)
async def list_promotions(
    db: DB,
    admin: AdminUser,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    promotion_type: Optional[PromotionType] = None,
    status: Optional[PromotionStatus] = None,
    search: Optional[str] = None,
):
    """List promotions with filters, highest priority first."""
    query = select(Promotion)
    count_query = select(func.count(Promotion.id))

    filters = []
    if promotion_type:
        filters.append(Promotion.type == promotion_type.value)
    if status:
        filters.append(Promotion.status == status.value)
    if search:
        filters.append(or_(
            Promotion.code.ilike(f"%{search}%"),
            Promotion.name.ilike(f"%{search}%"),
        ))

    if filters:
        query = query.where(and_(*filters))
        count_query = count_query.where(and_(*filters))

    total_result = await db.execute(count_query)
    total = total_result.scalar() or 0

    query = query.order_by(Promotion.priority.desc(), Promotion.created_at.desc()).offset(skip).limit(limit)
    result = await db.execute(query)
    promotions = result.scalars().all()

    return PromotionListResponse(
        items=[PromotionBrief.model_validate(p) for p in promotions],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.post("/usage", response_model=UsageRecordResponse)
async def record_promotion_usage(
    usage_in: PromotionUsageCreate,
    db: DB,
    admin: AdminUser,
):
    """
    Record a promotion consumed by a completed order.

    Called by the order-completion flow. Safe to retry: the same
    (promotion, order) pair is only counted once.
    """
    service = PromotionService(db)
    try:
        outcome = await service.record_promotion_usage(
            promotion_id=usage_in.promotion_id,
            user_id=usage_in.user_id,
            order_id=usage_in.order_id,
            discount_amount=usage_in.discount_amount,
            coupon_code=usage_in.coupon_code,
        )
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))

    if outcome.status == UsageRecordStatus.LIMIT_REACHED:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Promotion usage limit reached",
        )

    await db.commit()

    return UsageRecordResponse(
        status=outcome.status.value,
        usage=PromotionUsageResponse.model_validate(outcome.usage) if outcome.usage else None,
    )


@router.get("/{promotion_id}", response_model=PromotionResponse)
async def get_promotion(
    promotion_id: UUID,
    db: DB,
    admin: AdminUser,
):
    """Get promotion by ID."""
    return await _get_promotion_or_404(db, promotion_id)


@router.put("/{promotion_id}", response_model=PromotionResponse)
async def update_promotion(
    promotion_id: UUID,
    promo_in: PromotionUpdate,
    db: DB,
    admin: AdminUser,
):
    """Update a promotion. Only the fields sent are changed."""
    promotion = await _get_promotion_or_404(db, promotion_id)

    update_data = _column_values(promo_in.model_dump(exclude_unset=True))
    changes = {}
    for field, value in update_data.items():
        if field in LIST_FIELDS and value is None:
            value = []
        elif field in REQUIRED_FIELDS and value is None:
            continue
        changes[field] = value

    # The updated promotion must satisfy the same rules as a new one
    merged = {field: getattr(promotion, field) for field in PromotionCreate.model_fields}
    merged.update(changes)
    try:
        PromotionCreate.model_validate(merged)
    except ValidationError as e:
        raise HTTPException(
            status_code=422,
            detail=[error["msg"] for error in e.errors()],
        )

    for field, value in changes.items():
        setattr(promotion, field, value)

    await db.commit()
    await db.refresh(promotion)
    logger.info(f"Promotion {promotion.id} updated: {sorted(update_data)}")

    return promotion


@router.get("/{promotion_id}/usage", response_model=list[PromotionUsageResponse])
async def list_promotion_usage(
    promotion_id: UUID,
    db: DB,
    admin: AdminUser,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
):
    """Usage history of a promotion, most recent first."""
    await _get_promotion_or_404(db, promotion_id)

    result = await db.execute(
        select(PromotionUsage)
        .where(PromotionUsage.promotion_id == promotion_id)
        .order_by(PromotionUsage.created_at.desc())
        .offset(skip)
        .limit(limit)
    )
    return result.scalars().all()


@router.post(
    "/{promotion_id}/coupons",
    response_model=CouponResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_coupon(
    promotion_id: UUID,
    coupon_in: CouponCreate,
    db: DB,
    admin: AdminUser,
):
    """Issue a coupon code for a promotion."""
    await _get_promotion_or_404(db, promotion_id)
    await _ensure_code_available(db, coupon_in.code)

    coupon = Coupon(
        promotion_id=promotion_id,
        usage_count=0,
        **coupon_in.model_dump(),
    )
    db.add(coupon)
    await db.commit()
    await db.refresh(coupon)
    logger.info(f"Coupon {coupon.code} issued for promotion {promotion_id}")

    return coupon
