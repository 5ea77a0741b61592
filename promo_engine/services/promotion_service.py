"""Promotion Service - cart promotion calculation and usage recording.

Calculation Flow:
1. Gather candidates: automatic promotions matching the cart + promotions
   resolved from the submitted coupon codes
2. Sort by priority (higher first, stable)
3. For each candidate: eligibility -> applicability -> discount
4. Stop after a non-stackable promotion applies; a stackable targeted
   promotion consumes its items for the rest of the pass
5. Assemble subtotal, discount, shipping, tax and total

Calculation is a preview and never writes. Usage is recorded separately,
once per completed order, by record_promotion_usage().
"""
from typing import Optional, List, Dict, Iterable, Tuple
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
import uuid
import logging

from sqlalchemy import select, update, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from promo_engine.config import settings
from promo_engine.db_types import as_utc
from promo_engine.models.coupon import Coupon
from promo_engine.models.customer import customer_segment_members
from promo_engine.models.order import Order, OrderStatus
from promo_engine.models.product import Product
from promo_engine.models.promotion import Promotion, PromotionStatus, PromotionUsage
from promo_engine.services.coupon_service import CouponService
from promo_engine.services.promotion_rules import (
    CartLine, CartSummary, CustomerContext, CartCalculationResult,
    Skipped, SkipReason, PromotionCalculation,
    evaluate_eligibility, evaluate_promotion, targets_cart, assemble_totals,
    to_decimal,
)

logger = logging.getLogger(__name__)


def _as_uuid(value) -> Optional[uuid.UUID]:
    if value is None or isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


class UsageRecordStatus(str, Enum):
    """Outcome of recording a promotion redemption."""
    RECORDED = "RECORDED"
    DUPLICATE = "DUPLICATE"            # Already recorded for this order
    LIMIT_REACHED = "LIMIT_REACHED"    # Promotion or coupon usage cap exhausted


class UsageRecordResult:
    def __init__(self, status: UsageRecordStatus, usage: Optional[PromotionUsage] = None):
        self.status = status
        self.usage = usage

    @property
    def recorded(self) -> bool:
        return self.status == UsageRecordStatus.RECORDED


class _UsageLimitReached(Exception):
    """Raised inside the usage savepoint to undo a partial reservation."""


class PromotionService:
    """
    Service for calculating cart promotions.

    Example:
    - Cart subtotal: AED 150, 15% off promotion
    - Discount: AED 22.50
    - Shipping: AED 10 (subtotal below AED 200 threshold)
    - Tax: 10% of 127.50 = AED 12.75
    - Total: AED 150.25
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.coupon_service = CouponService(db)

    # ==================== CART INPUT ====================

    async def build_cart_lines(self, items: Iterable) -> List[CartLine]:
        """
        Enrich request items (product_id, quantity, price) with the
        product's category from the catalog.

        Unknown products keep a None category.
        """
        items = list(items)
        product_ids = {_as_uuid(item.product_id) for item in items} - {None}

        products: Dict[str, Product] = {}
        if product_ids:
            result = await self.db.execute(
                select(Product).where(Product.id.in_(list(product_ids)))
            )
            products = {str(p.id): p for p in result.scalars().all()}

        lines = []
        for item in items:
            key = str(_as_uuid(item.product_id) or item.product_id)
            product = products.get(key)
            lines.append(CartLine(
                product_id=key,
                quantity=item.quantity,
                price=item.price,
                category_id=product.category_id if product else None,
                name=product.name if product else None,
            ))
        return lines

    async def load_customer_context(
        self,
        customer_id: uuid.UUID,
        promotion_ids: Iterable[uuid.UUID] = (),
    ) -> CustomerContext:
        """Load segment membership, order history and per-promotion usage for a customer."""
        segment_result = await self.db.execute(
            select(customer_segment_members.c.segment_id)
            .where(customer_segment_members.c.customer_id == customer_id)
        )
        segment_ids = [row[0] for row in segment_result.all()]

        order_result = await self.db.execute(
            select(func.count(Order.id)).where(
                Order.customer_id == customer_id,
                Order.status != OrderStatus.CANCELLED.value,
            )
        )
        order_count = order_result.scalar() or 0

        usage_counts: Dict[str, int] = {}
        promotion_ids = list(promotion_ids)
        if promotion_ids:
            usage_result = await self.db.execute(
                select(PromotionUsage.promotion_id, func.count(PromotionUsage.id))
                .where(
                    PromotionUsage.user_id == customer_id,
                    PromotionUsage.promotion_id.in_(promotion_ids),
                )
                .group_by(PromotionUsage.promotion_id)
            )
            usage_counts = {str(pid): count for pid, count in usage_result.all()}

        return CustomerContext(
            customer_id=customer_id,
            segment_ids=segment_ids,
            order_count=order_count,
            usage_counts=usage_counts,
        )

    # ==================== CANDIDATES ====================

    async def get_available_promotions(
        self,
        items: List[CartLine],
        now: datetime,
    ) -> List[Promotion]:
        """
        Automatic promotions for a cart.

        Status, validity window and global usage cap are filtered in SQL;
        product/category targeting is matched against the cart in Python
        since the targeting lists are JSON columns.
        """
        stmt = (
            select(Promotion)
            .where(
                Promotion.status == PromotionStatus.ACTIVE.value,
                Promotion.requires_coupon == False,
                or_(Promotion.start_date.is_(None), Promotion.start_date <= now),
                or_(Promotion.end_date.is_(None), Promotion.end_date >= now),
                or_(Promotion.usage_limit.is_(None), Promotion.usage_count < Promotion.usage_limit),
            )
            .order_by(Promotion.priority.desc(), Promotion.created_at.asc(), Promotion.id.asc())
        )
        result = await self.db.execute(stmt)
        return [p for p in result.scalars().all() if targets_cart(p, items)]

    async def _gather_candidates(
        self,
        items: List[CartLine],
        applied_coupons: List[str],
        customer_id: Optional[uuid.UUID],
        now: datetime,
    ) -> List[Tuple[Promotion, Optional[str]]]:
        """Merge automatic and coupon promotions, one entry per promotion, sorted by priority."""
        automatic = await self.get_available_promotions(items, now)
        coupon_promotions = await self.coupon_service.resolve_coupon_promotions(
            applied_coupons, customer_id, now
        )

        candidates: Dict[str, List] = {}
        for promotion in automatic:
            candidates[str(promotion.id)] = [promotion, None]
        for promotion, coupon in coupon_promotions:
            entry = candidates.get(str(promotion.id))
            if entry is None:
                candidates[str(promotion.id)] = [promotion, coupon.code]
            elif entry[1] is None:
                # Reached through a coupon as well: report the redeemed code
                entry[1] = coupon.code

        ordered = [(promotion, code) for promotion, code in candidates.values()]
        # sort() is stable: ties keep fetch order, coupon promotions after automatic ones
        ordered.sort(key=lambda candidate: candidate[0].priority or 0, reverse=True)
        return ordered

    # ==================== CALCULATION ====================

    async def calculate_cart_promotions(
        self,
        items: List[CartLine],
        applied_coupons: Optional[List[str]] = None,
        customer_id: Optional[uuid.UUID] = None,
        now: Optional[datetime] = None,
    ) -> CartCalculationResult:
        """
        Calculate promotions, shipping, tax and total for a cart.

        Ineligible or inapplicable promotions never raise; they are left out
        of the applied list (and kept in result.skipped with a reason).
        Unresolvable coupon codes are ignored.
        """
        now = as_utc(now or datetime.now(timezone.utc))
        if not items:
            return CartCalculationResult.empty()

        customer_id = _as_uuid(customer_id)
        candidates = await self._gather_candidates(items, applied_coupons or [], customer_id, now)

        customer = None
        if customer_id is not None:
            customer = await self.load_customer_context(
                customer_id, [promotion.id for promotion, _ in candidates]
            )
        cart = CartSummary(items, customer=customer)

        applied: List[PromotionCalculation] = []
        skipped: List[Skipped] = []
        available: List[Promotion] = []
        remaining_items = list(items)
        stacking_closed = False

        for promotion, code in candidates:
            if stacking_closed:
                # Still evaluated so eligible leftovers can be offered to the customer
                reason = evaluate_eligibility(promotion, cart, now)
                if reason is None:
                    available.append(promotion)
                    reason = SkipReason.STACKING_BLOCKED
                skipped.append(Skipped(promotion, reason))
                continue

            outcome = evaluate_promotion(
                promotion, remaining_items, cart, now,
                currency=settings.CURRENCY, code=code,
            )

            if isinstance(outcome, Skipped):
                logger.debug(f"Promotion {promotion.name} skipped: {outcome.reason.value}")
                skipped.append(outcome)
                if outcome.reason in (SkipReason.NO_APPLICABLE_ITEMS, SkipReason.NO_DISCOUNT):
                    available.append(promotion)
                continue

            calculation = outcome.calculation
            applied.append(calculation)

            if not promotion.stackable:
                stacking_closed = True
                continue

            if promotion.is_targeted:
                consumed = set(calculation.applicable_items)
                remaining_items = [item for item in remaining_items if item.product_id not in consumed]

        return assemble_totals(
            subtotal=cart.subtotal,
            calculations=applied,
            base_shipping_fee=settings.BASE_SHIPPING_FEE,
            free_shipping_threshold=settings.FREE_SHIPPING_THRESHOLD,
            tax_rate=settings.TAX_RATE,
            available_promotions=available,
            skipped=skipped,
        )

    # ==================== USAGE RECORDING ====================

    async def _get_usage(self, promotion_id: uuid.UUID, order_id: uuid.UUID) -> Optional[PromotionUsage]:
        result = await self.db.execute(
            select(PromotionUsage).where(
                PromotionUsage.promotion_id == promotion_id,
                PromotionUsage.order_id == order_id,
            )
        )
        return result.scalar_one_or_none()

    async def _reserve_promotion_slot(self, promotion_id: uuid.UUID) -> bool:
        """Atomically increment usage_count if the promotion is below its usage_limit."""
        result = await self.db.execute(
            update(Promotion)
            .where(
                Promotion.id == promotion_id,
                or_(Promotion.usage_limit.is_(None), Promotion.usage_count < Promotion.usage_limit),
            )
            .values(usage_count=Promotion.usage_count + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def _reserve_coupon_slot(self, coupon_id: uuid.UUID) -> bool:
        """Atomically increment the coupon's usage_count if below its usage_limit."""
        result = await self.db.execute(
            update(Coupon)
            .where(
                Coupon.id == coupon_id,
                or_(Coupon.usage_limit.is_(None), Coupon.usage_count < Coupon.usage_limit),
            )
            .values(usage_count=Coupon.usage_count + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def record_promotion_usage(
        self,
        promotion_id: uuid.UUID,
        user_id: uuid.UUID,
        order_id: uuid.UUID,
        discount_amount,
        coupon_code: Optional[str] = None,
    ) -> UsageRecordResult:
        """
        Record a promotion consumed by a completed order.

        Idempotent per (promotion_id, order_id): a retried webhook gets
        DUPLICATE and nothing is incremented twice. The usage counters are
        reserved with conditional UPDATEs, so a promotion (or coupon) can
        never be redeemed beyond its limit even under concurrent checkouts.

        Raises:
            ValueError: unknown promotion, or a coupon that does not belong to it
        """
        promotion_id = _as_uuid(promotion_id)
        user_id = _as_uuid(user_id)
        order_id = _as_uuid(order_id)

        promotion = await self.db.get(Promotion, promotion_id) if promotion_id else None
        if promotion is None:
            raise ValueError(f"Promotion not found: {promotion_id}")

        existing = await self._get_usage(promotion_id, order_id)
        if existing:
            logger.info(f"Promotion {promotion_id} already recorded for order {order_id}")
            return UsageRecordResult(UsageRecordStatus.DUPLICATE, existing)

        coupon = None
        if coupon_code:
            coupon = await self.coupon_service.get_by_code(coupon_code)
            if coupon is None or coupon.promotion_id != promotion_id:
                raise ValueError(f"Coupon {coupon_code} does not belong to promotion {promotion_id}")

        try:
            async with self.db.begin_nested():
                if not await self._reserve_promotion_slot(promotion_id):
                    raise _UsageLimitReached(f"promotion {promotion_id}")
                if coupon is not None and not await self._reserve_coupon_slot(coupon.id):
                    raise _UsageLimitReached(f"coupon {coupon.code}")

                usage = PromotionUsage(
                    promotion_id=promotion_id,
                    coupon_id=coupon.id if coupon else None,
                    user_id=user_id,
                    order_id=order_id,
                    discount_amount=to_decimal(discount_amount),
                )
                self.db.add(usage)
                await self.db.flush()
        except _UsageLimitReached as e:
            logger.warning(f"Usage limit reached for {e} on order {order_id}")
            return UsageRecordResult(UsageRecordStatus.LIMIT_REACHED)
        except IntegrityError:
            # A concurrent delivery of the same webhook won the insert
            logger.info(f"Promotion {promotion_id} recorded concurrently for order {order_id}")
            return UsageRecordResult(UsageRecordStatus.DUPLICATE, await self._get_usage(promotion_id, order_id))

        await self.db.refresh(promotion, ["usage_count"])
        if coupon is not None:
            await self.db.refresh(coupon, ["usage_count"])

        logger.info(
            f"Promotion {promotion_id} used by customer {user_id} on order {order_id} "
            f"(discount {Decimal(usage.discount_amount):.2f})"
        )
        return UsageRecordResult(UsageRecordStatus.RECORDED, usage)
