"""Cart calculation against the database: candidates, stacking, coupons and customers."""
import uuid
from datetime import timedelta
from decimal import Decimal

from promo_engine.models.order import OrderStatus
from promo_engine.models.promotion import (
    PromotionType, PromotionTargetType, PromotionStatus, PromotionUsage,
)
from promo_engine.services.promotion_rules import SkipReason
from promo_engine.services.promotion_service import PromotionService
from tests.factories import (
    NOW, create_promotion, create_coupon, create_customer, create_segment,
    create_order, create_product, create_category, line,
)


async def calculate(db, items, coupons=None, customer_id=None):
    return await PromotionService(db).calculate_cart_promotions(
        items, applied_coupons=coupons, customer_id=customer_id, now=NOW,
    )


def applied_names(result):
    return [p.promotion_name for p in result.applied_promotions]


async def test_empty_cart_is_all_zero(db):
    await create_promotion(db, name="Everything 10%")

    result = await calculate(db, [])

    assert result.applied_promotions == []
    assert result.subtotal == result.total == Decimal("0")
    assert result.shipping_cost == Decimal("0")


async def test_single_percentage_promotion(db):
    await create_promotion(db, name="15% off", discount_value=Decimal("15"))

    result = await calculate(db, [line(price="150")])

    assert applied_names(result) == ["15% off"]
    assert result.total_discount == Decimal("22.50")
    assert result.total == Decimal("150.25")


async def test_no_promotions_returns_plain_totals(db):
    result = await calculate(db, [line(quantity=2, price="125")])

    assert result.applied_promotions == []
    assert result.shipping_cost == Decimal("0")
    assert result.tax_amount == Decimal("25.00")
    assert result.total == Decimal("275.00")


async def test_non_stackable_higher_priority_blocks_the_rest(db):
    await create_promotion(db, name="P1", priority=10, stackable=False, discount_value=Decimal("10"))
    await create_promotion(db, name="P2", priority=5, stackable=True, discount_value=Decimal("5"))

    result = await calculate(db, [line(price="100")])

    assert applied_names(result) == ["P1"]
    assert [p.name for p in result.available_promotions] == ["P2"]
    assert [(s.promotion.name, s.reason) for s in result.skipped] == [("P2", SkipReason.STACKING_BLOCKED)]


async def test_stackable_promotions_combine_in_priority_order(db):
    await create_promotion(db, name="Low", priority=1, stackable=True, discount_value=Decimal("5"))
    await create_promotion(db, name="High", priority=9, stackable=True, discount_value=Decimal("10"))
    await create_promotion(
        db, name="Free ship", priority=3, stackable=True,
        type=PromotionType.FREE_SHIPPING, discount_value=Decimal("0"),
    )

    result = await calculate(db, [line(price="100")])

    assert applied_names(result) == ["High", "Free ship", "Low"]
    assert result.total_discount == Decimal("15.00")
    assert result.shipping_cost == Decimal("0")
    assert result.total_discount == sum(p.discount_amount for p in result.applied_promotions)


async def test_equal_priority_keeps_creation_order(db):
    await create_promotion(db, name="First", priority=5, stackable=True)
    await create_promotion(db, name="Second", priority=5, stackable=True)

    result = await calculate(db, [line(price="100")])

    assert applied_names(result) == ["First", "Second"]


async def test_stackable_targeted_promotion_consumes_its_items(db):
    lamp = uuid.uuid4()
    await create_promotion(
        db, name="Lamp 20%", priority=10, stackable=True,
        discount_value=Decimal("20"), applicable_products=[lamp],
    )
    await create_promotion(
        db, name="Lamp 10%", priority=5, stackable=True,
        discount_value=Decimal("10"), applicable_products=[lamp],
    )
    await create_promotion(db, name="Cart 5%", priority=1, stackable=True, discount_value=Decimal("5"))

    items = [line(product_id=lamp, price="100"), line(price="50")]
    result = await calculate(db, items)

    assert applied_names(result) == ["Lamp 20%", "Cart 5%"]
    # Cart-wide promotion only sees the untargeted line once the lamp is consumed
    assert result.applied_promotions[1].discount_amount == Decimal("2.50")
    assert [p.name for p in result.available_promotions] == ["Lamp 10%"]


async def test_expired_promotion_is_not_applied(db):
    await create_promotion(db, name="Old", end_date=NOW - timedelta(days=1), priority=50)
    await create_promotion(db, name="Not yet", start_date=NOW + timedelta(days=1), priority=50)

    result = await calculate(db, [line(price="500")])

    assert result.applied_promotions == []
    assert result.total_discount == Decimal("0")


async def test_inactive_and_exhausted_promotions_are_not_candidates(db):
    await create_promotion(db, name="Draft", status=PromotionStatus.DRAFT)
    await create_promotion(db, name="Paused", status=PromotionStatus.INACTIVE)
    await create_promotion(db, name="Used up", usage_limit=3, usage_count=3)

    result = await calculate(db, [line(price="100")])

    assert result.applied_promotions == []


async def test_targeted_promotion_without_overlap_is_not_fetched(db):
    await create_promotion(db, name="Lamps", applicable_products=[uuid.uuid4()])
    untargeted = await create_promotion(db, name="All")

    promotions = await PromotionService(db).get_available_promotions([line()], NOW)

    assert [p.id for p in promotions] == [untargeted.id]


async def test_ineligible_candidate_is_not_offered_as_available(db):
    await create_promotion(db, name="Big carts", minimum_order_value=Decimal("500"))

    result = await calculate(db, [line(price="100")])

    assert result.applied_promotions == []
    assert result.available_promotions == []
    assert result.skipped[0].reason == SkipReason.BELOW_MINIMUM_ORDER_VALUE


async def test_calculation_is_repeatable(db):
    await create_promotion(db, name="A", priority=2, stackable=True, discount_value=Decimal("12.5"))
    await create_promotion(db, name="B", priority=1, discount_value=Decimal("7"))
    items = [line(quantity=3, price="33.33"), line(price="19.99")]

    first = await calculate(db, items)
    second = await calculate(db, items)

    assert first.to_dict() == second.to_dict()


# ==================== Coupons ====================

async def test_coupon_only_promotion_needs_its_code(db):
    promotion = await create_promotion(
        db, name="AED 50 Off", code="SAVE50", requires_coupon=True,
        type=PromotionType.FIXED_AMOUNT, discount_value=Decimal("50"),
    )
    await create_coupon(db, promotion, "SAVE50-01")

    without_code = await calculate(db, [line(price="80")])
    with_code = await calculate(db, [line(price="80")], coupons=["  save50-01 "])

    assert without_code.applied_promotions == []
    assert applied_names(with_code) == ["AED 50 Off"]
    assert with_code.applied_promotions[0].promotion_code == "SAVE50-01"
    assert with_code.total_discount == Decimal("50.00")
    assert with_code.total == Decimal("43.00")


async def test_unknown_and_unusable_codes_are_ignored(db):
    promotion = await create_promotion(db, name="Coupon only", requires_coupon=True)
    await create_coupon(db, promotion, "USED-UP", usage_limit=1, usage_count=1)
    await create_coupon(db, promotion, "OFF", active=False)
    await create_coupon(db, promotion, "LATER", start_date=NOW + timedelta(days=2))
    await create_coupon(db, promotion, "MINE", assigned_to_user_id=uuid.uuid4())

    result = await calculate(db, [line(price="100")], coupons=["NOPE", "USED-UP", "OFF", "LATER", "MINE"])

    assert result.applied_promotions == []
    assert result.total == Decimal("120.00")


async def test_assigned_coupon_resolves_for_its_owner(db):
    customer = await create_customer(db)
    promotion = await create_promotion(db, name="Personal", requires_coupon=True)
    await create_coupon(db, promotion, "FOR-YOU", assigned_to_user_id=customer.id)

    result = await calculate(db, [line(price="100")], coupons=["FOR-YOU"], customer_id=customer.id)

    assert applied_names(result) == ["Personal"]


async def test_promotion_reached_twice_is_applied_once(db):
    promotion = await create_promotion(db, name="Also automatic", code="AUTO10", stackable=True)
    await create_coupon(db, promotion, "AUTO10-01")
    await create_coupon(db, promotion, "AUTO10-02")

    result = await calculate(db, [line(price="100")], coupons=["AUTO10-01", "AUTO10-02"])

    assert applied_names(result) == ["Also automatic"]
    assert result.applied_promotions[0].promotion_code == "AUTO10-01"
    assert result.total_discount == Decimal("10.00")


# ==================== Customers ====================

async def test_first_order_promotion(db):
    await create_promotion(db, name="Welcome", target_type=PromotionTargetType.FIRST_ORDER)
    newcomer = await create_customer(db)
    returning = await create_customer(db)
    await create_order(db, returning, status=OrderStatus.DELIVERED.value)
    cancelled_only = await create_customer(db)
    await create_order(db, cancelled_only, status=OrderStatus.CANCELLED.value)

    assert applied_names(await calculate(db, [line()], customer_id=newcomer.id)) == ["Welcome"]
    assert applied_names(await calculate(db, [line()], customer_id=cancelled_only.id)) == ["Welcome"]
    assert applied_names(await calculate(db, [line()], customer_id=returning.id)) == []
    assert applied_names(await calculate(db, [line()])) == []


async def test_segment_promotion(db):
    vip = await create_customer(db)
    regular = await create_customer(db)
    segment = await create_segment(db, "VIP Customers", vip)
    await create_promotion(db, name="VIP 25%", customer_segments=[segment.id], discount_value=Decimal("25"))

    assert applied_names(await calculate(db, [line()], customer_id=vip.id)) == ["VIP 25%"]
    assert applied_names(await calculate(db, [line()], customer_id=regular.id)) == []


async def test_per_customer_limit_counts_recorded_usage(db):
    customer = await create_customer(db)
    promotion = await create_promotion(db, name="Twice each", usage_limit_per_customer=2)
    for _ in range(2):
        db.add(PromotionUsage(
            id=uuid.uuid4(), promotion_id=promotion.id, user_id=customer.id,
            order_id=uuid.uuid4(), discount_amount=Decimal("10"),
        ))
    await db.commit()

    other = await create_customer(db)

    assert applied_names(await calculate(db, [line()], customer_id=customer.id)) == []
    assert applied_names(await calculate(db, [line()], customer_id=other.id)) == ["Twice each"]


# ==================== Cart lines ====================

class _Item:
    def __init__(self, product_id, quantity, price):
        self.product_id = product_id
        self.quantity = quantity
        self.price = price


async def test_cart_lines_are_enriched_with_catalog_categories(db):
    lighting = await create_category(db, "Lighting")
    lamp = await create_product(db, "Desk Lamp", "120", category=lighting)
    await create_promotion(
        db, name="Lighting Special", discount_value=Decimal("20"),
        applicable_categories=[lighting.id],
    )

    service = PromotionService(db)
    items = await service.build_cart_lines([
        _Item(str(lamp.id).upper(), 1, Decimal("120")),
        _Item("not-a-product", 2, Decimal("10")),
    ])

    assert items[0].product_id == str(lamp.id)
    assert items[0].category_id == str(lighting.id)
    assert items[1].category_id is None

    result = await service.calculate_cart_promotions(items, now=NOW)
    assert applied_names(result) == ["Lighting Special"]
    assert result.total_discount == Decimal("24.00")


async def test_naive_now_is_read_as_utc(db):
    await create_promotion(db, name="Ends at noon", end_date=NOW)
    service = PromotionService(db)

    before = await service.calculate_cart_promotions(
        [line()], now=(NOW - timedelta(minutes=30)).replace(tzinfo=None),
    )
    after = await service.calculate_cart_promotions(
        [line()], now=(NOW + timedelta(minutes=30)).replace(tzinfo=None),
    )

    assert applied_names(before) == ["Ends at noon"]
    assert applied_names(after) == []
