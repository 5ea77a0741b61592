"""Seed sample customer segments, promotions and coupons."""
import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal
import uuid

from sqlalchemy import select

from promo_engine.database import async_session_factory, init_db
from promo_engine.models.category import Category
from promo_engine.models.coupon import Coupon
from promo_engine.models.customer import CustomerSegment
from promo_engine.models.promotion import (
    Promotion, PromotionType, PromotionTargetType, PromotionStatus,
)


async def get_or_create_category(db, name: str, slug: str) -> Category:
    result = await db.execute(select(Category).where(Category.slug == slug))
    category = result.scalar_one_or_none()
    if category is None:
        category = Category(id=uuid.uuid4(), name=name, slug=slug)
        db.add(category)
    return category


async def seed():
    """Seed promotions."""
    await init_db()

    async with async_session_factory() as db:
        try:
            print("Seeding promotions...")

            existing = await db.execute(select(Promotion.id).limit(1))
            if existing.first():
                print("Promotions already exist, skipping")
                return

            # 1. Customer segments
            print("Creating customer segments...")
            new_customers = CustomerSegment(
                id=uuid.uuid4(),
                name="New Customers",
                description="Customers who have not made any orders yet",
                criteria={"orderCount": 0},
            )
            vip_customers = CustomerSegment(
                id=uuid.uuid4(),
                name="VIP Customers",
                description="Customers who have spent more than AED 1000",
                criteria={"totalSpent": {"gte": 1000}},
            )
            db.add_all([new_customers, vip_customers])

            # 2. Categories used for targeting
            lighting = await get_or_create_category(db, "Lighting", "lighting")
            bathroom = await get_or_create_category(db, "Bathroom Fixtures", "bathroom-fixtures")

            # 3. Promotions
            print("Creating promotions...")
            now = datetime.now(timezone.utc)
            promotions_data = [
                {
                    "name": "Welcome 15% Off",
                    "description": "Get 15% off your first order with us",
                    "code": "WELCOME15",
                    "type": PromotionType.PERCENTAGE.value,
                    "target_type": PromotionTargetType.FIRST_ORDER.value,
                    "status": PromotionStatus.ACTIVE.value,
                    "discount_value": Decimal("15"),
                    "max_discount_amount": Decimal("100"),
                    "minimum_order_value": Decimal("50"),
                    "usage_limit": 1000,
                    "customer_segments": [str(new_customers.id)],
                    "stackable": False,
                    "priority": 10,
                },
                {
                    "name": "Bulk Order Discount",
                    "description": "Get 10% off when you order 5 or more items",
                    "type": PromotionType.BULK_DISCOUNT.value,
                    "target_type": PromotionTargetType.BULK_ORDER.value,
                    "status": PromotionStatus.ACTIVE.value,
                    "discount_value": Decimal("10"),
                    "minimum_quantity": 5,
                    "stackable": True,
                    "priority": 5,
                },
                {
                    "name": "Lighting Special",
                    "description": "20% off all lighting products",
                    "code": "LIGHT20",
                    "type": PromotionType.PERCENTAGE.value,
                    "target_type": PromotionTargetType.PRODUCT_CATEGORY.value,
                    "status": PromotionStatus.ACTIVE.value,
                    "discount_value": Decimal("20"),
                    "max_discount_amount": Decimal("200"),
                    "minimum_order_value": Decimal("100"),
                    "applicable_categories": [str(lighting.id)],
                    "usage_limit": 500,
                    "stackable": True,
                    "priority": 7,
                },
                {
                    "name": "Free Shipping",
                    "description": "Free shipping on orders over AED 150",
                    "type": PromotionType.FREE_SHIPPING.value,
                    "target_type": PromotionTargetType.CART_TOTAL.value,
                    "status": PromotionStatus.ACTIVE.value,
                    "discount_value": Decimal("0"),
                    "minimum_order_value": Decimal("150"),
                    "stackable": True,
                    "priority": 3,
                },
                {
                    "name": "Buy 3 Get 1 Free",
                    "description": "Buy 3 bathroom fixtures, get 1 free",
                    "type": PromotionType.BUY_X_GET_Y.value,
                    "target_type": PromotionTargetType.PRODUCT_CATEGORY.value,
                    "status": PromotionStatus.ACTIVE.value,
                    "discount_value": Decimal("0"),
                    "buy_quantity": 3,
                    "get_quantity": 1,
                    "get_discount_percent": Decimal("100"),
                    "applicable_categories": [str(bathroom.id)],
                    "stackable": False,
                    "priority": 8,
                },
                {
                    "name": "AED 50 Off",
                    "description": "Get AED 50 off orders over AED 300",
                    "code": "SAVE50",
                    "type": PromotionType.FIXED_AMOUNT.value,
                    "target_type": PromotionTargetType.CART_TOTAL.value,
                    "status": PromotionStatus.ACTIVE.value,
                    "discount_value": Decimal("50"),
                    "minimum_order_value": Decimal("300"),
                    "usage_limit": 200,
                    "stackable": True,
                    "priority": 6,
                },
                {
                    "name": "VIP Exclusive 25% Off",
                    "description": "Exclusive 25% discount for our VIP customers",
                    "code": "VIP25",
                    "type": PromotionType.PERCENTAGE.value,
                    "target_type": PromotionTargetType.CUSTOMER_SEGMENT.value,
                    "status": PromotionStatus.ACTIVE.value,
                    "discount_value": Decimal("25"),
                    "max_discount_amount": Decimal("300"),
                    "customer_segments": [str(vip_customers.id)],
                    "usage_limit_per_customer": 2,
                    "stackable": False,
                    "priority": 9,
                },
                {
                    "name": "Weekend Flash Sale",
                    "description": "30% off everything for the weekend",
                    "code": "WEEKEND30",
                    "type": PromotionType.PERCENTAGE.value,
                    "target_type": PromotionTargetType.CART_TOTAL.value,
                    "status": PromotionStatus.SCHEDULED.value,
                    "discount_value": Decimal("30"),
                    "max_discount_amount": Decimal("500"),
                    "minimum_order_value": Decimal("100"),
                    "start_date": now + timedelta(days=7),
                    "end_date": now + timedelta(days=9),
                    "usage_limit": 100,
                    "stackable": False,
                    "priority": 15,
                },
            ]

            for data in promotions_data:
                promotion = Promotion(id=uuid.uuid4(), usage_count=0, **data)
                db.add(promotion)
                print(f"  Created promotion: {promotion.name}")

                # Single-use coupons for code-based promotions
                if promotion.code:
                    for i in range(1, 4):
                        db.add(Coupon(
                            id=uuid.uuid4(),
                            code=f"{promotion.code}-{i:02d}",
                            promotion_id=promotion.id,
                            active=True,
                            usage_limit=1,
                            usage_count=0,
                        ))
                    print(f"    Created coupons for {promotion.code}")

            await db.commit()
            print("Promotions seeding completed!")

        except Exception as e:
            await db.rollback()
            print(f"Error seeding promotions: {e}")
            raise


if __name__ == "__main__":
    asyncio.run(seed())
