"""Builders for promotions, coupons and the collaborator rows eligibility reads."""
import itertools
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum

from promo_engine.models.category import Category
from promo_engine.models.coupon import Coupon
from promo_engine.models.customer import Customer, CustomerSegment, customer_segment_members
from promo_engine.models.order import Order
from promo_engine.models.product import Product
from promo_engine.models.promotion import (
    Promotion, PromotionType, PromotionTargetType, PromotionStatus,
)
from promo_engine.services.promotion_rules import CartLine

NOW = datetime(2026, 6, 15, 12, 0, tzinfo=timezone.utc)

_sequence = itertools.count()


def _plain(value):
    return value.value if isinstance(value, Enum) else value


def build_promotion(**overrides) -> Promotion:
    """Unsaved promotion: an active, untargeted 10% off unless overridden."""
    values = dict(
        id=uuid.uuid4(),
        code=None,
        name="Promotion",
        description=None,
        type=PromotionType.PERCENTAGE,
        target_type=PromotionTargetType.CART_TOTAL,
        discount_value=Decimal("10"),
        max_discount_amount=None,
        status=PromotionStatus.ACTIVE,
        start_date=None,
        end_date=None,
        priority=0,
        stackable=False,
        requires_coupon=False,
        minimum_order_value=None,
        maximum_order_value=None,
        minimum_quantity=None,
        maximum_quantity=None,
        applicable_products=[],
        applicable_categories=[],
        exclude_products=[],
        exclude_categories=[],
        customer_segments=[],
        usage_limit=None,
        usage_count=0,
        usage_limit_per_customer=None,
        buy_quantity=None,
        get_quantity=None,
        get_discount_percent=None,
        # Strictly increasing so equal priorities keep creation order
        created_at=NOW - timedelta(days=30) + timedelta(seconds=next(_sequence)),
    )
    values.update(overrides)
    values = {key: _plain(value) for key, value in values.items()}
    for key in ("applicable_products", "applicable_categories", "exclude_products",
                "exclude_categories", "customer_segments"):
        values[key] = [str(v) for v in values[key]]
    values.setdefault("updated_at", values["created_at"])
    return Promotion(**values)


async def create_promotion(db, **overrides) -> Promotion:
    promotion = build_promotion(**overrides)
    db.add(promotion)
    await db.commit()
    return promotion


async def create_coupon(db, promotion: Promotion, code: str, **overrides) -> Coupon:
    values = dict(
        id=uuid.uuid4(),
        code=code,
        promotion_id=promotion.id,
        active=True,
        assigned_to_user_id=None,
        usage_limit=None,
        usage_count=0,
        start_date=None,
        end_date=None,
    )
    values.update(overrides)
    coupon = Coupon(**values)
    db.add(coupon)
    await db.commit()
    return coupon


async def create_customer(db, email: str = None) -> Customer:
    customer = Customer(id=uuid.uuid4(), email=email or f"{uuid.uuid4().hex[:8]}@example.com", name="Shopper")
    db.add(customer)
    await db.commit()
    return customer


async def create_segment(db, name: str, *members: Customer) -> CustomerSegment:
    segment = CustomerSegment(id=uuid.uuid4(), name=name, criteria={})
    db.add(segment)
    await db.flush()
    for customer in members:
        await db.execute(
            customer_segment_members.insert().values(segment_id=segment.id, customer_id=customer.id)
        )
    await db.commit()
    return segment


async def create_order(db, customer: Customer, status: str = "DELIVERED") -> Order:
    order = Order(
        id=uuid.uuid4(),
        order_number=f"ORD-{uuid.uuid4().hex[:10].upper()}",
        customer_id=customer.id,
        status=status,
        total_amount=Decimal("100"),
    )
    db.add(order)
    await db.commit()
    return order


async def create_product(db, name: str, price, category: Category = None) -> Product:
    product = Product(
        id=uuid.uuid4(),
        name=name,
        price=Decimal(str(price)),
        category_id=category.id if category else None,
        is_active=True,
    )
    db.add(product)
    await db.commit()
    return product


async def create_category(db, name: str) -> Category:
    category = Category(id=uuid.uuid4(), name=name, slug=name.lower().replace(" ", "-"))
    db.add(category)
    await db.commit()
    return category


def line(product_id=None, quantity: int = 1, price="100", category_id=None) -> CartLine:
    return CartLine(
        product_id=product_id or uuid.uuid4(),
        quantity=quantity,
        price=price,
        category_id=category_id,
    )
