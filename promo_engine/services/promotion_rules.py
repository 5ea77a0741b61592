"""
Promotion Rules - pure evaluation of a single promotion against a cart.

This module handles:
1. Eligibility (status, validity window, usage caps, cart bounds, customer checks)
2. Applicability (which cart lines a promotion targets)
3. Discount calculation per promotion type
4. Final totals assembly (shipping, tax, rounding)

Nothing here touches the database. Customer facts that need queries
(segments, order history, per-customer usage) are loaded up front into a
CustomerContext by PromotionService.
"""
from typing import List, Optional, Dict, Iterable, Set, Union
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
import uuid

from promo_engine.core.enum_utils import to_enum
from promo_engine.db_types import as_utc
from promo_engine.models.promotion import (
    Promotion, PromotionType, PromotionTargetType, PromotionStatus,
)

ZERO = Decimal("0")
HUNDRED = Decimal("100")
CENT = Decimal("0.01")


def to_decimal(value) -> Decimal:
    """Convert int/float/str/Decimal/None to Decimal without float artefacts."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def format_amount(value) -> str:
    """Render 15 / 15.00 as '15' and 12.5 as '12.50' for descriptions."""
    value = to_decimal(value)
    if value == value.to_integral_value():
        return str(value.to_integral_value())
    return str(round_money(value))


def _id_set(values: Optional[Iterable]) -> Set[str]:
    return {str(v) for v in (values or [])}


# ==================== CART & CUSTOMER INPUTS ====================

class CartLine:
    """One line of the cart as seen by the promotion engine."""
    def __init__(
        self,
        product_id: Union[str, uuid.UUID],
        quantity: int,
        price,
        category_id: Optional[Union[str, uuid.UUID]] = None,
        name: Optional[str] = None,
    ):
        self.product_id = str(product_id)
        self.quantity = int(quantity)
        self.price = to_decimal(price)
        self.category_id = str(category_id) if category_id else None
        self.name = name

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity

    def __repr__(self) -> str:
        return f"<CartLine(product_id='{self.product_id}', quantity={self.quantity}, price={self.price})>"


class CustomerContext:
    """
    Eligibility facts about the customer placing the cart.

    usage_counts maps promotion id (str) to the number of recorded
    usages of that promotion by this customer.
    """
    def __init__(
        self,
        customer_id: Union[str, uuid.UUID],
        segment_ids: Optional[Iterable] = None,
        order_count: int = 0,
        usage_counts: Optional[Dict[str, int]] = None,
    ):
        self.customer_id = str(customer_id)
        self.segment_ids = _id_set(segment_ids)
        self.order_count = order_count
        self.usage_counts = {str(k): v for k, v in (usage_counts or {}).items()}

    def usage_count_for(self, promotion_id) -> int:
        return self.usage_counts.get(str(promotion_id), 0)


class CartSummary:
    """Cart contents plus the (optional) authenticated customer."""
    def __init__(
        self,
        items: List[CartLine],
        customer: Optional[CustomerContext] = None,
        subtotal: Optional[Decimal] = None,
    ):
        self.items = list(items)
        self.customer = customer
        self.subtotal = (
            to_decimal(subtotal) if subtotal is not None
            else sum((item.line_total for item in self.items), ZERO)
        )

    @property
    def total_quantity(self) -> int:
        return sum(item.quantity for item in self.items)


# ==================== OUTCOMES ====================

class SkipReason(str, Enum):
    """Why a promotion did not contribute to the cart."""
    NOT_ACTIVE = "NOT_ACTIVE"
    NOT_STARTED = "NOT_STARTED"
    EXPIRED = "EXPIRED"
    USAGE_LIMIT_REACHED = "USAGE_LIMIT_REACHED"
    BELOW_MINIMUM_ORDER_VALUE = "BELOW_MINIMUM_ORDER_VALUE"
    ABOVE_MAXIMUM_ORDER_VALUE = "ABOVE_MAXIMUM_ORDER_VALUE"
    BELOW_MINIMUM_QUANTITY = "BELOW_MINIMUM_QUANTITY"
    ABOVE_MAXIMUM_QUANTITY = "ABOVE_MAXIMUM_QUANTITY"
    LOGIN_REQUIRED = "LOGIN_REQUIRED"
    SEGMENT_MISMATCH = "SEGMENT_MISMATCH"
    NOT_FIRST_ORDER = "NOT_FIRST_ORDER"
    CUSTOMER_LIMIT_REACHED = "CUSTOMER_LIMIT_REACHED"
    NO_APPLICABLE_ITEMS = "NO_APPLICABLE_ITEMS"
    NO_DISCOUNT = "NO_DISCOUNT"
    STACKING_BLOCKED = "STACKING_BLOCKED"


class DiscountOutcome:
    """Result of the per-type discount formula for one promotion."""
    def __init__(self, amount: Decimal, description: str, free_shipping: bool = False):
        self.amount = amount
        self.description = description
        self.free_shipping = free_shipping


class PromotionCalculation:
    """A promotion applied to the cart."""
    def __init__(
        self,
        promotion_id: Union[str, uuid.UUID],
        promotion_name: str,
        discount_amount: Decimal,
        applicable_items: List[str],
        description: str,
        promotion_code: Optional[str] = None,
        free_shipping: bool = False,
    ):
        self.promotion_id = str(promotion_id)
        self.promotion_name = promotion_name
        self.promotion_code = promotion_code
        self.discount_amount = discount_amount
        self.free_shipping = free_shipping
        self.applicable_items = applicable_items
        self.description = description

    def to_dict(self) -> dict:
        return {
            "promotion_id": self.promotion_id,
            "promotion_name": self.promotion_name,
            "promotion_code": self.promotion_code,
            "discount_amount": float(self.discount_amount),
            "free_shipping": self.free_shipping,
            "applicable_items": list(self.applicable_items),
            "description": self.description,
        }


class Applied:
    """Outcome variant: the promotion contributed to the cart."""
    def __init__(self, calculation: PromotionCalculation):
        self.calculation = calculation

    def __repr__(self) -> str:
        return f"<Applied({self.calculation.promotion_name}: {self.calculation.discount_amount})>"


class Skipped:
    """Outcome variant: the promotion was silently excluded."""
    def __init__(self, promotion: Promotion, reason: SkipReason):
        self.promotion = promotion
        self.reason = reason

    def __repr__(self) -> str:
        return f"<Skipped({self.promotion.name}: {self.reason.value})>"


PromotionOutcome = Union[Applied, Skipped]


# ==================== ELIGIBILITY ====================

def evaluate_eligibility(
    promotion: Promotion,
    cart: CartSummary,
    now: datetime,
) -> Optional[SkipReason]:
    """
    Decide whether a promotion may be considered for this cart at all.

    Returns None when eligible, otherwise the first failed check.
    Every optional bound is skipped when it is NULL (unbounded).
    """
    if to_enum(promotion.status, PromotionStatus) != PromotionStatus.ACTIVE:
        return SkipReason.NOT_ACTIVE

    start_date = as_utc(promotion.start_date)
    end_date = as_utc(promotion.end_date)
    if start_date is not None and now < start_date:
        return SkipReason.NOT_STARTED
    if end_date is not None and now > end_date:
        return SkipReason.EXPIRED

    # Global usage cap (null limit = unlimited)
    if promotion.usage_limit is not None and (promotion.usage_count or 0) >= promotion.usage_limit:
        return SkipReason.USAGE_LIMIT_REACHED

    # Order value bounds
    if promotion.minimum_order_value is not None and cart.subtotal < to_decimal(promotion.minimum_order_value):
        return SkipReason.BELOW_MINIMUM_ORDER_VALUE
    if promotion.maximum_order_value is not None and cart.subtotal > to_decimal(promotion.maximum_order_value):
        return SkipReason.ABOVE_MAXIMUM_ORDER_VALUE

    # Quantity bounds are on the whole cart, not only the targeted lines
    total_quantity = cart.total_quantity
    if promotion.minimum_quantity is not None and total_quantity < promotion.minimum_quantity:
        return SkipReason.BELOW_MINIMUM_QUANTITY
    if promotion.maximum_quantity is not None and total_quantity > promotion.maximum_quantity:
        return SkipReason.ABOVE_MAXIMUM_QUANTITY

    return _evaluate_customer_conditions(promotion, cart.customer)


def is_eligible(promotion: Promotion, cart: CartSummary, now: datetime) -> bool:
    return evaluate_eligibility(promotion, cart, now) is None


def _evaluate_customer_conditions(
    promotion: Promotion,
    customer: Optional[CustomerContext],
) -> Optional[SkipReason]:
    """Customer-specific checks. Anonymous carts fail any customer-gated promotion."""
    segments = _id_set(promotion.customer_segments)
    first_order_only = to_enum(promotion.target_type, PromotionTargetType) == PromotionTargetType.FIRST_ORDER
    per_customer_limit = promotion.usage_limit_per_customer

    if customer is None:
        if segments or first_order_only or per_customer_limit is not None:
            return SkipReason.LOGIN_REQUIRED
        return None

    if segments and not (segments & customer.segment_ids):
        return SkipReason.SEGMENT_MISMATCH

    if first_order_only and customer.order_count > 0:
        return SkipReason.NOT_FIRST_ORDER

    if per_customer_limit is not None and customer.usage_count_for(promotion.id) >= per_customer_limit:
        return SkipReason.CUSTOMER_LIMIT_REACHED

    return None


# ==================== APPLICABILITY ====================

def filter_applicable_items(promotion: Promotion, items: List[CartLine]) -> List[CartLine]:
    """
    Narrow the cart lines to the ones a promotion's discount applies to.

    Inclusion lists intersect: a line must match every non-empty list.
    Lines with an unknown category never match a category inclusion list
    and are never removed by a category exclusion list.
    """
    applicable_products = _id_set(promotion.applicable_products)
    applicable_categories = _id_set(promotion.applicable_categories)
    exclude_products = _id_set(promotion.exclude_products)
    exclude_categories = _id_set(promotion.exclude_categories)

    applicable = list(items)

    if applicable_products:
        applicable = [item for item in applicable if item.product_id in applicable_products]

    if applicable_categories:
        applicable = [
            item for item in applicable
            if item.category_id is not None and item.category_id in applicable_categories
        ]

    if exclude_products:
        applicable = [item for item in applicable if item.product_id not in exclude_products]

    if exclude_categories:
        applicable = [
            item for item in applicable
            if item.category_id is None or item.category_id not in exclude_categories
        ]

    return applicable


def targets_cart(promotion: Promotion, items: List[CartLine]) -> bool:
    """
    Coarse pre-filter used when gathering automatic promotions: untargeted
    promotions always match, targeted ones need a product or category overlap.
    """
    applicable_products = _id_set(promotion.applicable_products)
    applicable_categories = _id_set(promotion.applicable_categories)
    if not applicable_products and not applicable_categories:
        return True

    product_ids = {item.product_id for item in items}
    category_ids = {item.category_id for item in items if item.category_id}
    return bool(applicable_products & product_ids) or bool(applicable_categories & category_ids)


# ==================== DISCOUNT CALCULATION ====================

def calculate_discount(
    promotion: Promotion,
    items: List[CartLine],
    currency: str = "AED",
) -> DiscountOutcome:
    """
    Compute the discount for a promotion over its applicable lines.

    The amount is clamped to [0, total of the applicable lines] and left
    unrounded; rounding happens when the cart totals are assembled.
    """
    items_total = sum((item.line_total for item in items), ZERO)
    discount_value = to_decimal(promotion.discount_value)
    promotion_type = to_enum(promotion.type, PromotionType)

    if promotion_type == PromotionType.PERCENTAGE:
        amount = items_total * discount_value / HUNDRED
        if promotion.max_discount_amount is not None:
            amount = min(amount, to_decimal(promotion.max_discount_amount))
        outcome = DiscountOutcome(amount, f"{format_amount(discount_value)}% off")

    elif promotion_type == PromotionType.FIXED_AMOUNT:
        outcome = DiscountOutcome(discount_value, f"{currency} {format_amount(discount_value)} off")

    elif promotion_type == PromotionType.FREE_SHIPPING:
        outcome = DiscountOutcome(ZERO, "Free shipping", free_shipping=True)

    elif promotion_type == PromotionType.BUY_X_GET_Y:
        outcome = DiscountOutcome(
            _buy_x_get_y_discount(promotion, items),
            _buy_x_get_y_description(promotion),
        )

    elif promotion_type == PromotionType.BULK_DISCOUNT:
        outcome = DiscountOutcome(
            _bulk_discount(promotion, items, items_total),
            f"Bulk discount - {format_amount(discount_value)}% off",
        )

    else:
        # Unknown type stored in the database: contributes nothing
        outcome = DiscountOutcome(ZERO, promotion.description or promotion.name)

    outcome.amount = max(ZERO, min(outcome.amount, items_total))
    return outcome


def _buy_x_get_y_discount(promotion: Promotion, items: List[CartLine]) -> Decimal:
    """
    Free units are credited greedily from the most expensive lines first.
    """
    if not promotion.buy_quantity or not promotion.get_quantity:
        return ZERO

    total_quantity = sum(item.quantity for item in items)
    eligible_sets = total_quantity // promotion.buy_quantity
    remaining_free = eligible_sets * promotion.get_quantity

    discount_percent = (
        HUNDRED if promotion.get_discount_percent is None
        else to_decimal(promotion.get_discount_percent)
    )

    discount = ZERO
    # sorted() is stable, so equally priced lines keep cart order
    for item in sorted(items, key=lambda line: line.price, reverse=True):
        if remaining_free <= 0:
            break
        units = min(remaining_free, item.quantity)
        discount += item.price * units * discount_percent / HUNDRED
        remaining_free -= units

    return discount


def _buy_x_get_y_description(promotion: Promotion) -> str:
    if promotion.get_discount_percent is not None and to_decimal(promotion.get_discount_percent) < HUNDRED:
        return (
            f"Buy {promotion.buy_quantity} get {promotion.get_quantity} "
            f"at {format_amount(promotion.get_discount_percent)}% off"
        )
    return f"Buy {promotion.buy_quantity} get {promotion.get_quantity} free"


def _bulk_discount(promotion: Promotion, items: List[CartLine], items_total: Decimal) -> Decimal:
    total_quantity = sum(item.quantity for item in items)
    if promotion.minimum_quantity is not None and total_quantity < promotion.minimum_quantity:
        return ZERO
    return items_total * to_decimal(promotion.discount_value) / HUNDRED


def evaluate_promotion(
    promotion: Promotion,
    available_items: List[CartLine],
    cart: CartSummary,
    now: datetime,
    currency: str = "AED",
    code: Optional[str] = None,
) -> PromotionOutcome:
    """
    Run eligibility -> applicability -> calculation for one promotion.

    A promotion is applied when it yields a positive discount or free shipping.
    """
    reason = evaluate_eligibility(promotion, cart, now)
    if reason is not None:
        return Skipped(promotion, reason)

    applicable_items = filter_applicable_items(promotion, available_items)
    if not applicable_items:
        return Skipped(promotion, SkipReason.NO_APPLICABLE_ITEMS)

    outcome = calculate_discount(promotion, applicable_items, currency=currency)
    if outcome.amount <= ZERO and not outcome.free_shipping:
        return Skipped(promotion, SkipReason.NO_DISCOUNT)

    return Applied(PromotionCalculation(
        promotion_id=promotion.id,
        promotion_name=promotion.name,
        promotion_code=code or promotion.code,
        discount_amount=outcome.amount,
        free_shipping=outcome.free_shipping,
        applicable_items=[item.product_id for item in applicable_items],
        description=outcome.description,
    ))


# ==================== TOTALS ====================

class CartCalculationResult:
    """Final cart totals with the promotions that produced them."""
    def __init__(
        self,
        subtotal: Decimal,
        applied_promotions: List[PromotionCalculation],
        total_discount: Decimal,
        shipping_cost: Decimal,
        tax_amount: Decimal,
        total: Decimal,
        available_promotions: Optional[List[Promotion]] = None,
        skipped: Optional[List[Skipped]] = None,
    ):
        self.subtotal = subtotal
        self.applied_promotions = applied_promotions
        self.total_discount = total_discount
        self.shipping_cost = shipping_cost
        self.tax_amount = tax_amount
        self.total = total
        self.available_promotions = available_promotions or []
        self.skipped = skipped or []

    @property
    def free_shipping(self) -> bool:
        return any(p.free_shipping for p in self.applied_promotions)

    @classmethod
    def empty(cls) -> "CartCalculationResult":
        return cls(ZERO, [], ZERO, ZERO, ZERO, ZERO)

    def to_dict(self) -> dict:
        return {
            "subtotal": float(self.subtotal),
            "applied_promotions": [p.to_dict() for p in self.applied_promotions],
            "total_discount": float(self.total_discount),
            "shipping_cost": float(self.shipping_cost),
            "tax_amount": float(self.tax_amount),
            "total": float(self.total),
            "available_promotions": [
                {
                    "id": str(p.id),
                    "name": p.name,
                    "description": p.description,
                    "type": p.type,
                    "code": p.code,
                    "discount_value": float(to_decimal(p.discount_value)),
                    "minimum_order_value": (
                        float(p.minimum_order_value) if p.minimum_order_value is not None else None
                    ),
                    "end_date": as_utc(p.end_date).isoformat() if p.end_date else None,
                }
                for p in self.available_promotions
            ],
        }


def calculate_shipping(
    subtotal: Decimal,
    free_shipping: bool,
    base_fee: Decimal,
    free_shipping_threshold: Decimal,
) -> Decimal:
    """Shipping is waived by a free-shipping promotion or once the subtotal reaches the threshold."""
    if free_shipping or subtotal >= free_shipping_threshold:
        return ZERO
    return to_decimal(base_fee)


def assemble_totals(
    subtotal: Decimal,
    calculations: List[PromotionCalculation],
    base_shipping_fee: Decimal,
    free_shipping_threshold: Decimal,
    tax_rate: Decimal,
    available_promotions: Optional[List[Promotion]] = None,
    skipped: Optional[List[Skipped]] = None,
) -> CartCalculationResult:
    """
    Round and combine the applied promotions into the final totals.

    Each discount is rounded to cents and clamped so the running discount
    never exceeds the subtotal, which keeps total >= 0 and
    total_discount == sum(applied discounts).
    """
    subtotal = round_money(to_decimal(subtotal))

    total_discount = ZERO
    for calculation in calculations:
        amount = round_money(max(ZERO, calculation.discount_amount))
        amount = min(amount, subtotal - total_discount)
        calculation.discount_amount = amount
        total_discount += amount

    free_shipping = any(c.free_shipping for c in calculations)
    shipping_cost = round_money(calculate_shipping(
        subtotal, free_shipping, to_decimal(base_shipping_fee), to_decimal(free_shipping_threshold)
    ))
    tax_amount = round_money((subtotal - total_discount) * to_decimal(tax_rate))
    total = subtotal - total_discount + shipping_cost + tax_amount

    return CartCalculationResult(
        subtotal=subtotal,
        applied_promotions=calculations,
        total_discount=total_discount,
        shipping_cost=shipping_cost,
        tax_amount=tax_amount,
        total=total,
        available_promotions=available_promotions,
        skipped=skipped,
    )
