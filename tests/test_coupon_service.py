"""Coupon code validation."""
import uuid
from datetime import timedelta

import pytest

from promo_engine.models.promotion import PromotionStatus
from promo_engine.services.coupon_service import CouponService
from tests.factories import NOW, create_promotion, create_coupon


@pytest.fixture
async def promotion(db):
    return await create_promotion(db, name="Coupon promotion", requires_coupon=True)


async def validate(db, code, user_id=None):
    return await CouponService(db).validate_coupon_code(code, user_id=user_id, now=NOW)


async def test_valid_coupon_returns_its_promotion(db, promotion):
    await create_coupon(db, promotion, "SAVE50-01")

    result = await validate(db, " save50-01 ")

    assert result.valid is True
    assert result.message == "Coupon is valid"
    assert result.promotion.id == promotion.id
    assert result.coupon.code == "SAVE50-01"


async def test_coupon_assigned_to_another_customer_is_invalid(db, promotion):
    owner, someone_else = uuid.uuid4(), uuid.uuid4()
    await create_coupon(db, promotion, "PERSONAL", assigned_to_user_id=owner)

    assert (await validate(db, "PERSONAL", user_id=someone_else)).valid is False
    assert (await validate(db, "PERSONAL")).valid is False

    owned = await validate(db, "PERSONAL", user_id=owner)
    assert owned.valid is True


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"active": False}, "This coupon is no longer active"),
        ({"assigned_to_user_id": uuid.uuid4()}, "This coupon is not assigned to your account"),
        ({"usage_limit": 2, "usage_count": 2}, "This coupon has reached its usage limit"),
        ({"start_date": NOW + timedelta(hours=1)}, "This coupon is not yet active"),
        ({"end_date": NOW - timedelta(hours=1)}, "This coupon has expired"),
    ],
)
async def test_unusable_coupon_reports_why(db, promotion, overrides, message):
    await create_coupon(db, promotion, "CHECK-ME", **overrides)

    result = await validate(db, "CHECK-ME")

    assert result.valid is False
    assert result.message == message
    assert result.promotion is None


async def test_unknown_code_is_invalid_not_an_error(db):
    result = await validate(db, "DOES-NOT-EXIST")
    assert result.valid is False
    assert result.message == "Invalid coupon code"


async def test_coupon_of_inactive_promotion_is_invalid(db):
    paused = await create_promotion(db, name="Paused", status=PromotionStatus.INACTIVE)
    await create_coupon(db, paused, "PAUSED-01")

    result = await validate(db, "PAUSED-01")

    assert result.valid is False
    assert result.message == "The associated promotion is not active"


async def test_resolution_keeps_submitted_order(db, promotion):
    second = await create_promotion(db, name="Second", requires_coupon=True)
    await create_coupon(db, promotion, "AAA")
    await create_coupon(db, second, "BBB")

    resolved = await CouponService(db).resolve_coupon_promotions(["bbb", "AAA", "BBB"], now=NOW)

    assert [coupon.code for _, coupon in resolved] == ["BBB", "AAA"]
    assert [p.name for p, _ in resolved] == ["Second", "Coupon promotion"]
