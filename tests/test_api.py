"""HTTP endpoints."""
import uuid
from decimal import Decimal

from promo_engine.models.promotion import PromotionType, PromotionTargetType
from tests.factories import (
    create_promotion, create_coupon, create_customer, create_order,
)


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["checks"]["database"] == "connected"


# ==================== Storefront ====================

async def test_calculate_anonymous_cart(client, db):
    await create_promotion(db, name="15% off", discount_value=Decimal("15"))

    response = await client.post("/api/v1/promotions/calculate", json={
        "items": [{"productId": str(uuid.uuid4()), "quantity": 1, "price": 150}],
        "appliedCoupons": [],
    })

    assert response.status_code == 200
    data = response.json()
    assert data["subtotal"] == 150
    assert data["total_discount"] == 22.5
    assert data["shipping_cost"] == 10
    assert data["tax_amount"] == 12.75
    assert data["total"] == 150.25
    assert data["applied_promotions"][0]["promotion_name"] == "15% off"
    assert data["applied_promotions"][0]["description"] == "15% off"


async def test_calculate_with_coupon_code(client, db):
    promotion = await create_promotion(
        db, name="AED 50 Off", requires_coupon=True,
        type=PromotionType.FIXED_AMOUNT, discount_value=Decimal("50"),
    )
    await create_coupon(db, promotion, "SAVE50")

    response = await client.post("/api/v1/promotions/calculate", json={
        "items": [{"product_id": str(uuid.uuid4()), "quantity": 2, "price": "40"}],
        "applied_coupons": ["save50"],
    })

    data = response.json()
    assert data["applied_promotions"][0]["promotion_code"] == "SAVE50"
    assert data["total_discount"] == 50
    assert data["total"] == 43
    assert data["total"] >= 0


async def test_calculate_uses_customer_token(client, db, auth_for):
    await create_promotion(db, name="Welcome", target_type=PromotionTargetType.FIRST_ORDER)
    newcomer = await create_customer(db)
    returning = await create_customer(db)
    await create_order(db, returning)
    cart = {"items": [{"productId": str(uuid.uuid4()), "quantity": 1, "price": 100}]}

    anonymous = await client.post("/api/v1/promotions/calculate", json=cart)
    new = await client.post("/api/v1/promotions/calculate", json=cart, headers=auth_for(newcomer.id))
    old = await client.post("/api/v1/promotions/calculate", json=cart, headers=auth_for(returning.id))

    assert anonymous.json()["applied_promotions"] == []
    assert [p["promotion_name"] for p in new.json()["applied_promotions"]] == ["Welcome"]
    assert old.json()["applied_promotions"] == []


async def test_calculate_empty_cart(client):
    response = await client.post("/api/v1/promotions/calculate", json={"items": []})
    assert response.status_code == 200
    assert response.json()["total"] == 0


async def test_calculate_rejects_invalid_lines(client):
    response = await client.post("/api/v1/promotions/calculate", json={
        "items": [{"productId": "p1", "quantity": 0, "price": 10}],
    })
    assert response.status_code == 422

    response = await client.post("/api/v1/promotions/calculate", json={
        "items": [{"productId": "p1", "quantity": 1, "price": -1}],
    })
    assert response.status_code == 422


async def test_invalid_token_is_rejected(client):
    response = await client.post(
        "/api/v1/promotions/calculate",
        json={"items": []},
        headers={"Authorization": "Bearer not-a-token"},
    )
    assert response.status_code == 401


async def test_validate_coupon_assigned_to_someone_else(client, db, auth_for):
    owner, other = await create_customer(db), await create_customer(db)
    promotion = await create_promotion(db, name="Personal", requires_coupon=True)
    await create_coupon(db, promotion, "FOR-OWNER", assigned_to_user_id=owner.id)

    rejected = await client.post(
        "/api/v1/promotions/validate", json={"code": "for-owner"}, headers=auth_for(other.id),
    )
    accepted = await client.post(
        "/api/v1/promotions/validate", json={"code": "for-owner"}, headers=auth_for(owner.id),
    )

    assert rejected.status_code == 200
    assert rejected.json()["valid"] is False
    assert rejected.json()["promotion"] is None
    assert accepted.json()["valid"] is True
    assert accepted.json()["code"] == "FOR-OWNER"
    assert accepted.json()["promotion"]["name"] == "Personal"


# ==================== Back office ====================

async def test_admin_routes_require_admin_role(client, auth_for):
    assert (await client.get("/api/v1/promotions")).status_code == 401
    forbidden = await client.get("/api/v1/promotions", headers=auth_for(uuid.uuid4()))
    assert forbidden.status_code == 403


async def test_promotion_crud(client, admin_headers):
    created = await client.post("/api/v1/promotions", headers=admin_headers, json={
        "code": "light20",
        "name": "Lighting Special",
        "type": "percentage",
        "target_type": "PRODUCT_CATEGORY",
        "status": "ACTIVE",
        "discount_value": "20",
        "max_discount_amount": "200",
        "applicable_categories": [str(uuid.uuid4())],
        "stackable": True,
        "priority": 7,
    })
    assert created.status_code == 201
    promotion = created.json()
    assert promotion["code"] == "LIGHT20"
    assert promotion["type"] == "PERCENTAGE"
    assert promotion["usage_count"] == 0

    duplicate = await client.post("/api/v1/promotions", headers=admin_headers, json={
        "code": "LIGHT20", "name": "Again", "type": "FIXED_AMOUNT", "discount_value": 5,
    })
    assert duplicate.status_code == 400

    updated = await client.put(
        f"/api/v1/promotions/{promotion['id']}", headers=admin_headers,
        json={"status": "inactive", "priority": 3},
    )
    assert updated.status_code == 200
    assert updated.json()["status"] == "INACTIVE"
    assert updated.json()["priority"] == 3

    listed = await client.get("/api/v1/promotions", headers=admin_headers, params={"status": "INACTIVE"})
    assert listed.json()["total"] == 1

    missing = await client.get(f"/api/v1/promotions/{uuid.uuid4()}", headers=admin_headers)
    assert missing.status_code == 404


async def test_promotion_validation_errors(client, admin_headers):
    too_much = await client.post("/api/v1/promotions", headers=admin_headers, json={
        "name": "Broken", "type": "PERCENTAGE", "discount_value": 150,
    })
    assert too_much.status_code == 422

    no_quantities = await client.post("/api/v1/promotions", headers=admin_headers, json={
        "name": "Broken BOGO", "type": "BUY_X_GET_Y",
    })
    assert no_quantities.status_code == 422


async def test_update_keeps_promotion_rules(client, admin_headers):
    created = await client.post("/api/v1/promotions", headers=admin_headers, json={
        "name": "Summer 20%", "type": "PERCENTAGE", "discount_value": 20,
        "start_date": "2027-01-01T00:00:00Z",
    })
    promotion_id = created.json()["id"]

    too_much = await client.put(
        f"/api/v1/promotions/{promotion_id}", headers=admin_headers,
        json={"discount_value": 150},
    )
    assert too_much.status_code == 422
    assert any("cannot exceed 100" in message for message in too_much.json()["detail"])

    # end_date alone is checked against the stored start_date
    inverted = await client.put(
        f"/api/v1/promotions/{promotion_id}", headers=admin_headers,
        json={"end_date": "2026-01-01T00:00:00Z"},
    )
    assert inverted.status_code == 422

    stored = await client.get(f"/api/v1/promotions/{promotion_id}", headers=admin_headers)
    assert float(stored.json()["discount_value"]) == 20
    assert stored.json()["end_date"] is None


async def test_dates_with_offsets_are_stored_as_utc(client, db, admin_headers):
    created = await client.post("/api/v1/promotions", headers=admin_headers, json={
        "name": "Dubai morning", "type": "PERCENTAGE", "discount_value": 10,
        "requires_coupon": True,
        "start_date": "2026-07-01T10:00:00+04:00",
        "end_date": "2026-07-02T10:00:00+04:00",
    })
    assert created.status_code == 201
    assert created.json()["start_date"].startswith("2026-07-01T06:00:00")
    assert created.json()["end_date"].startswith("2026-07-02T06:00:00")

    coupon = await client.post(
        f"/api/v1/promotions/{created.json()['id']}/coupons", headers=admin_headers,
        json={"code": "MORNING", "start_date": "2026-07-01T12:00:00+04:00"},
    )
    assert coupon.json()["start_date"].startswith("2026-07-01T08:00:00")


async def test_coupon_issue_list_and_deactivate(client, db, admin_headers):
    promotion = await create_promotion(db, name="Coupon promotion", requires_coupon=True)

    created = await client.post(
        f"/api/v1/promotions/{promotion.id}/coupons", headers=admin_headers,
        json={"code": " welcome-01 ", "usage_limit": 1},
    )
    assert created.status_code == 201
    coupon = created.json()
    assert coupon["code"] == "WELCOME-01"

    public = await client.get("/api/v1/coupons/active")
    assert [c["code"] for c in public.json()] == ["WELCOME-01"]

    listed = await client.get("/api/v1/coupons", headers=admin_headers, params={"promotion_id": str(promotion.id)})
    assert [c["code"] for c in listed.json()] == ["WELCOME-01"]

    deactivated = await client.patch(f"/api/v1/coupons/{coupon['id']}/deactivate", headers=admin_headers)
    assert deactivated.status_code == 200
    assert deactivated.json()["active"] is False

    public = await client.get("/api/v1/coupons/active")
    assert public.json() == []


async def test_record_usage_is_idempotent(client, db, admin_headers):
    promotion = await create_promotion(db, name="Tracked", usage_limit=1)
    payload = {
        "promotion_id": str(promotion.id),
        "user_id": str(uuid.uuid4()),
        "order_id": str(uuid.uuid4()),
        "discount_amount": "22.50",
    }

    first = await client.post("/api/v1/promotions/usage", headers=admin_headers, json=payload)
    retry = await client.post("/api/v1/promotions/usage", headers=admin_headers, json=payload)
    other_order = await client.post(
        "/api/v1/promotions/usage", headers=admin_headers,
        json={**payload, "order_id": str(uuid.uuid4())},
    )

    assert first.status_code == 200
    assert first.json()["status"] == "RECORDED"
    assert retry.json()["status"] == "DUPLICATE"
    assert retry.json()["usage"]["id"] == first.json()["usage"]["id"]
    assert other_order.status_code == 409

    history = await client.get(f"/api/v1/promotions/{promotion.id}/usage", headers=admin_headers)
    assert len(history.json()) == 1

    detail = await client.get(f"/api/v1/promotions/{promotion.id}", headers=admin_headers)
    assert detail.json()["usage_count"] == 1


async def test_record_usage_for_unknown_promotion(client, admin_headers):
    response = await client.post("/api/v1/promotions/usage", headers=admin_headers, json={
        "promotion_id": str(uuid.uuid4()),
        "user_id": str(uuid.uuid4()),
        "order_id": str(uuid.uuid4()),
        "discount_amount": 1,
    })
    assert response.status_code == 404
