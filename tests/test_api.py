from datetime import timedelta
from decimal import Decimal

import pytest

from common.helpers import now_utc


@pytest.fixture
def farmer(make_user):
    return make_user()


@pytest.fixture
def admin(make_user):
    return make_user(role="admin", email="admin@example.com")


@pytest.fixture
def seed(make_product):
    return make_product(name="Hybrid Paddy Seed", price=Decimal("850"), discount_price=Decimal("750"), stock=10)


def test_health(client):
    assert client.get("/health").json()["status"] == "ok"


def test_cart_requires_login(client):
    assert client.get("/api/cart").status_code == 401
    assert client.get("/api/cart", headers={"Authorization": "Bearer garbage"}).status_code == 401


def test_cart_flow(client, farmer, seed, auth_headers):
    headers = auth_headers(farmer)
    resp = client.post("/api/cart/items", json={"product_id": seed.id, "quantity": 2}, headers=headers)
    assert resp.status_code == 200
    body = resp.json()
    assert body["subtotal"] == 1500
    assert body["tax_amount"] == 270
    assert body["total"] == 1770

    resp = client.patch(f"/api/cart/items/{seed.id}", json={"quantity": 50}, headers=headers)
    assert resp.status_code == 409
    assert resp.json()["error"] == "insufficient_stock"

    resp = client.delete(f"/api/cart/items/{seed.id}", headers=headers)
    assert resp.json()["items"] == []


def test_coupon_errors_are_structured(client, farmer, seed, make_coupon, auth_headers):
    headers = auth_headers(farmer)
    make_coupon(code="BIGSPEND", min_order_value=Decimal("5000"))
    client.post("/api/cart/items", json={"product_id": seed.id, "quantity": 2}, headers=headers)

    resp = client.post("/api/cart/coupon", json={"code": "NOSUCH"}, headers=headers)
    assert resp.status_code == 404
    assert resp.json()["error"] == "coupon_not_found"

    resp = client.post("/api/cart/coupon", json={"code": "bigspend"}, headers=headers)
    assert resp.status_code == 400
    assert resp.json() == {
        "error": "coupon_not_eligible",
        "detail": "Minimum order value is ₹5,000.00",
        "reason": "min_order_value",
    }


def test_checkout_and_history(client, farmer, seed, make_coupon, auth_headers):
    headers = auth_headers(farmer)
    make_coupon()
    client.post("/api/cart/items", json={"product_id": seed.id, "quantity": 2}, headers=headers)
    check = client.get("/api/coupons/check", params={"code": "WELCOME10"}, headers=headers).json()
    assert check["valid"] is True
    client.post("/api/cart/coupon", json={"code": "WELCOME10"}, headers=headers)

    resp = client.post("/api/orders", json={"payment_method": "upi"}, headers=headers)
    assert resp.status_code == 201
    order = resp.json()
    assert order["total"] == 1593
    assert order["coupon_code"] == "WELCOME10"
    assert order["can_cancel"] is True
    assert [e["status"] for e in order["timeline"]] == ["pending"]

    history = client.get("/api/orders", headers=headers).json()
    assert history["total"] == 1

    resp = client.post(f"/api/orders/{order['id']}/cancel", json={"reason": "Wrong variety"}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["status"] == "cancelled"


def test_empty_cart_checkout_is_rejected(client, farmer, auth_headers):
    resp = client.post("/api/orders", json={}, headers=auth_headers(farmer))
    assert resp.status_code == 422
    assert resp.json()["error"] == "validation_error"


def test_catalog_is_public(client, seed):
    listing = client.get("/api/products", params={"category": "Seeds"}).json()
    assert listing["total"] == 1
    detail = client.get(f"/api/products/{seed.id}").json()
    assert detail["name"] == "Hybrid Paddy Seed"
    assert client.get("/api/products/9999").status_code == 404


def test_admin_routes_need_staff(client, farmer, admin, auth_headers):
    product = {"name": "Neem Oil 1L", "category": "Pesticides", "price": "420", "stock": 12, "unit": "bottle"}
    assert client.post("/api/admin/products", json=product, headers=auth_headers(farmer)).status_code == 403
    resp = client.post("/api/admin/products", json=product, headers=auth_headers(admin))
    assert resp.status_code == 201
    assert resp.json()["slug"] == "neem-oil-1l"


def test_admin_creates_coupon(client, admin, auth_headers):
    now = now_utc()
    payload = {
        "code": "kharif15",
        "name": "Kharif sale",
        "discount_type": "percentage",
        "value": "15",
        "start_date": now.isoformat(),
        "end_date": (now + timedelta(days=60)).isoformat(),
        "seasons": ["kharif"],
    }
    resp = client.post("/api/admin/coupons", json=payload, headers=auth_headers(admin))
    assert resp.status_code == 201
    assert resp.json()["code"] == "KHARIF15"

    resp = client.post("/api/admin/coupons", json=payload, headers=auth_headers(admin))
    assert resp.status_code == 422


def test_farm_profile_and_recommendations(client, farmer, admin, auth_headers):
    headers = auth_headers(farmer)
    resp = client.patch("/api/me/farm", json={"state": "Gujarat", "primary_crops": ["cotton"]}, headers=headers)
    assert resp.json()["state"] == "Gujarat"

    for state, crop in (("Gujarat", "cotton"), ("Punjab", "wheat")):
        client.post("/api/admin/advisories", json={
            "title": f"{crop} advisory", "content": "...", "category": "Crops",
            "status": "published", "is_evergreen": True,
            "regions": [{"state": state}], "target_crops": [crop],
        }, headers=auth_headers(admin))

    recommended = client.get("/api/advisories/recommended", headers=headers).json()
    assert [a["title"] for a in recommended] == ["cotton advisory"]


def test_admin_order_lookup_by_number(client, farmer, admin, seed, auth_headers):
    headers = auth_headers(farmer)
    client.post("/api/cart/items", json={"product_id": seed.id, "quantity": 1}, headers=headers)
    order = client.post("/api/orders", json={}, headers=headers).json()

    resp = client.get(f"/api/admin/orders/number/{order['order_number'].lower()}", headers=auth_headers(admin))
    assert resp.status_code == 200
    assert resp.json()["id"] == order["id"]

    resp = client.post(f"/api/admin/orders/{order['id']}/status", json={"status": "shipped"},
                       headers=auth_headers(admin))
    assert resp.json()["status"] == "shipped"
