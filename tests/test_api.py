from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

import main


@pytest.fixture
def auth_client(db):
    main.app.dependency_overrides.clear()
    main.app.dependency_overrides[main.get_db] = lambda: db
    with TestClient(main.app) as c:
        yield c
    main.app.dependency_overrides.clear()


def test_register_login_and_me(auth_client):
    res = auth_client.post("/api/register", json={"name": "Jane Doe", "email": "jane@example.com", "password": "secret123"})
    assert res.status_code == 200
    user_id = res.json()["id"]

    again = auth_client.post("/api/register", json={"name": "Jane", "email": "jane@example.com", "password": "secret123"})
    assert again.status_code == 400

    bad = auth_client.post("/api/login", data={"username": "jane@example.com", "password": "wrong-pass"})
    assert bad.status_code == 400

    token = auth_client.post("/api/login", data={"username": "jane@example.com", "password": "secret123"}).json()["access_token"]
    me = auth_client.get("/api/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json() == {"uid": user_id, "email": "jane@example.com", "display_name": "Jane Doe"}


def test_protected_routes_need_a_token(auth_client):
    assert auth_client.get("/api/cart").status_code == 401
    assert auth_client.get("/api/orders", headers={"Authorization": "Bearer not-a-jwt"}).status_code == 401


def test_catalog_endpoints(client, make_product):
    tee = make_product(name="Oversized Graphic Tee", collection_types=["new-in"])
    make_product(name="Cargo Utility Pants", category="Bottoms", collection_type="drop-preview")

    assert [p["name"] for p in client.get("/api/products", params={"collection": "drop-preview"}).json()] == ["Cargo Utility Pants"]
    assert [p["name"] for p in client.get("/api/search", params={"q": "graphic tee"}).json()] == ["Oversized Graphic Tee"]
    assert client.get(f"/api/products/{tee}").json()["id"] == tee
    assert client.get("/api/products/nope").status_code == 404

    assert client.post(f"/api/products/{tee}/reviews", json={"rating": 4, "comment": "Nice"}).status_code == 200
    assert client.post(f"/api/products/{tee}/reviews", json={"rating": 4, "comment": " "}).status_code == 422
    assert [r["comment"] for r in client.get(f"/api/products/{tee}/reviews").json()] == ["Nice"]


def test_cart_requires_complete_profile(client, make_product):
    pid = make_product()
    res = client.post("/api/cart/items", json={"product_id": pid})
    assert res.status_code == 403
    assert "complete your profile" in res.json()["detail"]


def test_cart_line_quantity_is_capped(client, complete_profile, make_product):
    pid = make_product(price=100.0, discount_percent=10)

    res = client.post("/api/cart/items", json={"product_id": pid, "quantity": 8})
    assert res.json()["count"] == 8
    assert res.json()["total"] == 720.0

    assert client.post("/api/cart/items", json={"product_id": pid, "quantity": 3}).status_code == 422
    assert client.patch(f"/api/cart/items/{pid}", json={"quantity": 11}).status_code == 422
    assert client.patch(f"/api/cart/items/{pid}", json={"quantity": 0}).json()["count"] == 8
    assert client.patch(f"/api/cart/items/{pid}", json={"quantity": 2}).json()["count"] == 2

    assert client.delete(f"/api/cart/items/{pid}").json()["items"] == []


def test_empty_cart_checkout_is_rejected(client, complete_profile):
    res = client.post("/api/checkout", json={})
    assert res.status_code == 400
    assert res.json()["detail"] == "Your cart is empty"


def test_cash_on_delivery_checkout(client, complete_profile, make_product):
    tee = make_product(price=100.0, discount_percent=10)
    shirt = make_product(name="Black Shirt", price=50.0)
    client.post("/api/cart/items", json={"product_id": tee, "quantity": 2})
    client.post("/api/cart/items", json={"product_id": shirt})

    started = client.post("/api/checkout", json={}).json()
    assert started["state"] == "collecting_shipping"
    assert started["total"] == 230.0
    assert started["shipping"]["zip_code"] == "560001"
    assert started["shipping"]["country"] == "India"

    invalid = client.put("/api/checkout/shipping", json={"email": "not-an-email"})
    assert invalid.status_code == 422
    assert "email" in invalid.json()["errors"]

    shipped = client.put("/api/checkout/shipping", json={"email": "jane@example.com"})
    assert shipped.json()["state"] == "awaiting_payment"

    paid = client.post("/api/checkout/payment", json={"method": "cod"})
    assert paid.status_code == 200
    order_id = paid.json()["order_id"]
    assert paid.json()["checkout"]["state"] == "succeeded"
    assert client.get("/api/cart").json()["count"] == 0

    detail = client.get(f"/api/orders/{order_id}").json()
    assert detail["payment_method"] == "Cash on Delivery"
    assert detail["payment_id"].startswith("cod_")
    assert detail["total_amount"] == 230.0
    assert [step["active"] for step in detail["timeline"]] == [True, False, False, False]
    assert [o["id"] for o in client.get("/api/orders").json()] == [order_id]


def test_card_payment_without_details_is_resumable(client, complete_profile, make_product):
    pid = make_product()
    client.post("/api/checkout", json={"buy_now": {"product_id": pid, "quantity": 1}})
    client.put("/api/checkout/shipping", json={})

    res = client.post("/api/checkout/payment", json={"method": "card"})
    assert res.status_code == 402
    checkout = client.get("/api/checkout").json()
    assert checkout["state"] == "awaiting_payment"
    assert checkout["error"] == "Please enter your card details."

    assert client.post("/api/checkout/back").json()["state"] == "collecting_shipping"


def test_left_checkout_is_gone(client, complete_profile, make_product):
    pid = make_product()
    client.post("/api/checkout", json={"buy_now": {"product_id": pid}})
    assert client.delete("/api/checkout").json() == {"ok": True}
    assert client.get("/api/checkout").status_code == 404


def test_unknown_order_is_not_found(client):
    res = client.get("/api/orders/5f43a1d2e4b0c6a7b8c9d0e1")
    assert res.status_code == 404
    assert res.json()["detail"] == "Order not found."


def test_profile_endpoints(client):
    assert client.get("/api/profile").json() == {"profile": None, "complete": False}

    form = {"first_name": "Jane", "age": 12, "pin_code": "560001", "address": "12 MG Road"}
    young = client.put("/api/profile", json=form)
    assert young.status_code == 422
    assert young.json()["errors"]["age"] == "Age must be 15 or older."

    saved = client.put("/api/profile", json={**form, "age": 30, "phone_number": "99999", "city": "Bengaluru"})
    assert saved.json()["complete"] is True


def test_membership_overview(client):
    plans = client.get("/api/membership").json()["plans"]
    assert [p["id"] for p in plans] == ["silver", "gold", "platinum"]
    assert {p["button"]["text"] for p in plans} == {"Request Access"}
    assert client.post("/api/membership/diamond", json={"payment_method_id": "pm_card_visa"}).status_code == 409


def test_notification_endpoints(client, db, account):
    now = datetime(2024, 6, 1, tzinfo=timezone.utc)
    db["notifications"].insert_many([
        {"user_id": account.uid, "title": "Shipped", "message": "On its way", "read": False, "created_at": now},
        {"user_id": account.uid, "title": "Welcome", "message": "Hi", "read": False, "created_at": now - timedelta(days=1)},
        {"user_id": "someone-else", "title": "Other", "message": "x", "read": False, "created_at": now},
    ])

    feed = client.get("/api/notifications").json()
    assert [n["title"] for n in feed["notifications"]] == ["Shipped", "Welcome"]
    assert feed["unread_count"] == 2

    client.post(f"/api/notifications/{feed['notifications'][0]['id']}/read")
    assert client.get("/api/notifications").json()["unread_count"] == 1

    client.post("/api/notifications/read-all")
    assert client.get("/api/notifications").json()["unread_count"] == 0

    client.delete("/api/notifications")
    assert client.get("/api/notifications").json()["notifications"] == []
    assert db["notifications"].count_documents({}) == 1
