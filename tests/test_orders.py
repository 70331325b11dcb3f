import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

import cart as cart_service
import orders
from conftest import auth_headers, make_user
from models import CartItem, Order, OrderItem, UserRole


def count_rows(db, model):
    db.expire_all()
    return db.scalar(select(func.count()).select_from(model))


def test_create_order_uses_server_prices(client, headers, products):
    res = client.post(
        "/orders",
        json={"items": [{"productId": products[0].id, "quantity": 2, "unitPrice": 0.01}], "shippingAddress": "Via Roma 1"},
        headers=headers,
    )
    assert res.status_code == 201
    order = res.json()
    assert order["total"] == 39.98
    assert order["status"] == "processing"
    assert order["shippingAddress"] == "Via Roma 1"
    assert order["items"][0]["unitPrice"] == 19.99
    assert order["items"][0]["quantity"] == 2


def test_total_matches_sum_of_lines(client, headers, products):
    lines = [
        {"productId": products[0].id, "quantity": 1},
        {"productId": products[1].id, "quantity": 3},
    ]
    order = client.post("/orders", json={"items": lines}, headers=headers).json()
    expected = sum(item["unitPrice"] * item["quantity"] for item in order["items"])
    assert round(expected, 2) == order["total"] == 36.49


def test_empty_order_rejected(client, headers, db):
    res = client.post("/orders", json={"items": []}, headers=headers)
    assert res.status_code == 400
    assert count_rows(db, Order) == 0


def test_non_positive_lines_rejected(client, headers, products, db):
    res = client.post("/orders", json={"items": [{"productId": products[0].id, "quantity": 0}]}, headers=headers)
    assert res.status_code == 400
    res = client.post("/orders", json={"items": [{"productId": -1, "quantity": 1}]}, headers=headers)
    assert res.status_code == 400
    assert count_rows(db, Order) == 0


def test_inactive_or_missing_product_rejects_whole_order(client, headers, products, db):
    inactive = products[2]
    res = client.post(
        "/orders",
        json={"items": [
            {"productId": products[0].id, "quantity": 1},
            {"productId": inactive.id, "quantity": 1},
            {"productId": 999, "quantity": 1},
        ]},
        headers=headers,
    )
    assert res.status_code == 400
    assert str(inactive.id) in res.json()["detail"]
    assert "999" in res.json()["detail"]
    assert count_rows(db, Order) == 0
    assert count_rows(db, OrderItem) == 0


def test_order_clears_cart(client, headers, products):
    client.post("/cart/items", json={"productId": products[0].id, "quantity": 2}, headers=headers)
    client.post("/orders", json={"items": [{"productId": products[0].id, "quantity": 2}]}, headers=headers)
    cart = client.get("/cart", headers=headers).json()
    assert cart["items"] == []


def test_draft_order_keeps_snapshot_and_cart(client, headers, products):
    client.post("/cart/items", json={"productId": products[0].id, "quantity": 1}, headers=headers)
    res = client.post(
        "/orders/draft",
        json={
            "items": [{"productId": products[0].id, "quantity": 1}],
            "checkoutData": {"email": "mario@example.com", "cardNumber": "4111 1111 1111 1234", "cardCvv": "123"},
        },
        headers=headers,
    )
    assert res.status_code == 201
    draft = res.json()
    assert draft["status"] == "pending"
    assert draft["checkoutData"]["email"] == "mario@example.com"
    assert draft["checkoutData"]["cardNumber"] == "1234"
    assert "cardCvv" not in draft["checkoutData"]
    assert len(client.get("/cart", headers=headers).json()["items"]) == 1


def test_order_price_is_frozen(client, headers, admin_headers, products):
    order = client.post("/orders", json={"items": [{"productId": products[0].id, "quantity": 1}]}, headers=headers).json()
    client.put(f"/products/{products[0].id}", json={"price": 50}, headers=admin_headers)
    again = client.get(f"/orders/{order['id']}", headers=headers).json()
    assert again["items"][0]["unitPrice"] == 19.99
    assert again["total"] == 19.99


def test_list_and_visibility(client, headers, db, products):
    order = client.post("/orders", json={"items": [{"productId": products[0].id, "quantity": 1}]}, headers=headers).json()
    assert [o["id"] for o in client.get("/orders", headers=headers).json()] == [order["id"]]

    stranger = auth_headers(make_user(db, email="luigi@example.com"))
    assert client.get(f"/orders/{order['id']}", headers=stranger).status_code == 404
    assert client.get("/orders", headers=stranger).json() == []


def test_status_transitions(client, headers, admin_headers, products):
    order = client.post("/orders", json={"items": [{"productId": products[0].id, "quantity": 1}]}, headers=headers).json()
    url = f"/orders/{order['id']}/status"

    assert client.put(url, json={"status": "shipped"}, headers=admin_headers).json()["status"] == "shipped"
    assert client.put(url, json={"status": "pending"}, headers=admin_headers).status_code == 409
    assert client.put(url, json={"status": "delivered"}, headers=admin_headers).json()["status"] == "delivered"
    assert client.put(url, json={"status": "cancelled"}, headers=admin_headers).status_code == 409


def test_customer_can_only_cancel(client, headers, products):
    order = client.post("/orders", json={"items": [{"productId": products[0].id, "quantity": 1}]}, headers=headers).json()
    url = f"/orders/{order['id']}/status"
    assert client.put(url, json={"status": "shipped"}, headers=headers).status_code == 403
    assert client.put(url, json={"status": "cancelled"}, headers=headers).json()["status"] == "cancelled"


def test_unknown_status_rejected(client, admin_headers, headers, products):
    order = client.post("/orders", json={"items": [{"productId": products[0].id, "quantity": 1}]}, headers=headers).json()
    res = client.put(f"/orders/{order['id']}/status", json={"status": "lost"}, headers=admin_headers)
    assert res.status_code == 422


def test_orders_require_token(client):
    assert client.get("/orders").status_code == 401
    assert client.get("/orders", headers={"Authorization": "Bearer not-a-token"}).status_code == 401


def test_admin_role_is_read_from_database(client, db, products):
    promoted = make_user(db, email="boss@example.com", role=UserRole.ADMIN)
    headers = auth_headers(promoted)
    promoted.role = UserRole.USER
    db.commit()
    assert client.get("/admin/users", headers=headers).status_code == 403


def test_malformed_lines_are_bad_requests(client, headers, products, db):
    pid = products[0].id
    for body in (
        {"items": [{"productId": pid, "quantity": 1.5}]},
        {"items": [{"productId": "abc", "quantity": 1}]},
        {"items": [{"quantity": 1}]},
        {"items": ["not-a-line"]},
        {"items": None},
        {},
    ):
        res = client.post("/orders", json=body, headers=headers)
        assert res.status_code == 400, body
        assert client.post("/orders/draft", json=body, headers=headers).status_code == 400
    assert count_rows(db, Order) == 0


def test_failed_commit_leaves_no_order_and_keeps_cart(db, user, products, monkeypatch):
    cart_service.add_item(db, user.id, products[0].id, 2)

    def failing_commit():
        db.flush()
        raise IntegrityError("INSERT INTO orders", None, Exception("disk full"))

    monkeypatch.setattr(db, "commit", failing_commit)
    with pytest.raises(IntegrityError):
        orders.create_order(db, user.id, [{"productId": products[0].id, "quantity": 2}])
    monkeypatch.undo()

    assert count_rows(db, Order) == 0
    assert count_rows(db, OrderItem) == 0
    assert count_rows(db, CartItem) == 1
