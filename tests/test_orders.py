import pytest
from bson import ObjectId

import main

ADDRESS = {
    "full_name": "Casey Jones",
    "phone": "555-0100",
    "address": "1 Main St",
    "city": "Springfield",
    "zip_code": "12345",
}


def place(client, user, items, **extra):
    body = {"items": items, "shipping_address": ADDRESS, "payment_method": "Credit Card", **extra}
    return client.post("/api/orders", json=body, headers=user["headers"])


@pytest.fixture
def order(client, customer, catalog):
    rtx = str(catalog["products"]["rtx4070"])
    res = place(client, customer, [{"product_id": rtx, "quantity": 2}])
    assert res.status_code == 201
    return res.json()


def stock_of(mock_db, oid):
    return mock_db["product"].find_one({"_id": oid})["stock"]


def test_create_order(client, customer, catalog, mock_db):
    rtx = str(catalog["products"]["rtx4070"])
    ryzen = str(catalog["products"]["ryzen"])
    client.post("/api/cart", json={"product_id": rtx}, headers=customer["headers"])

    res = place(client, customer, [{"product_id": rtx, "quantity": 1}, {"product_id": ryzen, "quantity": 2}], total=1527.0)
    assert res.status_code == 201
    body = res.json()
    assert body["status"] == "processing"
    assert body["total"] == 1527.0
    assert body["user"] == customer["id"]
    assert {i["name"]: i["price"] for i in body["items"]} == {"ASUS TUF RTX 4070": 629.0, "AMD Ryzen 7 7800X3D": 449.0}

    assert stock_of(mock_db, catalog["products"]["rtx4070"]) == 9
    assert stock_of(mock_db, catalog["products"]["ryzen"]) == 1
    assert client.get("/api/cart", headers=customer["headers"]).json() == []


def test_order_validation(client, customer, catalog, mock_db):
    ryzen = str(catalog["products"]["ryzen"])
    assert place(client, customer, []).status_code == 400

    res = place(client, customer, [{"product_id": ryzen, "quantity": 4}])
    assert res.status_code == 400
    assert res.json()["detail"] == "Not enough stock available for AMD Ryzen 7 7800X3D. Available: 3, Requested: 4"

    # duplicate lines are merged before checking stock
    res = place(client, customer, [{"product_id": ryzen, "quantity": 2}, {"product_id": ryzen, "quantity": 2}])
    assert res.status_code == 400

    res = place(client, customer, [{"product_id": ryzen, "quantity": 1}], total=1.0)
    assert res.status_code == 400
    assert res.json()["detail"] == "Total mismatch"

    res = place(client, customer, [{"product_id": "64b7f0c2a1e4d93b8c0f1a2b", "quantity": 1}])
    assert res.status_code == 404

    assert stock_of(mock_db, catalog["products"]["ryzen"]) == 3
    assert mock_db["order"].count_documents({}) == 0


def test_order_visibility(client, admin, customer, other_customer, order):
    assert [o["id"] for o in client.get("/api/orders/my-orders", headers=customer["headers"]).json()] == [order["id"]]
    assert client.get("/api/orders/my-orders", headers=other_customer["headers"]).json() == []

    assert client.get(f"/api/orders/{order['id']}", headers=customer["headers"]).status_code == 200
    assert client.get(f"/api/orders/{order['id']}", headers=other_customer["headers"]).status_code == 403
    assert client.get("/api/orders/64b7f0c2a1e4d93b8c0f1a2b", headers=admin["headers"]).status_code == 404

    assert client.get("/api/orders", headers=customer["headers"]).status_code == 403
    orders = client.get("/api/orders", headers=admin["headers"]).json()
    assert orders[0]["user"]["email"] == "casey@example.com"

    users = client.get("/api/users", headers=admin["headers"]).json()
    assert {u["email"]: u["orders"] for u in users}["casey@example.com"] == 1


def test_cancel_processing_order_restores_stock(client, customer, catalog, mock_db, order):
    assert stock_of(mock_db, catalog["products"]["rtx4070"]) == 8
    res = client.patch(f"/api/orders/{order['id']}/cancel", headers=customer["headers"])
    assert res.status_code == 200
    assert res.json()["status"] == "cancelled"
    assert stock_of(mock_db, catalog["products"]["rtx4070"]) == 10

    res = client.patch(f"/api/orders/{order['id']}/cancel", headers=customer["headers"])
    assert res.status_code == 400


def test_cancel_rejected_unless_processing(client, admin, customer, order):
    client.patch(f"/api/orders/{order['id']}/status", json={"status": "shipped"}, headers=admin["headers"])
    res = client.patch(f"/api/orders/{order['id']}/cancel", headers=customer["headers"])
    assert res.status_code == 400
    assert res.json()["detail"] == "Only processing orders can be cancelled"


def test_cancel_by_other_user_forbidden(client, other_customer, order):
    assert client.patch(f"/api/orders/{order['id']}/cancel", headers=other_customer["headers"]).status_code == 403


def test_admin_status_updates(client, admin, customer, catalog, mock_db, order):
    res = client.patch(f"/api/orders/{order['id']}/status", json={"status": "lost"}, headers=admin["headers"])
    assert res.status_code == 400
    assert res.json()["detail"] == "Invalid status value"

    assert client.patch(
        f"/api/orders/{order['id']}/status", json={"status": "confirmed"}, headers=customer["headers"]
    ).status_code == 403

    res = client.patch(f"/api/orders/{order['id']}/status", json={"status": "confirmed"}, headers=admin["headers"])
    assert res.json()["status"] == "confirmed"
    assert stock_of(mock_db, catalog["products"]["rtx4070"]) == 8

    res = client.patch(f"/api/orders/{order['id']}/status", json={"status": "cancelled"}, headers=admin["headers"])
    assert res.json()["status"] == "cancelled"
    assert stock_of(mock_db, catalog["products"]["rtx4070"]) == 10

    # cancelling twice does not restore stock twice
    client.patch(f"/api/orders/{order['id']}/status", json={"status": "cancelled"}, headers=admin["headers"])
    assert stock_of(mock_db, catalog["products"]["rtx4070"]) == 10

    res = client.patch(f"/api/orders/{order['id']}/status", json={"status": "shipped"}, headers=admin["headers"])
    assert res.status_code == 400


def test_cancel_from_stale_read_restores_stock_once(client, customer, catalog, mock_db, order, monkeypatch):
    snapshot = mock_db["order"].find_one({"_id": ObjectId(order["id"])})
    assert client.patch(f"/api/orders/{order['id']}/cancel", headers=customer["headers"]).status_code == 200
    assert stock_of(mock_db, catalog["products"]["rtx4070"]) == 10

    # a second request that read the order before it was cancelled
    monkeypatch.setattr(main, "get_or_404", lambda collection, oid, label: dict(snapshot))
    res = client.patch(f"/api/orders/{order['id']}/cancel", headers=customer["headers"])
    assert res.status_code == 400
    assert stock_of(mock_db, catalog["products"]["rtx4070"]) == 10


def test_status_from_stale_read_restores_stock_once(client, admin, catalog, mock_db, order, monkeypatch):
    snapshot = mock_db["order"].find_one({"_id": ObjectId(order["id"])})
    url = f"/api/orders/{order['id']}/status"
    client.patch(url, json={"status": "cancelled"}, headers=admin["headers"])
    assert stock_of(mock_db, catalog["products"]["rtx4070"]) == 10

    monkeypatch.setattr(main, "get_or_404", lambda collection, oid, label: dict(snapshot))
    res = client.patch(url, json={"status": "cancelled"}, headers=admin["headers"])
    assert res.status_code == 200
    assert stock_of(mock_db, catalog["products"]["rtx4070"]) == 10

    res = client.patch(url, json={"status": "shipped"}, headers=admin["headers"])
    assert res.status_code == 400
    assert mock_db["order"].find_one({"_id": ObjectId(order["id"])})["status"] == "cancelled"


def test_order_items_populate_product(client, admin, customer, catalog, order):
    line = client.get("/api/orders/my-orders", headers=customer["headers"]).json()[0]["items"][0]
    assert line["quantity"] == 2
    assert line["product"]["name"] == "ASUS TUF RTX 4070"
    assert line["product"]["category"]["slug"] == "graphics-cards"

    client.delete(f"/api/products/{catalog['products']['rtx4070']}", headers=admin["headers"])
    line = client.get(f"/api/orders/{order['id']}", headers=customer["headers"]).json()["items"][0]
    assert line["product"] is None
    assert line["name"] == "ASUS TUF RTX 4070"
    assert line["price"] == 629.0
