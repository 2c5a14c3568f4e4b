import seed


def test_health(client):
    assert client.get("/").json() == {"message": "NeuraRig API is running"}
    body = client.get("/test").json()
    assert body["backend"] == "✅ Running"
    assert body["connection_status"] == "Connected"


def test_stats_admin_only(client, customer):
    assert client.get("/api/admin/stats", headers=customer["headers"]).status_code == 403


def test_stats(client, admin, customer, catalog):
    ryzen = str(catalog["products"]["ryzen"])
    rtx = str(catalog["products"]["rtx4070"])
    address = {"full_name": "C", "phone": "1", "address": "A", "city": "B", "zip_code": "9"}
    first = client.post("/api/orders", json={
        "items": [{"product_id": ryzen, "quantity": 1}], "shipping_address": address, "payment_method": "COD",
    }, headers=customer["headers"]).json()
    client.post("/api/orders", json={
        "items": [{"product_id": rtx, "quantity": 1}], "shipping_address": address, "payment_method": "COD",
    }, headers=customer["headers"])
    client.patch(f"/api/orders/{first['id']}/cancel", headers=customer["headers"])

    stats = client.get("/api/admin/stats", headers=admin["headers"]).json()
    assert stats["users"] == 2
    assert stats["products"] == 3
    assert stats["categories"] == 2
    assert stats["brands"] == 2
    assert stats["orders"] == 2
    assert stats["revenue"] == 629.0
    assert stats["orders_by_status"]["cancelled"] == 1
    assert stats["orders_by_status"]["processing"] == 1
    assert [p["name"] for p in stats["low_stock"]] == ["ASUS Dual RTX 4060", "AMD Ryzen 7 7800X3D"]


def test_seed_is_idempotent(client, mock_db):
    first = client.post("/seed").json()
    assert first["seeded"] is True
    assert first["admin_created"] is True
    assert first["products"] == len(seed.DEMO_PRODUCTS)
    assert mock_db["category"].count_documents({}) == len(seed.DEMO_CATEGORIES)

    second = client.post("/seed").json()
    assert second == {"seeded": False, "admin_created": False, "products": len(seed.DEMO_PRODUCTS)}

    login = client.post("/api/users/login", json={"email": seed.ADMIN_EMAIL, "password": seed.ADMIN_PASSWORD})
    assert login.json()["user"]["role"] == "admin"


def test_seeded_catalog_is_served(client):
    client.post("/seed")
    processors = client.get("/api/products/category/processors").json()
    assert {p["name"] for p in processors} == {"AMD Ryzen 7 7800X3D", "Intel Core i5-13400F"}
    category = client.get("/api/categories/slug/graphics-cards").json()
    assert [s["name"] for s in category["specifications"]] == ["VRAM", "Chipset", "Ray Tracing"]


def test_seed_does_not_promote_existing_admin_email(client, mock_db):
    res = client.post("/api/users/register", json={"name": "Mallory", "email": seed.ADMIN_EMAIL, "password": "mine123"})
    headers = {"Authorization": f"Bearer {res.json()['token']}"}

    assert client.post("/seed").json()["admin_created"] is False
    assert client.get("/api/users/me", headers=headers).json()["role"] == "user"
    assert mock_db["user"].count_documents({"role": "admin"}) == 0
