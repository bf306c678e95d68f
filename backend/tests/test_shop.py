"""
Shop Module - Backend API Tests
Products catalogue and shop orders
"""
import pytest

from conftest import CLIENT_ID


@pytest.fixture
def product(admin_api):
    res = admin_api.post("/api/shop/products", json={
        "name": "Wedding Arch",
        "description": "Floral wedding arch, white",
        "category": "Decorations",
        "price": 75000,
        "quantity": 3,
        "images": [
            {"url": "https://cdn.test/arch-1.jpg"},
            {"url": "https://cdn.test/arch-2.jpg", "is_thumbnail": True}
        ]
    })
    assert res.status_code == 200, res.text
    return res.json()


def _shop_order(product, quantity=2, client_id=CLIENT_ID):
    return {
        "client_id": client_id,
        "client_name": "Jane Doe",
        "client_email": "jane.doe@gmail.com",
        "items": [
            {"product_id": product["product_id"], "product_name": product["name"], "quantity": quantity, "price": product["price"]},
            {"product_id": "prod_chairs", "product_name": "Chiavari chair", "quantity": 100, "price": 1500}
        ]
    }


class TestProducts:
    """/api/shop/products"""

    def test_create_product(self, product):
        assert product["product_id"].startswith("prod_")
        assert product["is_active"] is True
        assert product["thumbnail_url"] == "https://cdn.test/arch-2.jpg"
        assert product["created_at"]
        print(f"✓ Created product {product['product_id']}")

    def test_list_filters(self, admin_api, product):
        admin_api.post("/api/shop/products", json={"name": "LED uplights", "category": "Lighting", "price": 5000, "is_featured": True})

        assert len(admin_api.get("/api/shop/products").json()) == 2
        assert len(admin_api.get("/api/shop/products", params={"category": "Lighting"}).json()) == 1
        assert len(admin_api.get("/api/shop/products", params={"is_featured": True}).json()) == 1
        found = admin_api.get("/api/shop/products", params={"search": "floral"}).json()
        assert [p["product_id"] for p in found] == [product["product_id"]]

    def test_update(self, admin_api, product):
        res = admin_api.put(f"/api/shop/products/{product['product_id']}", json={"price": 70000, "is_featured": True})
        assert res.status_code == 200
        assert res.json()["price"] == 70000
        assert res.json()["is_featured"] is True

    def test_soft_delete_hides_from_clients(self, admin_api, client_api, product):
        res = admin_api.delete(f"/api/shop/products/{product['product_id']}")
        assert res.json()["message"] == "Product deactivated"
        assert client_api.get("/api/shop/products").json() == []
        assert admin_api.get(f"/api/shop/products/{product['product_id']}").json()["is_active"] is False

    def test_permanent_delete(self, admin_api, product):
        res = admin_api.delete(f"/api/shop/products/{product['product_id']}", params={"permanent": True})
        assert res.status_code == 200
        assert admin_api.get(f"/api/shop/products/{product['product_id']}").status_code == 404

    def test_client_cannot_create(self, client_api):
        assert client_api.post("/api/shop/products", json={"name": "x", "price": 1}).status_code == 403


class TestShopOrders:
    """/api/shop/orders"""

    def test_create_computes_totals(self, client_api, product):
        res = client_api.post("/api/shop/orders", json=_shop_order(product))
        assert res.status_code == 200, res.text
        order = res.json()
        assert order["order_number"] == "SO-001"
        assert order["items"][0]["subtotal"] == 150000
        assert order["items"][1]["subtotal"] == 150000
        assert order["total_amount"] == 300000
        assert order["status"] == "pending"

    def test_numbering_independent_of_event_orders(self, admin_api, product):
        from conftest import event_order_payload
        admin_api.post("/api/orders", json=event_order_payload())
        first = admin_api.post("/api/shop/orders", json=_shop_order(product)).json()
        second = admin_api.post("/api/shop/orders", json=_shop_order(product)).json()
        assert [first["order_number"], second["order_number"]] == ["SO-001", "SO-002"]

    def test_status_timestamps(self, admin_api, product):
        order = admin_api.post("/api/shop/orders", json=_shop_order(product)).json()
        url = f"/api/shop/orders/{order['shop_order_id']}"

        confirmed = admin_api.put(url, json={"status": "confirmed"}).json()
        assert confirmed["confirmed_at"]
        assert confirmed["completed_at"] is None

        completed = admin_api.put(url, json={"status": "completed", "notes": "Picked up"}).json()
        assert completed["completed_at"]
        assert completed["notes"] == "Picked up"

    def test_empty_items_rejected(self, client_api):
        res = client_api.post("/api/shop/orders", json={
            "client_id": CLIENT_ID, "client_name": "Jane", "client_email": "jane.doe@gmail.com", "items": []
        })
        assert res.status_code == 422

    def test_client_scope(self, admin_api, client_api, product):
        admin_api.post("/api/shop/orders", json=_shop_order(product))
        other = admin_api.post("/api/shop/orders", json=_shop_order(product, client_id="user_other")).json()
        assert len(client_api.get("/api/shop/orders").json()) == 1
        assert client_api.get(f"/api/shop/orders/{other['shop_order_id']}").status_code == 404
        assert client_api.post("/api/shop/orders", json=_shop_order(product, client_id="user_other")).status_code == 403

    def test_delete(self, admin_api, product):
        order = admin_api.post("/api/shop/orders", json=_shop_order(product)).json()
        assert admin_api.delete(f"/api/shop/orders/{order['shop_order_id']}").status_code == 200
        assert admin_api.get(f"/api/shop/orders/{order['shop_order_id']}").status_code == 404

    def test_stats(self, admin_api, product):
        first = admin_api.post("/api/shop/orders", json=_shop_order(product)).json()
        admin_api.post("/api/shop/orders", json=_shop_order(product, quantity=1))
        admin_api.put(f"/api/shop/orders/{first['shop_order_id']}", json={"status": "completed"})

        stats = admin_api.get("/api/shop/stats").json()
        assert stats["total_products"] == 1
        assert stats["active_products"] == 1
        assert stats["total_orders"] == 2
        assert stats["orders_by_status"]["completed"] == 1
        assert stats["orders_by_status"]["pending"] == 1
        assert stats["total_revenue"] == 300000
