"""HTTP API tests."""
from conftest import ADDRESS, ADMIN_HEADERS, OTHER_USER_HEADERS, USER_HEADERS
from storefront.auth import get_user_id_from_token


def create_product(client, **overrides):
    payload = {"name": "Desk Lamp", "purchase_price": 5.0, "selling_price": 10.0, "stock": 10}
    payload.update(overrides)
    response = client.post("/products", json=payload, headers=ADMIN_HEADERS)
    assert response.status_code == 201
    return response.json()


def add_to_cart(client, product, quantity, headers=USER_HEADERS):
    response = client.post("/cart/items", json={
        "product_id": product["id"],
        "quantity": quantity,
        "price_at_add_time": product["selling_price"],
    }, headers=headers)
    assert response.status_code == 200
    return response.json()


def checkout(client, total_amount, headers=USER_HEADERS):
    return client.post("/orders", json={
        "shipping_address": ADDRESS,
        "payment_method": "COD",
        "total_amount": total_amount,
    }, headers=headers)


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestAuth:
    def test_missing_token(self, client):
        assert client.get("/cart").status_code == 401

    def test_invalid_token(self, client):
        response = client.get("/cart", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    def test_user_id_uses_token_prefix(self):
        assert get_user_id_from_token("user-token-123") == "user_user-token"
        assert get_user_id_from_token("user-token-999") == get_user_id_from_token("user-token-123")

    def test_admin_routes_reject_customers(self, client):
        response = client.post("/products", json={
            "name": "X", "purchase_price": 1.0, "stock": 1
        }, headers=USER_HEADERS)
        assert response.status_code == 403


class TestProductsApi:
    def test_create_and_read(self, client):
        product = create_product(client, name="Desk Lamp", stock=3)
        assert product["status"] == "ACTIVE"
        assert product["stock_status"] == "low-stock"

        assert client.get(f"/products/{product['id']}").json()["sku"] == product["sku"]
        assert client.get("/products/slug/desk-lamp").json()["id"] == product["id"]
        assert client.get(f"/products/sku/{product['sku']}").json()["id"] == product["id"]

        listing = client.get("/products", params={"search": "lamp"}).json()
        assert listing["total"] == 1

    def test_validation_error_shape(self, client):
        response = client.post("/products", json={"name": "No price"}, headers=ADMIN_HEADERS)
        assert response.status_code == 400
        assert response.json()["error"] == "InvalidInput"

    def test_domain_error_shape(self, client):
        response = client.get("/products/999")
        assert response.status_code == 404
        assert response.json() == {
            "success": False,
            "error": "NotFound",
            "message": "Product not found: 999",
        }

    def test_stock_update_and_soft_delete(self, client):
        product = create_product(client, stock=2)

        response = client.patch(f"/products/{product['id']}/stock", json={
            "quantity": 5, "op": "subtract"
        }, headers=ADMIN_HEADERS)
        assert response.json()["stock"] == 0
        assert response.json()["status"] == "OUT_OF_STOCK"

        deleted = client.delete(f"/products/{product['id']}", headers=ADMIN_HEADERS).json()
        assert deleted["status"] == "DISCONTINUED"
        assert client.get(f"/products/{product['id']}").status_code == 404

        restored = client.post(f"/products/{product['id']}/restore", headers=ADMIN_HEADERS).json()
        assert restored["is_deleted"] is False

    def test_update_product(self, client):
        product = create_product(client, name="Desk Lamp")

        response = client.put(f"/products/{product['id']}", json={
            "name": "Reading Lamp", "selling_price": 12.0
        }, headers=ADMIN_HEADERS)
        body = response.json()
        assert response.status_code == 200
        assert body["slug"] == "reading-lamp"
        assert body["selling_price"] == 12.0
        assert body["sku"] == product["sku"]

        response = client.put(f"/products/{product['id']}", json={
            "selling_price": 1.0
        }, headers=ADMIN_HEADERS)
        assert response.status_code == 400

        response = client.put(f"/products/{product['id']}", json={
            "selling_price": 20.0
        }, headers=USER_HEADERS)
        assert response.status_code == 403

    def test_bulk_stock(self, client):
        product = create_product(client, stock=1)
        response = client.post("/products/stock/bulk", json={"items": [
            {"product_id": product["id"], "quantity": 4, "op": "add"},
            {"product_id": 999, "quantity": 1},
        ]}, headers=ADMIN_HEADERS)
        body = response.json()
        assert response.status_code == 200
        assert body["applied_count"] == 1
        assert body["failed_count"] == 1
        assert body["items"][0]["stock_after"] == 5

    def test_reserve_reports_shortfall(self, client):
        product = create_product(client, stock=1)
        response = client.post(f"/products/{product['id']}/reserve", json={
            "quantity": 2
        }, headers=ADMIN_HEADERS)
        assert response.json()["outcome"] == "insufficient_stock"


class TestCartApi:
    def test_cart_flow(self, client):
        product = create_product(client, selling_price=2.5)
        cart = add_to_cart(client, product, 2)
        assert cart["total_items"] == 2
        assert cart["total_price"] == 5.0

        cart = client.put(f"/cart/items/{product['id']}", json={"quantity": 4},
                          headers=USER_HEADERS).json()
        assert cart["total_price"] == 10.0

        summary = client.get("/cart/summary", headers=USER_HEADERS).json()
        assert summary["total_items"] == 4

        cart = client.delete(f"/cart/items/{product['id']}", headers=USER_HEADERS).json()
        assert cart["items"] == []

    def test_cart_not_found(self, client):
        response = client.get("/cart", headers=USER_HEADERS)
        assert response.status_code == 404
        assert response.json()["error"] == "NotFound"


class TestOrdersApi:
    def test_checkout_and_read(self, client):
        a = create_product(client, name="A", selling_price=10.0, stock=10)
        b = create_product(client, name="B", selling_price=20.0, stock=5)
        add_to_cart(client, a, 3)
        add_to_cart(client, b, 1)

        response = checkout(client, 50.0)
        assert response.status_code == 201
        order_id = response.json()["order_id"]

        order = client.get(f"/orders/{order_id}", headers=USER_HEADERS).json()
        assert order["total_amount"] == 50.0
        assert order["shipping_address"]["country"] == "India"
        assert len(order["items"]) == 2

        assert client.get(f"/orders/{order_id}", headers=OTHER_USER_HEADERS).status_code == 404
        assert client.get(f"/orders/{order_id}", headers=ADMIN_HEADERS).status_code == 200
        assert client.get("/cart", headers=USER_HEADERS).json()["total_items"] == 0
        assert client.get(f"/products/{a['id']}").json()["stock"] == 7

    def test_empty_cart_checkout(self, client):
        response = checkout(client, 0.0)
        assert response.status_code == 400
        assert response.json()["error"] == "EmptyCart"

    def test_insufficient_stock(self, client):
        product = create_product(client, stock=1)
        add_to_cart(client, product, 3)

        response = checkout(client, 30.0)
        body = response.json()
        assert response.status_code == 409
        assert body["error"] == "StockReservationFailed"
        assert body["items"][0]["outcome"] == "insufficient_stock"
        assert client.get(f"/products/{product['id']}").json()["stock"] == 1

    def test_lifecycle(self, client):
        product = create_product(client, stock=3)
        add_to_cart(client, product, 2)
        order_id = checkout(client, 20.0).json()["order_id"]

        tracked = client.get(f"/orders/track/{order_id}").json()
        assert tracked["order_status"] == "processing"

        bad = client.patch(f"/orders/{order_id}/status", json={"status": "lost"},
                           headers=ADMIN_HEADERS)
        assert bad.status_code == 400
        assert bad.json()["error"] == "InvalidStatus"

        paid = client.patch(f"/orders/{order_id}/payment-status", json={"status": "paid"},
                            headers=ADMIN_HEADERS).json()
        assert paid["payment_status"] == "paid"
        assert paid["payment_details"]["paid_at"] is not None

        cancelled = client.patch(f"/orders/{order_id}/cancel", json={"cancel_reason": "Too slow"},
                                 headers=USER_HEADERS).json()
        assert cancelled["order_status"] == "cancelled"
        assert client.get(f"/products/{product['id']}").json()["stock"] == 3

        again = client.patch(f"/orders/{order_id}/cancel", json={}, headers=USER_HEADERS)
        assert again.status_code == 400
        assert again.json()["error"] == "InvalidTransition"

    def test_listing_and_analytics(self, client):
        product = create_product(client, stock=10)
        add_to_cart(client, product, 1)
        checkout(client, 10.0)
        add_to_cart(client, product, 1, headers=OTHER_USER_HEADERS)
        checkout(client, 10.0, headers=OTHER_USER_HEADERS)

        mine = client.get("/orders/mine", headers=USER_HEADERS).json()
        assert mine["total"] == 1

        assert client.get("/orders", headers=USER_HEADERS).status_code == 403
        everything = client.get("/orders", headers=ADMIN_HEADERS).json()
        assert everything["total"] == 2

        analytics = client.get("/orders/analytics", params={"days": 7}, headers=ADMIN_HEADERS).json()
        assert analytics["total_orders"] == 2
        assert analytics["total_revenue"] == 20.0
