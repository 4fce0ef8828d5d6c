"""
Order placement and management tests (cash on delivery).

Shipping is a flat Rs. 100 (10000 paisa) in the test app.
"""

import pytest

from pasal.models import Discount, Order, Product, ProductVariant
from pasal.services import discount_service, order_service

from conftest import cart_item


def place(client, headers, address, items, **extra):
    body = {"address_id": address.id, "payment_method": "cod", "items": items, **extra}
    return client.post("/api/orders", headers=headers, json=body)


# =============================================================================
# CHECKOUT
# =============================================================================


class TestPlaceOrder:

    def test_cod_order_totals(self, client, shopper_headers, address, product):
        resp = place(client, shopper_headers, address, [cart_item(product)])
        assert resp.status_code == 201
        order = resp.json["order"]
        assert order["subtotal_paisa"] == 100_000
        assert order["shipping_paisa"] == 10_000
        assert order["total_paisa"] == 110_000
        assert order["status"] == "pending"
        assert order["payment_status"] == "pending"
        assert order["payment_details"] is None
        assert order["order_number"].startswith("ORD-")
        assert [t["status"] for t in order["timeline"]] == ["pending"]
        assert order["shipping_address"]["city"] == "Kathmandu"

    def test_items_are_snapshots(self, client, shopper_headers, address, product):
        resp = place(client, shopper_headers, address, [cart_item(product, quantity=2)])
        item = resp.json["order"]["items"][0]
        assert item["name"] == "Pashmina Shawl"
        assert item["line_total_paisa"] == 200_000
        assert item["image"] == "https://cdn.example.com/shawl.jpg"

    def test_stock_decremented(self, client, shopper_headers, address, product, db_session):
        place(client, shopper_headers, address, [cart_item(product, quantity=3)])
        assert db_session.get(Product, product.id).stock == 17

    def test_insufficient_stock(self, client, shopper_headers, address, product_b, db_session):
        resp = place(client, shopper_headers, address, [cart_item(product_b, quantity=6)])
        assert resp.status_code == 400
        assert resp.json["error"] == "Insufficient stock for Dhaka Topi. Available: 5, Requested: 6"
        assert db_session.query(Order).count() == 0
        assert db_session.get(Product, product_b.id).stock == 5

    def test_discount_applied_and_counted(self, client, shopper_headers, address, product, db_session):
        discount = discount_service.create_discount({"code": "SAVE20", "discount_type": "percentage", "value": 2000})
        resp = place(client, shopper_headers, address, [cart_item(product, quantity=2)], discount_code="save20")
        assert resp.status_code == 201
        order = resp.json["order"]
        assert order["discount"] == {"discount_id": discount.id, "code": "SAVE20", "amount_paisa": 40_000}
        assert order["total_paisa"] == 200_000 + 10_000 - 40_000
        assert db_session.get(Discount, discount.id).usage_count == 1

    def test_invalid_discount_blocks_order(self, client, shopper_headers, address, product, db_session):
        resp = place(client, shopper_headers, address, [cart_item(product)], discount_code="NOPE")
        assert resp.status_code == 404
        assert db_session.query(Order).count() == 0

    def test_address_must_belong_to_user(self, client, other_headers, address, product):
        resp = place(client, other_headers, address, [cart_item(product)])
        assert resp.status_code == 404

    @pytest.mark.parametrize("items", [
        [],
        [{"product_id": 1, "price_paisa": 0, "quantity": 1}],
        [{"product_id": 1, "price_paisa": 100, "quantity": -2}],
        [{"price_paisa": 100, "quantity": 1}],
        [{"product_id": 1, "price_paisa": 100, "quantity": 1, "variant_id": "large"}],
        "not-a-list",
    ])
    def test_item_validation(self, client, shopper_headers, address, items):
        resp = place(client, shopper_headers, address, items)
        assert resp.status_code == 400

    def test_variant_must_belong_to_product(self, client, shopper_headers, address, product, product_b, db_session):
        topi_size = ProductVariant(product_id=product_b.id, options=[{"type": "size", "value": "M"}], inventory=3)
        shawl_color = ProductVariant(product_id=product.id, options=[{"type": "color", "value": "red"}], inventory=3)
        db_session.add_all([topi_size, shawl_color])
        db_session.commit()

        wrong = place(client, shopper_headers, address, [{**cart_item(product), "variant_id": topi_size.id}])
        assert wrong.status_code == 400
        assert wrong.json["error"] == f"Variant {topi_size.id} is not available for product {product.id}"

        right = place(client, shopper_headers, address, [{**cart_item(product), "variant_id": shawl_color.id}])
        assert right.status_code == 201
        assert right.json["order"]["items"][0]["variant_id"] == shawl_color.id

    def test_unknown_payment_method(self, client, shopper_headers, address, product):
        resp = place(client, shopper_headers, address, [cart_item(product)], payment_method="bitcoin")
        assert resp.status_code == 400

    def test_compute_totals_clamps_discount(self):
        lines = [{"price_paisa": 500, "quantity": 2}]
        totals = order_service.compute_totals(lines, 10_000, discount_paisa=5_000)
        assert totals == {
            "subtotal_paisa": 1_000,
            "shipping_paisa": 10_000,
            "discount_amount_paisa": 1_000,
            "total_paisa": 10_000,
        }


# =============================================================================
# CUSTOMER ORDER MANAGEMENT
# =============================================================================


class TestCustomerOrders:

    def test_list_and_get_own_orders(self, client, shopper_headers, address, product):
        order_id = place(client, shopper_headers, address, [cart_item(product)]).json["order"]["id"]
        resp = client.get("/api/orders", headers=shopper_headers)
        assert resp.status_code == 200
        assert [o["id"] for o in resp.json["items"]] == [order_id]
        assert client.get(f"/api/orders/{order_id}", headers=shopper_headers).status_code == 200

    def test_other_users_order_is_hidden(self, client, shopper_headers, other_headers, address, product):
        order_id = place(client, shopper_headers, address, [cart_item(product)]).json["order"]["id"]
        assert client.get(f"/api/orders/{order_id}", headers=other_headers).status_code == 404
        assert client.get("/api/orders", headers=other_headers).json["items"] == []

    def test_cancel_restocks(self, client, shopper_headers, address, product, db_session):
        order_id = place(client, shopper_headers, address, [cart_item(product, quantity=3)]).json["order"]["id"]
        resp = client.post(f"/api/orders/{order_id}/cancel", headers=shopper_headers, json={"reason": "Changed my mind"})
        assert resp.status_code == 200
        assert resp.json["order"]["status"] == "cancelled"
        assert resp.json["order"]["timeline"][-1]["description"] == "Changed my mind"
        assert db_session.get(Product, product.id).stock == 20

    def test_cannot_cancel_after_processing(self, client, shopper_headers, admin_headers, address, product):
        order_id = place(client, shopper_headers, address, [cart_item(product)]).json["order"]["id"]
        client.patch(f"/api/admin/orders/{order_id}/status", headers=admin_headers, json={"status": "processing"})
        resp = client.post(f"/api/orders/{order_id}/cancel", headers=shopper_headers)
        assert resp.status_code == 400
        assert resp.json["error"] == "Only pending, unpaid orders can be cancelled"


# =============================================================================
# ADMIN
# =============================================================================


class TestAdminOrders:

    def test_delivered_cod_order_becomes_paid(self, client, shopper_headers, admin_headers, address, product):
        order_id = place(client, shopper_headers, address, [cart_item(product)]).json["order"]["id"]
        resp = client.patch(f"/api/admin/orders/{order_id}/status", headers=admin_headers, json={
            "status": "shipped", "tracking_number": "NCM-12345",
        })
        assert resp.status_code == 200
        assert resp.json["order"]["tracking_number"] == "NCM-12345"
        assert resp.json["order"]["payment_status"] == "pending"

        resp = client.patch(f"/api/admin/orders/{order_id}/status", headers=admin_headers, json={"status": "delivered"})
        order = resp.json["order"]
        assert order["payment_status"] == "paid"
        assert [t["status"] for t in order["timeline"]] == ["pending", "shipped", "delivered"]

    def test_invalid_status(self, client, shopper_headers, admin_headers, address, product):
        order_id = place(client, shopper_headers, address, [cart_item(product)]).json["order"]["id"]
        resp = client.patch(f"/api/admin/orders/{order_id}/status", headers=admin_headers, json={"status": "lost"})
        assert resp.status_code == 400

    def test_cancelled_cannot_be_reopened(self, client, shopper_headers, admin_headers, address, product, db_session):
        order_id = place(client, shopper_headers, address, [cart_item(product, quantity=2)]).json["order"]["id"]
        client.patch(f"/api/admin/orders/{order_id}/status", headers=admin_headers, json={"status": "cancelled"})
        assert db_session.get(Product, product.id).stock == 20

        resp = client.patch(f"/api/admin/orders/{order_id}/status", headers=admin_headers, json={"status": "processing"})
        assert resp.status_code == 400
        assert resp.json["error"] == "Cancelled orders cannot be reopened"

    def test_missing_order(self, client, admin_headers):
        resp = client.patch("/api/admin/orders/9999/status", headers=admin_headers, json={"status": "shipped"})
        assert resp.status_code == 404

    def test_list_with_filters(self, client, shopper, shopper_headers, admin_headers, address, product):
        first = place(client, shopper_headers, address, [cart_item(product)]).json["order"]
        second = place(client, shopper_headers, address, [cart_item(product)]).json["order"]
        client.patch(f"/api/admin/orders/{second['id']}/status", headers=admin_headers, json={"status": "shipped"})

        resp = client.get("/api/admin/orders", headers=admin_headers)
        assert resp.json["pagination"]["total"] == 2
        assert resp.json["items"][0]["customer"]["email"] == shopper.email

        resp = client.get("/api/admin/orders?status=pending", headers=admin_headers)
        assert [o["id"] for o in resp.json["items"]] == [first["id"]]

        resp = client.get(f"/api/admin/orders?search={second['order_number']}", headers=admin_headers)
        assert [o["id"] for o in resp.json["items"]] == [second["id"]]

        resp = client.get("/api/admin/orders?date_from=yesterday", headers=admin_headers)
        assert resp.status_code == 400

    def test_get_includes_customer(self, client, shopper, shopper_headers, admin_headers, address, product):
        order_id = place(client, shopper_headers, address, [cart_item(product)]).json["order"]["id"]
        resp = client.get(f"/api/admin/orders/{order_id}", headers=admin_headers)
        assert resp.json["order"]["customer"]["name"] == shopper.name
