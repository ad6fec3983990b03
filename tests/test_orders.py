"""
Order lifecycle through the HTTP API: placement with stock reservation,
cancellation, returns, admin status changes and statistics.
"""
from datetime import datetime, timedelta, timezone

import pytest
from bson.objectid import ObjectId

from conftest import COD, SHIPPING, bearer, product_stock, register


def place(client, headers, items, total=75.0, payment=COD):
    return client.post(
        "/api/orders",
        json={"items": items, "shipping": SHIPPING, "payment": payment, "total_amount": total},
        headers=headers,
    )


class TestPlaceOrder:

    def test_decrements_stock_and_snapshots_items(self, client, user_headers, make_product):
        lamp = make_product(stock=5, price=25.0)
        res = place(client, user_headers, [{"product_id": lamp["id"], "quantity": 3}])
        assert res.status_code == 201, res.text
        order = res.json()["order"]
        assert order["status"] == "pending"
        assert order["items"] == [{
            "product_id": lamp["id"],
            "title": "Desk Lamp",
            "price": 25.0,
            "quantity": 3,
            "image": "http://img/lamp.png",
        }]
        assert product_stock(client, lamp["id"]) == 2

    def test_empties_the_cart(self, client, user_headers, make_product):
        lamp = make_product()
        cart = {"items": [{"product_id": lamp["id"], "title": "Desk Lamp", "price": 25.0, "quantity": 1}]}
        client.put("/api/cart", json=cart, headers=user_headers)
        assert place(client, user_headers, [{"product_id": lamp["id"], "quantity": 1}]).status_code == 201
        res = client.get("/api/cart", headers=user_headers)
        assert res.json()["cart"]["items"] == []
        assert res.json()["cart"]["total_price"] == 0

    def test_insufficient_stock_changes_nothing(self, client, user_headers, make_product):
        lamp = make_product(stock=5)
        chair = make_product(title="Chair", stock=1)
        res = place(client, user_headers, [
            {"product_id": lamp["id"], "quantity": 2},
            {"product_id": chair["id"], "quantity": 2},
        ])
        assert res.status_code == 400
        assert res.json() == {"success": False, "message": "Product Chair is out of stock"}
        assert product_stock(client, lamp["id"]) == 5
        assert product_stock(client, chair["id"]) == 1
        assert client.get("/api/orders", headers=user_headers).json()["total_count"] == 0

    def test_combined_quantity_for_same_product_is_checked(self, client, user_headers, make_product):
        lamp = make_product(stock=3)
        res = place(client, user_headers, [
            {"product_id": lamp["id"], "quantity": 2},
            {"product_id": lamp["id"], "quantity": 2},
        ])
        assert res.status_code == 400
        assert product_stock(client, lamp["id"]) == 3

    def test_cart_survives_failed_placement(self, client, user_headers, make_product):
        lamp = make_product(stock=1)
        cart = {"items": [{"product_id": lamp["id"], "title": "Desk Lamp", "price": 25.0, "quantity": 4}]}
        client.put("/api/cart", json=cart, headers=user_headers)
        assert place(client, user_headers, [{"product_id": lamp["id"], "quantity": 4}]).status_code == 400
        assert len(client.get("/api/cart", headers=user_headers).json()["cart"]["items"]) == 1

    def test_unknown_product_is_not_found(self, client, user_headers, make_product):
        lamp = make_product(stock=5)
        res = place(client, user_headers, [
            {"product_id": lamp["id"], "quantity": 1},
            {"product_id": str(ObjectId()), "quantity": 1},
        ])
        assert res.status_code == 404
        assert product_stock(client, lamp["id"]) == 5

    def test_requires_items(self, client, user_headers):
        res = place(client, user_headers, [])
        assert res.status_code == 400
        assert res.json()["message"] == "No order items"

    def test_card_number_is_masked(self, client, user_headers, make_product):
        lamp = make_product()
        card = {"method": "card", "card_number": "4111 1111 1111 1234", "card_name": "ADA L", "expiry_date": "12/30"}
        order = place(client, user_headers, [{"product_id": lamp["id"], "quantity": 1}], payment=card).json()["order"]
        assert order["payment"]["card_number"] == "**** **** **** 1234"

    def test_card_payment_requires_details(self, client, user_headers, make_product):
        lamp = make_product()
        res = place(client, user_headers, [{"product_id": lamp["id"], "quantity": 1}], payment={"method": "card"})
        assert res.status_code == 400
        assert res.json()["success"] is False

    def test_requires_authentication(self, client):
        res = client.post("/api/orders", json={})
        assert res.status_code == 401
        assert res.json() == {"success": False, "message": "Not authorized, no token"}

    def test_admin_cannot_place_orders(self, client, admin_headers, make_product):
        lamp = make_product()
        assert place(client, admin_headers, [{"product_id": lamp["id"], "quantity": 1}]).status_code == 403


class TestCancelOrder:

    def test_end_to_end_cancel_restores_stock(self, client, user_headers, make_product):
        lamp = make_product(stock=5)
        order = place(client, user_headers, [{"product_id": lamp["id"], "quantity": 3}]).json()["order"]
        assert product_stock(client, lamp["id"]) == 2

        res = client.post(f"/api/orders/{order['id']}/cancel", headers=user_headers)
        assert res.status_code == 200
        assert res.json()["order"]["status"] == "cancelled"
        assert product_stock(client, lamp["id"]) == 5

        again = client.post(f"/api/orders/{order['id']}/cancel", headers=user_headers)
        assert again.status_code == 400
        assert again.json()["message"] == "Order cannot be cancelled"
        assert product_stock(client, lamp["id"]) == 5

    @pytest.mark.parametrize("status", ["shipped", "delivered", "return-requested"])
    def test_only_pending_or_processing(self, client, user_headers, admin_headers, make_product, status):
        lamp = make_product()
        order = place(client, user_headers, [{"product_id": lamp["id"], "quantity": 1}]).json()["order"]
        client.put(f"/api/orders/admin/{order['id']}/status", json={"status": status}, headers=admin_headers)
        assert client.post(f"/api/orders/{order['id']}/cancel", headers=user_headers).status_code == 400

    def test_processing_orders_can_be_cancelled(self, client, user_headers, admin_headers, make_product):
        lamp = make_product(stock=4)
        order = place(client, user_headers, [{"product_id": lamp["id"], "quantity": 4}]).json()["order"]
        client.put(f"/api/orders/admin/{order['id']}/status", json={"status": "processing"}, headers=admin_headers)
        assert client.post(f"/api/orders/{order['id']}/cancel", headers=user_headers).status_code == 200
        assert product_stock(client, lamp["id"]) == 4

    def test_admin_may_cancel(self, client, user_headers, admin_headers, make_product):
        lamp = make_product()
        order = place(client, user_headers, [{"product_id": lamp["id"], "quantity": 1}]).json()["order"]
        assert client.post(f"/api/orders/{order['id']}/cancel", headers=admin_headers).status_code == 200

    def test_other_users_are_forbidden(self, client, user_headers, make_product):
        lamp = make_product()
        order = place(client, user_headers, [{"product_id": lamp["id"], "quantity": 1}]).json()["order"]
        other = bearer(register(client, name="Eve", email="eve@shop.com")["token"])
        res = client.post(f"/api/orders/{order['id']}/cancel", headers=other)
        assert res.status_code == 403

    def test_deleted_product_is_skipped(self, client, user_headers, admin_headers, make_product):
        lamp = make_product(stock=5)
        chair = make_product(title="Chair", stock=5)
        order = place(client, user_headers, [
            {"product_id": lamp["id"], "quantity": 1},
            {"product_id": chair["id"], "quantity": 2},
        ]).json()["order"]
        client.delete(f"/api/products/{lamp['id']}", headers=admin_headers)
        res = client.post(f"/api/orders/{order['id']}/cancel", headers=user_headers)
        assert res.status_code == 200
        assert product_stock(client, chair["id"]) == 5

    def test_unknown_order(self, client, user_headers):
        assert client.post(f"/api/orders/{ObjectId()}/cancel", headers=user_headers).status_code == 404
        assert client.post("/api/orders/not-an-id/cancel", headers=user_headers).status_code == 404


class TestReturns:

    def _delivered(self, client, user_headers, admin_headers, make_product):
        lamp = make_product()
        order = place(client, user_headers, [{"product_id": lamp["id"], "quantity": 1}]).json()["order"]
        client.put(f"/api/orders/admin/{order['id']}/status", json={"status": "delivered"}, headers=admin_headers)
        return order

    def test_delivered_order_can_be_returned(self, client, user_headers, admin_headers, make_product):
        order = self._delivered(client, user_headers, admin_headers, make_product)
        res = client.post(f"/api/orders/{order['id']}/return", json={"reason": "Too dim"}, headers=user_headers)
        assert res.status_code == 200
        body = res.json()["order"]
        assert body["status"] == "return-requested"
        assert body["return_reason"] == "Too dim"

    def test_reason_is_required(self, client, user_headers, admin_headers, make_product):
        order = self._delivered(client, user_headers, admin_headers, make_product)
        for payload in ({}, {"reason": ""}, {"reason": "   "}):
            res = client.post(f"/api/orders/{order['id']}/return", json=payload, headers=user_headers)
            assert res.status_code == 400

    @pytest.mark.parametrize("status", ["pending", "processing", "shipped", "cancelled"])
    def test_only_delivered(self, client, user_headers, admin_headers, make_product, status):
        lamp = make_product()
        order = place(client, user_headers, [{"product_id": lamp["id"], "quantity": 1}]).json()["order"]
        client.put(f"/api/orders/admin/{order['id']}/status", json={"status": status}, headers=admin_headers)
        res = client.post(f"/api/orders/{order['id']}/return", json={"reason": "Broken"}, headers=user_headers)
        assert res.status_code == 400
        assert res.json()["message"] == "Only delivered orders can be returned"

    def test_admin_cannot_request_return(self, client, user_headers, admin_headers, make_product):
        order = self._delivered(client, user_headers, admin_headers, make_product)
        res = client.post(f"/api/orders/{order['id']}/return", json={"reason": "x"}, headers=admin_headers)
        assert res.status_code == 403

    def test_ownership_is_checked_before_the_reason(self, client, user_headers, admin_headers, make_product):
        order = self._delivered(client, user_headers, admin_headers, make_product)
        other = bearer(register(client, name="Bob", email="bob@shop.com")["token"])
        res = client.post(f"/api/orders/{order['id']}/return", json={"reason": ""}, headers=other)
        assert res.status_code == 403


class TestAdminOrders:

    def test_status_update_stamps_delivery_and_tracking(self, client, user_headers, admin_headers, make_product):
        lamp = make_product()
        order = place(client, user_headers, [{"product_id": lamp["id"], "quantity": 1}]).json()["order"]
        res = client.put(
            f"/api/orders/admin/{order['id']}/status",
            json={"status": "delivered", "tracking_number": "TRK-1"},
            headers=admin_headers,
        )
        assert res.status_code == 200
        body = res.json()["order"]
        assert body["status"] == "delivered"
        assert body["tracking_number"] == "TRK-1"
        assert body["delivered_at"]

    def test_unknown_status_rejected(self, client, user_headers, admin_headers, make_product):
        lamp = make_product()
        order = place(client, user_headers, [{"product_id": lamp["id"], "quantity": 1}]).json()["order"]
        res = client.put(f"/api/orders/admin/{order['id']}/status", json={"status": "lost"}, headers=admin_headers)
        assert res.status_code == 400

    def test_forced_cancel_and_reopen_track_stock(self, client, user_headers, admin_headers, make_product):
        lamp = make_product(stock=5)
        order = place(client, user_headers, [{"product_id": lamp["id"], "quantity": 2}]).json()["order"]
        url = f"/api/orders/admin/{order['id']}/status"

        client.put(url, json={"status": "cancelled"}, headers=admin_headers)
        assert product_stock(client, lamp["id"]) == 5
        client.put(url, json={"status": "processing"}, headers=admin_headers)
        assert product_stock(client, lamp["id"]) == 3
        client.put(url, json={"status": "shipped"}, headers=admin_headers)
        assert product_stock(client, lamp["id"]) == 3

    def test_reopen_fails_without_stock(self, client, user_headers, admin_headers, make_product):
        lamp = make_product(stock=2)
        first = place(client, user_headers, [{"product_id": lamp["id"], "quantity": 2}]).json()["order"]
        client.post(f"/api/orders/{first['id']}/cancel", headers=user_headers)
        place(client, user_headers, [{"product_id": lamp["id"], "quantity": 2}])

        res = client.put(f"/api/orders/admin/{first['id']}/status", json={"status": "pending"}, headers=admin_headers)
        assert res.status_code == 400
        order = client.get(f"/api/orders/{first['id']}", headers=admin_headers).json()["order"]
        assert order["status"] == "cancelled"
        assert product_stock(client, lamp["id"]) == 0

    def test_users_cannot_use_admin_routes(self, client, user_headers):
        assert client.get("/api/orders/admin/all", headers=user_headers).status_code == 403
        assert client.get("/api/orders/admin/stats", headers=user_headers).status_code == 403

    def test_list_filters_and_populates_user(self, client, user_headers, admin_headers, make_product):
        lamp = make_product(stock=10)
        first = place(client, user_headers, [{"product_id": lamp["id"], "quantity": 1}]).json()["order"]
        place(client, user_headers, [{"product_id": lamp["id"], "quantity": 1}])
        client.post(f"/api/orders/{first['id']}/cancel", headers=user_headers)

        res = client.get("/api/orders/admin/all", params={"status": "cancelled"}, headers=admin_headers).json()
        assert res["total_count"] == 1
        assert res["items"][0]["id"] == first["id"]
        assert res["items"][0]["user"]["email"] == "ada@shop.com"

        everything = client.get("/api/orders/admin/all", params={"limit": 1}, headers=admin_headers).json()
        assert everything["total_count"] == 2
        assert everything["page_count"] == 2
        assert everything["current_page"] == 1
        assert len(everything["items"]) == 1

    def test_stats(self, client, database, user_headers, admin_headers, make_product):
        lamp = make_product(stock=10)
        first = place(client, user_headers, [{"product_id": lamp["id"], "quantity": 1}], total=25.0).json()["order"]
        place(client, user_headers, [{"product_id": lamp["id"], "quantity": 2}], total=50.0)
        client.post(f"/api/orders/{first['id']}/cancel", headers=user_headers)

        old = datetime.now(timezone.utc) - timedelta(days=30)
        database["order"].insert_one({
            "_id": ObjectId.from_datetime(old),
            "user_id": ObjectId(),
            "items": [],
            "status": "delivered",
            "total_amount": 100.0,
            "created_at": old,
        })

        stats = client.get("/api/orders/admin/stats", headers=admin_headers).json()["stats"]
        by_status = {row["status"]: row for row in stats["status_counts"]}
        assert by_status["cancelled"] == {"status": "cancelled", "count": 1, "revenue": 25.0}
        assert by_status["pending"]["revenue"] == 50.0
        assert stats["revenue_stats"] == {"total_revenue": 150.0, "count": 2}

        daily = stats["daily_revenue"]
        assert len(daily) == 7
        today = datetime.now(timezone.utc).date().isoformat()
        assert daily[-1] == {"date": today, "revenue": 75.0, "count": 2}
        assert sum(day["count"] for day in daily) == 2


class TestOwnOrders:

    def test_list_is_paginated_newest_first(self, client, user_headers, make_product):
        lamp = make_product(stock=10)
        ids = [place(client, user_headers, [{"product_id": lamp["id"], "quantity": 1}]).json()["order"]["id"]
               for _ in range(3)]
        page = client.get("/api/orders", params={"page": 1, "limit": 2}, headers=user_headers).json()
        assert page["total_count"] == 3
        assert page["page_count"] == 2
        assert [o["id"] for o in page["items"]] == [ids[2], ids[1]]

    def test_other_users_orders_are_hidden(self, client, user_headers, make_product):
        lamp = make_product()
        order = place(client, user_headers, [{"product_id": lamp["id"], "quantity": 1}]).json()["order"]
        other = bearer(register(client, name="Eve", email="eve@shop.com")["token"])
        assert client.get("/api/orders", headers=other).json()["total_count"] == 0
        assert client.get(f"/api/orders/{order['id']}", headers=other).status_code == 403
        assert client.get(f"/api/orders/{order['id']}", headers=user_headers).status_code == 200
