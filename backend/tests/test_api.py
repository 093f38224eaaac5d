"""
API tests.

Verifies:
- Requests without a valid acting user return 401
- Role-gated endpoints return 403 for other roles
- Domain errors map to 400 / 404 / 409
- End-to-end flow: product, batch, dispatch, cart, checkout, fulfillment
- Authenticity endpoints
"""

import pytest

from chaintrack.services import serial_service, unit_service


# =============================================================================
# ACTING USER (401)
# =============================================================================


class TestActingUser:

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/products"),
            ("POST", "/api/products"),
            ("GET", "/api/cart"),
            ("POST", "/api/orders/checkout"),
            ("GET", "/api/orders"),
            ("GET", "/api/units"),
            ("POST", "/api/stock/transfer"),
            ("GET", "/api/serials/settings"),
            ("POST", "/api/verify/qr"),
        ],
    )
    def test_requires_actor(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    @pytest.mark.parametrize("header", ["abc", "", "9999"])
    def test_invalid_actor(self, client, db_session, header):
        resp = client.get("/api/products", headers={"X-User-Id": header})
        assert resp.status_code == 401

    def test_inactive_user(self, client, db_session, buyer, buyer_headers):
        buyer.is_active = False
        db_session.commit()
        resp = client.get("/api/products", headers=buyer_headers)
        assert resp.status_code == 401


# =============================================================================
# ROLES (403)
# =============================================================================


class TestRoles:

    def test_buyer_cannot_create_product(self, client, buyer_headers):
        resp = client.post("/api/products", json={"name": "Fake"}, headers=buyer_headers)
        assert resp.status_code == 403
        assert resp.get_json()["required_roles"] == ["PRODUCER"]

    def test_reseller_cannot_dispatch(self, client, reseller_headers):
        resp = client.post("/api/units/dispatch", json={"unit_ids": [1], "reseller_id": 1}, headers=reseller_headers)
        assert resp.status_code == 403

    def test_producer_cannot_mark_defective(self, client, producer_headers):
        resp = client.post("/api/units/defective", json={"unit_ids": [1]}, headers=producer_headers)
        assert resp.status_code == 403

    def test_only_admin_sets_serial_range(self, client, producer_headers):
        resp = client.put(
            "/api/serials/settings",
            json={"range_start": 1, "range_end": 10},
            headers=producer_headers,
        )
        assert resp.status_code == 403

    def test_force_delete_is_admin_only(self, client, serialized_product, producer_headers):
        resp = client.delete(f"/api/products/{serialized_product.id}?force=true", headers=producer_headers)
        assert resp.status_code == 403

    def test_qr_label_for_producer_only(self, client, units_at_reseller, reseller_headers):
        resp = client.get(f"/api/units/{units_at_reseller[0].id}/qr", headers=reseller_headers)
        assert resp.status_code == 403


# =============================================================================
# PRODUCTS
# =============================================================================


class TestProductRoutes:

    def test_create_and_update(self, client, producer_headers):
        resp = client.post(
            "/api/products",
            json={"name": "Angle Grinder", "is_serialized": True},
            headers=producer_headers,
        )
        assert resp.status_code == 201
        product_id = resp.get_json()["id"]

        resp = client.patch(
            f"/api/products/{product_id}",
            json={"description": "125mm"},
            headers=producer_headers,
        )
        assert resp.status_code == 200
        assert resp.get_json()["description"] == "125mm"

    def test_mode_change_rejected(self, client, serialized_product, producer_headers):
        resp = client.patch(
            f"/api/products/{serialized_product.id}",
            json={"is_serialized": False},
            headers=producer_headers,
        )
        assert resp.status_code == 400

    def test_unknown_product(self, client, producer_headers):
        resp = client.get("/api/products/9999", headers=producer_headers)
        assert resp.status_code == 404

    def test_batch_returns_auth_codes(self, client, serialized_product, producer_headers):
        resp = client.post(
            f"/api/products/{serialized_product.id}/batches",
            json={"quantity": 2, "manufactured_on": "2026-10-01"},
            headers=producer_headers,
        )
        assert resp.status_code == 201
        data = resp.get_json()
        assert data["quantity"] == 2
        assert [u["serial_number"] for u in data["units"]] == ["100000", "100001"]
        assert all(len(u["auth_code"]) == 64 for u in data["units"])
        assert data["units"][0]["manufactured_on"] == "2026-10-01"

    def test_batch_bad_date(self, client, serialized_product, producer_headers):
        resp = client.post(
            f"/api/products/{serialized_product.id}/batches",
            json={"quantity": 1, "manufactured_on": "01/10/2026"},
            headers=producer_headers,
        )
        assert resp.status_code == 400

    def test_batch_range_exhausted(self, client, serialized_product, producer_headers):
        serial_service.set_serial_range(100000, 100001)
        resp = client.post(
            f"/api/products/{serialized_product.id}/batches",
            json={"quantity": 3},
            headers=producer_headers,
        )
        assert resp.status_code == 409
        assert resp.get_json()["error"] == "Serial number range exhausted. Please contact Admin."

    def test_delete_with_units_out(self, client, serialized_product, units_at_reseller, producer_headers):
        resp = client.delete(f"/api/products/{serialized_product.id}", headers=producer_headers)
        assert resp.status_code == 409
        assert resp.get_json()["details"]["units_in_chain"] == 3

    def test_admin_force_delete(self, client, serialized_product, units_at_reseller, admin_headers):
        resp = client.delete(f"/api/products/{serialized_product.id}?force=true", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["deleted_units"] == 3

    def test_stock_view(self, client, bulk_at_reseller, reseller_headers):
        resp = client.get("/api/stock", headers=reseller_headers)
        assert resp.status_code == 200
        items = resp.get_json()["items"]
        assert [(i["id"], i["quantity"]) for i in items] == [(bulk_at_reseller.id, 5)]


# =============================================================================
# UNITS AND STOCK
# =============================================================================


class TestUnitAndStockRoutes:

    def test_dispatch(self, client, serialized_product, producer, reseller, producer_headers):
        units = unit_service.produce_units(serialized_product.id, producer.id, 2)
        resp = client.post(
            "/api/units/dispatch",
            json={"unit_ids": [u.id for u in units], "reseller_id": reseller.id},
            headers=producer_headers,
        )
        assert resp.status_code == 200
        assert {u["status"] for u in resp.get_json()["items"]} == {"AT_SELLER"}

    def test_dispatch_twice_conflicts(self, client, units_at_reseller, reseller, producer_headers):
        resp = client.post(
            "/api/units/dispatch",
            json={"unit_ids": [units_at_reseller[0].id], "reseller_id": reseller.id},
            headers=producer_headers,
        )
        assert resp.status_code == 409

    def test_auth_code_hidden_from_reseller(self, client, units_at_reseller, reseller, reseller_headers):
        resp = client.get(
            f"/api/units?owner_field=reseller_id&owner_id={reseller.id}",
            headers=reseller_headers,
        )
        items = resp.get_json()["items"]
        assert len(items) == 3
        assert all("auth_code" not in u for u in items)

    def test_transfer(self, client, bulk_at_reseller, other_reseller, reseller_headers):
        resp = client.post(
            "/api/stock/transfer",
            json={"product_id": bulk_at_reseller.id, "to_owner_id": other_reseller.id, "quantity": 2},
            headers=reseller_headers,
        )
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["from_quantity"] == 3
        assert data["to"]["quantity"] == 2

    def test_transfer_insufficient(self, client, bulk_at_reseller, other_reseller, reseller_headers):
        resp = client.post(
            "/api/stock/transfer",
            json={"product_id": bulk_at_reseller.id, "to_owner_id": other_reseller.id, "quantity": 8},
            headers=reseller_headers,
        )
        assert resp.status_code == 400
        assert resp.get_json()["details"]["available"] == 5

    def test_return_to_producer(self, client, bulk_at_reseller, reseller_headers):
        resp = client.post(
            "/api/stock/return-to-producer",
            json={"product_id": bulk_at_reseller.id, "quantity": 1},
            headers=reseller_headers,
        )
        assert resp.status_code == 200
        assert resp.get_json()["producer_stock"]["quantity"] == 6


# =============================================================================
# CART AND ORDERS
# =============================================================================


class TestOrderFlow:

    def test_cart_checkout_fulfill_deliver(
        self, client, serialized_product, units_at_reseller, reseller, buyer_headers, reseller_headers
    ):
        resp = client.post(
            "/api/cart",
            json={"product_id": serialized_product.id, "quantity": 2, "seller_id": reseller.id},
            headers=buyer_headers,
        )
        assert resp.status_code == 201

        resp = client.post("/api/orders/checkout", headers=buyer_headers)
        assert resp.status_code == 201
        order = resp.get_json()["orders"][0]
        assert order["status"] == "AWAITING_CONFIRMATION"
        assert order["reserved_unit_ids"] == [units_at_reseller[0].id, units_at_reseller[1].id]

        assert client.get("/api/cart", headers=buyer_headers).get_json()["count"] == 0

        resp = client.post(f"/api/orders/{order['id']}/fulfill", headers=reseller_headers)
        assert resp.status_code == 200
        assert resp.get_json()["status_label"] == "Confirmed"

        resp = client.post(f"/api/orders/{order['id']}/deliver", headers=buyer_headers)
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "DELIVERED"

        resp = client.get("/api/orders?role=seller", headers=reseller_headers)
        assert [o["id"] for o in resp.get_json()["items"]] == [order["id"]]

    def test_checkout_shortfall(self, client, bulk_at_reseller, reseller, buyer_headers):
        resp = client.post(
            "/api/orders/checkout",
            json={"items": [{"product_id": bulk_at_reseller.id, "quantity": 6, "seller_id": reseller.id}]},
            headers=buyer_headers,
        )
        assert resp.status_code == 400
        data = resp.get_json()
        assert "Order cancelled" in data["error"]
        assert data["details"]["items"][0]["available"] == 5

    def test_cancel(self, client, bulk_at_reseller, reseller, buyer_headers, reseller_headers):
        resp = client.post(
            "/api/orders/checkout",
            json={"items": [{"product_id": bulk_at_reseller.id, "quantity": 2, "seller_id": reseller.id}]},
            headers=buyer_headers,
        )
        order_id = resp.get_json()["orders"][0]["id"]

        resp = client.post(f"/api/orders/{order_id}/cancel", headers=reseller_headers)
        assert resp.status_code == 200
        assert client.get(f"/api/orders/{order_id}", headers=buyer_headers).status_code == 404

    def test_order_hidden_from_strangers(
        self, client, bulk_at_reseller, reseller, other_buyer, buyer_headers, headers_for
    ):
        resp = client.post(
            "/api/orders/checkout",
            json={"items": [{"product_id": bulk_at_reseller.id, "quantity": 1, "seller_id": reseller.id}]},
            headers=buyer_headers,
        )
        order_id = resp.get_json()["orders"][0]["id"]

        resp = client.get(f"/api/orders/{order_id}", headers=headers_for(other_buyer))
        assert resp.status_code == 404
        resp = client.post(f"/api/orders/{order_id}/cancel", headers=headers_for(other_buyer))
        assert resp.status_code == 403

    def test_deliver_unconfirmed_conflicts(self, client, bulk_at_reseller, reseller, buyer_headers):
        resp = client.post(
            "/api/orders/checkout",
            json={"items": [{"product_id": bulk_at_reseller.id, "quantity": 1, "seller_id": reseller.id}]},
            headers=buyer_headers,
        )
        order_id = resp.get_json()["orders"][0]["id"]
        resp = client.post(f"/api/orders/{order_id}/deliver", headers=buyer_headers)
        assert resp.status_code == 409

    def test_invalid_role_filter(self, client, buyer_headers):
        resp = client.get("/api/orders?role=admin", headers=buyer_headers)
        assert resp.status_code == 400

    def test_non_object_body(self, client, buyer_headers):
        resp = client.post("/api/cart", json=[1, 2], headers=buyer_headers)
        assert resp.status_code == 400


# =============================================================================
# SERIALS
# =============================================================================


class TestSerialRoutes:

    def test_settings(self, client, producer_headers):
        resp = client.get("/api/serials/settings", headers=producer_headers)
        assert resp.status_code == 200
        data = resp.get_json()
        assert (data["range_start"], data["range_end"]) == (100000, 100999)
        assert data["available"] == 1000

    def test_admin_sets_range(self, client, admin_headers):
        resp = client.put(
            "/api/serials/settings",
            json={"range_start": 500, "range_end": 599},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        assert resp.get_json()["capacity"] == 100

    def test_invalid_range(self, client, admin_headers):
        resp = client.put(
            "/api/serials/settings",
            json={"range_start": 600, "range_end": 500},
            headers=admin_headers,
        )
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "End range must be greater than start range"

    def test_allocate_and_release(self, client, producer_headers):
        resp = client.post("/api/serials/allocate", json={"quantity": 2}, headers=producer_headers)
        assert resp.status_code == 201
        serials = resp.get_json()["serials"]
        assert serials == ["100000", "100001"]

        resp = client.post("/api/serials/release", json={"serials": serials}, headers=producer_headers)
        assert resp.get_json()["released"] == 2

    def test_allocate_then_register(self, client, serialized_product, producer_headers):
        serials = client.post(
            "/api/serials/allocate", json={"quantity": 1}, headers=producer_headers
        ).get_json()["serials"]
        resp = client.post(
            "/api/units/register",
            json={"product_id": serialized_product.id, "serials": serials},
            headers=producer_headers,
        )
        assert resp.status_code == 201
        assert resp.get_json()["items"][0]["serial_number"] == serials[0]

    @pytest.mark.parametrize("serial", ["100000", "SN:1", "²"])
    def test_register_unreserved_serial(self, client, serialized_product, producer_headers, serial):
        resp = client.post(
            "/api/units/register",
            json={"product_id": serialized_product.id, "serials": [serial]},
            headers=producer_headers,
        )
        assert resp.status_code == 400
        assert resp.get_json()["details"]["serials"] == [serial]

    def test_reservations_belong_to_the_allocating_producer(
        self, client, serialized_product, producer_headers, other_producer, headers_for
    ):
        other_headers = headers_for(other_producer)
        serials = client.post(
            "/api/serials/allocate", json={"quantity": 1}, headers=producer_headers
        ).get_json()["serials"]

        resp = client.post("/api/serials/release", json={"serials": serials}, headers=other_headers)
        assert resp.get_json()["released"] == 0

        resp = client.post(
            "/api/units/register",
            json={"product_id": serialized_product.id, "serials": serials},
            headers=producer_headers,
        )
        assert resp.status_code == 201


# =============================================================================
# AUTHENTICITY
# =============================================================================


class TestVerifyRoutes:

    def test_label_round_trip(self, client, units_at_reseller, producer_headers, buyer_headers):
        unit_id = units_at_reseller[0].id
        label = client.get(f"/api/units/{unit_id}/qr", headers=producer_headers).get_json()

        resp = client.post("/api/verify/qr", json={"payload": label["payload"]}, headers=buyer_headers)
        assert resp.status_code == 200
        assert resp.get_json()["valid"] is True

        resp = client.post(
            "/api/verify/identity",
            json={"payload": label["payload"], "auth_code": label["auth_code"]},
            headers=buyer_headers,
        )
        data = resp.get_json()
        assert data["valid"] is True
        assert data["unit"]["id"] == unit_id

    def test_external_code(self, client, buyer_headers):
        resp = client.post("/api/verify/qr", json={"payload": "https://example.com"}, headers=buyer_headers)
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["valid"] is False
        assert data["reason"] == "WRONG_PREFIX"

    def test_identity_by_serial(self, client, units_at_reseller, buyer_headers):
        resp = client.post(
            "/api/verify/identity",
            json={"serial_number": units_at_reseller[0].serial_number, "auth_code": "f" * 64},
            headers=buyer_headers,
        )
        assert resp.get_json()["reason"] == "CODE_MISMATCH"


# =============================================================================
# SYSTEM
# =============================================================================


class TestSystemRoutes:

    def test_health(self, client, db_session):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["status"] == "healthy"
        assert data["checks"]["serial_range"]["details"]["available"] == 1000

    def test_health_degraded_when_range_exhausted(self, client, db_session, serialized_product, producer):
        serial_service.set_serial_range(100000, 100001)
        unit_service.produce_units(serialized_product.id, producer.id, 2)

        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "degraded"

    def test_version(self, client):
        resp = client.get("/api/version")
        assert resp.status_code == 200
        assert resp.get_json()["api_version"] == "1.0.0"
