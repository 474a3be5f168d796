"""
HTTP API tests.

Verifies:
- Actor header and role checks (401 / 403)
- Domain errors map to JSON with their HTTP status
- End-to-end counter flow over the API
"""

import pytest


# =============================================================================
# SYSTEM
# =============================================================================


class TestSystem:

    def test_health(self, client, db_session):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.get_json()
        assert data["status"] == "healthy"
        assert data["checks"]["database"]["status"] == "healthy"

    def test_version(self, client):
        response = client.get("/version")
        assert response.status_code == 200
        assert "version" in response.get_json()


# =============================================================================
# AUTHORIZATION
# =============================================================================


class TestAuthorization:

    def test_missing_actor(self, client, db_session):
        response = client.post("/api/orders", json={"items": []})
        assert response.status_code == 401

    def test_unknown_actor(self, client, db_session):
        response = client.post("/api/orders", json={"items": []}, headers={"X-User-Id": "999"})
        assert response.status_code == 401

    def test_wrong_role(self, client, operator, actor_headers):
        response = client.post("/api/orders", json={"items": []}, headers=actor_headers(operator))
        assert response.status_code == 403
        assert response.get_json()["role"] == "production"

    def test_counter_cannot_edit_catalog(self, client, counter, actor_headers):
        response = client.post(
            "/api/products",
            json={"sku": "X-1", "name": "Flyer", "type": "service"},
            headers=actor_headers(counter),
        )
        assert response.status_code == 403

    def test_counter_cannot_resolve_approvals(self, client, counter, business_cards, make_order, actor_headers):
        order = make_order([{"product_id": business_cards.id, "quantity": 150}])
        created = client.post(
            "/api/approvals",
            json={"type": "discount", "order_id": order.id, "percent": "20", "reason": "Loyal"},
            headers=actor_headers(counter),
        )
        assert created.status_code == 201
        request_id = created.get_json()["approval_request"]["id"]

        response = client.post(
            f"/api/approvals/{request_id}/resolve",
            json={"decision": "approve"},
            headers=actor_headers(counter),
        )
        assert response.status_code == 403
        assert response.get_json()["type"] == "InsufficientApprovalAuthority"


# =============================================================================
# PRICING
# =============================================================================


class TestPricingApi:

    def test_calculate(self, client, counter, banner, actor_headers):
        response = client.post(
            "/api/pricing/calculate",
            json={"product_id": banner.id, "dimensions": {"width": 2, "height": 3, "unit": "ft"}},
            headers=actor_headers(counter),
        )
        assert response.status_code == 200
        price = response.get_json()["price"]
        assert price["line_total"] == "15.00"
        assert price["rule_type"] == "dimension"

    def test_size_out_of_range(self, client, counter, banner, actor_headers):
        response = client.post(
            "/api/pricing/calculate",
            json={"product_id": banner.id, "dimensions": {"width": 10, "height": 10.01}},
            headers=actor_headers(counter),
        )
        assert response.status_code == 400
        assert response.get_json()["type"] == "SizeOutOfRange"

    def test_non_finite_quantity_is_bad_request(self, client, counter, business_cards, actor_headers):
        # json.loads accepts the NaN literal
        response = client.post(
            "/api/pricing/calculate",
            data='{"product_id": %d, "quantity": NaN}' % business_cards.id,
            content_type="application/json",
            headers=actor_headers(counter),
        )
        assert response.status_code == 400
        assert response.get_json()["type"] == "ValidationError"

    def test_unknown_product(self, client, counter, actor_headers):
        response = client.post("/api/pricing/calculate", json={"product_id": 404}, headers=actor_headers(counter))
        assert response.status_code == 404

    def test_batch(self, client, counter, business_cards, paper, actor_headers):
        response = client.post(
            "/api/pricing/batch",
            json={"items": [
                {"product_id": business_cards.id, "quantity": 150},
                {"product_id": paper.id, "quantity": 2},
            ]},
            headers=actor_headers(counter),
        )
        assert response.status_code == 200
        assert response.get_json()["subtotal"] == "122.50"


# =============================================================================
# ORDER FLOW
# =============================================================================


class TestOrderFlowApi:

    def test_counter_flow(self, client, counter, manager, business_cards, actor_headers):
        created = client.post(
            "/api/orders",
            json={"items": [{"product_id": business_cards.id, "quantity": 150}]},
            headers=actor_headers(counter),
        )
        assert created.status_code == 201
        order = created.get_json()["order"]
        assert order["status"] == "DRAFT"
        assert order["subtotal"] == "112.50"
        assert len(order["items"]) == 1
        order_id = order["id"]

        # Discount above the threshold needs a manager
        response = client.post(
            f"/api/orders/{order_id}/discount",
            json={"percent": "20", "reason": "Bulk reprint"},
            headers=actor_headers(counter),
        )
        assert response.status_code == 202
        request_id = response.get_json()["approval_request"]["id"]

        pending = client.get("/api/approvals/pending", headers=actor_headers(manager))
        assert [r["id"] for r in pending.get_json()["items"]] == [request_id]

        resolved = client.post(
            f"/api/approvals/{request_id}/resolve",
            json={"decision": "approve", "notes": "Fine"},
            headers=actor_headers(manager),
        )
        assert resolved.status_code == 200

        response = client.post(
            f"/api/orders/{order_id}/discount",
            json={"percent": "20", "reason": "Bulk reprint"},
            headers=actor_headers(counter),
        )
        assert response.status_code == 200
        assert response.get_json()["order"]["total"] == "99.00"

        # Skipping a state is a conflict
        response = client.post(f"/api/orders/{order_id}/status", json={"status": "PAID"}, headers=actor_headers(counter))
        assert response.status_code == 409
        assert response.get_json()["type"] == "InvalidTransition"

        response = client.post(
            f"/api/orders/{order_id}/status",
            json={"status": "PENDING_PAYMENT"},
            headers=actor_headers(counter),
        )
        assert response.status_code == 200

        paid = client.post(
            "/api/payments",
            json={"order_id": order_id, "amount": "99.00", "payment_method": "card"},
            headers=actor_headers(counter),
        )
        assert paid.status_code == 201
        body = paid.get_json()
        assert body["order"]["status"] == "PAID"
        assert body["payment"]["payment_number"].startswith("PAY-")

        history = client.get(f"/api/orders/{order_id}/history", headers=actor_headers(counter))
        assert [row["to_status"] for row in history.get_json()["items"]] == ["DRAFT", "PENDING_PAYMENT", "PAID"]

    def test_credit_denied_is_forbidden(self, client, counter, credit_customer, business_cards, actor_headers, db_session):
        from decimal import Decimal

        credit_customer.credit_balance = Decimal("950.00")
        db_session.commit()

        created = client.post(
            "/api/orders",
            json={
                "customer_id": credit_customer.id,
                "payment_terms": "credit_30",
                "items": [{"product_id": business_cards.id, "quantity": 150}],
            },
            headers=actor_headers(counter),
        )
        order_id = created.get_json()["order"]["id"]
        client.post(f"/api/orders/{order_id}/status", json={"status": "PENDING_PAYMENT"}, headers=actor_headers(counter))

        response = client.post(f"/api/orders/{order_id}/status", json={"status": "PAID"}, headers=actor_headers(counter))
        assert response.status_code == 403
        data = response.get_json()
        assert data["type"] == "CreditDenied"
        assert data["details"]["reasons"] == ["credit_limit_exceeded"]

    def test_validation_error_shape(self, client, counter, business_cards, actor_headers):
        response = client.post(
            "/api/orders",
            json={"items": [{"product_id": business_cards.id, "quantity": 0}]},
            headers=actor_headers(counter),
        )
        assert response.status_code == 400
        data = response.get_json()
        assert data["type"] == "ValidationError"
        assert "error" in data

    @pytest.mark.parametrize("status", ["SHIPPED", ""])
    def test_bad_status_value(self, client, counter, make_order, status, actor_headers):
        order = make_order([])
        response = client.post(f"/api/orders/{order.id}/status", json={"status": status}, headers=actor_headers(counter))
        assert response.status_code == 400
