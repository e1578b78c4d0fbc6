"""
HTTP surface tests for inventory, membership and receivables.
"""


class TestInventoryRoutes:
    def test_create_product_with_opening_stock(self, client, db_session):
        resp = client.post("/api/inventory/products", json={
            "sku": "PEN-001", "name": "Blue pen", "selling_price_cents": 150,
            "opening_stock": 100, "operator": "alice",
        })
        assert resp.status_code == 201
        product = resp.get_json()["product"]
        assert product["current_stock"] == 100

        txs = client.get(f"/api/inventory/transactions?product_id={product['id']}").get_json()["transactions"]
        assert len(txs) == 1
        assert txs[0]["related_type"] == "opening"

    def test_duplicate_sku_is_conflict(self, client, widget):
        resp = client.post("/api/inventory/products", json={"sku": "WDG-001", "name": "Dup", "operator": "alice"})
        assert resp.status_code == 409

    def test_update_product_cannot_touch_stock(self, client, widget):
        resp = client.patch(f"/api/inventory/products/{widget.id}", json={"current_stock": 500})
        assert resp.status_code == 400

        resp = client.patch(f"/api/inventory/products/{widget.id}", json={"selling_price_cents": 5500})
        assert resp.status_code == 200
        assert resp.get_json()["product"]["selling_price_cents"] == 5500

    def test_adjustment_and_verify(self, client, widget):
        resp = client.post("/api/inventory/adjustments", json={
            "product_id": widget.id, "new_stock": 12, "operator": "alice", "notes": "Recount",
        })
        assert resp.status_code == 201
        assert resp.get_json()["transaction"]["type"] == "ADJUSTMENT"

        verify = client.get("/api/inventory/verify").get_json()
        assert verify["consistent"] is True

    def test_adjust_unknown_product_is_404(self, client, db_session):
        resp = client.post("/api/inventory/adjustments", json={"product_id": 999, "new_stock": 1, "operator": "a"})
        assert resp.status_code == 404

    def test_receive_purchase(self, client, widget, gadget):
        resp = client.post("/api/inventory/purchases", json={
            "items": [{"product_id": widget.id, "quantity": 5}, {"product_id": gadget.id, "quantity": 1}],
            "operator": "alice",
        })
        assert resp.status_code == 201
        data = resp.get_json()
        assert data["purchase_number"].startswith("PO")
        assert [tx["after_stock"] for tx in data["transactions"]] == [15, 4]

    def test_purchase_cost_and_supplier(self, client, widget):
        resp = client.post("/api/inventory/purchases", json={
            "items": [{"product_id": widget.id, "quantity": 4, "unit_cost_cents": 820}],
            "supplier": "Syarikat Maju",
            "operator": "alice",
        })
        assert resp.status_code == 201
        data = resp.get_json()
        assert data["supplier"] == "Syarikat Maju"
        assert data["total_cost_cents"] == 3280
        assert data["transactions"][0]["unit_cost_cents"] == 820


class TestMemberRoutes:
    def test_tier_member_and_points(self, client, customer, widget):
        resp = client.put("/api/members/tiers/gold", json={"name": "Gold", "points_rate_bps": 15000})
        assert resp.status_code == 200

        resp = client.post("/api/members/", json={"customer_id": customer.id, "tier": "gold", "created_by": "alice"})
        assert resp.status_code == 201
        member = resp.get_json()["member"]
        assert member["member_number"].startswith("G")

        client.post("/api/invoices/", json={
            "customer_id": customer.id,
            "created_by": "cashier",
            "items": [{"product_id": widget.id, "quantity": 2}],
            "tax_rate_bps": 0,
            "payment": {"amount_cents": 10000, "payment_method": "cash"},
        })

        history = client.get(f"/api/members/{member['id']}/points").get_json()
        assert history["member"]["points"] == 150
        assert len(history["transactions"]) == 1

    def test_duplicate_member_conflict(self, client, gold_member, customer):
        resp = client.post("/api/members/", json={"customer_id": customer.id, "created_by": "alice"})
        assert resp.status_code == 409

    def test_missing_member(self, client, db_session):
        assert client.get("/api/members/123").status_code == 404

    def test_bad_tier(self, client, db_session):
        assert client.put("/api/members/tiers/bronze", json={}).status_code == 400


class TestReceivableRoutes:
    def test_receipt_flow(self, client, customer, widget):
        client.post("/api/invoices/", json={
            "customer_id": customer.id,
            "created_by": "cashier",
            "items": [{"product_id": widget.id, "quantity": 1}],
            "tax_rate_bps": 600,
        })
        receivables = client.get("/api/receivables/?status=pending").get_json()["receivables"]
        assert len(receivables) == 1
        ar_id = receivables[0]["id"]

        resp = client.post(f"/api/receivables/{ar_id}/receipts", json={
            "amount_cents": 5300, "payment_method": "cheque", "operator": "alice",
            "paid_at": "2030-01-01T00:00:00Z",
        })
        assert resp.status_code == 200
        assert resp.get_json()["receivable"]["status"] == "paid"

        assert client.post(f"/api/receivables/{ar_id}/receipts", json={
            "amount_cents": 1, "payment_method": "cash", "operator": "alice",
        }).status_code == 400

    def test_paid_at_must_be_a_timestamp_string(self, client, customer, widget):
        client.post("/api/invoices/", json={
            "customer_id": customer.id,
            "created_by": "cashier",
            "items": [{"product_id": widget.id, "quantity": 1}],
        })
        ar_id = client.get("/api/receivables/").get_json()["receivables"][0]["id"]

        for paid_at in (12345, "next tuesday"):
            resp = client.post(f"/api/receivables/{ar_id}/receipts", json={
                "amount_cents": 100, "payment_method": "cash", "operator": "alice", "paid_at": paid_at,
            })
            assert resp.status_code == 400
            assert "paid_at" in resp.get_json()["error"]

    def test_unknown_receivable(self, client, db_session):
        resp = client.post("/api/receivables/5/receipts", json={"amount_cents": 1, "payment_method": "cash", "operator": "a"})
        assert resp.status_code == 404

    def test_refresh(self, client, db_session):
        resp = client.post("/api/receivables/refresh")
        assert resp.status_code == 200
        assert resp.get_json()["updated"] == 0


class TestSystemRoutes:
    def test_health(self, client, widget):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.get_json()["checks"]["stock_ledger"]["status"] == "healthy"

    def test_version(self, client):
        assert client.get("/version").status_code == 200
