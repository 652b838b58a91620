"""HTTP API tests against the in-memory database."""

import pytest
from fastapi.testclient import TestClient

import main
import orders
from supabase_client import SupabaseError

USER = {"Authorization": "Bearer user-token"}
ADMIN = {"Authorization": "Bearer admin-token"}


@pytest.fixture
def client(db, notifier, monkeypatch):
    monkeypatch.setattr(main, "db", db)
    monkeypatch.setattr(main, "notifier", notifier)
    return TestClient(main.app)


def _checkout(*items, **extra):
    body = {"store": "china", "items": [{"product_id": pid, "quantity": qty} for pid, qty in items]}
    body.update(extra)
    return body


class TestPublic:
    def test_health(self, client):
        assert client.get("/api/health").json()["status"] == "ok"

    def test_tiers(self, client):
        tiers = client.get("/api/loyalty/tiers").json()["tiers"]
        assert [t["rate"] for t in tiers] == [0.03, 0.05, 0.07, 0.10]

    def test_products_by_store(self, client):
        resp = client.get("/api/products", params={"store": "thailand"})
        assert resp.status_code == 200
        assert [p["id"] for p in resp.json()["products"]] == ["thai-balm"]

    def test_unknown_store(self, client):
        assert client.get("/api/products", params={"store": "japan"}).status_code == 400

    def test_cart_summary_groups_by_store(self, client):
        resp = client.post("/api/cart/summary", json={"items": [
            {"product_id": "tiger-balm", "quantity": 2},
            {"product_id": "viet-oil", "quantity": 1},
            {"product_id": "ghost", "quantity": 1},
        ]})
        data = resp.json()
        assert data["stores"]["china"]["subtotal"] == 5000
        assert data["stores"]["vietnam"]["subtotal"] == 900
        assert data["total_items"] == 3
        assert data["errors"] == ["Product not found: ghost"]


class TestAuth:
    def test_login_required(self, client):
        assert client.get("/api/orders").status_code == 401

    def test_bad_token(self, client):
        assert client.get("/api/orders", headers={"Authorization": "Bearer nope"}).status_code == 401

    def test_admin_required(self, client):
        assert client.get("/api/admin/orders", headers=USER).status_code == 403


class TestCheckout:
    def test_quote(self, client):
        resp = client.post("/api/checkout/quote", headers=USER, json=_checkout(("ginseng", 1), loyalty_points=300))
        data = resp.json()
        assert data["success"] is True
        assert data["pricing"]["loyalty_discount"] == 300
        assert data["pricing"]["total"] == 4000 - 300 + 600
        assert data["available_points"] == 1000

    def test_quote_business_error(self, client):
        resp = client.post("/api/checkout/quote", headers=USER,
                           json=_checkout(("ginseng", 1), delivery_method="air_delivery"))
        data = resp.json()
        assert data["success"] is False
        assert data["code"] == "invalid_delivery_method"

    def test_quote_database_error(self, client, db, monkeypatch):
        async def broken_select(*args, **kwargs):
            raise SupabaseError(500, "XX000", "database unavailable")

        monkeypatch.setattr(db, "select", broken_select)
        resp = client.post("/api/checkout/quote", headers=USER, json=_checkout(("ginseng", 1)))
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is False
        assert data["code"] == "database_error"

    def test_place_order_and_list(self, client, notifier):
        resp = client.post("/api/orders", headers=USER, json=_checkout(("tiger-balm", 2)))
        order = resp.json()["order"]
        assert order["order_number"] == f"{orders.date_prefix()}01"
        assert order["total"] == 5600
        assert notifier.emails == [(order["order_number"], "new", "pending")]

        mine = client.get("/api/orders", headers=USER).json()["orders"]
        assert [o["id"] for o in mine] == [order["id"]]

    def test_number_conflict_reported(self, client, db):
        db.conflicts = 5
        data = client.post("/api/orders", headers=USER, json=_checkout(("tiger-balm", 1))).json()
        assert data["success"] is False
        assert data["code"] == "order_number_conflict"

    def test_negative_points_rejected(self, client):
        resp = client.post("/api/orders", headers=USER, json=_checkout(("tiger-balm", 1), loyalty_points=-5))
        assert resp.status_code == 422

    def test_loyalty_account(self, client):
        data = client.get("/api/loyalty", headers=USER).json()
        assert data["points"] == 1000
        assert data["tier"] == "basic"

    def test_validate_promo(self, client, db):
        db.seed("promo_codes", {"code": "SPRING10", "discount_type": "percent", "discount_value": 10,
                                "active": True, "usage_count": 0})
        ok = client.get("/api/promo-codes/validate", params={"code": "spring10"}, headers=USER)
        assert ok.json()["discount_value"] == 10
        missing = client.get("/api/promo-codes/validate", params={"code": "NOPE"}, headers=USER)
        assert missing.status_code == 404


class TestAdmin:
    def test_order_lifecycle(self, client, db):
        order = client.post("/api/orders", headers=USER, json=_checkout(("ginseng", 1))).json()["order"]

        shipped = client.put(f"/api/admin/orders/{order['id']}/tracking", headers=ADMIN,
                             json={"tracking_number": "RA1"}).json()
        assert shipped["order"]["status"] == "shipped"

        delivered = client.put(f"/api/admin/orders/{order['id']}/status", headers=ADMIN,
                               json={"status": "delivered"}).json()
        assert delivered["order"]["loyalty_points_earned"] == 120

        listed = client.get("/api/admin/orders", headers=ADMIN, params={"status": "delivered"}).json()
        assert len(listed["orders"]) == 1

    def test_status_of_missing_order(self, client):
        resp = client.put("/api/admin/orders/nope/status", headers=ADMIN, json={"status": "processing"})
        assert resp.status_code == 404

    def test_invalid_status(self, client, db):
        db.seed("orders", {"id": "o1", "status": "pending"})
        data = client.put("/api/admin/orders/o1/status", headers=ADMIN, json={"status": "lost"}).json()
        assert data["code"] == "invalid_status"

    def test_promo_crud(self, client):
        created = client.post("/api/admin/promo-codes", headers=ADMIN,
                              json={"code": "autumn", "discount_type": "fixed", "discount_value": 300})
        assert created.json()["promo_code"]["code"] == "AUTUMN"

        updated = client.put("/api/admin/promo-codes/AUTUMN", headers=ADMIN, json={"active": False})
        assert updated.json()["promo_code"]["active"] is False

        codes = client.get("/api/admin/promo-codes", headers=ADMIN).json()["promo_codes"]
        assert [c["code"] for c in codes] == ["AUTUMN"]

        assert client.delete("/api/admin/promo-codes/AUTUMN", headers=ADMIN).json()["success"] is True
        assert client.get("/api/admin/promo-codes", headers=ADMIN).json()["promo_codes"] == []

    def test_invalid_promo(self, client):
        resp = client.post("/api/admin/promo-codes", headers=ADMIN,
                           json={"code": "HALF", "discount_type": "percent", "discount_value": 150})
        assert resp.status_code == 400

    def test_product_crud(self, client, db):
        created = client.post("/api/admin/products", headers=ADMIN, json={
            "name": "Бальзам", "name_en": "Balm", "name_zh": "膏", "name_vi": "Dầu",
            "price": 990, "category": "ointments", "disease": "pain", "store": "vietnam",
        }).json()["product"]
        updated = client.put(f"/api/admin/products/{created['id']}", headers=ADMIN, json={"price": 950}).json()
        assert updated["product"]["price"] == 950
        assert client.put("/api/admin/products/ghost", headers=ADMIN, json={"price": 1}).status_code == 404
        client.delete(f"/api/admin/products/{created['id']}", headers=ADMIN)
        assert all(p["id"] != created["id"] for p in db.rows("products"))

    def test_catalog_export_and_import(self, client, db):
        export = client.get("/api/admin/catalog/export", headers=ADMIN)
        assert export.headers["content-type"].startswith("text/csv")
        assert "attachment" in export.headers["content-disposition"]

        csv_text = export.content.decode("utf-8-sig").replace(";2500;", ";2600;", 1)
        result = client.post("/api/admin/catalog/import", headers=ADMIN, content=csv_text.encode("utf-8")).json()
        assert result["errors"] == []
        assert result["updated"] == len(db.rows("products"))
        balm = next(p for p in db.rows("products") if p["id"] == "tiger-balm")
        assert balm["price"] == 2600
