"""
Catalog, courier, stock and system endpoint tests.
"""

import pytest

from adega.models import Category, Product, StockLog
from conftest import counter_payload, delivery_payload


# =============================================================================
# CATEGORIES
# =============================================================================


class TestCategories:

    def test_crud(self, client, db_session):
        resp = client.post("/api/categories", json={"name": "Cervejas", "sortOrder": 2})
        assert resp.status_code == 201
        category_id = resp.json["id"]
        assert resp.json["isActive"] is True

        resp = client.patch(f"/api/categories/{category_id}", json={"name": "Cervejas Geladas"})
        assert resp.status_code == 200
        assert resp.json["name"] == "Cervejas Geladas"

        assert client.get(f"/api/categories/{category_id}").json["sortOrder"] == 2
        assert [c["id"] for c in client.get("/api/categories").json] == [category_id]

        assert client.delete(f"/api/categories/{category_id}").status_code == 204
        assert client.get(f"/api/categories/{category_id}").status_code == 404

    def test_requires_name(self, client, db_session):
        assert client.post("/api/categories", json={}).status_code == 400
        assert client.post("/api/categories", json={"name": "   "}).status_code == 400

    def test_unknown_field(self, client, db_session):
        resp = client.post("/api/categories", json={"name": "X", "color": "red"})
        assert resp.status_code == 400
        assert "color" in resp.json["error"]

    def test_delete_cascades_to_products(self, client, db_session, make_category, make_product):
        category = make_category("Gelo")
        make_product("Saco de gelo 5kg", category=category, stock=3)
        make_product("Saco de gelo 10kg", category=category, stock=1)

        assert client.delete(f"/api/categories/{category.id}").status_code == 204

        db_session.expire_all()
        assert db_session.query(Product).count() == 0

    def test_delete_blocked_by_stock_history(self, client, db_session, make_category, make_product):
        category = make_category("Gelo")
        product = make_product("Saco de gelo 5kg", category=category, stock=3)
        client.post("/api/stock/adjust", json={"productId": product.id, "delta": 2, "reason": "compra"})

        assert client.delete(f"/api/categories/{category.id}").status_code == 409

        db_session.expire_all()
        assert db_session.query(Product).count() == 1
        assert db_session.query(StockLog).count() == 1

    def test_delete_blocked_by_order_history(self, client, db_session, make_category, make_product):
        category = make_category("Cervejas")
        product = make_product(category=category)
        client.post("/api/orders", json=counter_payload([(product, 1)]))

        resp = client.delete(f"/api/categories/{category.id}")

        assert resp.status_code == 409
        db_session.expire_all()
        assert db_session.get(Category, category.id) is not None

    def test_reorder(self, client, db_session, make_category):
        a = make_category("A", sort_order=0)
        b = make_category("B", sort_order=1)

        resp = client.patch("/api/categories/reorder", json={"items": [
            {"id": a.id, "sortOrder": 5},
            {"id": b.id, "sortOrder": 1},
            {"id": "missing", "sortOrder": 0},
        ]})

        assert resp.status_code == 200
        assert resp.json["updated"] == 2
        assert [c["name"] for c in client.get("/api/categories").json] == ["B", "A"]

    def test_reorder_requires_items(self, client, db_session):
        assert client.patch("/api/categories/reorder", json={"items": "x"}).status_code == 400


# =============================================================================
# PRODUCTS
# =============================================================================


class TestProducts:

    def test_create_books_initial_stock(self, client, db_session, beers):
        resp = client.post("/api/products", json={
            "categoryId": beers.id,
            "name": "Brahma 350ml",
            "salePrice": "4.50",
            "costPrice": 2.8,
            "stock": 24,
        })

        assert resp.status_code == 201
        assert resp.json["stock"] == 24
        assert resp.json["salePrice"] == "4.50"
        assert resp.json["costPrice"] == "2.80"
        log = db_session.query(StockLog).one()
        assert (log.previous_stock, log.new_stock, log.change) == (0, 24, 24)
        assert log.reason == "initial stock"

    def test_create_without_stock_writes_no_log(self, client, db_session, beers):
        resp = client.post("/api/products", json={"categoryId": beers.id, "name": "Skol", "salePrice": 4})
        assert resp.status_code == 201
        assert resp.json["stock"] == 0
        assert db_session.query(StockLog).count() == 0

    def test_update_stock_goes_through_ledger(self, client, db_session, make_product):
        product = make_product(stock=10)

        resp = client.patch(f"/api/products/{product.id}", json={"stock": 4})

        assert resp.status_code == 200
        assert resp.json["stock"] == 4
        log = db_session.query(StockLog).one()
        assert log.change == -6
        assert log.reason == "catalog edit"

    @pytest.mark.parametrize(
        "payload",
        [
            {"name": "X", "salePrice": 1},
            {"categoryId": "c", "name": "X", "salePrice": "abc"},
            {"categoryId": "c", "name": "X", "salePrice": 1, "stock": -1},
            {"categoryId": "c", "name": "X", "salePrice": 1, "stock": 1.5},
            {"categoryId": "c", "name": "X", "salePrice": 1, "profitMargin": 1000},
        ],
    )
    def test_create_validation(self, client, db_session, payload):
        assert client.post("/api/products", json=payload).status_code == 400

    def test_unknown_category(self, client, db_session):
        resp = client.post("/api/products", json={"categoryId": "missing", "name": "X", "salePrice": 1})
        assert resp.status_code == 404

    def test_filter_by_category(self, client, db_session, make_category, make_product):
        beers = make_category("Cervejas")
        sodas = make_category("Refrigerantes")
        make_product("Brahma", category=beers)
        make_product("Coca", category=sodas)

        names = [p["name"] for p in client.get(f"/api/products?categoryId={sodas.id}").json]
        assert names == ["Coca"]
        assert len(client.get("/api/products").json) == 2

    def test_delete(self, client, db_session, make_product):
        product = make_product()
        assert client.delete(f"/api/products/{product.id}").status_code == 204
        assert client.get(f"/api/products/{product.id}").status_code == 404
        assert client.delete(f"/api/products/{product.id}").status_code == 404

    def test_delete_sold_product_conflicts(self, client, db_session, make_product):
        product = make_product()
        client.post("/api/orders", json=counter_payload([(product, 1)]))
        assert client.delete(f"/api/products/{product.id}").status_code == 409

    def test_delete_product_with_ledger_entries_conflicts(self, client, db_session, make_product):
        product = make_product(stock=5)
        client.post("/api/stock/adjust", json={"productId": product.id, "delta": -2, "reason": "quebra"})

        resp = client.delete(f"/api/products/{product.id}")

        assert resp.status_code == 409
        assert "deactivate" in resp.json["error"]
        logs = client.get(f"/api/stock/logs?productId={product.id}").json
        assert [entry["change"] for entry in logs] == [-2]


# =============================================================================
# COURIERS
# =============================================================================


class TestCouriers:

    def test_crud(self, client, db_session):
        resp = client.post("/api/motoboys", json={"name": "Carlos", "whatsapp": "11 98888-1234"})
        assert resp.status_code == 201
        courier_id = resp.json["id"]

        resp = client.patch(f"/api/motoboys/{courier_id}", json={"isActive": False})
        assert resp.status_code == 200
        assert resp.json["isActive"] is False

        assert client.get("/api/motoboys?active=true").json == []
        assert len(client.get("/api/motoboys").json) == 1

        assert client.delete(f"/api/motoboys/{courier_id}").status_code == 204
        assert client.get(f"/api/motoboys/{courier_id}").status_code == 404

    def test_duplicate_whatsapp(self, client, db_session, courier):
        resp = client.post("/api/motoboys", json={"name": "Outro", "whatsapp": courier.whatsapp})
        assert resp.status_code == 409

    def test_short_whatsapp(self, client, db_session):
        resp = client.post("/api/motoboys", json={"name": "Carlos", "whatsapp": "1234"})
        assert resp.status_code == 400

    def test_delete_with_history_conflicts(self, client, db_session, make_product, customer, address, courier):
        product = make_product()
        order_id = client.post(
            "/api/orders", json=delivery_payload(customer, address, [(product, 1)])
        ).json["id"]
        for status in ("accepted", "preparing", "ready"):
            client.patch(f"/api/orders/{order_id}/status", json={"status": status})
        client.patch(f"/api/orders/{order_id}/assign", json={"motoboyId": courier.id})

        assert client.delete(f"/api/motoboys/{courier.id}").status_code == 409

    def test_courier_orders(self, client, db_session, make_product, customer, address, courier):
        product = make_product()
        order_id = client.post(
            "/api/orders", json=delivery_payload(customer, address, [(product, 1)])
        ).json["id"]
        for status in ("accepted", "preparing", "ready"):
            client.patch(f"/api/orders/{order_id}/status", json={"status": status})
        client.patch(f"/api/orders/{order_id}/assign", json={"motoboyId": courier.id})

        active = client.get(f"/api/motoboys/{courier.id}/orders").json
        assert [o["id"] for o in active] == [order_id]

        client.patch(f"/api/orders/{order_id}/status", json={"status": "delivered"})
        assert client.get(f"/api/motoboys/{courier.id}/orders").json == []

        history = client.get(f"/api/motoboys/{courier.id}/orders?all=true").json
        assert [o["id"] for o in history] == [order_id]

        future = client.get(
            f"/api/motoboys/{courier.id}/orders?all=true&startDate=2999-01-01T00:00:00Z"
        ).json
        assert future == []

    def test_courier_orders_bad_date(self, client, db_session, courier):
        resp = client.get(f"/api/motoboys/{courier.id}/orders?startDate=yesterday")
        assert resp.status_code == 400

    def test_courier_orders_unknown(self, client, db_session):
        assert client.get("/api/motoboys/missing/orders").status_code == 404


# =============================================================================
# STOCK
# =============================================================================


class TestStockEndpoints:

    def test_adjust_and_logs(self, client, db_session, make_product):
        product = make_product(stock=3)

        resp = client.post("/api/stock/adjust", json={"productId": product.id, "delta": -5, "reason": "quebra"})

        assert resp.status_code == 201
        assert resp.json["previousStock"] == 3
        assert resp.json["newStock"] == 0
        assert resp.json["change"] == -5

        logs = client.get(f"/api/stock/logs?productId={product.id}").json
        assert len(logs) == 1
        assert logs[0]["reason"] == "quebra"

    @pytest.mark.parametrize(
        "body,status",
        [
            ({"delta": 1, "reason": "x"}, 400),
            ({"productId": "missing", "delta": 1, "reason": "x"}, 404),
            ({"productId": "P", "delta": 0, "reason": "x"}, 400),
            ({"productId": "P", "delta": 1}, 400),
        ],
    )
    def test_adjust_errors(self, client, db_session, make_product, body, status):
        product = make_product()
        if body.get("productId") == "P":
            body = {**body, "productId": product.id}
        assert client.post("/api/stock/adjust", json=body).status_code == status

    def test_report_and_low_stock(self, client, db_session, make_product, beers, caipirinhas):
        make_product("Skol", category=beers, stock=2, cost_price="2.00", sale_price="4.00")
        make_product("Caipirinha", category=caipirinhas, stock=0)

        report = client.get("/api/stock/report").json
        assert report["summary"]["excludedFromValueCount"] == 1
        assert report["summary"]["totalCostValue"] == 4.0

        low = client.get("/api/stock/low-stock").json
        assert [r["name"] for r in low] == ["Skol"]

        assert client.get("/api/stock/low-stock?threshold=2").json == []
        assert client.get("/api/stock/low-stock?threshold=abc").status_code == 400

    def test_shopping_list(self, client, db_session, make_category, make_product):
        beers = make_category("Cervejas")
        sodas = make_category("Refrigerantes")
        make_product("Skol", category=beers, stock=0, cost_price="2.00")
        make_product("Coca", category=sodas, stock=1, cost_price="5.00")

        resp = client.post("/api/stock/shopping-list", json={"categoryIds": [sodas.id]})

        assert resp.status_code == 200
        assert [p["name"] for p in resp.json["products"]] == ["Coca"]
        assert resp.json["summary"]["totalItems"] == 1
        assert resp.json["summary"]["totalEstimatedCost"] == 45.0
        assert resp.json["summary"]["selectedCategories"] == 1

        everything = client.post("/api/stock/shopping-list", json={}).json
        assert everything["summary"]["selectedCategories"] == "all"
        assert everything["summary"]["totalItems"] == 2

    def test_shopping_list_validation(self, client, db_session):
        assert client.post("/api/stock/shopping-list", json={"categoryIds": "x"}).status_code == 400
        assert client.post("/api/stock/shopping-list", json={"categoryIds": [{"a": 1}]}).status_code == 400
        assert client.post("/api/stock/shopping-list", json={"categoryIds": [7]}).status_code == 400
        assert client.post("/api/stock/shopping-list", json=[1, 2]).status_code == 400
        assert client.post("/api/stock/shopping-list", json={"threshold": -1}).status_code == 400


# =============================================================================
# SYSTEM
# =============================================================================


class TestHealth:

    def test_health(self, client, db_session, make_product):
        make_product()
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json["status"] == "healthy"
        assert resp.json["checks"]["database"]["details"]["products"] == 1
        assert "connected_clients" in resp.json["checks"]["broadcaster"]["details"]

    def test_cors_allowlist(self, client, db_session):
        resp = client.get("/api/health", headers={"Origin": "http://localhost:5173"})
        assert resp.headers["Access-Control-Allow-Origin"] == "http://localhost:5173"

        resp = client.get("/api/health", headers={"Origin": "http://evil.example"})
        assert "Access-Control-Allow-Origin" not in resp.headers
