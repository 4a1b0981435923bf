"""
HTTP API tests: status codes and payload shapes for every blueprint.
"""

import pytest


ESPRESSO_CART = {
    "items": [{"product_id": "espresso", "quantity": 2, "unit_price_cents": 8000, "name": "Espresso"}],
    "discount_code": "none",
    "payment_method": "cash",
    "tendered_cents": 20000,
    "actor": "cashier-1",
    "terminal_id": "T1",
}


def test_health(client, db_session):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.get_json()["status"] == "healthy"


def test_settle_sale(client, espresso_recipe):
    response = client.post("/api/sales/settle", json=ESPRESSO_CART)
    assert response.status_code == 201

    data = response.get_json()
    assert data["transaction"]["total_cents"] == 16000
    assert data["transaction"]["change_cents"] == 4000
    assert data["transaction"]["terminal_id"] == "T1"
    assert data["movements"][0]["quantity_delta"] == "-36.0000"
    assert data["report_status"] == "recorded"

    detail = client.get(f"/api/sales/{data['transaction']['id']}")
    assert detail.status_code == 200
    assert detail.get_json()["sale"]["reference"] == "OR-000001"


def test_settle_senior(client, espresso_recipe):
    response = client.post("/api/sales/settle", json={**ESPRESSO_CART, "discount_code": "senior"})
    assert response.status_code == 201
    txn = response.get_json()["transaction"]
    assert txn["discount_cents"] == 3200
    assert txn["total_cents"] == 12800
    assert txn["tax_exempt_cents"] == 12800


@pytest.mark.parametrize("payload", [
    {**ESPRESSO_CART, "discount_code": "vip"},
    {**ESPRESSO_CART, "items": []},
    {**ESPRESSO_CART, "items": [{"product_id": "espresso", "quantity": 1, "unit_price_cents": -5}]},
    {**ESPRESSO_CART, "items": [{"product_id": "espresso", "quantity": 1.5, "unit_price_cents": 100}]},
    {**ESPRESSO_CART, "payment_method": "cheque"},
    {**ESPRESSO_CART, "tendered_cents": 10},
    {**ESPRESSO_CART, "occurred_at": "not-a-date"},
    {"discount_code": "none"},
])
def test_settle_rejects_invalid_carts(client, espresso_recipe, payload):
    response = client.post("/api/sales/settle", json=payload)
    assert response.status_code == 400
    assert "error" in response.get_json()
    assert client.get("/api/sales").get_json()["sales"] == []


def test_settle_partial_deduction_returns_207(client, db_session, catalog, coffee_beans):
    client.post("/api/recipes/mocha/lines", json={"inventory_item_id": coffee_beans.id, "quantity_per_unit": 18})
    client.post("/api/recipes/mocha/lines", json={"inventory_item_id": 999999, "quantity_per_unit": 30})

    response = client.post("/api/sales/settle", json={
        "items": [{"product_id": "mocha", "quantity": 1, "unit_price_cents": 15000, "name": "Mocha"}],
        "payment_method": "card",
    })
    assert response.status_code == 207
    data = response.get_json()
    assert "error" in data
    assert data["failed_lines"][0]["error_code"] == "UNKNOWN_ITEM"
    assert len(data["movements"]) == 1

    detail = client.get(f"/api/sales/{data['transaction']['id']}").get_json()["sale"]
    assert len(detail["deduction_failures"]) == 1


def test_sale_not_found(client, db_session):
    assert client.get("/api/sales/424242").status_code == 404


def test_list_sales_by_date(client, catalog):
    client.post("/api/sales/settle", json={
        "items": [{"product_id": "gift-card", "quantity": 1, "unit_price_cents": 1000}],
        "occurred_at": "2024-05-01T09:00:00Z",
    })
    assert len(client.get("/api/sales?date=2024-05-01").get_json()["sales"]) == 1
    assert client.get("/api/sales?date=2024-05-02").get_json()["sales"] == []
    assert client.get("/api/sales?date=May-1").status_code == 400


def test_discounts(client):
    data = client.get("/api/sales/discounts").get_json()
    assert [d["code"] for d in data["discounts"]] == ["none", "senior", "pwd"]


def test_x_read_and_z_read(client, catalog):
    client.post("/api/sales/settle", json={
        "items": [{"product_id": "gift-card", "quantity": 1, "unit_price_cents": 1000}],
        "occurred_at": "2024-05-01T09:00:00Z",
    })

    x_read = client.get("/api/reports/daily/2024-05-01").get_json()["report"]
    assert x_read["status"] == "OPEN"
    assert x_read["total_sales_cents"] == 1000

    first = client.post("/api/reports/daily/2024-05-01/finalize", json={"actor": "manager"})
    second = client.post("/api/reports/daily/2024-05-01/finalize", json={"actor": "other"})
    assert first.status_code == 200
    assert second.status_code == 200
    assert first.get_json() == second.get_json()
    assert first.get_json()["report"]["status"] == "FINALIZED"

    reports = client.get("/api/reports/daily").get_json()["reports"]
    assert [r["report_date"] for r in reports] == ["2024-05-01"]

    reconcile = client.get("/api/reports/daily/2024-05-01/reconcile").get_json()
    assert reconcile["matches"] is True


def test_report_bad_date(client, db_session):
    assert client.get("/api/reports/daily/yesterday").status_code == 400
    assert client.post("/api/reports/daily/2024-13-01/finalize").status_code == 400


def test_future_z_read_is_rejected(client, db_session):
    response = client.post("/api/reports/daily/2999-01-01/finalize", json={"actor": "manager"})
    assert response.status_code == 400
    assert "error" in response.get_json()
    assert client.get("/api/reports/daily").get_json()["reports"] == []


def test_exclusions(client, catalog):
    client.post("/api/reports/daily/2024-05-01/finalize")
    response = client.post("/api/sales/settle", json={
        "items": [{"product_id": "gift-card", "quantity": 1, "unit_price_cents": 1000}],
        "occurred_at": "2024-05-01T09:00:00Z",
    })
    assert response.status_code == 201
    assert response.get_json()["report_status"] == "excluded"

    exclusions = client.get("/api/reports/exclusions").get_json()["exclusions"]
    assert len(exclusions) == 1
    assert exclusions[0]["reason"] == "report_finalized"

    exclusion_id = exclusions[0]["id"]
    resolved = client.post(f"/api/reports/exclusions/{exclusion_id}/resolve", json={"actor": "manager"})
    assert resolved.status_code == 200
    assert client.post(f"/api/reports/exclusions/{exclusion_id}/resolve").status_code == 409
    assert client.post("/api/reports/exclusions/424242/resolve").status_code == 404
    assert client.get("/api/reports/exclusions").get_json()["exclusions"] == []
    assert len(client.get("/api/reports/exclusions?include_resolved=true").get_json()["exclusions"]) == 1

    retry = client.post("/api/reports/exclusions/retry").get_json()
    assert retry["retried"] == 0


def test_inventory_endpoints(client, db_session):
    created = client.post("/api/inventory/items", json={
        "name": "Oat Milk", "unit": "ml", "reorder_level": 500, "opening_quantity": 1000,
    })
    assert created.status_code == 201
    item = created.get_json()["item"]
    assert item["quantity_on_hand"] == "1000.0000"

    duplicate = client.post("/api/inventory/items", json={"name": "Oat Milk"})
    assert duplicate.status_code == 409

    moved = client.post(f"/api/inventory/items/{item['id']}/movements", json={
        "kind": "waste", "quantity_delta": "-600", "note": "spilled",
    })
    assert moved.status_code == 201
    movement = moved.get_json()["movement"]
    assert movement["quantity_after"] == "400.0000"

    assert client.get(f"/api/inventory/items/{item['id']}/balance").get_json()["quantity_on_hand"] == "400.0000"
    assert [i["name"] for i in client.get("/api/inventory/low-stock").get_json()["items"]] == ["Oat Milk"]

    history = client.get(f"/api/inventory/items/{item['id']}/history?limit=1").get_json()
    assert [m["id"] for m in history["movements"]] == [movement["id"]]

    compensated = client.post(f"/api/inventory/movements/{movement['id']}/compensate", json={"actor": "manager"})
    assert compensated.status_code == 201
    assert client.post(f"/api/inventory/movements/{movement['id']}/compensate").status_code == 409
    assert client.post("/api/inventory/movements/424242/compensate").status_code == 404

    verify = client.get(f"/api/inventory/items/{item['id']}/verify").get_json()
    assert verify["consistent"] is True
    assert verify["current_balance"] == "1000.0000"

    patched = client.patch(f"/api/inventory/items/{item['id']}", json={"reorder_level": 100})
    assert patched.status_code == 200
    assert client.patch(f"/api/inventory/items/{item['id']}", json={"quantity_on_hand": 5}).status_code == 400

    deactivated = client.patch(f"/api/inventory/items/{item['id']}", json={"is_active": False})
    assert deactivated.get_json()["item"]["is_active"] is False
    assert client.post(f"/api/inventory/items/{item['id']}/movements", json={
        "kind": "purchase", "quantity_delta": 5,
    }).status_code == 404

    assert len(client.get("/api/inventory/items").get_json()["items"]) == 1


def test_inventory_errors(client, db_session):
    assert client.get("/api/inventory/items/424242/balance").status_code == 404
    assert client.get("/api/inventory/items/424242/history").status_code == 404
    assert client.get("/api/inventory/items/424242/verify").status_code == 404
    assert client.post("/api/inventory/items/424242/movements", json={
        "kind": "purchase", "quantity_delta": 5,
    }).status_code == 404
    assert client.post("/api/inventory/items", json={"unit": "g"}).status_code == 400


def test_manual_movement_rules(client, coffee_beans):
    url = f"/api/inventory/items/{coffee_beans.id}/movements"
    assert client.post(url, json={"kind": "sale", "quantity_delta": -1}).status_code == 400
    assert client.post(url, json={"kind": "purchase", "quantity_delta": -1}).status_code == 400
    assert client.post(url, json={"kind": "adjustment", "quantity_delta": 0}).status_code == 400
    assert client.post(url, json={"kind": "adjustment", "quantity_delta": "lots"}).status_code == 400
    assert client.post(url, json={"kind": "purchase", "quantity_delta": "1e30"}).status_code == 400
    assert client.post(url, json={"kind": "adjustment", "quantity_delta": -1e12}).status_code == 400
    assert client.get(f"/api/inventory/items/{coffee_beans.id}/balance").get_json()["quantity_on_hand"] == "1000.0000"


def test_recipe_endpoints(client, catalog, coffee_beans):
    added = client.post("/api/recipes/espresso/lines", json={
        "inventory_item_id": coffee_beans.id, "quantity_per_unit": 18, "unit": "g",
    })
    assert added.status_code == 201
    line = added.get_json()["line"]

    recipe = client.get("/api/recipes/espresso").get_json()
    assert recipe["locked"] is False
    assert [l["id"] for l in recipe["lines"]] == [line["id"]]

    assert client.post("/api/recipes/espresso/lines", json={"inventory_item_id": coffee_beans.id}).status_code == 400
    assert client.post("/api/recipes/espresso/lines", json={
        "inventory_item_id": coffee_beans.id, "quantity_per_unit": 0,
    }).status_code == 400

    cost = client.get("/api/recipes/espresso/cost").get_json()
    assert cost["cost_cents"] == 6

    availability = client.get("/api/recipes/espresso/availability?quantity=100").get_json()
    assert availability["available"] is False

    patched = client.patch(f"/api/recipes/lines/{line['id']}", json={"quantity_per_unit": "20"})
    assert patched.status_code == 200
    assert patched.get_json()["line"]["quantity_per_unit"] == "20.0000"
    assert client.patch("/api/recipes/lines/424242", json={"notes": "x"}).status_code == 404


def test_recipe_locked_returns_409(client, espresso_recipe):
    client.post("/api/sales/settle", json={**ESPRESSO_CART, "occurred_at": "2024-05-01T09:00:00Z"})
    client.post("/api/reports/daily/2024-05-01/finalize")

    recipe = client.get("/api/recipes/espresso").get_json()
    assert recipe["locked"] is True

    line_id = recipe["lines"][0]["id"]
    assert client.patch(f"/api/recipes/lines/{line_id}", json={"quantity_per_unit": 9}).status_code == 409
    assert client.delete(f"/api/recipes/lines/{line_id}").status_code == 409
