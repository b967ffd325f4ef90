"""
Bills of materials and production orders: material issue into WIP, overhead
absorption and finished goods costing.
"""

import pytest


@pytest.fixture
def bakery(client, admin_headers, accounts, create_item):
    flour = create_item("FLOUR", item_type="raw_material", quantity=100, unit_cost=2)
    sugar = create_item("SUGAR", item_type="raw_material", quantity=50, unit_cost=4)
    cake = create_item("CAKE", item_type="product", name="Sponge cake")

    resp = client.post("/api/production/boms", headers=admin_headers, json={
        "finished_item_id": cake["id"],
        "bom_code": "BOM-CAKE",
        "components": [
            {"item_id": flour["id"], "quantity": 2},
            {"item_id": sugar["id"], "quantity": 1},
        ],
        "overheads": [
            {"name": "Labour", "cost_method": "per_unit", "cost": 1, "account_id": accounts["6600"]},
            {"name": "Oven setup", "cost_method": "per_batch", "cost": 20, "account_id": accounts["6600"]},
            {"name": "Power", "cost_method": "percentage_of_material", "cost": 10, "account_id": accounts["6300"]},
        ],
    })
    assert resp.status_code == 200, resp.text
    return {"flour": flour, "sugar": sugar, "cake": cake, "bom": resp.json()}


def _order(client, headers, bom, quantity):
    resp = client.post("/api/production/orders", headers=headers,
                       json={"bom_id": bom["id"], "quantity_to_produce": quantity})
    assert resp.status_code == 200, resp.text
    return resp.json()


def test_bom_rules(client, admin_headers, bakery, create_item):
    duplicate = client.post("/api/production/boms", headers=admin_headers, json={
        "finished_item_id": bakery["cake"]["id"], "bom_code": "BOM-CAKE",
        "components": [{"item_id": bakery["flour"]["id"], "quantity": 1}],
    })
    assert duplicate.status_code == 409

    not_raw = client.post("/api/production/boms", headers=admin_headers, json={
        "finished_item_id": bakery["cake"]["id"], "bom_code": "BOM-2",
        "components": [{"item_id": bakery["cake"]["id"], "quantity": 1}],
    })
    assert not_raw.status_code == 400

    not_finished = client.post("/api/production/boms", headers=admin_headers, json={
        "finished_item_id": bakery["flour"]["id"], "bom_code": "BOM-3",
        "components": [{"item_id": bakery["sugar"]["id"], "quantity": 1}],
    })
    assert not_finished.status_code == 400


def test_planned_costs_while_pending(client, admin_headers, bakery):
    order = _order(client, admin_headers, bakery["bom"], 10)
    assert order["status"] == "Pending"
    assert order["order_number"].startswith("PRD-")

    detail = client.get(f"/api/production/orders/{order['id']}", headers=admin_headers).json()
    assert detail["cost_basis"] == "planned"
    assert detail["material_cost"] == 80
    assert detail["overhead_cost"] == 38
    assert detail["total_cost"] == 118


def test_start_and_complete(client, admin_headers, bakery, books, trial_balance):
    order = _order(client, admin_headers, bakery["bom"], 10)

    started = client.post(f"/api/production/orders/{order['id']}/start", headers=admin_headers)
    assert started.status_code == 200, started.text
    started = started.json()
    assert started["status"] == "In Progress"
    assert started["material_cost"] == 80

    balances = trial_balance()
    assert balances["1320"] == 80
    assert balances["1310"] == 320

    flour = client.get(f"/api/items/{bakery['flour']['id']}", headers=admin_headers).json()
    assert flour["quantity_on_hand"] == 80

    completed = client.post(f"/api/production/orders/{order['id']}/complete", headers=admin_headers)
    assert completed.status_code == 200, completed.text
    completed = completed.json()
    assert completed["status"] == "Completed"
    assert completed["overhead_cost"] == 38
    assert completed["total_cost"] == 118
    assert completed["unit_cost"] == 11.8

    cake = client.get(f"/api/items/{bakery['cake']['id']}", headers=admin_headers).json()
    assert cake["quantity_on_hand"] == 10
    assert cake["average_unit_cost"] == 11.8

    balances = trial_balance()
    assert balances.get("1320", 0) == 0
    assert balances["1330"] == 118
    assert balances["6600"] == -30
    assert balances["6300"] == -8

    detail = client.get(f"/api/production/orders/{order['id']}", headers=admin_headers).json()
    assert detail["cost_basis"] == "actual"
    assert len(detail["consumption"]) == 2
    assert detail["start_voucher_number"] and detail["completion_voucher_number"]

    assert len(books.vouchers(source_type="Production")) == 2
    assert client.post(f"/api/production/orders/{order['id']}/complete",
                       headers=admin_headers).status_code == 400
    books.assert_balanced()


def test_start_rejects_shortfall(client, admin_headers, bakery, books):
    order = _order(client, admin_headers, bakery["bom"], 60)

    resp = client.post(f"/api/production/orders/{order['id']}/start", headers=admin_headers)
    assert resp.status_code == 400
    assert "Insufficient stock" in resp.json()["detail"]

    assert client.get(f"/api/production/orders/{order['id']}", headers=admin_headers).json()["status"] == "Pending"
    flour = client.get(f"/api/items/{bakery['flour']['id']}", headers=admin_headers).json()
    assert flour["quantity_on_hand"] == 100
    assert books.vouchers(source_type="Production") == []


def test_only_pending_orders_cancel(client, admin_headers, bakery):
    pending = _order(client, admin_headers, bakery["bom"], 1)
    resp = client.post(f"/api/production/orders/{pending['id']}/cancel", headers=admin_headers)
    assert resp.json()["status"] == "Cancelled"

    running = _order(client, admin_headers, bakery["bom"], 1)
    client.post(f"/api/production/orders/{running['id']}/start", headers=admin_headers)
    assert client.post(f"/api/production/orders/{running['id']}/cancel",
                       headers=admin_headers).status_code == 400
