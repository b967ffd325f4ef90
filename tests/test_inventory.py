"""
Item register: opening stock, adjustments, weighted average cost and price tiers.
"""

import pytest

from conftest import TODAY, TestingSessionLocal
from ledgerbook.models import Item
from ledgerbook.services.inventory import InventoryService, StockError


def test_opening_stock_posts_once(client, admin_headers, create_item, books, trial_balance):
    item = create_item("BOLT", quantity=200, unit_cost=0.5)
    assert item["quantity_on_hand"] == 200
    assert item["average_unit_cost"] == 0.5
    assert item["opening_stock_voucher_id"] is not None

    balances = trial_balance()
    assert balances["1330"] == 100
    assert balances["3300"] == -100

    again = client.post(f"/api/items/{item['id']}/opening-stock", headers=admin_headers, json={
        "quantity": 1, "unit_cost": 1, "entry_date": TODAY.isoformat()
    })
    assert again.status_code == 409
    books.assert_balanced()


def test_raw_material_uses_its_own_inventory_account(client, admin_headers, create_item, trial_balance):
    create_item("RESIN", item_type="raw_material", quantity=10, unit_cost=12)
    balances = trial_balance()
    assert balances["1310"] == 120
    assert "1330" not in balances


def test_service_items_carry_no_stock(client, admin_headers, create_item):
    service = create_item("INSTALL", item_type="service")
    resp = client.post(f"/api/items/{service['id']}/opening-stock", headers=admin_headers, json={
        "quantity": 1, "unit_cost": 10, "entry_date": TODAY.isoformat()
    })
    assert resp.status_code == 400

    resp = client.post(f"/api/items/{service['id']}/adjust", headers=admin_headers,
                       json={"quantity": 1, "reason": "Count"})
    assert resp.status_code == 400


def test_duplicate_item_code(client, admin_headers, create_item):
    create_item("GEAR")
    resp = client.post("/api/items", headers=admin_headers, json={"item_code": "GEAR", "name": "Gear"})
    assert resp.status_code == 400


def test_adjustments_reweight_and_post(client, admin_headers, create_item, books, trial_balance):
    item = create_item("PIPE", quantity=10, unit_cost=10)

    up = client.post(f"/api/items/{item['id']}/adjust", headers=admin_headers,
                     json={"quantity": 10, "unit_cost": 20, "reason": "Found in store"})
    assert up.status_code == 200, up.text
    assert up.json()["quantity_on_hand"] == 20
    assert up.json()["average_unit_cost"] == 15
    assert up.json()["value"] == 200

    down = client.post(f"/api/items/{item['id']}/adjust", headers=admin_headers,
                       json={"quantity": -4, "reason": "Damaged"})
    assert down.status_code == 200, down.text
    assert down.json()["quantity_on_hand"] == 16
    assert down.json()["average_unit_cost"] == 15
    assert down.json()["value"] == 60

    balances = trial_balance()
    assert balances["1330"] == 240
    assert balances["5200"] == -140

    too_many = client.post(f"/api/items/{item['id']}/adjust", headers=admin_headers,
                           json={"quantity": -100, "reason": "Typo"})
    assert too_many.status_code == 400

    zero = client.post(f"/api/items/{item['id']}/adjust", headers=admin_headers,
                       json={"quantity": 0, "reason": "Nothing"})
    assert zero.status_code == 400

    history = client.get(f"/api/items/{item['id']}/history", headers=admin_headers).json()
    assert sorted(row["transaction_type"] for row in history) == ["ADJUSTMENT_MINUS", "ADJUSTMENT_PLUS", "OPENING"]
    assert len(books.vouchers(source_type="Inventory")) == 2
    books.assert_balanced()


def test_item_type_is_fixed_while_stock_is_on_hand(client, admin_headers, create_item):
    item = create_item("CLAMP", quantity=5, unit_cost=3)
    resp = client.put(f"/api/items/{item['id']}", headers=admin_headers, json={"item_type": "raw_material"})
    assert resp.status_code == 400

    resp = client.put(f"/api/items/{item['id']}", headers=admin_headers, json={"selling_price": 9.5})
    assert resp.status_code == 200
    assert resp.json()["selling_price"] == 9.5


def test_price_tiers(client, admin_headers, create_item):
    item = create_item("CABLE", selling_price=10)

    resp = client.put(f"/api/items/{item['id']}/price-tiers", headers=admin_headers, json=[
        {"tier_name": "Trade", "min_quantity": 50, "price": 8},
        {"tier_name": "Bulk", "min_quantity": 200, "price": 7},
    ])
    assert resp.status_code == 200
    assert len(resp.json()) == 2

    def price(qty):
        return client.get(f"/api/items/{item['id']}/price", headers=admin_headers,
                          params={"quantity": qty}).json()

    assert price(10) == {"item_id": item["id"], "quantity": 10, "price": 10, "tier_name": None}
    assert price(50)["tier_name"] == "Trade"
    assert price(500)["price"] == 7

    duplicate = client.put(f"/api/items/{item['id']}/price-tiers", headers=admin_headers, json=[
        {"tier_name": "A", "min_quantity": 5, "price": 9},
        {"tier_name": "B", "min_quantity": 5, "price": 8},
    ])
    assert duplicate.status_code == 400


def test_low_stock_listing(client, admin_headers, create_item):
    create_item("NUT", quantity=3, unit_cost=1, reorder_level=5)
    create_item("WASHER", quantity=50, unit_cost=1, reorder_level=5)

    low = client.get("/api/items", headers=admin_headers, params={"low_stock": True}).json()
    assert [i["item_code"] for i in low] == ["NUT"]


def test_stock_checks_reread_the_item_row(client, admin_headers, create_item):
    item = create_item("VALVE", quantity=5, unit_cost=10)

    holder = TestingSessionLocal()
    other = TestingSessionLocal()
    try:
        held = holder.query(Item).filter(Item.id == item["id"]).one()
        assert held.quantity_on_hand == 5

        # another document takes four units after this session loaded the row
        sold = other.query(Item).filter(Item.id == item["id"]).one()
        sold.quantity_on_hand = 1
        other.commit()

        inventory = InventoryService(holder, held.company_id)
        with pytest.raises(StockError):
            inventory.issue(held, 3, "SALE", TODAY)
        assert held.quantity_on_hand == 1
    finally:
        holder.rollback()
        holder.close()
        other.close()
