"""
Procure-to-pay: purchase orders, goods receipts, supplier bills, payment
vouchers and expenses.
"""

import pytest

from conftest import TODAY


@pytest.fixture
def supplier(create_supplier):
    return create_supplier("Northwind Steel", payment_terms_days=45)


@pytest.fixture
def steel(create_item):
    return create_item("STEEL", item_type="raw_material", name="Steel sheet")


def _approved_po(client, headers, supplier, item, quantity=100, unit_price=5, tax_rate=10):
    po = client.post("/api/purchase-orders", headers=headers, json={
        "supplier_id": supplier["id"],
        "order_date": TODAY.isoformat(),
        "lines": [{"item_id": item["id"], "quantity": quantity, "unit_price": unit_price, "tax_rate": tax_rate}],
    })
    assert po.status_code == 200, po.text
    po = po.json()
    resp = client.post(f"/api/purchase-orders/{po['id']}/approve", headers=headers)
    assert resp.status_code == 200
    return resp.json()


def _receive(client, headers, po, quantity):
    return client.post("/api/goods-receipts", headers=headers, json={
        "purchase_order_id": po["id"],
        "receipt_date": TODAY.isoformat(),
        "lines": [{"po_line_id": po["lines"][0]["id"], "quantity_received": quantity}],
    })


def _bill_from_grn(client, headers, supplier, grn, reference):
    return client.post("/api/supplier-invoices", headers=headers, json={
        "supplier_id": supplier["id"],
        "goods_receipt_id": grn["id"],
        "supplier_reference": reference,
        "bill_date": TODAY.isoformat(),
    })


def test_purchase_to_payment(client, admin_headers, accounts, supplier, steel, books, trial_balance):
    po = _approved_po(client, admin_headers, supplier, steel)
    assert po["status"] == "Approved"
    assert po["po_number"] == f"PO-{TODAY.year}-00001"
    assert po["total_amount"] == 550

    first = _receive(client, admin_headers, po, 60)
    assert first.status_code == 200, first.text
    first = first.json()
    assert first["total_value"] == 300
    assert client.get(f"/api/purchase-orders/{po['id']}", headers=admin_headers).json()["status"] == \
        "Partially Received"

    balances = trial_balance()
    assert balances["1310"] == 300
    assert balances["2140"] == -300

    # cannot receive more than is outstanding
    assert _receive(client, admin_headers, po, 41).status_code == 400

    second = _receive(client, admin_headers, po, 40).json()
    refreshed = client.get(f"/api/purchase-orders/{po['id']}", headers=admin_headers).json()
    assert refreshed["status"] == "Completed"
    assert refreshed["lines"][0]["quantity_outstanding"] == 0

    item = client.get(f"/api/items/{steel['id']}", headers=admin_headers).json()
    assert item["quantity_on_hand"] == 100
    assert item["average_unit_cost"] == 5

    bill_one = _bill_from_grn(client, admin_headers, supplier, first, "NW-881")
    assert bill_one.status_code == 200, bill_one.text
    bill_one = bill_one.json()
    assert bill_one["bill_number"] == f"BILL-{TODAY.year}-00001"
    assert bill_one["total_amount"] == 330
    assert bill_one["status"] == "unpaid"

    # a goods receipt is billed once
    assert _bill_from_grn(client, admin_headers, supplier, first, "NW-881b").status_code == 400

    bill_two = _bill_from_grn(client, admin_headers, supplier, second, "NW-882").json()

    balances = trial_balance()
    assert balances.get("2140", 0) == 0
    assert balances["2110"] == -550
    assert balances["1400"] == 50

    pv = client.post("/api/payment-vouchers", headers=admin_headers, json={
        "payment_date": TODAY.isoformat(),
        "supplier_id": supplier["id"],
        "bank_account_id": accounts["1120"],
        "allocations": [
            {"supplier_invoice_id": bill_one["id"], "amount": 330},
            {"supplier_invoice_id": bill_two["id"], "amount": 100},
        ],
    })
    assert pv.status_code == 200, pv.text
    pv = pv.json()
    assert pv["status"] == "Submitted"
    assert pv["net_payable"] == 430
    assert books.vouchers(source_type="Payment") == []

    resp = client.post(f"/api/payment-vouchers/{pv['id']}/status", headers=admin_headers,
                       json={"status": "Approved"})
    assert resp.status_code == 200, resp.text
    assert resp.json()["status"] == "Approved"

    assert client.get(f"/api/supplier-invoices/{bill_one['id']}", headers=admin_headers).json()["status"] == "paid"
    second_bill = client.get(f"/api/supplier-invoices/{bill_two['id']}", headers=admin_headers).json()
    assert second_bill["status"] == "partially_paid"
    assert second_bill["amount_due"] == 120

    balances = trial_balance()
    assert balances["2110"] == -120
    assert balances["1120"] == -430

    detail = client.get(f"/api/suppliers/{supplier['id']}", headers=admin_headers).json()
    assert detail["outstanding_balance"] == 120

    ledger = client.get(f"/api/suppliers/{supplier['id']}/ledger", headers=admin_headers).json()
    assert ledger["closing_balance"] == 120

    unpaid = client.get(f"/api/suppliers/{supplier['id']}/unpaid-invoices", headers=admin_headers).json()
    assert [b["id"] for b in unpaid] == [bill_two["id"]]

    assert client.post(f"/api/payment-vouchers/{pv['id']}/status", headers=admin_headers,
                       json={"status": "Approved"}).status_code == 400
    books.assert_balanced()


def test_goods_need_an_approved_order(client, admin_headers, supplier, steel):
    po = client.post("/api/purchase-orders", headers=admin_headers, json={
        "supplier_id": supplier["id"], "order_date": TODAY.isoformat(),
        "lines": [{"item_id": steel["id"], "quantity": 5, "unit_price": 5}],
    }).json()
    assert po["status"] == "Pending Approval"
    assert _receive(client, admin_headers, po, 5).status_code == 400

    rejected = client.post(f"/api/purchase-orders/{po['id']}/reject", headers=admin_headers,
                           json={"reason": "Over budget"}).json()
    assert rejected["status"] == "Rejected"
    assert rejected["rejection_reason"] == "Over budget"


def test_service_items_cannot_be_ordered(client, admin_headers, supplier, create_item):
    consulting = create_item("CONSULT", item_type="service")
    resp = client.post("/api/purchase-orders", headers=admin_headers, json={
        "supplier_id": supplier["id"], "order_date": TODAY.isoformat(),
        "lines": [{"item_id": consulting["id"], "quantity": 1, "unit_price": 100}],
    })
    assert resp.status_code == 400


def test_received_order_cannot_be_cancelled(client, admin_headers, supplier, steel):
    po = _approved_po(client, admin_headers, supplier, steel)
    _receive(client, admin_headers, po, 10)
    assert client.post(f"/api/purchase-orders/{po['id']}/cancel", headers=admin_headers).status_code == 400


def test_expense_bill_and_rejected_payment(client, admin_headers, accounts, supplier, books, trial_balance):
    bill = client.post("/api/supplier-invoices", headers=admin_headers, json={
        "supplier_id": supplier["id"],
        "bill_date": TODAY.isoformat(),
        "lines": [{"account_id": accounts["6300"], "description": "Electricity", "amount": 200, "tax_rate": 5}],
    })
    assert bill.status_code == 200, bill.text
    bill = bill.json()
    assert bill["total_amount"] == 210
    assert bill["due_date"] > bill["bill_date"]

    pv = client.post("/api/payment-vouchers", headers=admin_headers, json={
        "payment_date": TODAY.isoformat(), "supplier_id": supplier["id"],
        "bank_account_id": accounts["1120"],
        "allocations": [{"supplier_invoice_id": bill["id"], "amount": 210}],
    }).json()
    resp = client.post(f"/api/payment-vouchers/{pv['id']}/status", headers=admin_headers,
                       json={"status": "Rejected", "reason": "Disputed"})
    assert resp.json()["status"] == "Rejected"

    balances = trial_balance()
    assert balances["6300"] == 200
    assert balances["2110"] == -210
    assert books.vouchers(source_type="Payment") == []


def test_reversed_payment_voucher_reopens_the_bill(client, admin_headers, accounts, supplier, books, trial_balance):
    bill = client.post("/api/supplier-invoices", headers=admin_headers, json={
        "supplier_id": supplier["id"],
        "bill_date": TODAY.isoformat(),
        "lines": [{"account_id": accounts["6300"], "description": "Electricity", "amount": 200, "tax_rate": 5}],
    }).json()
    pv = client.post("/api/payment-vouchers", headers=admin_headers, json={
        "payment_date": TODAY.isoformat(), "supplier_id": supplier["id"],
        "bank_account_id": accounts["1120"],
        "allocations": [{"supplier_invoice_id": bill["id"], "amount": 210}],
    }).json()

    # only approved vouchers have postings to undo
    assert client.post(f"/api/payment-vouchers/{pv['id']}/reverse", headers=admin_headers).status_code == 400

    client.post(f"/api/payment-vouchers/{pv['id']}/status", headers=admin_headers, json={"status": "Approved"})
    assert client.get(f"/api/supplier-invoices/{bill['id']}", headers=admin_headers).json()["status"] == "paid"

    resp = client.post(f"/api/payment-vouchers/{pv['id']}/reverse", headers=admin_headers)
    assert resp.status_code == 200, resp.text
    assert resp.json()["status"] == "Reversed"

    reopened = client.get(f"/api/supplier-invoices/{bill['id']}", headers=admin_headers).json()
    assert reopened["status"] == "unpaid"
    assert reopened["amount_due"] == 210

    balances = trial_balance()
    assert balances["2110"] == -210
    assert balances["1120"] == 0
    assert len(books.vouchers(source_type="Reversal")) == 1

    assert client.post(f"/api/payment-vouchers/{pv['id']}/reverse", headers=admin_headers).status_code == 400
    books.assert_balanced()


def test_payment_voucher_with_withholding_tax(client, admin_headers, accounts, trial_balance):
    pv = client.post("/api/payment-vouchers", headers=admin_headers, json={
        "payment_date": TODAY.isoformat(),
        "payee_type": "other",
        "payee_name": "City Landlord",
        "bank_account_id": accounts["1120"],
        "lines": [{"account_id": accounts["6200"], "description": "Rent", "amount": 1000, "wht_rate": 5}],
    }).json()
    assert pv["gross_amount"] == 1000
    assert pv["wht_amount"] == 50
    assert pv["net_payable"] == 950

    client.post(f"/api/payment-vouchers/{pv['id']}/status", headers=admin_headers, json={"status": "Approved"})
    balances = trial_balance()
    assert balances["6200"] == 1000
    assert balances["2130"] == -50
    assert balances["1120"] == -950


def test_clerk_submits_but_cannot_approve(client, user_headers, accounts):
    clerk = user_headers("clerk")
    pv = client.post("/api/payment-vouchers", headers=clerk, json={
        "payment_date": TODAY.isoformat(), "payee_type": "employee", "payee_name": "Sam",
        "bank_account_id": accounts["1110"],
        "lines": [{"account_id": accounts["6400"], "amount": 40}],
    })
    assert pv.status_code == 200
    assert client.post(f"/api/payment-vouchers/{pv.json()['id']}/status", headers=clerk,
                       json={"status": "Approved"}).status_code == 403


def test_expense_posts_immediately(client, admin_headers, accounts, books, trial_balance):
    resp = client.post("/api/expenses", headers=admin_headers, json={
        "expense_date": TODAY.isoformat(),
        "account_id": accounts["6300"],
        "paid_from_account_id": accounts["1110"],
        "payee": "Water board",
        "amount": 100,
        "tax_rate": 10,
    })
    assert resp.status_code == 200, resp.text
    expense = resp.json()
    assert expense["expense_number"] == f"EXP-{TODAY.year}-00001"
    assert expense["total_amount"] == 110

    balances = trial_balance()
    assert balances["6300"] == 100
    assert balances["1400"] == 10
    assert balances["1110"] == -110

    not_bank = client.post("/api/expenses", headers=admin_headers, json={
        "expense_date": TODAY.isoformat(), "account_id": accounts["6300"],
        "paid_from_account_id": accounts["2110"], "amount": 10,
    })
    assert not_bank.status_code == 400

    client.post("/api/company/lock", headers=admin_headers, json={"locked": True})
    locked = client.post("/api/expenses", headers=admin_headers, json={
        "expense_date": TODAY.isoformat(), "account_id": accounts["6300"],
        "paid_from_account_id": accounts["1110"], "amount": 10,
    })
    assert locked.status_code == 403
    books.assert_balanced()


def test_supplier_opening_balance(client, admin_headers, supplier, trial_balance):
    payload = {"amount": 750, "entry_date": TODAY.isoformat()}
    assert client.post(f"/api/suppliers/{supplier['id']}/opening-balance",
                       headers=admin_headers, json=payload).status_code == 200
    assert client.post(f"/api/suppliers/{supplier['id']}/opening-balance",
                       headers=admin_headers, json=payload).status_code == 409

    balances = trial_balance()
    assert balances["2110"] == -750
    assert balances["3300"] == 750
    detail = client.get(f"/api/suppliers/{supplier['id']}", headers=admin_headers).json()
    assert detail["outstanding_balance"] == 750
