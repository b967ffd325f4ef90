"""
Sales cycle: invoices, receipts, credit notes and the customer ledger.
"""

import pytest

from conftest import TODAY


@pytest.fixture
def widget(create_item):
    return create_item("WIDGET", quantity=10, unit_cost=40, selling_price=100)


@pytest.fixture
def customer(create_customer):
    return create_customer("Bright Retail", payment_terms_days=30)


def _invoice(client, headers, customer, item, quantity=4, issue=True, **extra):
    payload = {
        "customer_id": customer["id"],
        "invoice_date": TODAY.isoformat(),
        "lines": [{"item_id": item["id"], "quantity": quantity, "unit_price": 100, "tax_rate": 15}],
        "issue": issue,
        **extra,
    }
    return client.post("/api/sales-invoices", headers=headers, json=payload)


def _receipt(client, headers, accounts, customer, amount, allocations=()):
    return client.post("/api/receipts", headers=headers, json={
        "receipt_date": TODAY.isoformat(),
        "customer_id": customer["id"],
        "account_id": accounts["1120"],
        "amount": amount,
        "allocations": [{"invoice_id": inv_id, "amount": amt} for inv_id, amt in allocations],
    })


def test_issued_invoice_posts_revenue_vat_and_cost(client, admin_headers, accounts, customer, widget,
                                                   books, trial_balance):
    resp = _invoice(client, admin_headers, customer, widget)
    assert resp.status_code == 200, resp.text
    invoice = resp.json()

    assert invoice["status"] == "ISSUED"
    assert invoice["invoice_number"] == "INV-00001"
    assert invoice["subtotal"] == 400
    assert invoice["tax_amount"] == 60
    assert invoice["total_amount"] == 460
    assert invoice["amount_due"] == 460
    assert invoice["voucher_id"] is not None

    balances = trial_balance()
    assert balances["1200"] == 460
    assert balances["4100"] == -400
    assert balances["2120"] == -60
    assert balances["5100"] == 160
    assert balances["1330"] == 240

    item = client.get(f"/api/items/{widget['id']}", headers=admin_headers).json()
    assert item["quantity_on_hand"] == 6
    assert item["average_unit_cost"] == 40

    sales = books.vouchers(source_type="Sales")
    assert len(sales) == 1
    assert sales[0]["total_debit"] == 620
    books.assert_balanced()


def test_draft_invoice_does_not_post(client, admin_headers, customer, widget, books):
    invoice = _invoice(client, admin_headers, customer, widget, issue=False).json()
    assert invoice["status"] == "DRAFT"
    assert invoice["due_date"] > invoice["invoice_date"]
    assert books.vouchers(source_type="Sales") == []

    resp = client.post(f"/api/sales-invoices/{invoice['id']}/issue", headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["status"] == "ISSUED"
    assert client.post(f"/api/sales-invoices/{invoice['id']}/issue", headers=admin_headers).status_code == 400


def test_invoice_rejects_insufficient_stock(client, admin_headers, customer, widget, books):
    resp = _invoice(client, admin_headers, customer, widget, quantity=11)
    assert resp.status_code == 400
    assert "Insufficient stock" in resp.json()["detail"]

    assert client.get("/api/sales-invoices", headers=admin_headers).json() == []
    assert books.vouchers(source_type="Sales") == []
    item = client.get(f"/api/items/{widget['id']}", headers=admin_headers).json()
    assert item["quantity_on_hand"] == 10


def test_clerk_cannot_issue(client, user_headers, customer, widget):
    clerk = user_headers("clerk")
    assert _invoice(client, clerk, customer, widget, issue=True).status_code == 403
    assert _invoice(client, clerk, customer, widget, issue=False).status_code == 200


def test_sales_voucher_cannot_be_reversed_directly(client, admin_headers, customer, widget):
    invoice = _invoice(client, admin_headers, customer, widget).json()
    resp = client.post(f"/api/journal-vouchers/{invoice['voucher_id']}/reverse", headers=admin_headers)
    assert resp.status_code == 400


def test_receipt_settles_invoice_and_reversal_reopens_it(client, admin_headers, accounts, customer, widget,
                                                         books, trial_balance):
    invoice = _invoice(client, admin_headers, customer, widget).json()

    partial = _receipt(client, admin_headers, accounts, customer, 200, [(invoice["id"], 200)])
    assert partial.status_code == 200, partial.text
    assert partial.json()["receipt_number"].startswith(f"RCT-{TODAY:%Y%m%d}-")
    assert client.post(f"/api/receipts/{partial.json()['id']}/post", headers=admin_headers).status_code == 200

    refreshed = client.get(f"/api/sales-invoices/{invoice['id']}", headers=admin_headers).json()
    assert refreshed["status"] == "PARTIAL"
    assert refreshed["amount_due"] == 260

    rest = _receipt(client, admin_headers, accounts, customer, 260, [(invoice["id"], 260)]).json()
    client.post(f"/api/receipts/{rest['id']}/post", headers=admin_headers)

    refreshed = client.get(f"/api/sales-invoices/{invoice['id']}", headers=admin_headers).json()
    assert refreshed["status"] == "PAID"
    assert refreshed["amount_due"] == 0
    assert len(refreshed["payments"]) == 2
    assert trial_balance()["1200"] == 0
    assert trial_balance()["1120"] == 460

    resp = client.post(f"/api/receipts/{rest['id']}/reverse", headers=admin_headers)
    assert resp.status_code == 200
    refreshed = client.get(f"/api/sales-invoices/{invoice['id']}", headers=admin_headers).json()
    assert refreshed["status"] == "PARTIAL"
    assert refreshed["amount_due"] == 260
    assert trial_balance()["1200"] == 260

    client.post(f"/api/receipts/{partial.json()['id']}/reverse", headers=admin_headers)
    refreshed = client.get(f"/api/sales-invoices/{invoice['id']}", headers=admin_headers).json()
    assert refreshed["status"] == "ISSUED"
    books.assert_balanced()


def test_receipt_allocation_rules(client, admin_headers, accounts, customer, widget):
    invoice = _invoice(client, admin_headers, customer, widget).json()

    over = _receipt(client, admin_headers, accounts, customer, 500, [(invoice["id"], 500)])
    assert over.status_code == 400

    mismatch = _receipt(client, admin_headers, accounts, customer, 300, [(invoice["id"], 200)])
    assert mismatch.status_code == 400

    not_bank = client.post("/api/receipts", headers=admin_headers, json={
        "receipt_date": TODAY.isoformat(), "customer_id": customer["id"],
        "account_id": accounts["1200"], "amount": 100,
    })
    assert not_bank.status_code == 400


def test_advance_payment_credits_customer_advances(client, admin_headers, accounts, customer, trial_balance):
    receipt = client.post("/api/receipts", headers=admin_headers, json={
        "receipt_date": TODAY.isoformat(), "receipt_type": "advance_payment",
        "customer_id": customer["id"], "account_id": accounts["1110"], "amount": 150,
    }).json()
    client.post(f"/api/receipts/{receipt['id']}/post", headers=admin_headers)

    balances = trial_balance()
    assert balances["1110"] == 150
    assert balances["2150"] == -150


def test_receipt_form_lock(client, admin_headers, accounts, customer):
    client.post("/api/company/lock", headers=admin_headers, json={"locked": True})
    resp = _receipt(client, admin_headers, accounts, customer, 100)
    assert resp.status_code == 403

    client.post("/api/company/lock", headers=admin_headers, json={"locked": False})
    assert _receipt(client, admin_headers, accounts, customer, 100).status_code == 200


def test_credit_note_with_restock(client, admin_headers, customer, widget, books, trial_balance):
    invoice = _invoice(client, admin_headers, customer, widget).json()
    invoice_line = invoice["lines"][0]

    returnable = client.get(f"/api/credit-notes/invoice-items/{invoice['id']}", headers=admin_headers).json()
    assert returnable["items"][0]["returnable_quantity"] == 4

    resp = client.post("/api/credit-notes", headers=admin_headers, json={
        "customer_id": customer["id"],
        "invoice_id": invoice["id"],
        "credit_date": TODAY.isoformat(),
        "reason": "Damaged in transit",
        "restock": True,
        "lines": [{
            "item_id": widget["id"], "invoice_item_id": invoice_line["id"],
            "quantity": 1, "unit_price": 100, "tax_rate": 15,
        }],
    })
    assert resp.status_code == 200, resp.text
    note = resp.json()
    assert note["credit_note_number"] == "CN-00001"
    assert note["total_amount"] == 115

    resp = client.post(f"/api/credit-notes/{note['id']}/post", headers=admin_headers)
    assert resp.status_code == 200, resp.text

    refreshed = client.get(f"/api/sales-invoices/{invoice['id']}", headers=admin_headers).json()
    assert refreshed["amount_credited"] == 115
    assert refreshed["amount_due"] == 345
    assert refreshed["status"] == "PARTIAL"

    balances = trial_balance()
    assert balances["1200"] == 345
    assert balances["4200"] == 100
    assert balances["2120"] == -45
    assert balances["5100"] == 120
    assert balances["1330"] == 280

    item = client.get(f"/api/items/{widget['id']}", headers=admin_headers).json()
    assert item["quantity_on_hand"] == 7

    # only three units are left to credit
    too_many = client.post("/api/credit-notes", headers=admin_headers, json={
        "customer_id": customer["id"], "invoice_id": invoice["id"], "credit_date": TODAY.isoformat(),
        "lines": [{"invoice_item_id": invoice_line["id"], "quantity": 4, "unit_price": 10}],
    })
    assert too_many.status_code == 400
    books.assert_balanced()


def test_credit_note_restock_must_trace_to_an_invoice_line(client, admin_headers, customer, widget, books):
    invoice = _invoice(client, admin_headers, customer, widget).json()
    base = {"customer_id": customer["id"], "credit_date": TODAY.isoformat(), "restock": True}

    untraced = client.post("/api/credit-notes", headers=admin_headers, json={
        **base, "invoice_id": invoice["id"],
        "lines": [{"item_id": widget["id"], "quantity": 1, "unit_price": 100}],
    })
    assert untraced.status_code == 400
    assert "must reference the line" in untraced.json()["detail"]

    no_invoice = client.post("/api/credit-notes", headers=admin_headers, json={
        **base, "lines": [{"item_id": widget["id"], "quantity": 50, "unit_price": 100}],
    })
    assert no_invoice.status_code == 400
    assert "restocked against the invoice" in no_invoice.json()["detail"]

    item = client.get(f"/api/items/{widget['id']}", headers=admin_headers).json()
    assert item["quantity_on_hand"] == 6
    assert books.vouchers(source_type="CreditNote") == []


def test_reversed_credit_note_restores_invoice_and_stock(client, admin_headers, customer, widget,
                                                         books, trial_balance):
    invoice = _invoice(client, admin_headers, customer, widget).json()
    note = client.post("/api/credit-notes", headers=admin_headers, json={
        "customer_id": customer["id"], "invoice_id": invoice["id"], "credit_date": TODAY.isoformat(),
        "restock": True,
        "lines": [{"invoice_item_id": invoice["lines"][0]["id"], "quantity": 1, "unit_price": 100, "tax_rate": 15}],
    }).json()

    # drafts have nothing to reverse
    assert client.post(f"/api/credit-notes/{note['id']}/reverse", headers=admin_headers).status_code == 400
    assert client.post(f"/api/credit-notes/{note['id']}/post", headers=admin_headers).status_code == 200
    assert client.get(f"/api/items/{widget['id']}", headers=admin_headers).json()["quantity_on_hand"] == 7

    resp = client.post(f"/api/credit-notes/{note['id']}/reverse", headers=admin_headers)
    assert resp.status_code == 200, resp.text
    assert resp.json()["reversal_voucher"]

    refreshed = client.get(f"/api/sales-invoices/{invoice['id']}", headers=admin_headers).json()
    assert refreshed["amount_credited"] == 0
    assert refreshed["amount_due"] == 460
    assert refreshed["status"] == "ISSUED"

    item = client.get(f"/api/items/{widget['id']}", headers=admin_headers).json()
    assert item["quantity_on_hand"] == 6
    assert item["average_unit_cost"] == 40

    balances = trial_balance()
    assert balances["1200"] == 460
    assert balances["4200"] == 0
    assert balances["5100"] == 160
    assert balances["1330"] == 240

    fetched = client.get(f"/api/credit-notes/{note['id']}", headers=admin_headers).json()
    assert fetched["status"] == "reversed"
    assert client.post(f"/api/credit-notes/{note['id']}/reverse", headers=admin_headers).status_code == 400

    # the reversed quantity can be credited again
    returnable = client.get(f"/api/credit-notes/invoice-items/{invoice['id']}", headers=admin_headers).json()
    assert returnable["items"][0]["returnable_quantity"] == 4
    books.assert_balanced()


def test_cancel_issued_invoice_reverses_everything(client, admin_headers, accounts, customer, widget,
                                                   books, trial_balance):
    invoice = _invoice(client, admin_headers, customer, widget).json()

    resp = client.post(f"/api/sales-invoices/{invoice['id']}/cancel", headers=admin_headers)
    assert resp.status_code == 200, resp.text
    assert resp.json()["status"] == "CANCELLED"
    assert resp.json()["reversal_voucher"]

    item = client.get(f"/api/items/{widget['id']}", headers=admin_headers).json()
    assert item["quantity_on_hand"] == 10

    balances = trial_balance()
    assert balances.get("1200", 0) == 0
    assert balances.get("4100", 0) == 0
    assert balances.get("5100", 0) == 0
    assert balances["1330"] == 400

    assert client.post(f"/api/sales-invoices/{invoice['id']}/cancel", headers=admin_headers).status_code == 400
    books.assert_balanced()


def test_paid_invoice_cannot_be_cancelled(client, admin_headers, accounts, customer, widget):
    invoice = _invoice(client, admin_headers, customer, widget).json()
    receipt = _receipt(client, admin_headers, accounts, customer, 100, [(invoice["id"], 100)]).json()
    client.post(f"/api/receipts/{receipt['id']}/post", headers=admin_headers)

    assert client.post(f"/api/sales-invoices/{invoice['id']}/cancel", headers=admin_headers).status_code == 400


def test_customer_opening_balance_and_ledger(client, admin_headers, customer, widget, trial_balance):
    payload = {"amount": 500, "entry_date": TODAY.isoformat()}
    resp = client.post(f"/api/customers/{customer['id']}/opening-balance", headers=admin_headers, json=payload)
    assert resp.status_code == 200
    again = client.post(f"/api/customers/{customer['id']}/opening-balance", headers=admin_headers, json=payload)
    assert again.status_code == 409

    _invoice(client, admin_headers, customer, widget)

    ledger = client.get(f"/api/customers/{customer['id']}/ledger", headers=admin_headers).json()
    assert [e["debit"] for e in ledger["entries"]] == [500, 460]
    assert ledger["closing_balance"] == 960

    detail = client.get(f"/api/customers/{customer['id']}", headers=admin_headers).json()
    assert detail["outstanding_balance"] == 960
    assert detail["opening_balance"] == 500
    assert trial_balance()["3300"] == -900

    unpaid = client.get(f"/api/customers/{customer['id']}/unpaid-invoices", headers=admin_headers).json()
    assert len(unpaid) == 1
