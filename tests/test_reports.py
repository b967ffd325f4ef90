"""
Financial statements, ledgers and aging built from posted vouchers.
"""

from datetime import timedelta

import pytest

from conftest import TODAY


def _journal(client, headers, debit_account, credit_account, amount, narration="Journal"):
    voucher = client.post("/api/journal-vouchers", headers=headers, json={
        "entry_date": TODAY.isoformat(),
        "narration": narration,
        "lines": [
            {"account_id": debit_account, "debit": amount},
            {"account_id": credit_account, "credit": amount},
        ],
    }).json()
    resp = client.post(f"/api/journal-vouchers/{voucher['id']}/post", headers=headers)
    assert resp.status_code == 200, resp.text


@pytest.fixture
def trading(client, admin_headers, accounts, create_customer, create_item):
    """One sale of stocked goods and one cash expense"""
    customer = create_customer("Harbor Cafe", payment_terms_days=30)
    lamp = create_item("LAMP", quantity=5, unit_cost=30, selling_price=80)

    invoice = client.post("/api/sales-invoices", headers=admin_headers, json={
        "customer_id": customer["id"],
        "invoice_date": TODAY.isoformat(),
        "lines": [{"item_id": lamp["id"], "quantity": 2, "unit_price": 80}],
        "issue": True,
    })
    assert invoice.status_code == 200, invoice.text

    expense = client.post("/api/expenses", headers=admin_headers, json={
        "expense_date": TODAY.isoformat(),
        "account_id": accounts["6300"],
        "paid_from_account_id": accounts["1110"],
        "amount": 40,
    })
    assert expense.status_code == 200, expense.text
    return {"customer": customer, "invoice": invoice.json()}


def test_trial_balance_sections(client, admin_headers, trading):
    report = client.get("/api/reports/trial-balance", headers=admin_headers).json()
    assert report["is_balanced"]
    assert report["total_debit"] == report["total_credit"]

    by_type = {s["account_type"]: s for s in report["sections"]}
    assert set(by_type) >= {"ASSET", "EQUITY", "REVENUE", "COGS", "EXPENSE"}
    revenue = by_type["REVENUE"]["accounts"]
    assert [(r["account_code"], r["credit"]) for r in revenue] == [("4100", 160)]

    bad = client.get("/api/reports/trial-balance", headers=admin_headers, params={
        "from_date": (TODAY + timedelta(days=1)).isoformat(), "to_date": TODAY.isoformat()
    })
    assert bad.status_code == 400


def test_income_statement(client, admin_headers, trading):
    report = client.get("/api/reports/income-statement", headers=admin_headers, params={
        "start_date": TODAY.replace(day=1).isoformat(), "end_date": TODAY.isoformat()
    }).json()
    assert report["revenue"]["total"] == 160
    assert report["cost_of_goods_sold"]["total"] == 60
    assert report["gross_profit"] == 100
    assert report["expenses"]["total"] == 40
    assert report["net_income"] == 60

    # dates are required
    assert client.get("/api/reports/income-statement", headers=admin_headers).status_code == 422


def test_balance_sheet_balances_with_current_earnings(client, admin_headers, trading):
    report = client.get("/api/reports/balance-sheet", headers=admin_headers).json()
    assert report["is_balanced"]
    assert report["total_assets"] == 210
    assert report["liabilities"]["total"] == 0
    assert report["equity"]["current_earnings"] == 60
    assert report["equity"]["total"] == 210
    assert report["total_liabilities_and_equity"] == 210


def test_general_ledger_running_balance(client, admin_headers, accounts):
    _journal(client, admin_headers, accounts["1120"], accounts["3100"], 1000, "Capital introduced")
    _journal(client, admin_headers, accounts["6500"], accounts["1120"], 200, "Bank charges")

    ledger = client.get("/api/reports/general-ledger", headers=admin_headers,
                        params={"account_id": accounts["1120"]}).json()
    assert ledger["account_code"] == "1120"
    assert [e["balance"] for e in ledger["entries"]] == [1000, 800]
    assert ledger["total_debit"] == 1000
    assert ledger["total_credit"] == 200
    assert ledger["closing_balance"] == 800

    later = client.get("/api/reports/general-ledger", headers=admin_headers, params={
        "account_id": accounts["1120"], "start_date": (TODAY + timedelta(days=1)).isoformat()
    }).json()
    assert later["opening_balance"] == 800
    assert later["entries"] == []

    missing = client.get("/api/reports/general-ledger", headers=admin_headers, params={"account_id": 99999})
    assert missing.status_code == 404


def test_ar_aging_buckets(client, admin_headers, trading):
    invoice = trading["invoice"]

    current = client.get("/api/reports/ar-aging", headers=admin_headers).json()
    assert current["totals"]["Current"] == 160
    assert current["grand_total"] == 160

    # terms are 30 days, so 75 days on the invoice is 45 days past due
    report_date = TODAY + timedelta(days=75)
    aged = client.get("/api/reports/ar-aging", headers=admin_headers,
                      params={"report_date": report_date.isoformat()}).json()
    assert aged["totals"]["31-60"] == 160
    party = aged["parties"][0]
    assert party["party_name"] == "Harbor Cafe"
    assert party["documents"][0]["number"] == invoice["invoice_number"]
    assert party["documents"][0]["days_past_due"] == 45

    # documents dated after the report date are left out
    earlier = client.get("/api/reports/ar-aging", headers=admin_headers,
                         params={"report_date": (TODAY - timedelta(days=1)).isoformat()}).json()
    assert earlier["grand_total"] == 0
    assert earlier["parties"] == []


def test_ap_aging(client, admin_headers, accounts, create_supplier):
    supplier = create_supplier("Metro Power")
    bill = client.post("/api/supplier-invoices", headers=admin_headers, json={
        "supplier_id": supplier["id"],
        "bill_date": TODAY.isoformat(),
        "due_date": TODAY.isoformat(),
        "lines": [{"account_id": accounts["6300"], "amount": 300}],
    })
    assert bill.status_code == 200, bill.text

    report = client.get("/api/reports/ap-aging", headers=admin_headers, params={
        "report_date": (TODAY + timedelta(days=100)).isoformat()
    }).json()
    assert report["totals"]["91+"] == 300
    assert report["parties"][0]["buckets"]["91+"] == 300
    assert report["grand_total"] == 300


def test_cash_flow_by_month(client, admin_headers, accounts, trading):
    _journal(client, admin_headers, accounts["1120"], accounts["3100"], 1000, "Capital introduced")

    report = client.get("/api/reports/cash-flow", headers=admin_headers, params={"months": 3}).json()
    assert len(report["months"]) == 3
    assert report["opening_cash"] == 0

    this_month = report["months"][-1]
    assert this_month["month"] == f"{TODAY.year:04d}-{TODAY.month:02d}"
    assert this_month["inflow"] == 1000
    assert this_month["outflow"] == 40
    assert this_month["closing_cash"] == 960
    assert report["closing_cash"] == 960
    assert report["net_change"] == 960
