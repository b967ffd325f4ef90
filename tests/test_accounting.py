"""
Chart of accounts, fiscal periods and tax configurations.
"""

from datetime import date


def _type_id(client, headers, code):
    types = client.get("/api/accounting/account-types", headers=headers).json()
    return next(t["id"] for t in types if t["code"] == code)


def test_account_types_are_seeded_with_normal_balances(client, admin_headers):
    types = {t["code"]: t["normal_balance"]
             for t in client.get("/api/accounting/account-types", headers=admin_headers).json()}
    assert types == {
        "ASSET": "debit", "LIABILITY": "credit", "EQUITY": "credit",
        "REVENUE": "credit", "COGS": "debit", "EXPENSE": "debit",
    }


def test_chart_can_only_be_initialized_once(client, admin_headers):
    resp = client.post("/api/accounting/initialize-chart-of-accounts", headers=admin_headers)
    assert resp.status_code == 400


def test_accounts_tree_nests_children(client, admin_headers):
    tree = client.get("/api/accounting/accounts/tree", headers=admin_headers).json()
    assets = next(node for node in tree if node["code"] == "1000")
    current = next(node for node in assets["children"] if node["code"] == "1100")
    assert any(child["code"] == "1200" for child in current["children"])


def test_create_account_and_reject_duplicates(client, admin_headers, accounts):
    expense_type = _type_id(client, admin_headers, "EXPENSE")
    payload = {"code": "6700", "name": "Travel", "account_type_id": expense_type, "parent_id": accounts["6000"]}

    resp = client.post("/api/accounting/accounts", headers=admin_headers, json=payload)
    assert resp.status_code == 200
    assert resp.json()["is_system"] is False

    assert client.post("/api/accounting/accounts", headers=admin_headers, json=payload).status_code == 400


def test_system_role_is_unique(client, admin_headers):
    asset_type = _type_id(client, admin_headers, "ASSET")
    resp = client.post("/api/accounting/accounts", headers=admin_headers, json={
        "code": "1210", "name": "Second AR", "account_type_id": asset_type,
        "system_role": "ACCOUNTS_RECEIVABLE",
    })
    assert resp.status_code == 400


def test_system_accounts_are_protected(client, admin_headers, accounts):
    ar = accounts["1200"]
    assert client.put(f"/api/accounting/accounts/{ar}", headers=admin_headers,
                      json={"name": "Debtors"}).status_code == 400
    assert client.put(f"/api/accounting/accounts/{ar}", headers=admin_headers,
                      json={"description": "Trade debtors"}).status_code == 200
    assert client.delete(f"/api/accounting/accounts/{ar}", headers=admin_headers).status_code == 400


def test_account_with_postings_is_deactivated_not_deleted(client, admin_headers, accounts):
    expense_type = _type_id(client, admin_headers, "EXPENSE")
    account = client.post("/api/accounting/accounts", headers=admin_headers, json={
        "code": "6800", "name": "Courier", "account_type_id": expense_type
    }).json()

    jv = client.post("/api/journal-vouchers", headers=admin_headers, json={
        "entry_date": date.today().isoformat(),
        "narration": "Courier charges",
        "lines": [
            {"account_id": account["id"], "debit": 25},
            {"account_id": accounts["1110"], "credit": 25},
        ],
    }).json()
    client.post(f"/api/journal-vouchers/{jv['id']}/post", headers=admin_headers)

    resp = client.delete(f"/api/accounting/accounts/{account['id']}", headers=admin_headers)
    assert resp.status_code == 200
    assert "deactivated" in resp.json()["message"]

    listed = client.get("/api/accounting/accounts", headers=admin_headers,
                        params={"include_inactive": True}).json()
    assert any(a["code"] == "6800" and a["is_active"] is False for a in listed)


def _draft_receipt_on_new_bank_account(client, headers):
    asset_type = _type_id(client, headers, "ASSET")
    bank = client.post("/api/accounting/accounts", headers=headers, json={
        "code": "1130", "name": "Savings Account", "account_type_id": asset_type, "is_bank_account": True
    }).json()
    receipt = client.post("/api/receipts", headers=headers, json={
        "receipt_date": date.today().isoformat(),
        "receipt_type": "other",
        "account_id": bank["id"],
        "amount": 40,
    })
    assert receipt.status_code == 200, receipt.text
    assert receipt.json()["status"] == "draft"
    return bank, receipt.json()


def _by_code(client, headers):
    listed = client.get("/api/accounting/accounts", headers=headers, params={"include_inactive": True}).json()
    return {a["code"]: a for a in listed}


def test_account_held_by_a_draft_document_is_deactivated(client, admin_headers):
    bank, receipt = _draft_receipt_on_new_bank_account(client, admin_headers)

    resp = client.delete(f"/api/accounting/accounts/{bank['id']}", headers=admin_headers)
    assert resp.status_code == 200
    assert "deactivated" in resp.json()["message"]
    assert _by_code(client, admin_headers)["1130"]["is_active"] is False

    fetched = client.get(f"/api/receipts/{receipt['id']}", headers=admin_headers)
    assert fetched.status_code == 200
    assert fetched.json()["account_id"] == bank["id"]


def test_bulk_save_deactivates_accounts_held_by_documents(client, admin_headers):
    _draft_receipt_on_new_bank_account(client, admin_headers)
    expense_type = _type_id(client, admin_headers, "EXPENSE")
    client.post("/api/accounting/accounts", headers=admin_headers, json={
        "code": "6800", "name": "Courier", "account_type_id": expense_type
    })

    rows = [{"account_code": "1000", "account_name": "Assets", "account_type": "ASSET", "is_header": True}]
    resp = client.post("/api/accounting/accounts/bulk", headers=admin_headers, json={"accounts": rows})
    assert resp.status_code == 200, resp.text
    assert resp.json()["deactivated"] >= 1

    chart = _by_code(client, admin_headers)
    assert chart["1130"]["is_active"] is False
    assert "6800" not in chart


def test_bulk_save_replaces_chart(client, admin_headers):
    rows = [
        {"account_code": "1000", "account_name": "Assets", "account_type": "ASSET", "is_header": True},
        {"account_code": "1010", "account_name": "Bank", "account_type": "ASSET",
         "parent_account_code": "1000", "is_bank_account": True, "system_role": "DEFAULT_BANK"},
        {"account_code": "3000", "account_name": "Capital", "account_type": "equity"},
    ]
    resp = client.post("/api/accounting/accounts/bulk", headers=admin_headers, json={"accounts": rows})
    assert resp.status_code == 200, resp.text
    assert resp.json()["saved"] == 3

    codes = [a["code"] for a in client.get("/api/accounting/accounts", headers=admin_headers).json()]
    assert codes == ["1000", "1010", "3000"]


def test_bulk_save_rejects_invalid_rows_without_changes(client, admin_headers):
    before = len(client.get("/api/accounting/accounts", headers=admin_headers).json())
    rows = [
        {"account_code": "1000", "account_name": "Assets", "account_type": "ASSET"},
        {"account_code": "1000", "account_name": "Dup", "account_type": "ASSET"},
    ]
    resp = client.post("/api/accounting/accounts/bulk", headers=admin_headers, json={"accounts": rows})
    assert resp.status_code == 400
    assert len(client.get("/api/accounting/accounts", headers=admin_headers).json()) == before


def test_fiscal_periods_generate_once_and_close(client, admin_headers, accounts):
    year = date.today().year
    resp = client.post("/api/accounting/fiscal-periods/generate", headers=admin_headers,
                       params={"fiscal_year": year})
    assert resp.status_code == 200
    assert client.post("/api/accounting/fiscal-periods/generate", headers=admin_headers,
                       params={"fiscal_year": year}).status_code == 400

    periods = client.get("/api/accounting/fiscal-periods", headers=admin_headers,
                         params={"fiscal_year": year}).json()
    assert len(periods) == 12
    january = next(p for p in periods if p["period_number"] == 1)

    # a draft in the period blocks closing
    draft = client.post("/api/journal-vouchers", headers=admin_headers, json={
        "entry_date": january["start_date"],
        "narration": "Draft",
        "lines": [
            {"account_id": accounts["6200"], "debit": 100},
            {"account_id": accounts["1110"], "credit": 100},
        ],
    }).json()
    close = client.post(f"/api/accounting/fiscal-periods/{january['id']}/close", headers=admin_headers)
    assert close.status_code == 400

    client.delete(f"/api/journal-vouchers/{draft['id']}", headers=admin_headers)
    close = client.post(f"/api/accounting/fiscal-periods/{january['id']}/close", headers=admin_headers)
    assert close.status_code == 200

    resp = client.post("/api/journal-vouchers", headers=admin_headers, json={
        "entry_date": january["start_date"],
        "narration": "Into a closed period",
        "lines": [
            {"account_id": accounts["6200"], "debit": 100},
            {"account_id": accounts["1110"], "credit": 100},
        ],
    })
    assert resp.status_code == 400
    assert "closed" in resp.json()["detail"]


def test_tax_configuration(client, admin_headers, accounts):
    resp = client.post("/api/accounting/taxes", headers=admin_headers, json={
        "name": "VAT 7.5%", "tax_type": "VAT", "rate": 7.5, "account_id": accounts["2120"]
    })
    assert resp.status_code == 200
    tax = resp.json()

    resp = client.put(f"/api/accounting/taxes/{tax['id']}", headers=admin_headers, json={"is_active": False})
    assert resp.status_code == 200
    assert resp.json()["is_active"] is False

    assert client.post("/api/accounting/taxes", headers=admin_headers, json={
        "name": "Bad", "tax_type": "VAT", "rate": 5, "account_id": accounts["1100"]
    }).status_code == 400
