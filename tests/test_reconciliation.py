"""
Bank reconciliation against statement balances.
"""

from conftest import TODAY


def _journal(client, headers, debit_account, credit_account, amount, narration):
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
    return voucher


def _start(client, headers, account_id, balance):
    return client.post("/api/reconciliations", headers=headers, json={
        "account_id": account_id, "statement_date": TODAY.isoformat(), "statement_balance": balance
    })


def test_reconcile_bank_account(client, admin_headers, accounts):
    bank = accounts["1120"]
    _journal(client, admin_headers, bank, accounts["3100"], 1000, "Capital introduced")
    _journal(client, admin_headers, accounts["6500"], bank, 200, "Bank charges")

    rec = _start(client, admin_headers, bank, 800)
    assert rec.status_code == 200, rec.text
    rec = rec.json()
    assert rec["status"] == "draft"
    assert rec["cleared_balance"] == 0
    assert rec["difference"] == 800

    detail = client.get(f"/api/reconciliations/{rec['id']}", headers=admin_headers).json()
    assert detail["book_balance"] == 800
    assert len(detail["lines"]) == 2
    deposit = next(l["line_id"] for l in detail["lines"] if l["debit"] == 1000)
    charges = next(l["line_id"] for l in detail["lines"] if l["credit"] == 200)

    partial = client.put(f"/api/reconciliations/{rec['id']}", headers=admin_headers,
                         json={"cleared_line_ids": [deposit]}).json()
    assert partial["cleared_balance"] == 1000
    assert partial["difference"] == -200
    assert client.post(f"/api/reconciliations/{rec['id']}/complete", headers=admin_headers).status_code == 400

    full = client.put(f"/api/reconciliations/{rec['id']}", headers=admin_headers,
                      json={"cleared_line_ids": [deposit, charges]}).json()
    assert full["difference"] == 0

    done = client.post(f"/api/reconciliations/{rec['id']}/complete", headers=admin_headers)
    assert done.status_code == 200
    assert done.json()["status"] == "completed"
    assert done.json()["completed_at"] is not None

    assert client.put(f"/api/reconciliations/{rec['id']}", headers=admin_headers,
                      json={"cleared_line_ids": []}).status_code == 400

    # the next statement starts from what is already cleared
    _journal(client, admin_headers, bank, accounts["4300"], 50, "Interest")
    nxt = _start(client, admin_headers, bank, 850).json()
    assert nxt["cleared_balance"] == 800
    assert nxt["difference"] == 50

    detail = client.get(f"/api/reconciliations/{nxt['id']}", headers=admin_headers).json()
    assert [l["debit"] for l in detail["lines"]] == [50]

    # lines cleared by the earlier statement cannot be cleared again
    assert client.put(f"/api/reconciliations/{nxt['id']}", headers=admin_headers,
                      json={"cleared_line_ids": [deposit]}).status_code == 400

    cleared = client.put(f"/api/reconciliations/{nxt['id']}", headers=admin_headers,
                         json={"cleared_line_ids": [detail["lines"][0]["line_id"]]}).json()
    assert cleared["difference"] == 0


def test_reconciliation_rules(client, admin_headers, accounts):
    assert _start(client, admin_headers, accounts["1200"], 0).status_code == 400

    assert _start(client, admin_headers, accounts["1110"], 0).status_code == 200
    assert _start(client, admin_headers, accounts["1110"], 0).status_code == 409

    voucher = _journal(client, admin_headers, accounts["6200"], accounts["1120"], 75, "Rent")
    rec = client.get("/api/reconciliations", headers=admin_headers,
                     params={"account_id": accounts["1110"]}).json()[0]
    other_account_line = client.get(f"/api/journal-vouchers/{voucher['id']}",
                                    headers=admin_headers).json()["lines"][0]["id"]
    resp = client.put(f"/api/reconciliations/{rec['id']}", headers=admin_headers,
                      json={"cleared_line_ids": [other_account_line]})
    assert resp.status_code == 400

    # an empty cash account with a zero statement reconciles immediately
    done = client.post(f"/api/reconciliations/{rec['id']}/complete", headers=admin_headers)
    assert done.status_code == 200
