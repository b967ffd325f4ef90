"""
Material issues to expense accounts, and the permissions that guard them.
"""

import pytest

from conftest import TODAY


@pytest.fixture
def resin(create_item):
    return create_item("RESIN", item_type="raw_material", quantity=10, unit_cost=12)


def _issue(client, headers, accounts, item, quantity, account="6400", **extra):
    return client.post("/api/material-issues", headers=headers, json={
        "issue_date": TODAY.isoformat(),
        "item_id": item["id"],
        "quantity": quantity,
        "expense_account_id": accounts[account],
        **extra,
    })


def _on_hand(client, headers, item):
    return client.get(f"/api/items/{item['id']}", headers=headers).json()["quantity_on_hand"]


def test_issue_charges_expense_at_average_cost(client, admin_headers, accounts, resin, books, trial_balance):
    resp = _issue(client, admin_headers, accounts, resin, 4, reference="Workshop repairs")
    assert resp.status_code == 200, resp.text
    issue = resp.json()
    assert issue["issue_number"] == "MI-00001"
    assert issue["status"] == "issued"
    assert issue["unit_cost"] == 12
    assert issue["total_cost"] == 48
    assert issue["voucher_id"] is not None

    assert _on_hand(client, admin_headers, resin) == 6
    balances = trial_balance()
    assert balances["6400"] == 48
    assert balances["1310"] == 72

    history = client.get(f"/api/items/{resin['id']}/history", headers=admin_headers).json()
    assert [row["transaction_type"] for row in history].count("MATERIAL_ISSUE") == 1

    listed = client.get("/api/material-issues", headers=admin_headers, params={"item_id": resin["id"]}).json()
    assert [i["id"] for i in listed] == [issue["id"]]
    books.assert_balanced()


def test_issue_rules(client, admin_headers, accounts, resin, create_item, books):
    too_many = _issue(client, admin_headers, accounts, resin, 11)
    assert too_many.status_code == 400
    assert "Insufficient stock" in too_many.json()["detail"]

    not_expense = _issue(client, admin_headers, accounts, resin, 1, account="1120")
    assert not_expense.status_code == 400
    assert "not an expense account" in not_expense.json()["detail"]

    service = create_item("CLEANING", item_type="service")
    assert _issue(client, admin_headers, accounts, service, 1).status_code == 400

    assert _on_hand(client, admin_headers, resin) == 10
    assert books.vouchers(source_type="Inventory") == []
    assert client.get("/api/material-issues", headers=admin_headers).json() == []


def test_edit_reissues_and_cancel_returns_stock(client, admin_headers, accounts, resin, books, trial_balance):
    issue = _issue(client, admin_headers, accounts, resin, 4).json()

    resp = client.put(f"/api/material-issues/{issue['id']}", headers=admin_headers,
                      json={"quantity": 5, "expense_account_id": accounts["6500"]})
    assert resp.status_code == 200, resp.text
    edited = resp.json()
    assert edited["total_cost"] == 60
    assert edited["voucher_id"] != issue["voucher_id"]

    assert _on_hand(client, admin_headers, resin) == 5
    balances = trial_balance()
    assert balances["6400"] == 0
    assert balances["6500"] == 60
    assert balances["1310"] == 60

    # an edit that cannot be filled leaves the issue as it was
    greedy = client.put(f"/api/material-issues/{issue['id']}", headers=admin_headers, json={"quantity": 50})
    assert greedy.status_code == 400
    assert _on_hand(client, admin_headers, resin) == 5

    resp = client.delete(f"/api/material-issues/{issue['id']}", headers=admin_headers)
    assert resp.status_code == 200, resp.text
    assert _on_hand(client, admin_headers, resin) == 10

    balances = trial_balance()
    assert balances["6500"] == 0
    assert balances["1310"] == 120

    cancelled = client.get(f"/api/material-issues/{issue['id']}", headers=admin_headers).json()
    assert cancelled["status"] == "cancelled"
    assert client.delete(f"/api/material-issues/{issue['id']}", headers=admin_headers).status_code == 400
    assert client.put(f"/api/material-issues/{issue['id']}", headers=admin_headers,
                      json={"quantity": 1}).status_code == 400
    books.assert_balanced()


def test_issue_voucher_is_not_reversed_as_a_journal(client, admin_headers, accounts, resin):
    issue = _issue(client, admin_headers, accounts, resin, 2).json()
    resp = client.post(f"/api/journal-vouchers/{issue['voucher_id']}/reverse", headers=admin_headers)
    assert resp.status_code == 400
    assert _on_hand(client, admin_headers, resin) == 8


def test_role_defaults_and_individual_grants(client, admin_headers, user_headers, accounts, resin):
    clerk = user_headers("clerk")
    viewer = user_headers("viewer")

    assert _issue(client, viewer, accounts, resin, 1).status_code == 403
    issue = _issue(client, clerk, accounts, resin, 1)
    assert issue.status_code == 200, issue.text
    issue = issue.json()
    assert client.get("/api/material-issues", headers=viewer).status_code == 200

    denied = client.delete(f"/api/material-issues/{issue['id']}", headers=clerk)
    assert denied.status_code == 403
    assert "material_issues:delete" in denied.json()["detail"]

    clerk_id = client.get("/api/auth/me", headers=clerk).json()["id"]
    resp = client.put(f"/api/users/{clerk_id}/permissions", headers=admin_headers,
                      json={"permissions": ["material_issues:delete"]})
    assert resp.status_code == 200, resp.text

    assert client.delete(f"/api/material-issues/{issue['id']}", headers=clerk).status_code == 200
    assert _on_hand(client, admin_headers, resin) == 10
