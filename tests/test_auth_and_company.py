"""
Registration, login, roles and company settings.
"""

from conftest import PASSWORD, ADMIN_EMAIL, login


def test_register_login_and_me(client, admin_headers):
    resp = client.get("/api/auth/me", headers=admin_headers)
    assert resp.status_code == 200
    me = resp.json()
    assert me["email"] == ADMIN_EMAIL
    assert me["role"] == "admin"
    assert me["company_id"] is not None


def test_duplicate_registration_is_rejected(client, admin_headers):
    resp = client.post("/api/auth/register", json={
        "company_name": "Another Co",
        "company_email": "other@example.com",
        "admin_name": "Someone",
        "admin_email": ADMIN_EMAIL,
        "password": PASSWORD,
    })
    assert resp.status_code == 400


def test_weak_password_is_rejected(client):
    resp = client.post("/api/auth/register", json={
        "company_name": "Weak Co",
        "company_email": "weak@example.com",
        "admin_name": "Weak",
        "admin_email": "weak@example.com",
        "password": "short",
    })
    assert resp.status_code == 400


def test_wrong_password_returns_401(client, admin_headers):
    resp = client.post("/api/auth/login", json={"email": ADMIN_EMAIL, "password": "Wrong1234"})
    assert resp.status_code == 401


def test_missing_token_is_rejected(client):
    assert client.get("/api/company").status_code in (401, 403)


def test_viewer_cannot_write(client, user_headers):
    viewer = user_headers("viewer")
    resp = client.post("/api/customers", headers=viewer, json={"name": "Not Allowed"})
    assert resp.status_code == 403
    assert client.get("/api/customers", headers=viewer).status_code == 200


def test_only_admin_manages_users(client, user_headers):
    accountant = user_headers("accountant")
    resp = client.post("/api/users", headers=accountant, json={
        "email": "new@acme-trading.com", "name": "New", "password": PASSWORD, "role": "clerk"
    })
    assert resp.status_code == 403


def test_admin_cannot_demote_self(client, admin_headers):
    me = client.get("/api/auth/me", headers=admin_headers).json()
    resp = client.put(f"/api/users/{me['id']}", headers=admin_headers, json={"role": "clerk"})
    assert resp.status_code == 400


def test_user_permissions_merge_role_defaults_with_grants(client, admin_headers, user_headers):
    clerk = user_headers("clerk")
    clerk_id = client.get("/api/auth/me", headers=clerk).json()["id"]

    vocabulary = client.get("/api/permissions", headers=clerk).json()
    assert {"module": "inventory", "action": "adjust", "description": "Post stock adjustments"} in vocabulary

    own = client.get(f"/api/users/{clerk_id}/permissions", headers=clerk).json()
    assert own["role"] == "clerk"
    assert own["granted_permissions"] == []
    assert "inventory:adjust" not in own["effective_permissions"]

    resp = client.put(f"/api/users/{clerk_id}/permissions", headers=admin_headers,
                      json={"permissions": ["inventory:adjust", "inventory:adjust"]})
    assert resp.status_code == 200, resp.text
    assert resp.json()["granted_permissions"] == ["inventory:adjust"]
    assert "inventory:adjust" in resp.json()["effective_permissions"]
    assert "material_issues:create" in resp.json()["effective_permissions"]

    # replacing the grants drops the earlier ones
    resp = client.put(f"/api/users/{clerk_id}/permissions", headers=admin_headers, json={"permissions": []})
    assert resp.json()["granted_permissions"] == []

    unknown = client.put(f"/api/users/{clerk_id}/permissions", headers=admin_headers,
                         json={"permissions": ["ledger:rewrite"]})
    assert unknown.status_code == 400

    assert client.put(f"/api/users/{clerk_id}/permissions", headers=clerk,
                      json={"permissions": ["inventory:adjust"]}).status_code == 403
    admin_id = client.get("/api/auth/me", headers=admin_headers).json()["id"]
    assert client.get(f"/api/users/{admin_id}/permissions", headers=clerk).status_code == 403
    assert client.get("/api/users/99999/permissions", headers=admin_headers).status_code == 404


def test_granted_permission_opens_stock_adjustments(client, admin_headers, user_headers, create_item):
    item = create_item("NUT", quantity=10, unit_cost=1)
    clerk = user_headers("clerk")
    adjust = {"quantity": -2, "reason": "Damaged"}

    denied = client.post(f"/api/items/{item['id']}/adjust", headers=clerk, json=adjust)
    assert denied.status_code == 403

    clerk_id = client.get("/api/auth/me", headers=clerk).json()["id"]
    client.put(f"/api/users/{clerk_id}/permissions", headers=admin_headers,
               json={"permissions": ["inventory:adjust"]})

    resp = client.post(f"/api/items/{item['id']}/adjust", headers=clerk, json=adjust)
    assert resp.status_code == 200, resp.text
    assert resp.json()["quantity_on_hand"] == 8


def test_company_settings_round_trip(client, admin_headers):
    resp = client.put("/api/company/settings", headers=admin_headers, json={
        "base_currency": "usd", "invoice_terms_days": 14
    })
    assert resp.status_code == 200
    settings = client.get("/api/company/settings", headers=admin_headers).json()
    assert settings["base_currency"] == "USD"
    assert settings["invoice_terms_days"] == 14
    assert settings["transactions_locked"] is False


def test_company_lock_toggles(client, admin_headers):
    resp = client.post("/api/company/lock", headers=admin_headers, json={"locked": True})
    assert resp.status_code == 200
    assert resp.json()["locked"] is True
    assert client.get("/api/company/settings", headers=admin_headers).json()["transactions_locked"] is True


def test_system_accounts_cover_every_role(client, admin_headers):
    rows = client.get("/api/company/system-accounts", headers=admin_headers).json()
    assert rows
    assert all(row["account_id"] is not None for row in rows)


def test_companies_are_isolated(client, admin_headers, create_customer):
    customer = create_customer()

    resp = client.post("/api/auth/register", json={
        "company_name": "Rival Ltd",
        "company_email": "hello@rival.com",
        "admin_name": "Rival Owner",
        "admin_email": "owner@rival.com",
        "password": PASSWORD,
    })
    assert resp.status_code == 200
    rival = login(client, "owner@rival.com")

    assert client.get(f"/api/customers/{customer['id']}", headers=rival).status_code == 404
    assert client.get("/api/customers", headers=rival).json() == []
