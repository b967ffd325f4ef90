"""
Pytest fixtures for the Ledgerbook API.

Every test gets a fresh in-memory SQLite database, a registered company with
the default chart of accounts, and an admin token. Factory fixtures create
customers, suppliers and stocked items through the API.
"""

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RATE_LIMIT_ENABLED"] = "false"

import pytest
from collections import defaultdict
from datetime import date
from decimal import Decimal
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from main import app
from ledgerbook.database import Base, get_db
from ledgerbook.models import JournalVoucher

ADMIN_EMAIL = "owner@acme-trading.com"
PASSWORD = "Secret123"
TODAY = date.today()

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


# =============================================================================
# App & Database
# =============================================================================

@pytest.fixture(autouse=True)
def _database():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client():
    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def books():
    """Read-only view of the vouchers written by the API"""

    class Books:
        def vouchers(self, **filters):
            db = TestingSessionLocal()
            try:
                query = db.query(JournalVoucher)
                for field, value in filters.items():
                    query = query.filter(getattr(JournalVoucher, field) == value)
                return [
                    {
                        "voucher_number": v.voucher_number,
                        "source_type": v.source_type,
                        "status": v.status,
                        "total_debit": Decimal(v.total_debit),
                        "total_credit": Decimal(v.total_credit),
                        "line_debits": sum((Decimal(l.debit) for l in v.lines), Decimal("0")),
                        "line_credits": sum((Decimal(l.credit) for l in v.lines), Decimal("0")),
                    }
                    for v in query.order_by(JournalVoucher.id).all()
                ]
            finally:
                db.close()

        def assert_balanced(self):
            vouchers = self.vouchers()
            assert vouchers, "no vouchers were written"
            for v in vouchers:
                assert v["total_debit"] == v["total_credit"], v
                assert v["line_debits"] == v["line_credits"] == v["total_debit"], v

    return Books()


# =============================================================================
# Company, Users & Auth
# =============================================================================

def login(client, email, password=PASSWORD):
    resp = client.post("/api/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.text
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}


@pytest.fixture
def admin_headers(client):
    resp = client.post("/api/auth/register", json={
        "company_name": "Acme Trading",
        "company_email": "books@acme-trading.com",
        "admin_name": "Ada Owner",
        "admin_email": ADMIN_EMAIL,
        "password": PASSWORD,
    })
    assert resp.status_code == 200, resp.text

    headers = login(client, ADMIN_EMAIL)
    resp = client.post("/api/accounting/initialize-chart-of-accounts", headers=headers)
    assert resp.status_code == 200, resp.text
    return headers


@pytest.fixture
def user_headers(client, admin_headers):
    """Create a user with the given role and return their auth headers"""
    def _create(role):
        email = f"{role}@acme-trading.com"
        resp = client.post("/api/users", headers=admin_headers, json={
            "email": email, "name": role.title(), "password": PASSWORD, "role": role
        })
        assert resp.status_code == 200, resp.text
        return login(client, email)
    return _create


@pytest.fixture
def accounts(client, admin_headers):
    """Account code -> id for the default chart"""
    resp = client.get("/api/accounting/accounts", headers=admin_headers)
    assert resp.status_code == 200, resp.text
    return {a["code"]: a["id"] for a in resp.json()}


# =============================================================================
# Factories
# =============================================================================

@pytest.fixture
def create_customer(client, admin_headers):
    def _create(name="Bright Retail", **extra):
        resp = client.post("/api/customers", headers=admin_headers, json={"name": name, **extra})
        assert resp.status_code == 200, resp.text
        return resp.json()
    return _create


@pytest.fixture
def create_supplier(client, admin_headers):
    def _create(name="Northwind Supplies", **extra):
        resp = client.post("/api/suppliers", headers=admin_headers, json={"name": name, **extra})
        assert resp.status_code == 200, resp.text
        return resp.json()
    return _create


@pytest.fixture
def create_item(client, admin_headers):
    """Register an item and, when `quantity` is given, post opening stock for it"""
    def _create(item_code, item_type="product", quantity=None, unit_cost=None, **extra):
        resp = client.post("/api/items", headers=admin_headers, json={
            "item_code": item_code, "name": extra.pop("name", item_code.title()),
            "item_type": item_type, **extra
        })
        assert resp.status_code == 200, resp.text
        item = resp.json()
        if quantity:
            resp = client.post(f"/api/items/{item['id']}/opening-stock", headers=admin_headers, json={
                "quantity": quantity, "unit_cost": unit_cost, "entry_date": TODAY.isoformat()
            })
            assert resp.status_code == 200, resp.text
            item = client.get(f"/api/items/{item['id']}", headers=admin_headers).json()
        return item
    return _create


@pytest.fixture
def trial_balance(client, admin_headers):
    """
    Account code -> net balance (debit positive) from the trial balance report.
    Accounts that net to zero are left out of the report and read back as 0.
    """
    def _fetch(**params):
        resp = client.get("/api/reports/trial-balance", headers=admin_headers, params=params)
        assert resp.status_code == 200, resp.text
        report = resp.json()
        assert report["is_balanced"], report
        balances = defaultdict(float)
        for section in report["sections"]:
            for row in section["accounts"]:
                balances[row["account_code"]] = round(row["debit"] - row["credit"], 2)
        return balances
    return _fetch
