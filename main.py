from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded
import logging

from ledgerbook.api import (
    auth, companies, users, accounting, journal_vouchers,
    customers, sales_invoices, receipts, credit_notes,
    suppliers, purchase_orders, goods_receipts, supplier_invoices, payment_vouchers, expenses,
    items, material_issues, production, reconciliation, opening_balances, reports
)
from ledgerbook.config import settings
from ledgerbook.database import Base, engine
from ledgerbook import models  # noqa: F401  registers the tables on Base
from ledgerbook.utils.rate_limiter import limiter, rate_limit_exceeded_handler

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)

Base.metadata.create_all(bind=engine)

app = FastAPI(title="Ledgerbook API", version="1.0.0")

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["*"],
)

# Include routers
app.include_router(auth.router, prefix="/api/auth", tags=["Authentication"])
app.include_router(companies.router, prefix="/api", tags=["Company"])
app.include_router(users.router, prefix="/api", tags=["Users"])
app.include_router(accounting.router, prefix="/api/accounting", tags=["Accounting"])
app.include_router(journal_vouchers.router, prefix="/api/journal-vouchers", tags=["Journal Vouchers"])

# Sales
app.include_router(customers.router, prefix="/api/customers", tags=["Customers"])
app.include_router(sales_invoices.router, prefix="/api/sales-invoices", tags=["Sales Invoices"])
app.include_router(receipts.router, prefix="/api/receipts", tags=["Receipts"])
app.include_router(credit_notes.router, prefix="/api/credit-notes", tags=["Credit Notes"])

# Procurement
app.include_router(suppliers.router, prefix="/api/suppliers", tags=["Suppliers"])
app.include_router(purchase_orders.router, prefix="/api/purchase-orders", tags=["Purchase Orders"])
app.include_router(goods_receipts.router, prefix="/api/goods-receipts", tags=["Goods Receipts"])
app.include_router(supplier_invoices.router, prefix="/api/supplier-invoices", tags=["Supplier Invoices"])
app.include_router(payment_vouchers.router, prefix="/api/payment-vouchers", tags=["Payment Vouchers"])
app.include_router(expenses.router, prefix="/api/expenses", tags=["Expenses"])

# Inventory & production
app.include_router(items.router, prefix="/api/items", tags=["Items"])
app.include_router(material_issues.router, prefix="/api/material-issues", tags=["Material Issues"])
app.include_router(production.router, prefix="/api/production", tags=["Production"])

# Banking, opening balances & reports
app.include_router(reconciliation.router, prefix="/api/reconciliations", tags=["Bank Reconciliation"])
app.include_router(opening_balances.router, prefix="/api/opening-balances", tags=["Opening Balances"])
app.include_router(reports.router, prefix="/api/reports", tags=["Reports"])


@app.get("/")
async def root():
    return {"message": "Ledgerbook API is running"}


@app.get("/api/health")
async def health_check():
    return {"status": "healthy"}
