"""
Financial Reports API
Trial balance, income statement, balance sheet, general ledger,
receivable/payable aging and monthly cash flow. Every figure is read from
posted vouchers (a reversed voucher and its reversal both count).
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session, joinedload
from sqlalchemy import func
from typing import Optional, List, Dict, Any
from datetime import date
from decimal import Decimal
import calendar
import logging

from ledgerbook.database import get_db
from ledgerbook.models import (
    User, Account, JournalVoucher, JournalVoucherLine, SalesInvoice, SupplierInvoice
)
from ledgerbook.services.dependency import get_current_user, get_company_id
from ledgerbook.services.journal_posting import POSTED_STATUSES, to_decimal, ZERO
from ledgerbook.services.ledger import debit_minus_credit, running_statement

router = APIRouter()
logger = logging.getLogger(__name__)

AGING_BUCKETS = ("Current", "1-30", "31-60", "61-90", "91+")


# =============================================================================
# HELPERS
# =============================================================================

def account_totals(db: Session, company_id: int, start_date: Optional[date] = None,
                   end_date: Optional[date] = None) -> List[Dict[str, Any]]:
    """Debit and credit totals of posted lines per postable account, in code order"""
    query = db.query(
        JournalVoucherLine.account_id,
        func.coalesce(func.sum(JournalVoucherLine.debit), 0),
        func.coalesce(func.sum(JournalVoucherLine.credit), 0)
    ).join(
        JournalVoucher, JournalVoucherLine.voucher_id == JournalVoucher.id
    ).filter(
        JournalVoucher.company_id == company_id,
        JournalVoucher.status.in_(POSTED_STATUSES)
    )
    if start_date:
        query = query.filter(JournalVoucher.entry_date >= start_date)
    if end_date:
        query = query.filter(JournalVoucher.entry_date <= end_date)
    sums = {
        account_id: (to_decimal(debit), to_decimal(credit))
        for account_id, debit, credit in query.group_by(JournalVoucherLine.account_id).all()
    }

    accounts = db.query(Account).options(joinedload(Account.account_type)).filter(
        Account.company_id == company_id,
        Account.is_header == False
    ).order_by(Account.code).all()

    rows = []
    for account in accounts:
        debit, credit = sums.get(account.id, (ZERO, ZERO))
        if debit == 0 and credit == 0:
            continue
        rows.append({
            "account_id": account.id,
            "account_code": account.code,
            "account_name": account.name,
            "account_type": account.account_type.code,
            "normal_balance": account.account_type.normal_balance,
            "display_order": account.account_type.display_order,
            "debit": debit,
            "credit": credit,
        })
    return rows


def natural_balance(row: Dict[str, Any]) -> Decimal:
    """Balance in the account type's normal direction"""
    if row["normal_balance"] == "debit":
        return row["debit"] - row["credit"]
    return row["credit"] - row["debit"]


def _section(rows: List[Dict[str, Any]], type_code: str) -> Dict[str, Any]:
    items = [
        {
            "account_id": r["account_id"],
            "account_code": r["account_code"],
            "account_name": r["account_name"],
            "balance": float(natural_balance(r)),
        }
        for r in rows if r["account_type"] == type_code and natural_balance(r) != 0
    ]
    total = sum((natural_balance(r) for r in rows if r["account_type"] == type_code), ZERO)
    return {"accounts": items, "total": float(total)}


def _type_total(rows: List[Dict[str, Any]], type_code: str) -> Decimal:
    return sum((natural_balance(r) for r in rows if r["account_type"] == type_code), ZERO)


def net_income_of(rows: List[Dict[str, Any]]) -> Decimal:
    return _type_total(rows, "REVENUE") - _type_total(rows, "COGS") - _type_total(rows, "EXPENSE")


def aging_bucket(days_past_due: int) -> str:
    if days_past_due <= 0:
        return "Current"
    if days_past_due <= 30:
        return "1-30"
    if days_past_due <= 60:
        return "31-60"
    if days_past_due <= 90:
        return "61-90"
    return "91+"


def build_aging(documents: List[Dict[str, Any]], report_date: date) -> Dict[str, Any]:
    """
    Group open documents by party and bucket them by days past due.
    Each document dict carries party_id, party_name, number, document_date,
    due_date and amount_due.
    """
    parties: Dict[int, Dict[str, Any]] = {}
    totals = {bucket: ZERO for bucket in AGING_BUCKETS}

    for doc in documents:
        days = (report_date - doc["due_date"]).days
        bucket = aging_bucket(days)
        amount = doc["amount_due"]

        party = parties.setdefault(doc["party_id"], {
            "party_id": doc["party_id"],
            "party_name": doc["party_name"],
            "buckets": {b: ZERO for b in AGING_BUCKETS},
            "total": ZERO,
            "documents": [],
        })
        party["buckets"][bucket] += amount
        party["total"] += amount
        party["documents"].append({
            "number": doc["number"],
            "document_date": doc["document_date"].isoformat(),
            "due_date": doc["due_date"].isoformat(),
            "days_past_due": max(days, 0),
            "bucket": bucket,
            "amount_due": float(amount),
        })
        totals[bucket] += amount

    result = []
    for party in sorted(parties.values(), key=lambda p: p["party_name"]):
        party["buckets"] = {b: float(v) for b, v in party["buckets"].items()}
        party["total"] = float(party["total"])
        result.append(party)

    return {
        "report_date": report_date.isoformat(),
        "parties": result,
        "totals": {b: float(v) for b, v in totals.items()},
        "grand_total": float(sum(totals.values(), ZERO)),
    }


def _shift_month(year: int, month: int, offset: int):
    index = year * 12 + (month - 1) + offset
    return index // 12, index % 12 + 1


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get("/trial-balance")
def get_trial_balance(
    to_date: Optional[date] = None,
    from_date: Optional[date] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Net debit/credit per account, grouped by account type"""
    company_id = get_company_id(current_user)
    to_date = to_date or date.today()
    if from_date and from_date > to_date:
        raise HTTPException(status_code=400, detail="from_date must be on or before to_date")

    rows = account_totals(db, company_id, from_date, to_date)

    sections: Dict[str, Dict[str, Any]] = {}
    grand_debit = grand_credit = ZERO
    for row in sorted(rows, key=lambda r: (r["display_order"], r["account_code"])):
        net = row["debit"] - row["credit"]
        if net == 0:
            continue
        debit = net if net > 0 else ZERO
        credit = -net if net < 0 else ZERO

        section = sections.setdefault(row["account_type"], {
            "account_type": row["account_type"],
            "accounts": [],
            "total_debit": ZERO,
            "total_credit": ZERO,
        })
        section["accounts"].append({
            "account_id": row["account_id"],
            "account_code": row["account_code"],
            "account_name": row["account_name"],
            "debit": float(debit),
            "credit": float(credit),
        })
        section["total_debit"] += debit
        section["total_credit"] += credit
        grand_debit += debit
        grand_credit += credit

    for section in sections.values():
        section["total_debit"] = float(section["total_debit"])
        section["total_credit"] = float(section["total_credit"])

    return {
        "from_date": from_date.isoformat() if from_date else None,
        "to_date": to_date.isoformat(),
        "sections": list(sections.values()),
        "total_debit": float(grand_debit),
        "total_credit": float(grand_credit),
        "is_balanced": grand_debit == grand_credit,
    }


@router.get("/income-statement")
def get_income_statement(
    start_date: date,
    end_date: date,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    company_id = get_company_id(current_user)
    if start_date > end_date:
        raise HTTPException(status_code=400, detail="start_date must be on or before end_date")

    rows = account_totals(db, company_id, start_date, end_date)

    revenue = _type_total(rows, "REVENUE")
    cogs = _type_total(rows, "COGS")
    expenses = _type_total(rows, "EXPENSE")
    gross_profit = revenue - cogs
    net_income = gross_profit - expenses

    return {
        "start_date": start_date.isoformat(),
        "end_date": end_date.isoformat(),
        "revenue": _section(rows, "REVENUE"),
        "cost_of_goods_sold": _section(rows, "COGS"),
        "gross_profit": float(gross_profit),
        "expenses": _section(rows, "EXPENSE"),
        "net_income": float(net_income),
    }


@router.get("/balance-sheet")
def get_balance_sheet(
    as_of_date: Optional[date] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Assets = liabilities + equity, with current earnings folded into equity"""
    company_id = get_company_id(current_user)
    as_of_date = as_of_date or date.today()

    rows = account_totals(db, company_id, end_date=as_of_date)

    total_assets = _type_total(rows, "ASSET")
    total_liabilities = _type_total(rows, "LIABILITY")
    current_earnings = net_income_of(rows)
    total_equity = _type_total(rows, "EQUITY") + current_earnings

    equity = _section(rows, "EQUITY")
    equity["current_earnings"] = float(current_earnings)
    equity["total"] = float(total_equity)

    return {
        "as_of_date": as_of_date.isoformat(),
        "assets": _section(rows, "ASSET"),
        "liabilities": _section(rows, "LIABILITY"),
        "equity": equity,
        "total_assets": float(total_assets),
        "total_liabilities_and_equity": float(total_liabilities + total_equity),
        "is_balanced": total_assets == total_liabilities + total_equity,
    }


@router.get("/general-ledger")
def get_general_ledger(
    account_id: int,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    company_id = get_company_id(current_user)
    account = db.query(Account).options(joinedload(Account.account_type)).filter(
        Account.id == account_id,
        Account.company_id == company_id
    ).first()
    if not account:
        raise HTTPException(status_code=404, detail="Account not found")

    statement = running_statement(
        db, company_id, account.id, start_date=start_date, end_date=end_date,
        credit_normal=account.account_type.normal_balance == "credit"
    )
    statement.update({
        "account_id": account.id,
        "account_code": account.code,
        "account_name": account.name,
        "start_date": start_date.isoformat() if start_date else None,
        "end_date": end_date.isoformat() if end_date else None,
    })
    return statement


@router.get("/ar-aging")
def get_ar_aging(
    report_date: Optional[date] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    company_id = get_company_id(current_user)
    report_date = report_date or date.today()

    invoices = db.query(SalesInvoice).options(joinedload(SalesInvoice.customer)).filter(
        SalesInvoice.company_id == company_id,
        SalesInvoice.status.notin_(("DRAFT", "PAID", "CANCELLED")),
        SalesInvoice.invoice_date <= report_date
    ).all()

    documents = [
        {
            "party_id": inv.customer_id,
            "party_name": inv.customer.name,
            "number": inv.invoice_number,
            "document_date": inv.invoice_date,
            "due_date": inv.due_date,
            "amount_due": inv.amount_due,
        }
        for inv in invoices if inv.amount_due > 0
    ]
    return build_aging(documents, report_date)


@router.get("/ap-aging")
def get_ap_aging(
    report_date: Optional[date] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    company_id = get_company_id(current_user)
    report_date = report_date or date.today()

    bills = db.query(SupplierInvoice).options(joinedload(SupplierInvoice.supplier)).filter(
        SupplierInvoice.company_id == company_id,
        SupplierInvoice.status != "paid",
        SupplierInvoice.bill_date <= report_date
    ).all()

    documents = [
        {
            "party_id": bill.supplier_id,
            "party_name": bill.supplier.name,
            "number": bill.bill_number,
            "document_date": bill.bill_date,
            "due_date": bill.due_date,
            "amount_due": bill.amount_due,
        }
        for bill in bills if bill.amount_due > 0
    ]
    return build_aging(documents, report_date)


@router.get("/cash-flow")
def get_cash_flow(
    months: int = Query(6, ge=1, le=36),
    as_of_date: Optional[date] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Monthly inflows (debits) and outflows (credits) on bank and cash accounts"""
    company_id = get_company_id(current_user)
    as_of_date = as_of_date or date.today()

    bank_ids = [a.id for a in db.query(Account).filter(
        Account.company_id == company_id,
        Account.is_bank_account == True
    ).all()]

    first_year, first_month = _shift_month(as_of_date.year, as_of_date.month, -(months - 1))
    first_day = date(first_year, first_month, 1)

    opening = ZERO
    for account_id in bank_ids:
        opening += debit_minus_credit(db, company_id, account_id, before_date=first_day)

    periods = []
    balance = opening
    for offset in range(months):
        year, month = _shift_month(first_year, first_month, offset)
        start = date(year, month, 1)
        end = date(year, month, calendar.monthrange(year, month)[1])
        if end > as_of_date:
            end = as_of_date

        inflow = outflow = ZERO
        if bank_ids:
            debit, credit = db.query(
                func.coalesce(func.sum(JournalVoucherLine.debit), 0),
                func.coalesce(func.sum(JournalVoucherLine.credit), 0)
            ).join(
                JournalVoucher, JournalVoucherLine.voucher_id == JournalVoucher.id
            ).filter(
                JournalVoucher.company_id == company_id,
                JournalVoucher.status.in_(POSTED_STATUSES),
                JournalVoucher.entry_date >= start,
                JournalVoucher.entry_date <= end,
                JournalVoucherLine.account_id.in_(bank_ids)
            ).one()
            inflow, outflow = to_decimal(debit), to_decimal(credit)

        net = inflow - outflow
        balance += net
        periods.append({
            "month": f"{year:04d}-{month:02d}",
            "inflow": float(inflow),
            "outflow": float(outflow),
            "net_change": float(net),
            "closing_cash": float(balance),
        })

    return {
        "as_of_date": as_of_date.isoformat(),
        "opening_cash": float(opening),
        "months": periods,
        "net_change": float(balance - opening),
        "closing_cash": float(balance),
    }
