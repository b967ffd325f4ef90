"""Read-side helpers over posted voucher lines: balances and running-balance statements."""

from sqlalchemy.orm import Session
from sqlalchemy import func
from datetime import date
from decimal import Decimal
from typing import Optional, List, Dict, Any

from ledgerbook.models import JournalVoucher, JournalVoucherLine
from ledgerbook.services.journal_posting import POSTED_STATUSES, to_decimal, ZERO


def _posted_lines(db: Session, company_id: int, account_id: Optional[int] = None,
                  payee_type: Optional[str] = None, payee_id: Optional[int] = None):
    query = db.query(JournalVoucherLine, JournalVoucher).join(
        JournalVoucher, JournalVoucherLine.voucher_id == JournalVoucher.id
    ).filter(
        JournalVoucher.company_id == company_id,
        JournalVoucher.status.in_(POSTED_STATUSES)
    )
    if account_id is not None:
        query = query.filter(JournalVoucherLine.account_id == account_id)
    if payee_type is not None:
        query = query.filter(
            JournalVoucherLine.payee_type == payee_type,
            JournalVoucherLine.payee_id == payee_id
        )
    return query


def debit_minus_credit(db: Session, company_id: int, account_id: Optional[int] = None,
                       start_date: Optional[date] = None, end_date: Optional[date] = None,
                       before_date: Optional[date] = None,
                       payee_type: Optional[str] = None, payee_id: Optional[int] = None) -> Decimal:
    query = db.query(
        func.coalesce(func.sum(JournalVoucherLine.debit), 0),
        func.coalesce(func.sum(JournalVoucherLine.credit), 0)
    ).join(
        JournalVoucher, JournalVoucherLine.voucher_id == JournalVoucher.id
    ).filter(
        JournalVoucher.company_id == company_id,
        JournalVoucher.status.in_(POSTED_STATUSES)
    )
    if account_id is not None:
        query = query.filter(JournalVoucherLine.account_id == account_id)
    if payee_type is not None:
        query = query.filter(
            JournalVoucherLine.payee_type == payee_type,
            JournalVoucherLine.payee_id == payee_id
        )
    if start_date:
        query = query.filter(JournalVoucher.entry_date >= start_date)
    if end_date:
        query = query.filter(JournalVoucher.entry_date <= end_date)
    if before_date:
        query = query.filter(JournalVoucher.entry_date < before_date)

    debit, credit = query.one()
    return to_decimal(debit) - to_decimal(credit)


def running_statement(db: Session, company_id: int, account_id: Optional[int] = None,
                      start_date: Optional[date] = None, end_date: Optional[date] = None,
                      payee_type: Optional[str] = None, payee_id: Optional[int] = None,
                      credit_normal: bool = False) -> Dict[str, Any]:
    """
    Opening balance, lines in date order with a running balance, and closing balance.
    Balances are debit minus credit unless `credit_normal` flips the sign.
    """
    sign = Decimal("-1") if credit_normal else Decimal("1")

    opening = ZERO
    if start_date:
        opening = debit_minus_credit(
            db, company_id, account_id, before_date=start_date,
            payee_type=payee_type, payee_id=payee_id
        ) * sign

    query = _posted_lines(db, company_id, account_id, payee_type, payee_id)
    if start_date:
        query = query.filter(JournalVoucher.entry_date >= start_date)
    if end_date:
        query = query.filter(JournalVoucher.entry_date <= end_date)

    rows = query.order_by(
        JournalVoucher.entry_date, JournalVoucher.id, JournalVoucherLine.line_number
    ).all()

    balance = opening
    total_debit = total_credit = ZERO
    entries: List[Dict[str, Any]] = []
    for line, voucher in rows:
        line_debit = to_decimal(line.debit)
        line_credit = to_decimal(line.credit)
        total_debit += line_debit
        total_credit += line_credit
        balance += (line_debit - line_credit) * sign
        entries.append({
            "entry_date": voucher.entry_date,
            "voucher_id": voucher.id,
            "voucher_number": voucher.voucher_number,
            "source_type": voucher.source_type,
            "narration": voucher.narration,
            "description": line.description,
            "debit": float(line_debit),
            "credit": float(line_credit),
            "balance": float(balance),
        })

    return {
        "opening_balance": float(opening),
        "total_debit": float(total_debit),
        "total_credit": float(total_credit),
        "closing_balance": float(balance),
        "entries": entries,
    }
