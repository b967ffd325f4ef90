"""
Bank Reconciliation API
Match posted bank-account lines against a statement balance.
"""

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session
from sqlalchemy import desc
from typing import List, Optional, Set
from datetime import date, datetime
from decimal import Decimal
import logging

from ledgerbook.database import get_db
from ledgerbook.models import (
    User, Account, JournalVoucher, JournalVoucherLine, BankReconciliation, ReconciliationLine
)
from ledgerbook.services.dependency import (
    get_current_user, get_company_id, require_roles, POSTING_ROLES
)
from ledgerbook.services.journal_posting import POSTED_STATUSES, money, to_decimal, ZERO
from ledgerbook.services.ledger import debit_minus_credit

logger = logging.getLogger(__name__)

router = APIRouter()


class ReconciliationCreate(BaseModel):
    account_id: int
    statement_date: date
    statement_balance: float
    notes: Optional[str] = None


class ReconciliationUpdate(BaseModel):
    cleared_line_ids: List[int]


class ReconciliationOut(BaseModel):
    id: int
    account_id: int
    statement_date: date
    statement_balance: float
    cleared_balance: float
    difference: float
    status: str
    notes: Optional[str] = None
    completed_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


# =============================================================================
# HELPERS
# =============================================================================

def get_reconciliation_or_404(db: Session, company_id: int, rec_id: int) -> BankReconciliation:
    rec = db.query(BankReconciliation).filter(
        BankReconciliation.id == rec_id,
        BankReconciliation.company_id == company_id
    ).first()
    if not rec:
        raise HTTPException(status_code=404, detail="Reconciliation not found")
    return rec


def _previously_cleared_ids(db: Session, rec: BankReconciliation) -> Set[int]:
    """Lines on the account cleared by other, completed reconciliations"""
    rows = db.query(ReconciliationLine.voucher_line_id).join(
        BankReconciliation, ReconciliationLine.reconciliation_id == BankReconciliation.id
    ).filter(
        BankReconciliation.company_id == rec.company_id,
        BankReconciliation.account_id == rec.account_id,
        BankReconciliation.status == "completed",
        BankReconciliation.id != rec.id
    ).all()
    return {row[0] for row in rows}


def _account_lines(db: Session, rec: BankReconciliation):
    return db.query(JournalVoucherLine, JournalVoucher).join(
        JournalVoucher, JournalVoucherLine.voucher_id == JournalVoucher.id
    ).filter(
        JournalVoucher.company_id == rec.company_id,
        JournalVoucher.status.in_(POSTED_STATUSES),
        JournalVoucher.entry_date <= rec.statement_date,
        JournalVoucherLine.account_id == rec.account_id
    ).order_by(JournalVoucher.entry_date, JournalVoucher.id, JournalVoucherLine.line_number).all()


def recalculate(db: Session, rec: BankReconciliation) -> Decimal:
    """cleared balance = lines cleared before + lines cleared here; difference = statement - cleared"""
    previous = _previously_cleared_ids(db, rec)
    current = {line.voucher_line_id for line in rec.cleared_lines}
    cleared_ids = previous | current

    cleared = ZERO
    if cleared_ids:
        for line in db.query(JournalVoucherLine).filter(JournalVoucherLine.id.in_(cleared_ids)).all():
            cleared += to_decimal(line.debit) - to_decimal(line.credit)

    rec.cleared_balance = money(cleared)
    rec.difference = money(to_decimal(rec.statement_balance) - cleared)
    return rec.difference


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get("", response_model=List[ReconciliationOut])
def list_reconciliations(
    account_id: Optional[int] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    company_id = get_company_id(current_user)
    query = db.query(BankReconciliation).filter(BankReconciliation.company_id == company_id)
    if account_id:
        query = query.filter(BankReconciliation.account_id == account_id)
    return query.order_by(desc(BankReconciliation.statement_date), desc(BankReconciliation.id)).all()


@router.post("", response_model=ReconciliationOut)
def create_reconciliation(
    data: ReconciliationCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*POSTING_ROLES))
):
    company_id = get_company_id(current_user)

    account = db.query(Account).filter(
        Account.id == data.account_id,
        Account.company_id == company_id
    ).first()
    if not account:
        raise HTTPException(status_code=404, detail="Account not found")
    if not account.is_bank_account:
        raise HTTPException(status_code=400, detail=f"Account {account.code} is not a bank account")

    open_draft = db.query(BankReconciliation).filter(
        BankReconciliation.company_id == company_id,
        BankReconciliation.account_id == account.id,
        BankReconciliation.status == "draft"
    ).first()
    if open_draft:
        raise HTTPException(status_code=409, detail=f"Account {account.code} already has a draft reconciliation")

    rec = BankReconciliation(
        company_id=company_id,
        account_id=account.id,
        statement_date=data.statement_date,
        statement_balance=money(data.statement_balance),
        notes=data.notes,
        status="draft",
        created_by=current_user.id
    )
    db.add(rec)
    db.flush()
    recalculate(db, rec)
    db.commit()
    db.refresh(rec)
    return rec


@router.get("/{rec_id}")
def get_reconciliation(
    rec_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Uncleared account lines up to the statement date, with this reconciliation's cleared flags"""
    company_id = get_company_id(current_user)
    rec = get_reconciliation_or_404(db, company_id, rec_id)

    previous = _previously_cleared_ids(db, rec)
    current = {line.voucher_line_id for line in rec.cleared_lines}

    lines = []
    for line, voucher in _account_lines(db, rec):
        if line.id in previous:
            continue
        lines.append({
            "line_id": line.id,
            "entry_date": voucher.entry_date.isoformat(),
            "voucher_number": voucher.voucher_number,
            "narration": voucher.narration,
            "description": line.description,
            "debit": float(line.debit or 0),
            "credit": float(line.credit or 0),
            "cleared": line.id in current,
        })

    book_balance = debit_minus_credit(db, company_id, rec.account_id, end_date=rec.statement_date)
    result = ReconciliationOut.model_validate(rec).model_dump()
    result["book_balance"] = float(book_balance)
    result["lines"] = lines
    return result


@router.put("/{rec_id}", response_model=ReconciliationOut)
def update_cleared_lines(
    rec_id: int,
    data: ReconciliationUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*POSTING_ROLES))
):
    """Replace the set of lines cleared by this reconciliation"""
    company_id = get_company_id(current_user)
    rec = get_reconciliation_or_404(db, company_id, rec_id)

    if rec.status != "draft":
        raise HTTPException(status_code=400, detail="Only draft reconciliations can be changed")

    requested = set(data.cleared_line_ids)
    previous = _previously_cleared_ids(db, rec)
    eligible = {line.id for line, _ in _account_lines(db, rec)} - previous
    invalid = requested - eligible
    if invalid:
        raise HTTPException(
            status_code=400,
            detail=f"Lines {sorted(invalid)} are not uncleared lines on this account up to the statement date"
        )

    rec.cleared_lines.clear()
    db.flush()
    for line_id in sorted(requested):
        rec.cleared_lines.append(ReconciliationLine(voucher_line_id=line_id))
    db.flush()

    recalculate(db, rec)
    db.commit()
    db.refresh(rec)
    return rec


@router.post("/{rec_id}/complete", response_model=ReconciliationOut)
def complete_reconciliation(
    rec_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*POSTING_ROLES))
):
    company_id = get_company_id(current_user)
    rec = get_reconciliation_or_404(db, company_id, rec_id)

    if rec.status != "draft":
        raise HTTPException(status_code=400, detail="Reconciliation is already completed")

    difference = recalculate(db, rec)
    if difference != 0:
        db.rollback()
        raise HTTPException(status_code=400, detail=f"Cannot complete: difference is {difference}")

    rec.status = "completed"
    rec.completed_at = datetime.utcnow()
    rec.completed_by = current_user.id
    db.commit()
    db.refresh(rec)

    logger.info(f"Completed reconciliation {rec.id} for account {rec.account_id} at {rec.statement_date}")
    return rec
