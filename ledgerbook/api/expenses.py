from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session
from sqlalchemy import desc
from typing import List, Optional
from datetime import date, datetime
from decimal import Decimal
import logging

from ledgerbook.database import get_db
from ledgerbook.models import User, Account, Supplier, Expense
from ledgerbook.services.dependency import (
    get_current_user, get_company_id, get_company, require_roles,
    ensure_transactions_unlocked, WRITE_ROLES
)
from ledgerbook.services.journal_posting import JournalPostingService, SystemRole, SourceType, money, to_decimal
from ledgerbook.utils.numbering import next_document_number

router = APIRouter()
logger = logging.getLogger(__name__)


class ExpenseCreate(BaseModel):
    expense_date: date
    account_id: int
    paid_from_account_id: int
    supplier_id: Optional[int] = None
    payee: Optional[str] = None
    description: Optional[str] = None
    amount: float = Field(..., gt=0)
    tax_rate: float = Field(0, ge=0, le=100)


class ExpenseOut(BaseModel):
    id: int
    expense_number: str
    expense_date: date
    account_id: int
    paid_from_account_id: int
    supplier_id: Optional[int] = None
    payee: Optional[str] = None
    description: Optional[str] = None
    amount: float
    tax_rate: float
    tax_amount: float
    total_amount: float
    voucher_id: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True


@router.get("", response_model=List[ExpenseOut])
def list_expenses(
    account_id: Optional[int] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    company_id = get_company_id(current_user)

    query = db.query(Expense).filter(Expense.company_id == company_id)
    if account_id:
        query = query.filter(Expense.account_id == account_id)
    if start_date:
        query = query.filter(Expense.expense_date >= start_date)
    if end_date:
        query = query.filter(Expense.expense_date <= end_date)

    return query.order_by(desc(Expense.expense_date), desc(Expense.id)).all()


@router.get("/{expense_id}", response_model=ExpenseOut)
def get_expense(
    expense_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    expense = db.query(Expense).filter(
        Expense.id == expense_id,
        Expense.company_id == get_company_id(current_user)
    ).first()
    if not expense:
        raise HTTPException(status_code=404, detail="Expense not found")
    return expense


@router.post("", response_model=ExpenseOut)
def record_expense(
    data: ExpenseCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*WRITE_ROLES))
):
    """Record a paid expense: DR expense account (net), DR VAT Input, CR bank/cash"""
    company = get_company(current_user, db)
    ensure_transactions_unlocked(company)
    company_id = company.id

    paid_from = db.query(Account).filter(
        Account.id == data.paid_from_account_id,
        Account.company_id == company_id
    ).first()
    if not paid_from or not paid_from.is_bank_account:
        raise HTTPException(status_code=400, detail="Expenses must be paid from a bank or cash account")
    if data.account_id == data.paid_from_account_id:
        raise HTTPException(status_code=400, detail="Expense account and paid-from account must differ")

    payee = data.payee
    if data.supplier_id:
        supplier = db.query(Supplier).filter(
            Supplier.id == data.supplier_id,
            Supplier.company_id == company_id
        ).first()
        if not supplier:
            raise HTTPException(status_code=404, detail="Supplier not found")
        payee = payee or supplier.name

    amount = money(data.amount)
    tax = money(amount * to_decimal(data.tax_rate) / Decimal("100"))
    total = amount + tax

    posting = JournalPostingService(db, company_id, current_user.id)
    try:
        expense = Expense(
            company_id=company_id,
            expense_number=next_document_number(
                db, Expense.expense_number, Expense.company_id, company_id,
                f"EXP-{data.expense_date.year}-", 5
            ),
            expense_date=data.expense_date,
            account_id=data.account_id,
            paid_from_account_id=paid_from.id,
            supplier_id=data.supplier_id,
            payee=payee,
            description=data.description,
            amount=amount,
            tax_rate=data.tax_rate,
            tax_amount=tax,
            total_amount=total,
            created_by=current_user.id
        )
        db.add(expense)
        db.flush()

        description = data.description or f"Expense {expense.expense_number}"
        lines = [posting.debit(data.account_id, amount, description)]
        if tax > 0:
            lines.append(posting.debit(posting.account_for_role(SystemRole.VAT_INPUT).id, tax, "Input VAT"))
        lines.append(posting.credit(paid_from.id, total, f"Paid to {payee}" if payee else description))

        voucher = posting.create_voucher(
            entry_date=data.expense_date,
            narration=description,
            lines=lines,
            source_type=SourceType.EXPENSE,
            reference_type="Expense",
            reference_id=expense.id,
            reference_number=expense.expense_number
        )
        expense.voucher_id = voucher.id
        db.commit()
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    db.refresh(expense)
    logger.info(f"Recorded expense {expense.expense_number}: {expense.total_amount}")
    return expense
