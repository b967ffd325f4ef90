from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.orm import Session
from sqlalchemy import or_
from typing import List, Optional
from datetime import datetime, date
import logging

from ledgerbook.database import get_db
from ledgerbook.models import User, Customer, SalesInvoice
from ledgerbook.schemas import OpeningBalanceRequest, PartyLedger
from ledgerbook.services.dependency import (
    get_current_user, get_company_id, require_roles, WRITE_ROLES, POSTING_ROLES
)
from ledgerbook.services.journal_posting import JournalPostingService, SystemRole, SourceType, money
from ledgerbook.services.ledger import debit_minus_credit, running_statement
from ledgerbook.utils.numbering import next_document_number

logger = logging.getLogger(__name__)

router = APIRouter()

OPEN_INVOICE_STATUSES = ("ISSUED", "PARTIAL", "OVERDUE")


# =============================================================================
# PYDANTIC SCHEMAS
# =============================================================================

class CustomerCreate(BaseModel):
    name: str = Field(..., min_length=1)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    tax_number: Optional[str] = None
    credit_limit: float = Field(0, ge=0)
    payment_terms_days: Optional[int] = Field(None, ge=0)


class CustomerUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    tax_number: Optional[str] = None
    credit_limit: Optional[float] = Field(None, ge=0)
    payment_terms_days: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None


class CustomerResponse(BaseModel):
    id: int
    customer_code: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    tax_number: Optional[str] = None
    credit_limit: float
    payment_terms_days: Optional[int] = None
    opening_balance: float
    opening_balance_voucher_id: Optional[int] = None
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class CustomerDetail(CustomerResponse):
    outstanding_balance: float


# =============================================================================
# HELPERS
# =============================================================================

def get_customer_or_404(db: Session, company_id: int, customer_id: int) -> Customer:
    customer = db.query(Customer).filter(
        Customer.id == customer_id,
        Customer.company_id == company_id
    ).first()
    if not customer:
        raise HTTPException(status_code=404, detail="Customer not found")
    return customer


def customer_balance(db: Session, company_id: int, customer_id: int) -> float:
    """Receivable balance on the AR control account for this customer"""
    service = JournalPostingService(db, company_id)
    try:
        ar_account = service.account_for_role(SystemRole.ACCOUNTS_RECEIVABLE)
    except ValueError:
        return 0.0
    return float(debit_minus_credit(
        db, company_id, ar_account.id, payee_type="customer", payee_id=customer_id
    ))


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get("", response_model=List[CustomerResponse])
def list_customers(
    search: Optional[str] = None,
    include_inactive: bool = False,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    company_id = get_company_id(current_user)

    query = db.query(Customer).filter(Customer.company_id == company_id)
    if not include_inactive:
        query = query.filter(Customer.is_active == True)
    if search:
        query = query.filter(
            or_(
                Customer.name.ilike(f"%{search}%"),
                Customer.customer_code.ilike(f"%{search}%"),
                Customer.email.ilike(f"%{search}%")
            )
        )
    return query.order_by(Customer.name).all()


@router.post("", response_model=CustomerResponse)
def create_customer(
    data: CustomerCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*WRITE_ROLES))
):
    company_id = get_company_id(current_user)

    customer = Customer(
        company_id=company_id,
        customer_code=next_document_number(db, Customer.customer_code, Customer.company_id, company_id, "CUS-", 4),
        **data.model_dump()
    )
    db.add(customer)
    db.commit()
    db.refresh(customer)

    logger.info(f"Created customer {customer.customer_code} for company {company_id}")
    return customer


@router.get("/{customer_id}", response_model=CustomerDetail)
def get_customer(
    customer_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    company_id = get_company_id(current_user)
    customer = get_customer_or_404(db, company_id, customer_id)

    result = CustomerResponse.model_validate(customer).model_dump()
    result["outstanding_balance"] = customer_balance(db, company_id, customer.id)
    return result


@router.put("/{customer_id}", response_model=CustomerResponse)
def update_customer(
    customer_id: int,
    data: CustomerUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*WRITE_ROLES))
):
    company_id = get_company_id(current_user)
    customer = get_customer_or_404(db, company_id, customer_id)

    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(customer, field, value)

    db.commit()
    db.refresh(customer)
    return customer


@router.post("/{customer_id}/opening-balance")
def post_customer_opening_balance(
    customer_id: int,
    data: OpeningBalanceRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*POSTING_ROLES))
):
    """Dr Accounts Receivable (customer) / Cr Opening Balance Equity. Allowed once per customer."""
    company_id = get_company_id(current_user)
    customer = get_customer_or_404(db, company_id, customer_id)

    if customer.opening_balance_voucher_id:
        raise HTTPException(status_code=409, detail="Opening balance has already been posted for this customer")

    service = JournalPostingService(db, company_id, current_user.id)
    try:
        amount = money(data.amount)
        ar_account = service.account_for_role(SystemRole.ACCOUNTS_RECEIVABLE)
        obe_account = service.account_for_role(SystemRole.OPENING_BALANCE_EQUITY)

        voucher = service.create_voucher(
            entry_date=data.entry_date,
            narration=data.narration or f"Opening balance for {customer.name}",
            lines=[
                service.debit(ar_account.id, amount, f"Opening balance - {customer.name}",
                              payee_type="customer", payee_id=customer.id),
                service.credit(obe_account.id, amount, "Opening balance equity"),
            ],
            source_type=SourceType.OPENING_BALANCE,
            reference_type="Customer",
            reference_id=customer.id,
            reference_number=customer.customer_code
        )

        customer.opening_balance = amount
        customer.opening_balance_voucher_id = voucher.id
        db.commit()
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "success": True,
        "message": "Opening balance posted",
        "voucher_id": voucher.id,
        "voucher_number": voucher.voucher_number
    }


@router.get("/{customer_id}/ledger", response_model=PartyLedger)
def get_customer_ledger(
    customer_id: int,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Posted receivable lines for the customer with a running balance"""
    company_id = get_company_id(current_user)
    customer = get_customer_or_404(db, company_id, customer_id)

    service = JournalPostingService(db, company_id)
    try:
        ar_account = service.account_for_role(SystemRole.ACCOUNTS_RECEIVABLE)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    statement = running_statement(
        db, company_id, ar_account.id,
        start_date=start_date, end_date=end_date,
        payee_type="customer", payee_id=customer.id
    )
    return {
        "party_id": customer.id,
        "party_name": customer.name,
        "total_debit": statement["total_debit"],
        "total_credit": statement["total_credit"],
        "closing_balance": statement["closing_balance"],
        "entries": statement["entries"],
    }


@router.get("/{customer_id}/unpaid-invoices")
def get_unpaid_invoices(
    customer_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    company_id = get_company_id(current_user)
    customer = get_customer_or_404(db, company_id, customer_id)

    invoices = db.query(SalesInvoice).filter(
        SalesInvoice.company_id == company_id,
        SalesInvoice.customer_id == customer.id,
        SalesInvoice.status.in_(OPEN_INVOICE_STATUSES)
    ).order_by(SalesInvoice.due_date, SalesInvoice.id).all()

    return [
        {
            "id": inv.id,
            "invoice_number": inv.invoice_number,
            "invoice_date": inv.invoice_date.isoformat(),
            "due_date": inv.due_date.isoformat(),
            "status": inv.status,
            "total_amount": float(inv.total_amount),
            "amount_paid": float(inv.amount_paid or 0),
            "amount_credited": float(inv.amount_credited or 0),
            "amount_due": float(inv.amount_due),
        }
        for inv in invoices
        if inv.amount_due > 0
    ]
