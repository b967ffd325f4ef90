from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.orm import Session
from sqlalchemy import or_
from typing import List, Optional
from datetime import datetime, date
import logging

from ledgerbook.database import get_db
from ledgerbook.models import User, Supplier, SupplierInvoice
from ledgerbook.schemas import OpeningBalanceRequest, PartyLedger
from ledgerbook.services.dependency import (
    get_current_user, get_company_id, require_roles, WRITE_ROLES, POSTING_ROLES
)
from ledgerbook.services.journal_posting import JournalPostingService, SystemRole, SourceType, money
from ledgerbook.services.ledger import debit_minus_credit, running_statement
from ledgerbook.utils.numbering import next_document_number

logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# PYDANTIC SCHEMAS
# =============================================================================

class SupplierCreate(BaseModel):
    name: str = Field(..., min_length=1)
    contact_person: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    tax_number: Optional[str] = None
    bank_name: Optional[str] = None
    bank_account_number: Optional[str] = None
    payment_terms_days: Optional[int] = Field(None, ge=0)


class SupplierUpdate(BaseModel):
    name: Optional[str] = None
    contact_person: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    tax_number: Optional[str] = None
    bank_name: Optional[str] = None
    bank_account_number: Optional[str] = None
    payment_terms_days: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None


class SupplierResponse(BaseModel):
    id: int
    supplier_code: str
    name: str
    contact_person: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    tax_number: Optional[str] = None
    bank_name: Optional[str] = None
    bank_account_number: Optional[str] = None
    payment_terms_days: Optional[int] = None
    opening_balance: float
    opening_balance_voucher_id: Optional[int] = None
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class SupplierDetail(SupplierResponse):
    outstanding_balance: float


# =============================================================================
# HELPERS
# =============================================================================

def get_supplier_or_404(db: Session, company_id: int, supplier_id: int) -> Supplier:
    supplier = db.query(Supplier).filter(
        Supplier.id == supplier_id,
        Supplier.company_id == company_id
    ).first()
    if not supplier:
        raise HTTPException(status_code=404, detail="Supplier not found")
    return supplier


def supplier_balance(db: Session, company_id: int, supplier_id: int) -> float:
    """Amount owed to the supplier on the AP control account (credit positive)"""
    service = JournalPostingService(db, company_id)
    try:
        ap_account = service.account_for_role(SystemRole.ACCOUNTS_PAYABLE)
    except ValueError:
        return 0.0
    return float(-debit_minus_credit(
        db, company_id, ap_account.id, payee_type="supplier", payee_id=supplier_id
    ))


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get("", response_model=List[SupplierResponse])
def list_suppliers(
    search: Optional[str] = None,
    include_inactive: bool = False,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    company_id = get_company_id(current_user)

    query = db.query(Supplier).filter(Supplier.company_id == company_id)
    if not include_inactive:
        query = query.filter(Supplier.is_active == True)
    if search:
        query = query.filter(
            or_(
                Supplier.name.ilike(f"%{search}%"),
                Supplier.supplier_code.ilike(f"%{search}%"),
                Supplier.contact_person.ilike(f"%{search}%")
            )
        )
    return query.order_by(Supplier.name).all()


@router.post("", response_model=SupplierResponse)
def create_supplier(
    data: SupplierCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*WRITE_ROLES))
):
    company_id = get_company_id(current_user)

    supplier = Supplier(
        company_id=company_id,
        supplier_code=next_document_number(db, Supplier.supplier_code, Supplier.company_id, company_id, "SUP-", 4),
        **data.model_dump()
    )
    db.add(supplier)
    db.commit()
    db.refresh(supplier)

    logger.info(f"Created supplier {supplier.supplier_code} for company {company_id}")
    return supplier


@router.get("/{supplier_id}", response_model=SupplierDetail)
def get_supplier(
    supplier_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    company_id = get_company_id(current_user)
    supplier = get_supplier_or_404(db, company_id, supplier_id)

    result = SupplierResponse.model_validate(supplier).model_dump()
    result["outstanding_balance"] = supplier_balance(db, company_id, supplier.id)
    return result


@router.put("/{supplier_id}", response_model=SupplierResponse)
def update_supplier(
    supplier_id: int,
    data: SupplierUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*WRITE_ROLES))
):
    company_id = get_company_id(current_user)
    supplier = get_supplier_or_404(db, company_id, supplier_id)

    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(supplier, field, value)

    db.commit()
    db.refresh(supplier)
    return supplier


@router.post("/{supplier_id}/opening-balance")
def post_supplier_opening_balance(
    supplier_id: int,
    data: OpeningBalanceRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*POSTING_ROLES))
):
    """Dr Opening Balance Equity / Cr Accounts Payable (supplier). Allowed once per supplier."""
    company_id = get_company_id(current_user)
    supplier = get_supplier_or_404(db, company_id, supplier_id)

    if supplier.opening_balance_voucher_id:
        raise HTTPException(status_code=409, detail="Opening balance has already been posted for this supplier")

    service = JournalPostingService(db, company_id, current_user.id)
    try:
        amount = money(data.amount)
        ap_account = service.account_for_role(SystemRole.ACCOUNTS_PAYABLE)
        obe_account = service.account_for_role(SystemRole.OPENING_BALANCE_EQUITY)

        voucher = service.create_voucher(
            entry_date=data.entry_date,
            narration=data.narration or f"Opening balance for {supplier.name}",
            lines=[
                service.debit(obe_account.id, amount, "Opening balance equity"),
                service.credit(ap_account.id, amount, f"Opening balance - {supplier.name}",
                               payee_type="supplier", payee_id=supplier.id),
            ],
            source_type=SourceType.OPENING_BALANCE,
            reference_type="Supplier",
            reference_id=supplier.id,
            reference_number=supplier.supplier_code
        )

        supplier.opening_balance = amount
        supplier.opening_balance_voucher_id = voucher.id
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


@router.get("/{supplier_id}/ledger", response_model=PartyLedger)
def get_supplier_ledger(
    supplier_id: int,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Posted payable lines for the supplier; balance is the amount owed"""
    company_id = get_company_id(current_user)
    supplier = get_supplier_or_404(db, company_id, supplier_id)

    service = JournalPostingService(db, company_id)
    try:
        ap_account = service.account_for_role(SystemRole.ACCOUNTS_PAYABLE)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    statement = running_statement(
        db, company_id, ap_account.id,
        start_date=start_date, end_date=end_date,
        payee_type="supplier", payee_id=supplier.id,
        credit_normal=True
    )
    return {
        "party_id": supplier.id,
        "party_name": supplier.name,
        "total_debit": statement["total_debit"],
        "total_credit": statement["total_credit"],
        "closing_balance": statement["closing_balance"],
        "entries": statement["entries"],
    }


@router.get("/{supplier_id}/unpaid-invoices")
def get_unpaid_bills(
    supplier_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    company_id = get_company_id(current_user)
    supplier = get_supplier_or_404(db, company_id, supplier_id)

    bills = db.query(SupplierInvoice).filter(
        SupplierInvoice.company_id == company_id,
        SupplierInvoice.supplier_id == supplier.id,
        SupplierInvoice.status.in_(("unpaid", "partially_paid"))
    ).order_by(SupplierInvoice.due_date, SupplierInvoice.id).all()

    return [
        {
            "id": bill.id,
            "bill_number": bill.bill_number,
            "supplier_reference": bill.supplier_reference,
            "bill_date": bill.bill_date.isoformat(),
            "due_date": bill.due_date.isoformat(),
            "status": bill.status,
            "total_amount": float(bill.total_amount),
            "amount_paid": float(bill.amount_paid or 0),
            "amount_due": float(bill.amount_due),
        }
        for bill in bills
        if bill.amount_due > 0
    ]
