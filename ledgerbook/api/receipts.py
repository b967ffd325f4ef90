"""
Receipts API
Money received into a bank/cash account: customer receipts against invoices,
advance payments, refunds and other income.
"""

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session, joinedload
from sqlalchemy import desc
from typing import List, Optional, Literal
from datetime import date, datetime
import logging

from ledgerbook.database import get_db
from ledgerbook.models import User, Account, Customer, SalesInvoice, Receipt, ReceiptAllocation, JournalVoucher
from ledgerbook.schemas import ReverseRequest
from ledgerbook.services.dependency import (
    get_current_user, get_company_id, get_company, require_roles,
    ensure_transactions_unlocked, WRITE_ROLES, POSTING_ROLES
)
from ledgerbook.services.journal_posting import JournalPostingService, SystemRole, SourceType, money, ZERO
from ledgerbook.services.settlement import apply_invoice_payment
from ledgerbook.utils.numbering import next_document_number

logger = logging.getLogger(__name__)

router = APIRouter()

ReceiptType = Literal["customer_receipt", "advance_payment", "refund", "other"]

# Credit side of the receipt voucher by receipt type
CREDIT_ROLE_BY_TYPE = {
    "customer_receipt": SystemRole.ACCOUNTS_RECEIVABLE,
    "advance_payment": SystemRole.CUSTOMER_ADVANCES,
    "refund": SystemRole.CUSTOMER_REFUNDS,
    "other": SystemRole.OTHER_INCOME,
}

CUSTOMER_REQUIRED_TYPES = ("customer_receipt", "advance_payment")


# =============================================================================
# PYDANTIC SCHEMAS
# =============================================================================

class ReceiptAllocationIn(BaseModel):
    invoice_id: int
    amount: float = Field(..., gt=0)


class ReceiptCreate(BaseModel):
    receipt_date: date
    receipt_type: ReceiptType = "customer_receipt"
    customer_id: Optional[int] = None
    account_id: int
    amount: float = Field(..., gt=0)
    payment_method: Optional[str] = None
    reference: Optional[str] = None
    narration: Optional[str] = None
    allocations: List[ReceiptAllocationIn] = []


class ReceiptUpdate(BaseModel):
    receipt_date: Optional[date] = None
    receipt_type: Optional[ReceiptType] = None
    customer_id: Optional[int] = None
    account_id: Optional[int] = None
    amount: Optional[float] = Field(None, gt=0)
    payment_method: Optional[str] = None
    reference: Optional[str] = None
    narration: Optional[str] = None
    allocations: Optional[List[ReceiptAllocationIn]] = None


class ReceiptAllocationOut(BaseModel):
    id: int
    invoice_id: int
    amount: float

    class Config:
        from_attributes = True


class ReceiptResponse(BaseModel):
    id: int
    receipt_number: str
    receipt_date: date
    receipt_type: str
    customer_id: Optional[int] = None
    account_id: int
    amount: float
    payment_method: Optional[str] = None
    reference: Optional[str] = None
    narration: Optional[str] = None
    status: str
    voucher_id: Optional[int] = None
    created_at: datetime
    allocations: List[ReceiptAllocationOut] = []

    class Config:
        from_attributes = True


# =============================================================================
# HELPERS
# =============================================================================

def get_receipt_or_404(db: Session, company_id: int, receipt_id: int) -> Receipt:
    receipt = db.query(Receipt).options(
        joinedload(Receipt.allocations).joinedload(ReceiptAllocation.invoice)
    ).filter(
        Receipt.id == receipt_id,
        Receipt.company_id == company_id
    ).first()
    if not receipt:
        raise HTTPException(status_code=404, detail="Receipt not found")
    return receipt


def validate_receipt(db: Session, company_id: int, receipt_type: str, customer_id: Optional[int],
                     account_id: int, amount, allocations: List[ReceiptAllocationIn]) -> List[SalesInvoice]:
    """Check the receiving account, the customer and the invoice allocations. Returns the invoices."""
    account = db.query(Account).filter(
        Account.id == account_id,
        Account.company_id == company_id
    ).first()
    if not account or not account.is_active or account.is_header:
        raise ValueError("Receiving account not found or not postable")
    if not account.is_bank_account:
        raise ValueError(f"Account {account.code} is not a bank or cash account")

    if receipt_type in CUSTOMER_REQUIRED_TYPES and not customer_id:
        raise ValueError(f"A customer is required for a {receipt_type} receipt")
    if customer_id:
        customer = db.query(Customer).filter(
            Customer.id == customer_id,
            Customer.company_id == company_id
        ).first()
        if not customer:
            raise ValueError("Customer not found")

    if not allocations:
        return []
    if receipt_type != "customer_receipt":
        raise ValueError("Only customer receipts can be allocated to invoices")

    invoice_ids = [a.invoice_id for a in allocations]
    if len(set(invoice_ids)) != len(invoice_ids):
        raise ValueError("An invoice can only be allocated once per receipt")

    allocated = sum((money(a.amount) for a in allocations), ZERO)
    if allocated != money(amount):
        raise ValueError(f"Allocations ({allocated}) must equal the receipt amount ({money(amount)})")

    invoices = []
    for allocation in allocations:
        invoice = db.query(SalesInvoice).filter(
            SalesInvoice.id == allocation.invoice_id,
            SalesInvoice.company_id == company_id
        ).first()
        if not invoice or invoice.customer_id != customer_id:
            raise ValueError(f"Invoice {allocation.invoice_id} does not belong to this customer")
        if invoice.status not in ("ISSUED", "PARTIAL", "OVERDUE"):
            raise ValueError(f"Invoice {invoice.invoice_number} is not open for payment")
        if money(allocation.amount) > invoice.amount_due:
            raise ValueError(
                f"Allocation {money(allocation.amount)} exceeds the amount due "
                f"{invoice.amount_due} on invoice {invoice.invoice_number}"
            )
        invoices.append(invoice)
    return invoices


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get("", response_model=List[ReceiptResponse])
def list_receipts(
    status: Optional[str] = None,
    receipt_type: Optional[ReceiptType] = None,
    customer_id: Optional[int] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    company_id = get_company_id(current_user)

    query = db.query(Receipt).filter(Receipt.company_id == company_id)
    if status:
        query = query.filter(Receipt.status == status)
    if receipt_type:
        query = query.filter(Receipt.receipt_type == receipt_type)
    if customer_id:
        query = query.filter(Receipt.customer_id == customer_id)
    if start_date:
        query = query.filter(Receipt.receipt_date >= start_date)
    if end_date:
        query = query.filter(Receipt.receipt_date <= end_date)

    return query.order_by(desc(Receipt.receipt_date), desc(Receipt.id)).all()


@router.post("", response_model=ReceiptResponse)
def create_receipt(
    data: ReceiptCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*WRITE_ROLES))
):
    company = get_company(current_user, db)
    ensure_transactions_unlocked(company)

    try:
        validate_receipt(
            db, company.id, data.receipt_type, data.customer_id,
            data.account_id, data.amount, data.allocations
        )

        receipt = Receipt(
            company_id=company.id,
            receipt_number=next_document_number(
                db, Receipt.receipt_number, Receipt.company_id, company.id,
                f"RCT-{data.receipt_date:%Y%m%d}-", 4
            ),
            status="draft",
            created_by=current_user.id,
            **data.model_dump(exclude={"allocations"})
        )
        for allocation in data.allocations:
            receipt.allocations.append(ReceiptAllocation(
                invoice_id=allocation.invoice_id,
                amount=money(allocation.amount)
            ))
        db.add(receipt)
        db.commit()
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    db.refresh(receipt)
    logger.info(f"Created draft receipt {receipt.receipt_number} for {receipt.amount}")
    return receipt


@router.get("/{receipt_id}", response_model=ReceiptResponse)
def get_receipt(
    receipt_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return get_receipt_or_404(db, get_company_id(current_user), receipt_id)


@router.put("/{receipt_id}", response_model=ReceiptResponse)
def update_receipt(
    receipt_id: int,
    data: ReceiptUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*WRITE_ROLES))
):
    company_id = get_company_id(current_user)
    receipt = get_receipt_or_404(db, company_id, receipt_id)

    if receipt.status != "draft":
        raise HTTPException(status_code=400, detail="Only draft receipts can be edited")

    update_data = data.model_dump(exclude_unset=True, exclude={"allocations"})
    allocations = data.allocations
    if allocations is None:
        allocations = [
            ReceiptAllocationIn(invoice_id=a.invoice_id, amount=float(a.amount))
            for a in receipt.allocations
        ]

    try:
        validate_receipt(
            db, company_id,
            update_data.get("receipt_type", receipt.receipt_type),
            update_data.get("customer_id", receipt.customer_id),
            update_data.get("account_id", receipt.account_id),
            update_data.get("amount", receipt.amount),
            allocations
        )
        for field, value in update_data.items():
            setattr(receipt, field, value)

        if data.allocations is not None:
            receipt.allocations.clear()
            db.flush()
            for allocation in data.allocations:
                receipt.allocations.append(ReceiptAllocation(
                    invoice_id=allocation.invoice_id,
                    amount=money(allocation.amount)
                ))
        db.commit()
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    db.refresh(receipt)
    return receipt


@router.delete("/{receipt_id}")
def delete_receipt(
    receipt_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*WRITE_ROLES))
):
    company_id = get_company_id(current_user)
    receipt = get_receipt_or_404(db, company_id, receipt_id)

    if receipt.status != "draft":
        raise HTTPException(status_code=400, detail="Only draft receipts can be deleted")

    number = receipt.receipt_number
    db.delete(receipt)
    db.commit()
    return {"message": f"Receipt {number} deleted"}


@router.post("/{receipt_id}/post")
def post_receipt(
    receipt_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*POSTING_ROLES))
):
    """Dr bank/cash / Cr the account for the receipt type, then apply the invoice allocations"""
    company_id = get_company_id(current_user)
    receipt = get_receipt_or_404(db, company_id, receipt_id)

    if receipt.status != "draft":
        raise HTTPException(status_code=400, detail=f"Cannot post a receipt with status '{receipt.status}'")

    posting = JournalPostingService(db, company_id, current_user.id)
    try:
        allocations = [
            ReceiptAllocationIn(invoice_id=a.invoice_id, amount=float(a.amount))
            for a in receipt.allocations
        ]
        invoices = validate_receipt(
            db, company_id, receipt.receipt_type, receipt.customer_id,
            receipt.account_id, receipt.amount, allocations
        )

        credit_account = posting.account_for_role(CREDIT_ROLE_BY_TYPE[receipt.receipt_type])
        payee = {"payee_type": "customer", "payee_id": receipt.customer_id} if receipt.customer_id else {}
        description = receipt.narration or f"Receipt {receipt.receipt_number}"

        voucher = posting.create_voucher(
            entry_date=receipt.receipt_date,
            narration=description,
            lines=[
                posting.debit(receipt.account_id, receipt.amount, description),
                posting.credit(credit_account.id, receipt.amount, description, **payee),
            ],
            source_type=SourceType.RECEIPT,
            reference_type="Receipt",
            reference_id=receipt.id,
            reference_number=receipt.receipt_number
        )

        for allocation, invoice in zip(receipt.allocations, invoices):
            apply_invoice_payment(invoice, allocation.amount)

        receipt.voucher_id = voucher.id
        receipt.status = "posted"
        db.commit()
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "message": f"Receipt {receipt.receipt_number} posted",
        "voucher_id": voucher.id,
        "voucher_number": voucher.voucher_number
    }


@router.post("/{receipt_id}/reverse")
def reverse_receipt(
    receipt_id: int,
    data: Optional[ReverseRequest] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*POSTING_ROLES))
):
    """Reverse the receipt voucher and take the payments back off the invoices"""
    company_id = get_company_id(current_user)
    receipt = get_receipt_or_404(db, company_id, receipt_id)

    if receipt.status != "posted":
        raise HTTPException(status_code=400, detail="Only posted receipts can be reversed")

    data = data or ReverseRequest()
    posting = JournalPostingService(db, company_id, current_user.id)
    try:
        voucher = db.query(JournalVoucher).filter(JournalVoucher.id == receipt.voucher_id).first()
        reversal = posting.reverse_voucher(
            voucher, reversal_date=data.reversal_date,
            narration=data.narration or f"Reversal of receipt {receipt.receipt_number}"
        )

        for allocation in receipt.allocations:
            apply_invoice_payment(allocation.invoice, -money(allocation.amount))

        receipt.status = "reversed"
        db.commit()
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    logger.info(f"Reversed receipt {receipt.receipt_number} with {reversal.voucher_number}")
    return {
        "message": f"Receipt {receipt.receipt_number} reversed",
        "reversal_voucher": reversal.voucher_number
    }
