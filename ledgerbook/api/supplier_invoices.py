"""
Supplier Invoice (bill) API.

- Bill a goods receipt: DR GRNI (net), DR VAT Input, CR Accounts Payable
- Or bill expense lines directly: DR each account, DR VAT Input, CR Accounts Payable
- Payment status tracking: unpaid, partially_paid, paid
"""
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session, joinedload
from sqlalchemy import desc
from typing import List, Optional
from datetime import date, datetime, timedelta
from decimal import Decimal
import logging

from ledgerbook.config import settings
from ledgerbook.database import get_db
from ledgerbook.models import (
    User, Supplier, GoodsReceipt, GoodsReceiptLine, SupplierInvoice, SupplierInvoiceLine
)
from ledgerbook.services.dependency import (
    get_current_user, get_company_id, require_roles, POSTING_ROLES
)
from ledgerbook.services.journal_posting import JournalPostingService, SystemRole, SourceType, money, to_decimal, ZERO
from ledgerbook.utils.numbering import next_document_number

router = APIRouter()
logger = logging.getLogger(__name__)


# =============================================================================
# PYDANTIC SCHEMAS
# =============================================================================

class SupplierInvoiceLineCreate(BaseModel):
    account_id: int
    description: Optional[str] = None
    amount: float = Field(..., gt=0)
    tax_rate: float = Field(0, ge=0, le=100)


class SupplierInvoiceCreate(BaseModel):
    supplier_id: int
    goods_receipt_id: Optional[int] = None
    supplier_reference: Optional[str] = None
    bill_date: date
    due_date: Optional[date] = None
    notes: Optional[str] = None
    lines: List[SupplierInvoiceLineCreate] = []


class SupplierInvoiceLineOut(BaseModel):
    id: int
    account_id: int
    item_id: Optional[int] = None
    description: Optional[str] = None
    amount: float
    tax_rate: float
    tax_amount: float
    line_number: int

    class Config:
        from_attributes = True


class SupplierInvoiceOut(BaseModel):
    id: int
    bill_number: str
    supplier_id: int
    goods_receipt_id: Optional[int] = None
    supplier_reference: Optional[str] = None
    bill_date: date
    due_date: date
    status: str
    subtotal: float
    tax_amount: float
    total_amount: float
    amount_paid: float
    amount_due: float
    notes: Optional[str] = None
    voucher_id: Optional[int] = None
    created_at: datetime
    lines: List[SupplierInvoiceLineOut] = []

    class Config:
        from_attributes = True


# =============================================================================
# HELPERS
# =============================================================================

def _tax(amount: Decimal, rate) -> Decimal:
    return money(amount * to_decimal(rate) / Decimal("100"))


def _lines_from_grn(db: Session, posting: JournalPostingService, grn: GoodsReceipt) -> List[SupplierInvoiceLine]:
    """One bill line per GRN line, valued at the PO price and carrying its tax rate"""
    grni_account = posting.account_for_role(SystemRole.GOODS_RECEIVED_NOT_INVOICED)
    grn_lines = db.query(GoodsReceiptLine).options(
        joinedload(GoodsReceiptLine.po_line), joinedload(GoodsReceiptLine.item)
    ).filter(GoodsReceiptLine.goods_receipt_id == grn.id).all()

    lines = []
    for line in grn_lines:
        amount = money(line.line_total)
        tax_rate = to_decimal(line.po_line.tax_rate)
        lines.append(SupplierInvoiceLine(
            account_id=grni_account.id,
            item_id=line.item_id,
            description=f"{line.item.name} x {float(line.quantity_received):g}",
            amount=amount,
            tax_rate=tax_rate,
            tax_amount=_tax(amount, tax_rate)
        ))
    return lines


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get("", response_model=List[SupplierInvoiceOut])
def list_supplier_invoices(
    status: Optional[str] = None,
    supplier_id: Optional[int] = None,
    overdue: bool = False,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    company_id = get_company_id(current_user)

    query = db.query(SupplierInvoice).filter(SupplierInvoice.company_id == company_id)
    if status:
        query = query.filter(SupplierInvoice.status == status)
    if supplier_id:
        query = query.filter(SupplierInvoice.supplier_id == supplier_id)
    if overdue:
        query = query.filter(
            SupplierInvoice.status != "paid",
            SupplierInvoice.due_date < date.today()
        )

    return query.order_by(desc(SupplierInvoice.bill_date), desc(SupplierInvoice.id)).all()


@router.get("/{bill_id}", response_model=SupplierInvoiceOut)
def get_supplier_invoice(
    bill_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    company_id = get_company_id(current_user)
    bill = db.query(SupplierInvoice).options(joinedload(SupplierInvoice.lines)).filter(
        SupplierInvoice.id == bill_id,
        SupplierInvoice.company_id == company_id
    ).first()
    if not bill:
        raise HTTPException(status_code=404, detail="Supplier invoice not found")
    return bill


@router.post("", response_model=SupplierInvoiceOut)
def create_supplier_invoice(
    data: SupplierInvoiceCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*POSTING_ROLES))
):
    """Record and post a supplier bill, from a goods receipt or from expense lines"""
    company_id = get_company_id(current_user)

    supplier = db.query(Supplier).filter(
        Supplier.id == data.supplier_id,
        Supplier.company_id == company_id
    ).first()
    if not supplier:
        raise HTTPException(status_code=404, detail="Supplier not found")

    posting = JournalPostingService(db, company_id, current_user.id)

    try:
        grn = None
        if data.goods_receipt_id:
            grn = db.query(GoodsReceipt).filter(
                GoodsReceipt.id == data.goods_receipt_id,
                GoodsReceipt.company_id == company_id
            ).first()
            if not grn:
                raise ValueError("Goods receipt not found")
            if grn.supplier_id != supplier.id:
                raise ValueError(f"Goods receipt {grn.grn_number} is not from this supplier")
            if grn.status == "billed":
                raise ValueError(f"Goods receipt {grn.grn_number} has already been billed")
            if data.lines:
                raise ValueError("A bill for a goods receipt takes its lines from the receipt")
            bill_lines = _lines_from_grn(db, posting, grn)
        else:
            if not data.lines:
                raise ValueError("A bill needs a goods receipt or at least one line")
            bill_lines = []
            for line in data.lines:
                amount = money(line.amount)
                bill_lines.append(SupplierInvoiceLine(
                    account_id=line.account_id,
                    description=line.description,
                    amount=amount,
                    tax_rate=line.tax_rate,
                    tax_amount=_tax(amount, line.tax_rate)
                ))

        subtotal = sum((to_decimal(l.amount) for l in bill_lines), ZERO)
        tax = sum((to_decimal(l.tax_amount) for l in bill_lines), ZERO)
        total = subtotal + tax

        terms = supplier.payment_terms_days if supplier.payment_terms_days is not None else settings.invoice_due_days
        bill = SupplierInvoice(
            company_id=company_id,
            bill_number=next_document_number(
                db, SupplierInvoice.bill_number, SupplierInvoice.company_id, company_id,
                f"BILL-{data.bill_date.year}-", 5
            ),
            supplier_id=supplier.id,
            goods_receipt_id=grn.id if grn else None,
            supplier_reference=data.supplier_reference,
            bill_date=data.bill_date,
            due_date=data.due_date or data.bill_date + timedelta(days=terms),
            status="unpaid",
            subtotal=subtotal,
            tax_amount=tax,
            total_amount=total,
            amount_paid=ZERO,
            notes=data.notes,
            created_by=current_user.id
        )
        for line_number, line in enumerate(bill_lines, start=1):
            line.line_number = line_number
            bill.lines.append(line)
        db.add(bill)
        db.flush()

        ap_account = posting.account_for_role(SystemRole.ACCOUNTS_PAYABLE)
        lines = [
            posting.debit(line.account_id, line.amount, line.description or f"Bill {bill.bill_number}")
            for line in bill_lines
        ]
        if tax > 0:
            vat_account = posting.account_for_role(SystemRole.VAT_INPUT)
            lines.append(posting.debit(vat_account.id, tax, "Input VAT"))
        lines.append(posting.credit(ap_account.id, total, f"Bill {bill.bill_number} - {supplier.name}",
                                    payee_type="supplier", payee_id=supplier.id))

        voucher = posting.create_voucher(
            entry_date=data.bill_date,
            narration=f"Supplier bill {bill.bill_number}"
                      + (f" ({data.supplier_reference})" if data.supplier_reference else ""),
            lines=lines,
            source_type=SourceType.PURCHASE,
            reference_type="SupplierInvoice",
            reference_id=bill.id,
            reference_number=bill.bill_number
        )
        bill.voucher_id = voucher.id
        if grn:
            grn.status = "billed"

        db.commit()
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    db.refresh(bill)
    logger.info(f"Posted supplier bill {bill.bill_number} for {supplier.name}: {bill.total_amount}")
    return bill
