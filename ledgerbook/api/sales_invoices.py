"""
Sales Invoice API
Draft, issue (revenue + VAT + cost of sales in one voucher) and cancel.
"""

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session, joinedload
from sqlalchemy import desc
from typing import List, Optional
from datetime import date, timedelta
from collections import defaultdict
import logging

from ledgerbook.config import settings
from ledgerbook.database import get_db
from ledgerbook.models import (
    User, Company, Customer, Item, SalesInvoice, SalesInvoiceItem,
    Receipt, ReceiptAllocation, CreditNote, JournalVoucher
)
from ledgerbook.schemas import DocumentLineCreate, DocumentLine
from ledgerbook.services.dependency import (
    get_current_user, get_company_id, get_company, require_roles, WRITE_ROLES, POSTING_ROLES
)
from ledgerbook.services.journal_posting import (
    JournalPostingService, SystemRole, SourceType, to_decimal, ZERO
)
from ledgerbook.services.inventory import InventoryService, inventory_role_for
from ledgerbook.services.document_totals import line_amounts, document_totals
from ledgerbook.utils.numbering import next_document_number

logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# PYDANTIC SCHEMAS
# =============================================================================

class SalesInvoiceCreate(BaseModel):
    customer_id: int
    invoice_date: date
    due_date: Optional[date] = None
    notes: Optional[str] = None
    lines: List[DocumentLineCreate] = Field(..., min_length=1)
    issue: bool = False


class SalesInvoiceBrief(BaseModel):
    id: int
    invoice_number: Optional[str] = None
    customer_id: int
    customer_name: Optional[str] = None
    invoice_date: date
    due_date: date
    status: str
    total_amount: float
    amount_paid: float
    amount_credited: float
    amount_due: float
    is_overdue: bool


class SalesInvoiceDetail(SalesInvoiceBrief):
    subtotal: float
    discount_amount: float
    tax_amount: float
    notes: Optional[str] = None
    voucher_id: Optional[int] = None
    lines: List[DocumentLine]
    payments: List[dict]
    credits: List[dict]


# =============================================================================
# HELPERS
# =============================================================================

def get_invoice_or_404(db: Session, company_id: int, invoice_id: int) -> SalesInvoice:
    invoice = db.query(SalesInvoice).options(
        joinedload(SalesInvoice.items).joinedload(SalesInvoiceItem.item),
        joinedload(SalesInvoice.customer)
    ).filter(
        SalesInvoice.id == invoice_id,
        SalesInvoice.company_id == company_id
    ).first()
    if not invoice:
        raise HTTPException(status_code=404, detail="Sales invoice not found")
    return invoice


def is_overdue(invoice: SalesInvoice, as_of: Optional[date] = None) -> bool:
    as_of = as_of or date.today()
    return (
        invoice.status in ("ISSUED", "PARTIAL", "OVERDUE")
        and invoice.due_date < as_of
        and invoice.amount_due > 0
    )


def default_due_date(company: Company, customer: Customer, invoice_date: date) -> date:
    terms = customer.payment_terms_days
    if terms is None:
        terms = company.invoice_terms_days
    if terms is None:
        terms = settings.invoice_due_days
    return invoice_date + timedelta(days=terms)


def serialize_invoice_brief(invoice: SalesInvoice) -> dict:
    return {
        "id": invoice.id,
        "invoice_number": invoice.invoice_number,
        "customer_id": invoice.customer_id,
        "customer_name": invoice.customer.name if invoice.customer else None,
        "invoice_date": invoice.invoice_date,
        "due_date": invoice.due_date,
        "status": invoice.status,
        "total_amount": float(invoice.total_amount or 0),
        "amount_paid": float(invoice.amount_paid or 0),
        "amount_credited": float(invoice.amount_credited or 0),
        "amount_due": float(invoice.amount_due),
        "is_overdue": is_overdue(invoice),
    }


def issue_invoice(db: Session, invoice: SalesInvoice, user_id: int):
    """
    Post the invoice in one voucher:
      Dr AR (total, payee customer)       Cr Sales Revenue (subtotal)
      Dr Sales Returns (discount)          Cr VAT Payable (tax)
      Dr COGS (cost of stocked lines)      Cr Inventory
    and take the stocked quantities out at average cost.
    """
    if invoice.status != "DRAFT":
        raise ValueError(f"Only draft invoices can be issued (status is {invoice.status})")

    company_id = invoice.company_id
    posting = JournalPostingService(db, company_id, user_id)
    inventory = InventoryService(db, company_id, user_id)

    # Check every stocked item before touching stock
    required = defaultdict(lambda: ZERO)
    items_by_id = {}
    for line in invoice.items:
        if line.item and line.item.is_stocked:
            required[line.item.id] += to_decimal(line.quantity)
            items_by_id[line.item.id] = line.item
    for item_id, qty in required.items():
        inventory.check_available(items_by_id[item_id], qty)

    ar_account = posting.account_for_role(SystemRole.ACCOUNTS_RECEIVABLE)
    revenue_account = posting.account_for_role(SystemRole.SALES_REVENUE)

    lines = [
        posting.debit(ar_account.id, invoice.total_amount, f"Invoice {invoice.invoice_number}",
                      payee_type="customer", payee_id=invoice.customer_id),
    ]
    if to_decimal(invoice.discount_amount) > 0:
        returns_account = posting.account_for_role(SystemRole.SALES_RETURNS_ALLOWANCES)
        lines.append(posting.debit(returns_account.id, invoice.discount_amount, "Sales discount"))
    lines.append(posting.credit(revenue_account.id, invoice.subtotal, "Sales revenue"))
    if to_decimal(invoice.tax_amount) > 0:
        vat_account = posting.account_for_role(SystemRole.VAT_PAYABLE)
        lines.append(posting.credit(vat_account.id, invoice.tax_amount, "Output VAT"))

    cost_by_role = defaultdict(lambda: ZERO)
    for line in invoice.items:
        if not (line.item and line.item.is_stocked):
            continue
        line.unit_cost = line.item.average_unit_cost
        cost = inventory.issue(
            line.item, line.quantity, "SALE", invoice.invoice_date,
            reference_type="SalesInvoice", reference_id=invoice.id,
            reference_number=invoice.invoice_number
        )
        cost_by_role[inventory_role_for(line.item)] += cost

    total_cost = sum(cost_by_role.values(), ZERO)
    if total_cost > 0:
        cogs_account = posting.account_for_role(SystemRole.COGS)
        lines.append(posting.debit(cogs_account.id, total_cost, "Cost of goods sold"))
        for role, cost in cost_by_role.items():
            lines.append(posting.credit(posting.account_for_role(role).id, cost, "Inventory issued"))

    voucher = posting.create_voucher(
        entry_date=invoice.invoice_date,
        narration=f"Sales invoice {invoice.invoice_number} - {invoice.customer.name}",
        lines=lines,
        source_type=SourceType.SALES,
        reference_type="SalesInvoice",
        reference_id=invoice.id,
        reference_number=invoice.invoice_number
    )

    invoice.voucher_id = voucher.id
    invoice.status = "ISSUED"
    return voucher


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get("", response_model=List[SalesInvoiceBrief])
def list_sales_invoices(
    status: Optional[str] = None,
    customer_id: Optional[int] = None,
    overdue: Optional[bool] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    company_id = get_company_id(current_user)

    query = db.query(SalesInvoice).options(joinedload(SalesInvoice.customer)).filter(
        SalesInvoice.company_id == company_id
    )
    if status:
        query = query.filter(SalesInvoice.status == status.upper())
    if customer_id:
        query = query.filter(SalesInvoice.customer_id == customer_id)
    if start_date:
        query = query.filter(SalesInvoice.invoice_date >= start_date)
    if end_date:
        query = query.filter(SalesInvoice.invoice_date <= end_date)

    invoices = query.order_by(desc(SalesInvoice.invoice_date), desc(SalesInvoice.id)).all()
    if overdue is not None:
        invoices = [inv for inv in invoices if is_overdue(inv) == overdue]

    return [serialize_invoice_brief(inv) for inv in invoices]


@router.post("", response_model=SalesInvoiceDetail)
def create_sales_invoice(
    data: SalesInvoiceCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*WRITE_ROLES))
):
    company = get_company(current_user, db)
    company_id = company.id

    customer = db.query(Customer).filter(
        Customer.id == data.customer_id,
        Customer.company_id == company_id
    ).first()
    if not customer:
        raise HTTPException(status_code=404, detail="Customer not found")
    if not customer.is_active:
        raise HTTPException(status_code=400, detail="Customer is inactive")

    if data.issue and current_user.role not in POSTING_ROLES:
        raise HTTPException(status_code=403, detail=f"Role '{current_user.role}' cannot issue invoices")

    try:
        computed = []
        for line in data.lines:
            item = None
            if line.item_id:
                item = db.query(Item).filter(
                    Item.id == line.item_id,
                    Item.company_id == company_id,
                    Item.is_active == True
                ).first()
                if not item:
                    raise ValueError(f"Item {line.item_id} not found or inactive")
            elif not line.description:
                raise ValueError("Each line needs an item or a description")
            amounts = line_amounts(line.quantity, line.unit_price, line.discount_amount, line.tax_rate)
            computed.append((line, item, amounts))

        totals = document_totals(amounts for _, _, amounts in computed)

        invoice = SalesInvoice(
            company_id=company_id,
            invoice_number=next_document_number(
                db, SalesInvoice.invoice_number, SalesInvoice.company_id, company_id, "INV-", 5
            ),
            customer_id=customer.id,
            invoice_date=data.invoice_date,
            due_date=data.due_date or default_due_date(company, customer, data.invoice_date),
            status="DRAFT",
            notes=data.notes,
            amount_paid=ZERO,
            amount_credited=ZERO,
            created_by=current_user.id,
            **totals
        )
        if invoice.due_date < invoice.invoice_date:
            raise ValueError("Due date cannot be before the invoice date")

        for line_number, (line, item, amounts) in enumerate(computed, start=1):
            invoice.items.append(SalesInvoiceItem(
                item=item,
                description=line.description or (item.name if item else None),
                quantity=line.quantity,
                unit_price=line.unit_price,
                tax_rate=line.tax_rate,
                line_number=line_number,
                **amounts
            ))

        db.add(invoice)
        db.flush()

        if data.issue:
            db.refresh(invoice)
            issue_invoice(db, invoice, current_user.id)

        db.commit()
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    logger.info(f"Created sales invoice {invoice.invoice_number} ({invoice.status}) total {invoice.total_amount}")
    return get_sales_invoice(invoice.id, db, current_user)


@router.get("/{invoice_id}", response_model=SalesInvoiceDetail)
def get_sales_invoice(
    invoice_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    company_id = get_company_id(current_user)
    invoice = get_invoice_or_404(db, company_id, invoice_id)

    payments = db.query(ReceiptAllocation, Receipt).join(
        Receipt, ReceiptAllocation.receipt_id == Receipt.id
    ).filter(
        ReceiptAllocation.invoice_id == invoice.id,
        Receipt.status == "posted"
    ).order_by(Receipt.receipt_date).all()

    credits = db.query(CreditNote).filter(
        CreditNote.invoice_id == invoice.id,
        CreditNote.status == "posted"
    ).order_by(CreditNote.credit_date).all()

    result = serialize_invoice_brief(invoice)
    result.update({
        "subtotal": float(invoice.subtotal or 0),
        "discount_amount": float(invoice.discount_amount or 0),
        "tax_amount": float(invoice.tax_amount or 0),
        "notes": invoice.notes,
        "voucher_id": invoice.voucher_id,
        "lines": [DocumentLine.model_validate(line) for line in invoice.items],
        "payments": [
            {
                "receipt_id": receipt.id,
                "receipt_number": receipt.receipt_number,
                "receipt_date": receipt.receipt_date.isoformat(),
                "amount": float(allocation.amount),
            }
            for allocation, receipt in payments
        ],
        "credits": [
            {
                "credit_note_id": note.id,
                "credit_note_number": note.credit_note_number,
                "credit_date": note.credit_date.isoformat(),
                "amount": float(note.total_amount),
            }
            for note in credits
        ],
    })
    return result


@router.post("/{invoice_id}/issue")
def issue_sales_invoice(
    invoice_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*POSTING_ROLES))
):
    company_id = get_company_id(current_user)
    invoice = get_invoice_or_404(db, company_id, invoice_id)

    try:
        voucher = issue_invoice(db, invoice, current_user.id)
        db.commit()
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "message": f"Invoice {invoice.invoice_number} issued",
        "status": invoice.status,
        "voucher_id": voucher.id,
        "voucher_number": voucher.voucher_number
    }


@router.post("/{invoice_id}/cancel")
def cancel_sales_invoice(
    invoice_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*POSTING_ROLES))
):
    """Cancel a draft, or an issued invoice with no payments or credits against it"""
    company_id = get_company_id(current_user)
    invoice = get_invoice_or_404(db, company_id, invoice_id)

    if invoice.status == "DRAFT":
        invoice.status = "CANCELLED"
        db.commit()
        return {"message": f"Invoice {invoice.invoice_number} cancelled", "status": invoice.status}

    if invoice.status != "ISSUED":
        raise HTTPException(status_code=400, detail=f"Cannot cancel an invoice with status {invoice.status}")
    if to_decimal(invoice.amount_paid) > 0 or to_decimal(invoice.amount_credited) > 0:
        raise HTTPException(status_code=400, detail="Cannot cancel an invoice with payments or credits applied")

    posting = JournalPostingService(db, company_id, current_user.id)
    inventory = InventoryService(db, company_id, current_user.id)
    today = date.today()
    reversal = None

    try:
        if invoice.voucher_id:
            voucher = db.query(JournalVoucher).filter(JournalVoucher.id == invoice.voucher_id).first()
            reversal = posting.reverse_voucher(
                voucher, reversal_date=today,
                narration=f"Cancellation of invoice {invoice.invoice_number}"
            )

        for line in invoice.items:
            if line.item and line.item.is_stocked:
                inventory.receive(
                    line.item, line.quantity, line.unit_cost or line.item.average_unit_cost,
                    "SALE_RETURN", today,
                    reference_type="SalesInvoice", reference_id=invoice.id,
                    reference_number=invoice.invoice_number,
                    notes="Invoice cancelled"
                )

        invoice.status = "CANCELLED"
        db.commit()
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    logger.info(f"Cancelled sales invoice {invoice.invoice_number}")
    return {
        "message": f"Invoice {invoice.invoice_number} cancelled",
        "status": invoice.status,
        "reversal_voucher": reversal.voucher_number if reversal else None
    }
