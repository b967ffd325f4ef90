"""
Credit Notes API
Customer credits, optionally against an invoice and optionally returning goods to stock.
"""

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session, joinedload
from sqlalchemy import desc, func
from typing import List, Optional
from datetime import date, datetime
from collections import defaultdict
import logging

from ledgerbook.database import get_db
from ledgerbook.models import (
    User, Customer, Item, ItemLedger, SalesInvoice, CreditNote, CreditNoteItem, JournalVoucher
)
from ledgerbook.schemas import DocumentLineCreate, DocumentLine, ReverseRequest
from ledgerbook.services.dependency import (
    get_current_user, get_company_id, require_roles, WRITE_ROLES, POSTING_ROLES
)
from ledgerbook.services.journal_posting import JournalPostingService, SystemRole, SourceType, to_decimal, ZERO
from ledgerbook.services.inventory import InventoryService, inventory_role_for
from ledgerbook.services.document_totals import line_amounts, document_totals
from ledgerbook.services.settlement import apply_invoice_credit, remove_invoice_credit
from ledgerbook.utils.numbering import next_document_number

logger = logging.getLogger(__name__)

router = APIRouter()

OPEN_INVOICE_STATUSES = ("ISSUED", "PARTIAL", "OVERDUE")


# =============================================================================
# PYDANTIC SCHEMAS
# =============================================================================

class CreditNoteLineCreate(DocumentLineCreate):
    invoice_item_id: Optional[int] = None


class CreditNoteCreate(BaseModel):
    customer_id: int
    invoice_id: Optional[int] = None
    credit_date: date
    reason: Optional[str] = None
    restock: bool = False
    lines: List[CreditNoteLineCreate] = Field(..., min_length=1)


class CreditNoteLine(DocumentLine):
    invoice_item_id: Optional[int] = None


class CreditNoteResponse(BaseModel):
    id: int
    credit_note_number: str
    customer_id: int
    invoice_id: Optional[int] = None
    credit_date: date
    reason: Optional[str] = None
    restock: bool
    status: str
    subtotal: float
    discount_amount: float
    tax_amount: float
    total_amount: float
    voucher_id: Optional[int] = None
    created_at: datetime
    items: List[CreditNoteLine] = []

    class Config:
        from_attributes = True


# =============================================================================
# HELPERS
# =============================================================================

def get_credit_note_or_404(db: Session, company_id: int, credit_note_id: int) -> CreditNote:
    note = db.query(CreditNote).options(
        joinedload(CreditNote.items).joinedload(CreditNoteItem.item)
    ).filter(
        CreditNote.id == credit_note_id,
        CreditNote.company_id == company_id
    ).first()
    if not note:
        raise HTTPException(status_code=404, detail="Credit note not found")
    return note


def credited_quantities(db: Session, invoice_id: int, exclude_note_id: Optional[int] = None) -> dict:
    """Quantity already credited per invoice line by posted credit notes"""
    query = db.query(
        CreditNoteItem.invoice_item_id, func.coalesce(func.sum(CreditNoteItem.quantity), 0)
    ).join(
        CreditNote, CreditNoteItem.credit_note_id == CreditNote.id
    ).filter(
        CreditNote.invoice_id == invoice_id,
        CreditNote.status == "posted",
        CreditNoteItem.invoice_item_id.isnot(None)
    )
    if exclude_note_id:
        query = query.filter(CreditNote.id != exclude_note_id)
    return {row[0]: to_decimal(row[1]) for row in query.group_by(CreditNoteItem.invoice_item_id).all()}


def validate_against_invoice(db: Session, invoice: SalesInvoice, customer_id: int, total,
                             lines: List[CreditNoteLineCreate], exclude_note_id: Optional[int] = None):
    if invoice.customer_id != customer_id:
        raise ValueError(f"Invoice {invoice.invoice_number} does not belong to this customer")
    if invoice.status not in OPEN_INVOICE_STATUSES:
        raise ValueError(f"Invoice {invoice.invoice_number} is not open (status {invoice.status})")
    if to_decimal(total) > invoice.amount_due:
        raise ValueError(
            f"Credit total {total} exceeds the amount due {invoice.amount_due} on invoice {invoice.invoice_number}"
        )

    invoice_lines = {line.id: line for line in invoice.items}
    already = credited_quantities(db, invoice.id, exclude_note_id)
    requested = defaultdict(lambda: ZERO)
    for line in lines:
        if not line.invoice_item_id:
            if line.item_id:
                raise ValueError(
                    f"Item {line.item_id} must reference the line of invoice {invoice.invoice_number} it was sold on"
                )
            continue
        invoice_line = invoice_lines.get(line.invoice_item_id)
        if not invoice_line:
            raise ValueError(f"Invoice line {line.invoice_item_id} is not on invoice {invoice.invoice_number}")
        if line.item_id and line.item_id != invoice_line.item_id:
            raise ValueError(f"Invoice line {invoice_line.line_number} was not sold with item {line.item_id}")
        requested[line.invoice_item_id] += to_decimal(line.quantity)
        returnable = to_decimal(invoice_line.quantity) - already.get(invoice_line.id, ZERO)
        if requested[line.invoice_item_id] > returnable:
            raise ValueError(
                f"Quantity for invoice line {invoice_line.line_number} exceeds the returnable quantity {returnable}"
            )


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get("", response_model=List[CreditNoteResponse])
def list_credit_notes(
    status: Optional[str] = None,
    customer_id: Optional[int] = None,
    invoice_id: Optional[int] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    company_id = get_company_id(current_user)

    query = db.query(CreditNote).filter(CreditNote.company_id == company_id)
    if status:
        query = query.filter(CreditNote.status == status)
    if customer_id:
        query = query.filter(CreditNote.customer_id == customer_id)
    if invoice_id:
        query = query.filter(CreditNote.invoice_id == invoice_id)

    return query.order_by(desc(CreditNote.credit_date), desc(CreditNote.id)).all()


@router.get("/invoice-items/{invoice_id}")
def get_returnable_invoice_items(
    invoice_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Invoice lines with the quantity still available to credit"""
    company_id = get_company_id(current_user)

    invoice = db.query(SalesInvoice).filter(
        SalesInvoice.id == invoice_id,
        SalesInvoice.company_id == company_id
    ).first()
    if not invoice:
        raise HTTPException(status_code=404, detail="Sales invoice not found")

    already = credited_quantities(db, invoice.id)
    rows = []
    for line in invoice.items:
        credited = already.get(line.id, ZERO)
        returnable = to_decimal(line.quantity) - credited
        if returnable <= 0:
            continue
        rows.append({
            "invoice_item_id": line.id,
            "item_id": line.item_id,
            "description": line.description,
            "quantity": float(line.quantity),
            "credited_quantity": float(credited),
            "returnable_quantity": float(returnable),
            "unit_price": float(line.unit_price),
            "tax_rate": float(line.tax_rate or 0),
        })

    return {
        "invoice_id": invoice.id,
        "invoice_number": invoice.invoice_number,
        "amount_due": float(invoice.amount_due),
        "items": rows
    }


@router.post("", response_model=CreditNoteResponse)
def create_credit_note(
    data: CreditNoteCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*WRITE_ROLES))
):
    company_id = get_company_id(current_user)

    customer = db.query(Customer).filter(
        Customer.id == data.customer_id,
        Customer.company_id == company_id
    ).first()
    if not customer:
        raise HTTPException(status_code=404, detail="Customer not found")

    try:
        invoice = None
        if data.invoice_id:
            invoice = db.query(SalesInvoice).filter(
                SalesInvoice.id == data.invoice_id,
                SalesInvoice.company_id == company_id
            ).first()
            if not invoice:
                raise ValueError("Sales invoice not found")
        elif any(line.invoice_item_id for line in data.lines):
            raise ValueError("Invoice lines can only be referenced when an invoice is given")
        elif data.restock:
            raise ValueError("Goods can only be restocked against the invoice they were sold on")

        sold_items = {line.id: line.item_id for line in invoice.items} if invoice else {}
        computed = []
        for line in data.lines:
            item = None
            item_id = line.item_id or sold_items.get(line.invoice_item_id)
            if item_id:
                item = db.query(Item).filter(Item.id == item_id, Item.company_id == company_id).first()
                if not item:
                    raise ValueError(f"Item {item_id} not found")
            amounts = line_amounts(line.quantity, line.unit_price, line.discount_amount, line.tax_rate)
            computed.append((line, item, amounts))

        totals = document_totals(amounts for _, _, amounts in computed)

        if invoice:
            validate_against_invoice(db, invoice, customer.id, totals["total_amount"], data.lines)

        note = CreditNote(
            company_id=company_id,
            credit_note_number=next_document_number(
                db, CreditNote.credit_note_number, CreditNote.company_id, company_id, "CN-", 5
            ),
            customer_id=customer.id,
            invoice_id=data.invoice_id,
            credit_date=data.credit_date,
            reason=data.reason,
            restock=data.restock,
            status="draft",
            created_by=current_user.id,
            **totals
        )
        for line_number, (line, item, amounts) in enumerate(computed, start=1):
            note.items.append(CreditNoteItem(
                item=item,
                invoice_item_id=line.invoice_item_id,
                description=line.description or (item.name if item else None),
                quantity=line.quantity,
                unit_price=line.unit_price,
                tax_rate=line.tax_rate,
                line_number=line_number,
                **amounts
            ))
        db.add(note)
        db.commit()
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    db.refresh(note)
    logger.info(f"Created draft credit note {note.credit_note_number} total {note.total_amount}")
    return note


@router.get("/{credit_note_id}", response_model=CreditNoteResponse)
def get_credit_note(
    credit_note_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return get_credit_note_or_404(db, get_company_id(current_user), credit_note_id)


@router.delete("/{credit_note_id}")
def delete_credit_note(
    credit_note_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*WRITE_ROLES))
):
    company_id = get_company_id(current_user)
    note = get_credit_note_or_404(db, company_id, credit_note_id)

    if note.status != "draft":
        raise HTTPException(status_code=400, detail="Only draft credit notes can be deleted")

    number = note.credit_note_number
    db.delete(note)
    db.commit()
    return {"message": f"Credit note {number} deleted"}


@router.post("/{credit_note_id}/post")
def post_credit_note(
    credit_note_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*POSTING_ROLES))
):
    """
    Dr Sales Returns (net) / Dr VAT Payable (tax) / Cr AR (total, payee customer).
    With restock, stocked items come back at average cost: Dr Inventory / Cr COGS.
    """
    company_id = get_company_id(current_user)
    note = get_credit_note_or_404(db, company_id, credit_note_id)

    if note.status != "draft":
        raise HTTPException(status_code=400, detail=f"Cannot post a credit note with status '{note.status}'")

    posting = JournalPostingService(db, company_id, current_user.id)
    inventory = InventoryService(db, company_id, current_user.id)
    try:
        invoice = None
        if note.invoice_id:
            invoice = db.query(SalesInvoice).filter(SalesInvoice.id == note.invoice_id).first()
            validate_against_invoice(
                db, invoice, note.customer_id, note.total_amount,
                [CreditNoteLineCreate(
                    item_id=i.item_id, invoice_item_id=i.invoice_item_id,
                    quantity=float(i.quantity), unit_price=float(i.unit_price)
                ) for i in note.items],
                exclude_note_id=note.id
            )

        net = to_decimal(note.subtotal) - to_decimal(note.discount_amount)
        returns_account = posting.account_for_role(SystemRole.SALES_RETURNS_ALLOWANCES)
        ar_account = posting.account_for_role(SystemRole.ACCOUNTS_RECEIVABLE)

        lines = [posting.debit(returns_account.id, net, note.reason or "Sales return")]
        if to_decimal(note.tax_amount) > 0:
            vat_account = posting.account_for_role(SystemRole.VAT_PAYABLE)
            lines.append(posting.debit(vat_account.id, note.tax_amount, "Output VAT reversed"))
        lines.append(posting.credit(ar_account.id, note.total_amount, f"Credit note {note.credit_note_number}",
                                    payee_type="customer", payee_id=note.customer_id))

        if note.restock:
            if not invoice:
                raise ValueError("Goods can only be restocked against the invoice they were sold on")
            invoice_costs = {line.id: line.unit_cost for line in invoice.items}
            value_by_role = defaultdict(lambda: ZERO)
            for line in note.items:
                if not (line.item and line.item.is_stocked):
                    continue
                unit_cost = to_decimal(line.item.average_unit_cost)
                if unit_cost == 0:
                    unit_cost = to_decimal(invoice_costs.get(line.invoice_item_id))
                value = inventory.receive(
                    line.item, line.quantity, unit_cost, "SALE_RETURN", note.credit_date,
                    reference_type="CreditNote", reference_id=note.id,
                    reference_number=note.credit_note_number
                )
                value_by_role[inventory_role_for(line.item)] += value

            restocked = sum(value_by_role.values(), ZERO)
            if restocked > 0:
                for role, value in value_by_role.items():
                    lines.append(posting.debit(posting.account_for_role(role).id, value, "Goods returned to stock"))
                cogs_account = posting.account_for_role(SystemRole.COGS)
                lines.append(posting.credit(cogs_account.id, restocked, "Cost of goods returned"))

        voucher = posting.create_voucher(
            entry_date=note.credit_date,
            narration=f"Credit note {note.credit_note_number}" + (f" - {note.reason}" if note.reason else ""),
            lines=lines,
            source_type=SourceType.CREDIT_NOTE,
            reference_type="CreditNote",
            reference_id=note.id,
            reference_number=note.credit_note_number
        )

        if invoice:
            apply_invoice_credit(invoice, note.total_amount)

        note.voucher_id = voucher.id
        note.status = "posted"
        db.commit()
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "message": f"Credit note {note.credit_note_number} posted",
        "voucher_id": voucher.id,
        "voucher_number": voucher.voucher_number
    }


@router.post("/{credit_note_id}/reverse")
def reverse_credit_note(
    credit_note_id: int,
    data: Optional[ReverseRequest] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*POSTING_ROLES))
):
    """
    Reverse the credit note voucher, take the credit back off the invoice and
    withdraw any restocked goods at the cost they came back in at.
    """
    company_id = get_company_id(current_user)
    note = get_credit_note_or_404(db, company_id, credit_note_id)

    if note.status != "posted":
        raise HTTPException(status_code=400, detail="Only posted credit notes can be reversed")

    data = data or ReverseRequest()
    posting = JournalPostingService(db, company_id, current_user.id)
    inventory = InventoryService(db, company_id, current_user.id)
    try:
        voucher = db.query(JournalVoucher).filter(JournalVoucher.id == note.voucher_id).first()
        reversal = posting.reverse_voucher(
            voucher, reversal_date=data.reversal_date,
            narration=data.narration or f"Reversal of credit note {note.credit_note_number}"
        )

        restocked = db.query(ItemLedger).filter(
            ItemLedger.company_id == company_id,
            ItemLedger.reference_type == "CreditNote",
            ItemLedger.reference_id == note.id,
            ItemLedger.transaction_type == "SALE_RETURN"
        ).order_by(ItemLedger.id).all()
        for entry in restocked:
            item = db.query(Item).filter(Item.id == entry.item_id).first()
            inventory.withdraw(
                item, entry.quantity, entry.unit_cost, "SALE_RETURN_REVERSED", reversal.entry_date,
                reference_type="CreditNote", reference_id=note.id,
                reference_number=note.credit_note_number
            )

        if note.invoice_id:
            invoice = db.query(SalesInvoice).filter(SalesInvoice.id == note.invoice_id).first()
            remove_invoice_credit(invoice, note.total_amount)

        note.status = "reversed"
        db.commit()
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    logger.info(f"Reversed credit note {note.credit_note_number} with {reversal.voucher_number}")
    return {
        "message": f"Credit note {note.credit_note_number} reversed",
        "reversal_voucher": reversal.voucher_number
    }
