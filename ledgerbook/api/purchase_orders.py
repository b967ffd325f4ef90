from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session, joinedload
from sqlalchemy import desc
from typing import List, Optional
from datetime import date, datetime
import logging

from ledgerbook.database import get_db
from ledgerbook.models import User, Supplier, Item, PurchaseOrder, PurchaseOrderLine
from ledgerbook.services.dependency import (
    get_current_user, get_company_id, require_roles, WRITE_ROLES, POSTING_ROLES
)
from ledgerbook.services.journal_posting import to_decimal
from ledgerbook.services.document_totals import line_amounts
from ledgerbook.utils.numbering import next_document_number

logger = logging.getLogger(__name__)

router = APIRouter()

RECEIVABLE_PO_STATUSES = ("Approved", "Partially Received")


# =============================================================================
# PYDANTIC SCHEMAS
# =============================================================================

class PurchaseOrderLineCreate(BaseModel):
    item_id: int
    description: Optional[str] = None
    quantity: float = Field(..., gt=0)
    unit_price: float = Field(..., ge=0)
    tax_rate: float = Field(0, ge=0, le=100)


class PurchaseOrderCreate(BaseModel):
    supplier_id: int
    order_date: date
    expected_date: Optional[date] = None
    notes: Optional[str] = None
    lines: List[PurchaseOrderLineCreate] = Field(..., min_length=1)


class PurchaseOrderReject(BaseModel):
    reason: str = Field(..., min_length=1)


class PurchaseOrderLineOut(BaseModel):
    id: int
    item_id: int
    description: Optional[str] = None
    quantity_ordered: float
    quantity_received: float
    quantity_outstanding: float
    unit_price: float
    tax_rate: float
    line_total: float
    line_number: int

    class Config:
        from_attributes = True


class PurchaseOrderOut(BaseModel):
    id: int
    po_number: str
    supplier_id: int
    order_date: date
    expected_date: Optional[date] = None
    status: str
    subtotal: float
    tax_amount: float
    total_amount: float
    notes: Optional[str] = None
    approved_by: Optional[int] = None
    approved_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    created_at: datetime
    lines: List[PurchaseOrderLineOut] = []

    class Config:
        from_attributes = True


# =============================================================================
# HELPERS
# =============================================================================

def get_po_or_404(db: Session, company_id: int, po_id: int) -> PurchaseOrder:
    po = db.query(PurchaseOrder).options(
        joinedload(PurchaseOrder.lines).joinedload(PurchaseOrderLine.item)
    ).filter(
        PurchaseOrder.id == po_id,
        PurchaseOrder.company_id == company_id
    ).first()
    if not po:
        raise HTTPException(status_code=404, detail="Purchase order not found")
    return po


def update_po_status(po: PurchaseOrder):
    """Update PO status from the received quantities on its lines"""
    if not po.lines:
        return
    received = [to_decimal(line.quantity_received) for line in po.lines]
    if all(line.quantity_outstanding <= 0 for line in po.lines):
        po.status = "Completed"
    elif any(qty > 0 for qty in received):
        po.status = "Partially Received"


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get("", response_model=List[PurchaseOrderOut])
def list_purchase_orders(
    status: Optional[str] = None,
    supplier_id: Optional[int] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    company_id = get_company_id(current_user)

    query = db.query(PurchaseOrder).filter(PurchaseOrder.company_id == company_id)
    if status:
        query = query.filter(PurchaseOrder.status == status)
    if supplier_id:
        query = query.filter(PurchaseOrder.supplier_id == supplier_id)

    return query.order_by(desc(PurchaseOrder.order_date), desc(PurchaseOrder.id)).all()


@router.post("", response_model=PurchaseOrderOut)
def create_purchase_order(
    data: PurchaseOrderCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*WRITE_ROLES))
):
    company_id = get_company_id(current_user)

    supplier = db.query(Supplier).filter(
        Supplier.id == data.supplier_id,
        Supplier.company_id == company_id
    ).first()
    if not supplier:
        raise HTTPException(status_code=404, detail="Supplier not found")
    if not supplier.is_active:
        raise HTTPException(status_code=400, detail="Supplier is inactive")

    try:
        po = PurchaseOrder(
            company_id=company_id,
            po_number=next_document_number(
                db, PurchaseOrder.po_number, PurchaseOrder.company_id, company_id,
                f"PO-{data.order_date.year}-", 5
            ),
            supplier_id=supplier.id,
            order_date=data.order_date,
            expected_date=data.expected_date,
            notes=data.notes,
            status="Pending Approval",
            created_by=current_user.id
        )

        subtotal = tax = to_decimal(0)
        for line_number, line in enumerate(data.lines, start=1):
            item = db.query(Item).filter(
                Item.id == line.item_id,
                Item.company_id == company_id,
                Item.is_active == True
            ).first()
            if not item:
                raise ValueError(f"Item {line.item_id} not found or inactive")
            if not item.is_stocked:
                raise ValueError(f"Item {item.item_code} is a service and cannot be ordered for stock")

            amounts = line_amounts(line.quantity, line.unit_price, 0, line.tax_rate)
            subtotal += amounts["line_subtotal"]
            tax += amounts["tax_amount"]
            po.lines.append(PurchaseOrderLine(
                item_id=item.id,
                description=line.description or item.name,
                quantity_ordered=line.quantity,
                quantity_received=0,
                unit_price=line.unit_price,
                tax_rate=line.tax_rate,
                line_total=amounts["line_total"],
                line_number=line_number
            ))

        po.subtotal = subtotal
        po.tax_amount = tax
        po.total_amount = subtotal + tax

        db.add(po)
        db.commit()
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    db.refresh(po)
    logger.info(f"Created purchase order {po.po_number} total {po.total_amount}")
    return po


@router.get("/{po_id}", response_model=PurchaseOrderOut)
def get_purchase_order(
    po_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return get_po_or_404(db, get_company_id(current_user), po_id)


@router.post("/{po_id}/approve", response_model=PurchaseOrderOut)
def approve_purchase_order(
    po_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*POSTING_ROLES))
):
    company_id = get_company_id(current_user)
    po = get_po_or_404(db, company_id, po_id)

    if po.status != "Pending Approval":
        raise HTTPException(status_code=400, detail=f"Cannot approve a purchase order with status '{po.status}'")

    po.status = "Approved"
    po.approved_by = current_user.id
    po.approved_at = datetime.utcnow()
    db.commit()
    db.refresh(po)

    logger.info(f"Purchase order {po.po_number} approved by user {current_user.id}")
    return po


@router.post("/{po_id}/reject", response_model=PurchaseOrderOut)
def reject_purchase_order(
    po_id: int,
    data: PurchaseOrderReject,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*POSTING_ROLES))
):
    company_id = get_company_id(current_user)
    po = get_po_or_404(db, company_id, po_id)

    if po.status != "Pending Approval":
        raise HTTPException(status_code=400, detail=f"Cannot reject a purchase order with status '{po.status}'")

    po.status = "Rejected"
    po.rejection_reason = data.reason
    db.commit()
    db.refresh(po)
    return po


@router.post("/{po_id}/cancel", response_model=PurchaseOrderOut)
def cancel_purchase_order(
    po_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*POSTING_ROLES))
):
    company_id = get_company_id(current_user)
    po = get_po_or_404(db, company_id, po_id)

    if po.status in ("Cancelled", "Rejected", "Completed"):
        raise HTTPException(status_code=400, detail=f"Cannot cancel a purchase order with status '{po.status}'")
    if any(to_decimal(line.quantity_received) > 0 for line in po.lines):
        raise HTTPException(status_code=400, detail="Cannot cancel a purchase order that has received goods")

    po.status = "Cancelled"
    db.commit()
    db.refresh(po)
    return po
