"""
Goods Received Note (GRN) API endpoints.

- Receive against an approved or partially received purchase order
- Partial receiving with multiple GRNs per PO
- Stock in at the PO price with a weighted-average cost update
- Automatic journal entry posting (DR: Inventory, CR: GRNI)
"""
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session, joinedload
from sqlalchemy import desc
from typing import List, Optional
from datetime import date, datetime
from collections import defaultdict
import logging

from ledgerbook.database import get_db
from ledgerbook.models import User, PurchaseOrder, PurchaseOrderLine, GoodsReceipt, GoodsReceiptLine
from ledgerbook.services.dependency import (
    get_current_user, get_company_id, require_roles, WRITE_ROLES
)
from ledgerbook.services.journal_posting import JournalPostingService, SystemRole, SourceType, to_decimal, ZERO
from ledgerbook.services.inventory import InventoryService, inventory_role_for
from ledgerbook.api.purchase_orders import RECEIVABLE_PO_STATUSES, update_po_status
from ledgerbook.utils.numbering import next_document_number

router = APIRouter()
logger = logging.getLogger(__name__)


# =============================================================================
# PYDANTIC SCHEMAS
# =============================================================================

class GoodsReceiptLineCreate(BaseModel):
    po_line_id: int
    quantity_received: float = Field(..., gt=0)


class GoodsReceiptCreate(BaseModel):
    purchase_order_id: int
    receipt_date: date
    notes: Optional[str] = None
    lines: List[GoodsReceiptLineCreate] = Field(..., min_length=1)


class GoodsReceiptLineOut(BaseModel):
    id: int
    po_line_id: int
    item_id: int
    quantity_received: float
    unit_cost: float
    line_total: float

    class Config:
        from_attributes = True


class GoodsReceiptOut(BaseModel):
    id: int
    grn_number: str
    purchase_order_id: int
    supplier_id: int
    receipt_date: date
    status: str
    total_value: float
    notes: Optional[str] = None
    voucher_id: Optional[int] = None
    created_at: datetime
    lines: List[GoodsReceiptLineOut] = []

    class Config:
        from_attributes = True


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get("", response_model=List[GoodsReceiptOut])
def list_goods_receipts(
    purchase_order_id: Optional[int] = None,
    supplier_id: Optional[int] = None,
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    company_id = get_company_id(current_user)

    query = db.query(GoodsReceipt).filter(GoodsReceipt.company_id == company_id)
    if purchase_order_id:
        query = query.filter(GoodsReceipt.purchase_order_id == purchase_order_id)
    if supplier_id:
        query = query.filter(GoodsReceipt.supplier_id == supplier_id)
    if status:
        query = query.filter(GoodsReceipt.status == status)

    return query.order_by(desc(GoodsReceipt.receipt_date), desc(GoodsReceipt.id)).all()


@router.get("/{grn_id}", response_model=GoodsReceiptOut)
def get_goods_receipt(
    grn_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    company_id = get_company_id(current_user)
    grn = db.query(GoodsReceipt).options(joinedload(GoodsReceipt.lines)).filter(
        GoodsReceipt.id == grn_id,
        GoodsReceipt.company_id == company_id
    ).first()
    if not grn:
        raise HTTPException(status_code=404, detail="Goods receipt not found")
    return grn


@router.post("", response_model=GoodsReceiptOut)
def create_goods_receipt(
    data: GoodsReceiptCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*WRITE_ROLES))
):
    """Receive goods against a PO and post DR Inventory / CR GRNI"""
    company_id = get_company_id(current_user)

    po = db.query(PurchaseOrder).options(
        joinedload(PurchaseOrder.lines).joinedload(PurchaseOrderLine.item)
    ).filter(
        PurchaseOrder.id == data.purchase_order_id,
        PurchaseOrder.company_id == company_id
    ).first()
    if not po:
        raise HTTPException(status_code=404, detail="Purchase order not found")
    if po.status not in RECEIVABLE_PO_STATUSES:
        raise HTTPException(
            status_code=400,
            detail=f"Goods can only be received against an approved purchase order (status is '{po.status}')"
        )

    po_lines = {line.id: line for line in po.lines}
    posting = JournalPostingService(db, company_id, current_user.id)
    inventory = InventoryService(db, company_id, current_user.id)

    try:
        requested = defaultdict(lambda: ZERO)
        for line in data.lines:
            po_line = po_lines.get(line.po_line_id)
            if not po_line:
                raise ValueError(f"Line {line.po_line_id} is not on purchase order {po.po_number}")
            requested[po_line.id] += to_decimal(line.quantity_received)
            if requested[po_line.id] > po_line.quantity_outstanding:
                raise ValueError(
                    f"Quantity for {po_line.item.name} exceeds the outstanding quantity {po_line.quantity_outstanding}"
                )

        grn = GoodsReceipt(
            company_id=company_id,
            grn_number=next_document_number(
                db, GoodsReceipt.grn_number, GoodsReceipt.company_id, company_id,
                f"GRN-{data.receipt_date:%Y%m%d}-", 4
            ),
            purchase_order_id=po.id,
            supplier_id=po.supplier_id,
            receipt_date=data.receipt_date,
            status="received",
            notes=data.notes,
            created_by=current_user.id
        )
        db.add(grn)
        db.flush()

        value_by_role = defaultdict(lambda: ZERO)
        total_value = ZERO
        for line in data.lines:
            po_line = po_lines[line.po_line_id]
            value = inventory.receive(
                po_line.item, line.quantity_received, po_line.unit_price, "RECEIVE_PO", data.receipt_date,
                reference_type="GoodsReceipt", reference_id=grn.id, reference_number=grn.grn_number
            )
            po_line.quantity_received = to_decimal(po_line.quantity_received) + to_decimal(line.quantity_received)
            grn.lines.append(GoodsReceiptLine(
                po_line_id=po_line.id,
                item_id=po_line.item_id,
                quantity_received=line.quantity_received,
                unit_cost=po_line.unit_price,
                line_total=value
            ))
            value_by_role[inventory_role_for(po_line.item)] += value
            total_value += value

        grn.total_value = total_value

        if total_value > 0:
            grni_account = posting.account_for_role(SystemRole.GOODS_RECEIVED_NOT_INVOICED)
            lines = [
                posting.debit(posting.account_for_role(role).id, value, f"Goods received {grn.grn_number}")
                for role, value in value_by_role.items()
            ]
            lines.append(posting.credit(grni_account.id, total_value, f"GRNI {po.po_number}",
                                        payee_type="supplier", payee_id=po.supplier_id))
            voucher = posting.create_voucher(
                entry_date=data.receipt_date,
                narration=f"Goods received {grn.grn_number} against {po.po_number}",
                lines=lines,
                source_type=SourceType.PURCHASE,
                reference_type="GoodsReceipt",
                reference_id=grn.id,
                reference_number=grn.grn_number
            )
            grn.voucher_id = voucher.id

        update_po_status(po)
        db.commit()
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    db.refresh(grn)
    logger.info(f"Created {grn.grn_number} for {po.po_number}: value {grn.total_value}, PO now '{po.status}'")
    return grn
