"""
Production API
Bills of materials and production orders.

Start issues raw materials into work in progress; complete absorbs overheads
and brings the finished good into stock at the order's unit cost.
"""

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session, joinedload
from sqlalchemy import desc
from typing import List, Optional, Literal
from datetime import date, datetime
from collections import defaultdict
import logging

from ledgerbook.database import get_db
from ledgerbook.models import (
    User, Account, Item, JournalVoucher, BillOfMaterials, BomComponent, BomOverhead,
    ProductionOrder, ProductionConsumption, ProductionOverheadCost
)
from ledgerbook.services.dependency import (
    get_current_user, get_company_id, require_roles, WRITE_ROLES, POSTING_ROLES
)
from ledgerbook.services.journal_posting import JournalPostingService, SystemRole, SourceType, money, to_decimal, ZERO
from ledgerbook.services.inventory import InventoryService, StockError, FOUR_PLACES
from ledgerbook.services.production import material_requirements, overhead_costs, total_of
from ledgerbook.utils.numbering import next_document_number

logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# PYDANTIC SCHEMAS
# =============================================================================

class BomComponentCreate(BaseModel):
    item_id: int
    quantity: float = Field(..., gt=0)


class BomOverheadCreate(BaseModel):
    name: str = Field(..., min_length=1)
    cost_method: Literal["per_unit", "per_batch", "percentage_of_material"]
    cost: float = Field(..., ge=0)
    account_id: int


class BomCreate(BaseModel):
    finished_item_id: int
    bom_code: str = Field(..., min_length=1)
    version: str = "1.0"
    description: Optional[str] = None
    components: List[BomComponentCreate] = Field(..., min_length=1)
    overheads: List[BomOverheadCreate] = []


class BomComponentOut(BaseModel):
    id: int
    item_id: int
    quantity: float

    class Config:
        from_attributes = True


class BomOverheadOut(BaseModel):
    id: int
    name: str
    cost_method: str
    cost: float
    account_id: int

    class Config:
        from_attributes = True


class BomOut(BaseModel):
    id: int
    bom_code: str
    finished_item_id: int
    version: str
    description: Optional[str] = None
    is_active: bool
    created_at: datetime
    components: List[BomComponentOut] = []
    overheads: List[BomOverheadOut] = []

    class Config:
        from_attributes = True


class ProductionOrderCreate(BaseModel):
    bom_id: int
    quantity_to_produce: float = Field(..., gt=0)
    notes: Optional[str] = None


class ProductionOrderOut(BaseModel):
    id: int
    order_number: str
    bom_id: int
    finished_item_id: int
    quantity_to_produce: float
    status: str
    material_cost: float
    overhead_cost: float
    total_cost: float
    unit_cost: float
    start_voucher_id: Optional[int] = None
    completion_voucher_id: Optional[int] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    notes: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


# =============================================================================
# HELPERS
# =============================================================================

def get_bom_or_404(db: Session, company_id: int, bom_id: int) -> BillOfMaterials:
    bom = db.query(BillOfMaterials).options(
        joinedload(BillOfMaterials.components).joinedload(BomComponent.item),
        joinedload(BillOfMaterials.overheads)
    ).filter(
        BillOfMaterials.id == bom_id,
        BillOfMaterials.company_id == company_id
    ).first()
    if not bom:
        raise HTTPException(status_code=404, detail="Bill of materials not found")
    return bom


def get_order_or_404(db: Session, company_id: int, order_id: int) -> ProductionOrder:
    order = db.query(ProductionOrder).filter(
        ProductionOrder.id == order_id,
        ProductionOrder.company_id == company_id
    ).first()
    if not order:
        raise HTTPException(status_code=404, detail="Production order not found")
    return order


def _voucher_number(db: Session, voucher_id: Optional[int]) -> Optional[str]:
    if not voucher_id:
        return None
    return db.query(JournalVoucher.voucher_number).filter(JournalVoucher.id == voucher_id).scalar()


# =============================================================================
# BILLS OF MATERIALS
# =============================================================================

@router.get("/boms", response_model=List[BomOut])
def list_boms(
    finished_item_id: Optional[int] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    company_id = get_company_id(current_user)
    query = db.query(BillOfMaterials).filter(BillOfMaterials.company_id == company_id)
    if finished_item_id:
        query = query.filter(BillOfMaterials.finished_item_id == finished_item_id)
    return query.order_by(BillOfMaterials.bom_code).all()


@router.get("/boms/{bom_id}", response_model=BomOut)
def get_bom(
    bom_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return get_bom_or_404(db, get_company_id(current_user), bom_id)


@router.post("/boms", response_model=BomOut)
def create_bom(
    data: BomCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*WRITE_ROLES))
):
    company_id = get_company_id(current_user)

    if db.query(BillOfMaterials).filter(
        BillOfMaterials.company_id == company_id,
        BillOfMaterials.bom_code == data.bom_code
    ).first():
        raise HTTPException(status_code=409, detail=f"BOM code '{data.bom_code}' already exists")

    finished = db.query(Item).filter(Item.id == data.finished_item_id, Item.company_id == company_id).first()
    if not finished:
        raise HTTPException(status_code=404, detail="Finished item not found")
    if finished.item_type != "product":
        raise HTTPException(status_code=400, detail=f"Item {finished.item_code} is not a finished good")

    component_ids = [c.item_id for c in data.components]
    if len(set(component_ids)) != len(component_ids):
        raise HTTPException(status_code=400, detail="Each component may appear only once")

    bom = BillOfMaterials(
        company_id=company_id,
        bom_code=data.bom_code,
        finished_item_id=finished.id,
        version=data.version,
        description=data.description,
        created_by=current_user.id
    )

    for component in data.components:
        item = db.query(Item).filter(Item.id == component.item_id, Item.company_id == company_id).first()
        if not item:
            raise HTTPException(status_code=404, detail=f"Component item {component.item_id} not found")
        if item.item_type != "raw_material":
            raise HTTPException(status_code=400, detail=f"Component {item.item_code} must be a raw material")
        bom.components.append(BomComponent(item_id=item.id, quantity=component.quantity))

    for overhead in data.overheads:
        account = db.query(Account).filter(
            Account.id == overhead.account_id,
            Account.company_id == company_id
        ).first()
        if not account or not account.is_active or account.is_header:
            raise HTTPException(status_code=400, detail=f"Overhead '{overhead.name}' needs an active postable GL account")
        bom.overheads.append(BomOverhead(**overhead.model_dump()))

    db.add(bom)
    db.commit()
    db.refresh(bom)

    logger.info(f"Created BOM {bom.bom_code} for {finished.item_code}")
    return bom


# =============================================================================
# PRODUCTION ORDERS
# =============================================================================

@router.get("/orders", response_model=List[ProductionOrderOut])
def list_production_orders(
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    company_id = get_company_id(current_user)
    query = db.query(ProductionOrder).filter(ProductionOrder.company_id == company_id)
    if status:
        query = query.filter(ProductionOrder.status == status)
    return query.order_by(desc(ProductionOrder.created_at), desc(ProductionOrder.id)).all()


@router.post("/orders", response_model=ProductionOrderOut)
def create_production_order(
    data: ProductionOrderCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*WRITE_ROLES))
):
    company_id = get_company_id(current_user)
    bom = get_bom_or_404(db, company_id, data.bom_id)
    if not bom.is_active:
        raise HTTPException(status_code=400, detail=f"BOM {bom.bom_code} is inactive")

    order = ProductionOrder(
        company_id=company_id,
        order_number=next_document_number(
            db, ProductionOrder.order_number, ProductionOrder.company_id, company_id,
            f"PRD-{date.today().year}-", 5
        ),
        bom_id=bom.id,
        finished_item_id=bom.finished_item_id,
        quantity_to_produce=data.quantity_to_produce,
        status="Pending",
        notes=data.notes,
        created_by=current_user.id
    )
    db.add(order)
    db.commit()
    db.refresh(order)

    logger.info(f"Created production order {order.order_number}: {order.quantity_to_produce} x BOM {bom.bom_code}")
    return order


@router.get("/orders/{order_id}")
def get_production_order(
    order_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Order header with planned costs while pending, actual costs once started"""
    company_id = get_company_id(current_user)
    order = get_order_or_404(db, company_id, order_id)
    bom = get_bom_or_404(db, company_id, order.bom_id)

    result = ProductionOrderOut.model_validate(order).model_dump()
    result["bom_code"] = bom.bom_code
    result["finished_item_name"] = order.finished_item.name if order.finished_item else None
    result["start_voucher_number"] = _voucher_number(db, order.start_voucher_id)
    result["completion_voucher_number"] = _voucher_number(db, order.completion_voucher_id)

    if order.status == "Pending":
        materials = material_requirements(bom, order.quantity_to_produce)
        material_cost = total_of(materials, "total_cost")
        overheads = overhead_costs(bom, order.quantity_to_produce, material_cost)
        result["cost_basis"] = "planned"
        result["consumption"] = [
            {
                "item_id": row["item"].id,
                "item_name": row["item"].name,
                "quantity": float(row["quantity"]),
                "unit_cost": float(row["unit_cost"]),
                "total_cost": float(row["total_cost"]),
                "available": float(row["item"].quantity_on_hand or 0),
            }
            for row in materials
        ]
        result["overheads"] = [
            {"name": row["name"], "account_id": row["account_id"], "amount": float(row["amount"])}
            for row in overheads
        ]
        result["material_cost"] = float(material_cost)
        result["overhead_cost"] = float(total_of(overheads, "amount"))
        result["total_cost"] = result["material_cost"] + result["overhead_cost"]
    else:
        result["cost_basis"] = "actual"
        result["consumption"] = [
            {
                "item_id": c.item_id,
                "item_name": c.item.name if c.item else None,
                "quantity": float(c.quantity),
                "unit_cost": float(c.unit_cost),
                "total_cost": float(c.total_cost),
            }
            for c in order.consumptions
        ]
        result["overheads"] = [
            {"name": o.name, "account_id": o.account_id, "amount": float(o.amount)}
            for o in order.overhead_costs
        ]

    return result


@router.post("/orders/{order_id}/start", response_model=ProductionOrderOut)
def start_production_order(
    order_id: int,
    entry_date: Optional[date] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*POSTING_ROLES))
):
    """Issue raw materials at average cost: DR Work in Progress / CR Raw Materials"""
    company_id = get_company_id(current_user)
    order = get_order_or_404(db, company_id, order_id)

    if order.status != "Pending":
        raise HTTPException(status_code=400, detail=f"Only pending orders can be started (status is {order.status})")

    bom = get_bom_or_404(db, company_id, order.bom_id)
    entry_date = entry_date or date.today()
    posting = JournalPostingService(db, company_id, current_user.id)
    inventory = InventoryService(db, company_id, current_user.id)

    try:
        requirements = material_requirements(bom, order.quantity_to_produce)
        shortfalls = [
            f"{row['item'].name} (need {row['quantity']}, have {to_decimal(row['item'].quantity_on_hand)})"
            for row in requirements
            if row["quantity"] > to_decimal(row["item"].quantity_on_hand)
        ]
        if shortfalls:
            raise StockError("Insufficient stock: " + "; ".join(shortfalls))

        material_cost = ZERO
        for row in requirements:
            unit_cost = to_decimal(row["item"].average_unit_cost)
            cost = inventory.issue(
                row["item"], row["quantity"], "PRODUCTION_ISSUE", entry_date,
                reference_type="ProductionOrder", reference_id=order.id,
                reference_number=order.order_number
            )
            order.consumptions.append(ProductionConsumption(
                item_id=row["item"].id,
                quantity=row["quantity"],
                unit_cost=unit_cost,
                total_cost=cost
            ))
            material_cost += cost

        if material_cost > 0:
            wip = posting.account_for_role(SystemRole.INVENTORY_WIP)
            raw = posting.account_for_role(SystemRole.INVENTORY_RAW_MATERIAL)
            voucher = posting.create_voucher(
                entry_date=entry_date,
                narration=f"Materials issued to production {order.order_number}",
                lines=[
                    posting.debit(wip.id, material_cost, "Work in progress"),
                    posting.credit(raw.id, material_cost, "Raw materials issued"),
                ],
                source_type=SourceType.PRODUCTION,
                reference_type="ProductionOrder",
                reference_id=order.id,
                reference_number=order.order_number
            )
            order.start_voucher_id = voucher.id

        order.material_cost = material_cost
        order.status = "In Progress"
        order.started_at = datetime.utcnow()
        db.commit()
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    db.refresh(order)
    logger.info(f"Started production order {order.order_number}: materials {order.material_cost}")
    return order


@router.post("/orders/{order_id}/complete", response_model=ProductionOrderOut)
def complete_production_order(
    order_id: int,
    entry_date: Optional[date] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*POSTING_ROLES))
):
    """
    Absorb overheads and receive the finished good:
    DR Finished Goods (total) / CR Work in Progress (materials) / CR each overhead account
    """
    company_id = get_company_id(current_user)
    order = get_order_or_404(db, company_id, order_id)

    if order.status != "In Progress":
        raise HTTPException(status_code=400, detail=f"Only in-progress orders can be completed (status is {order.status})")

    bom = get_bom_or_404(db, company_id, order.bom_id)
    entry_date = entry_date or date.today()
    posting = JournalPostingService(db, company_id, current_user.id)
    inventory = InventoryService(db, company_id, current_user.id)

    try:
        material_cost = money(order.material_cost)
        overheads = overhead_costs(bom, order.quantity_to_produce, material_cost)
        overhead_total = total_of(overheads, "amount")
        total_cost = material_cost + overhead_total
        quantity = to_decimal(order.quantity_to_produce)
        unit_cost = (total_cost / quantity).quantize(FOUR_PLACES)

        for row in overheads:
            order.overhead_costs.append(ProductionOverheadCost(
                name=row["name"], account_id=row["account_id"], amount=row["amount"]
            ))

        inventory.receive(
            order.finished_item, quantity, unit_cost, "PRODUCTION_RECEIPT", entry_date,
            reference_type="ProductionOrder", reference_id=order.id,
            reference_number=order.order_number
        )

        if total_cost > 0:
            fg = posting.account_for_role(SystemRole.INVENTORY_FINISHED_GOODS)
            wip = posting.account_for_role(SystemRole.INVENTORY_WIP)
            by_account = defaultdict(lambda: ZERO)
            for row in overheads:
                by_account[row["account_id"]] += row["amount"]

            lines = [
                posting.debit(fg.id, total_cost, f"Finished goods {order.finished_item.name}"),
                posting.credit(wip.id, material_cost, "Work in progress released"),
            ]
            lines.extend(
                posting.credit(account_id, amount, "Overhead absorbed")
                for account_id, amount in by_account.items()
            )
            voucher = posting.create_voucher(
                entry_date=entry_date,
                narration=f"Production completed {order.order_number}",
                lines=lines,
                source_type=SourceType.PRODUCTION,
                reference_type="ProductionOrder",
                reference_id=order.id,
                reference_number=order.order_number
            )
            order.completion_voucher_id = voucher.id

        order.overhead_cost = overhead_total
        order.total_cost = total_cost
        order.unit_cost = unit_cost
        order.status = "Completed"
        order.completed_at = datetime.utcnow()
        db.commit()
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    db.refresh(order)
    logger.info(f"Completed production order {order.order_number}: total {order.total_cost}, unit {order.unit_cost}")
    return order


@router.post("/orders/{order_id}/cancel", response_model=ProductionOrderOut)
def cancel_production_order(
    order_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*POSTING_ROLES))
):
    company_id = get_company_id(current_user)
    order = get_order_or_404(db, company_id, order_id)

    if order.status != "Pending":
        raise HTTPException(status_code=400, detail="Only pending orders can be cancelled")

    order.status = "Cancelled"
    db.commit()
    db.refresh(order)
    return order
