"""
Item Register API
Items, price tiers, stock history, opening stock and stock adjustments.
Every stock movement that carries value posts a voucher through the journal engine.
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session
from sqlalchemy import or_, desc
from typing import List, Optional, Literal
from datetime import datetime, date
import logging

from ledgerbook.database import get_db
from ledgerbook.models import User, Item, ItemPriceTier, ItemLedger
from ledgerbook.services.dependency import (
    get_current_user, get_company_id, require_roles, require_permission, WRITE_ROLES
)
from ledgerbook.services.journal_posting import JournalPostingService, SystemRole, SourceType, to_decimal, ZERO
from ledgerbook.services.inventory import InventoryService, inventory_role_for

logger = logging.getLogger(__name__)

router = APIRouter()

ItemType = Literal["product", "raw_material", "service"]


# =============================================================================
# PYDANTIC SCHEMAS
# =============================================================================

class ItemCreate(BaseModel):
    item_code: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    item_type: ItemType = "product"
    unit_of_measure: str = "EA"
    selling_price: float = Field(0, ge=0)
    reorder_level: float = Field(0, ge=0)
    vat_rate: float = Field(0, ge=0, le=100)


class ItemUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    item_type: Optional[ItemType] = None
    unit_of_measure: Optional[str] = None
    selling_price: Optional[float] = Field(None, ge=0)
    reorder_level: Optional[float] = Field(None, ge=0)
    vat_rate: Optional[float] = Field(None, ge=0, le=100)
    is_active: Optional[bool] = None


class ItemResponse(BaseModel):
    id: int
    item_code: str
    name: str
    description: Optional[str] = None
    item_type: str
    unit_of_measure: Optional[str] = None
    selling_price: float
    reorder_level: float
    vat_rate: float
    quantity_on_hand: float
    average_unit_cost: float
    opening_stock_voucher_id: Optional[int] = None
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class PriceTierIn(BaseModel):
    tier_name: str = Field(..., min_length=1)
    min_quantity: float = Field(..., gt=0)
    price: float = Field(..., ge=0)


class PriceTierOut(BaseModel):
    id: int
    tier_name: str
    min_quantity: float
    price: float

    class Config:
        from_attributes = True


class ItemHistoryRow(BaseModel):
    id: int
    transaction_date: date
    transaction_type: str
    quantity: float
    unit_cost: float
    total_cost: float
    balance_after: float
    average_cost_after: float
    reference_type: Optional[str] = None
    reference_id: Optional[int] = None
    reference_number: Optional[str] = None
    notes: Optional[str] = None

    class Config:
        from_attributes = True


class OpeningStockRequest(BaseModel):
    quantity: float = Field(..., gt=0)
    unit_cost: float = Field(..., gt=0)
    entry_date: date
    narration: Optional[str] = None


class StockAdjustmentRequest(BaseModel):
    quantity: float  # signed: positive adds stock, negative removes it
    unit_cost: Optional[float] = Field(None, ge=0)
    reason: str = Field(..., min_length=1)
    adjustment_date: Optional[date] = None


# =============================================================================
# HELPERS
# =============================================================================

def get_item_or_404(db: Session, company_id: int, item_id: int) -> Item:
    item = db.query(Item).filter(
        Item.id == item_id,
        Item.company_id == company_id
    ).first()
    if not item:
        raise HTTPException(status_code=404, detail="Item not found")
    return item


def resolve_tier_price(item: Item, quantity) -> dict:
    """Highest tier whose minimum quantity the order reaches, else the list price"""
    qty = to_decimal(quantity)
    best = None
    for tier in item.price_tiers:
        if to_decimal(tier.min_quantity) <= qty:
            if best is None or to_decimal(tier.min_quantity) > to_decimal(best.min_quantity):
                best = tier
    if best:
        return {"price": float(best.price), "tier_name": best.tier_name}
    return {"price": float(item.selling_price or 0), "tier_name": None}


# =============================================================================
# ITEMS
# =============================================================================

@router.get("", response_model=List[ItemResponse])
def list_items(
    item_type: Optional[ItemType] = None,
    search: Optional[str] = None,
    low_stock: bool = False,
    include_inactive: bool = False,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    company_id = get_company_id(current_user)

    query = db.query(Item).filter(Item.company_id == company_id)
    if not include_inactive:
        query = query.filter(Item.is_active == True)
    if item_type:
        query = query.filter(Item.item_type == item_type)
    if search:
        query = query.filter(
            or_(
                Item.item_code.ilike(f"%{search}%"),
                Item.name.ilike(f"%{search}%")
            )
        )
    if low_stock:
        query = query.filter(
            Item.item_type != "service",
            Item.reorder_level > 0,
            Item.quantity_on_hand <= Item.reorder_level
        )
    return query.order_by(Item.item_code).all()


@router.post("", response_model=ItemResponse)
def register_item(
    data: ItemCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*WRITE_ROLES))
):
    company_id = get_company_id(current_user)

    code = data.item_code.strip()
    existing = db.query(Item).filter(
        Item.company_id == company_id,
        Item.item_code == code
    ).first()
    if existing:
        raise HTTPException(status_code=400, detail=f"Item code '{code}' already exists")

    item = Item(company_id=company_id, **data.model_dump(exclude={"item_code"}), item_code=code)
    db.add(item)
    db.commit()
    db.refresh(item)

    logger.info(f"Registered item {item.item_code} ({item.item_type}) for company {company_id}")
    return item


@router.get("/{item_id}", response_model=ItemResponse)
def get_item(
    item_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return get_item_or_404(db, get_company_id(current_user), item_id)


@router.put("/{item_id}", response_model=ItemResponse)
def update_item(
    item_id: int,
    data: ItemUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*WRITE_ROLES))
):
    company_id = get_company_id(current_user)
    item = get_item_or_404(db, company_id, item_id)

    update_data = data.model_dump(exclude_unset=True)
    new_type = update_data.get("item_type")
    if new_type and new_type != item.item_type and to_decimal(item.quantity_on_hand) != 0:
        raise HTTPException(status_code=400, detail="Cannot change the type of an item that has stock on hand")

    for field, value in update_data.items():
        setattr(item, field, value)

    db.commit()
    db.refresh(item)
    return item


# =============================================================================
# PRICE TIERS
# =============================================================================

@router.get("/{item_id}/price-tiers", response_model=List[PriceTierOut])
def get_price_tiers(
    item_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    item = get_item_or_404(db, get_company_id(current_user), item_id)
    return item.price_tiers


@router.put("/{item_id}/price-tiers", response_model=List[PriceTierOut])
def replace_price_tiers(
    item_id: int,
    tiers: List[PriceTierIn],
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*WRITE_ROLES))
):
    """Replace the item's full tier table"""
    company_id = get_company_id(current_user)
    item = get_item_or_404(db, company_id, item_id)

    quantities = [to_decimal(t.min_quantity) for t in tiers]
    if len(set(quantities)) != len(quantities):
        raise HTTPException(status_code=400, detail="Tier minimum quantities must be unique")

    item.price_tiers.clear()
    db.flush()
    for tier in tiers:
        item.price_tiers.append(ItemPriceTier(
            tier_name=tier.tier_name,
            min_quantity=tier.min_quantity,
            price=tier.price
        ))

    db.commit()
    db.refresh(item)
    return item.price_tiers


@router.get("/{item_id}/price")
def get_price_for_quantity(
    item_id: int,
    quantity: float = Query(..., gt=0),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    item = get_item_or_404(db, get_company_id(current_user), item_id)
    result = resolve_tier_price(item, quantity)
    return {"item_id": item.id, "quantity": quantity, **result}


# =============================================================================
# STOCK
# =============================================================================

@router.get("/{item_id}/history", response_model=List[ItemHistoryRow])
def get_item_history(
    item_id: int,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    company_id = get_company_id(current_user)
    item = get_item_or_404(db, company_id, item_id)

    query = db.query(ItemLedger).filter(
        ItemLedger.company_id == company_id,
        ItemLedger.item_id == item.id
    )
    if start_date:
        query = query.filter(ItemLedger.transaction_date >= start_date)
    if end_date:
        query = query.filter(ItemLedger.transaction_date <= end_date)

    return query.order_by(desc(ItemLedger.transaction_date), desc(ItemLedger.id)).all()


@router.post("/{item_id}/opening-stock")
def post_opening_stock(
    item_id: int,
    data: OpeningStockRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("inventory", "opening_stock"))
):
    """Bring in opening stock: Dr Inventory / Cr Opening Balance Equity. Once per item."""
    company_id = get_company_id(current_user)
    item = get_item_or_404(db, company_id, item_id)

    if not item.is_stocked:
        raise HTTPException(status_code=400, detail="Service items do not carry stock")
    if item.opening_stock_voucher_id:
        raise HTTPException(status_code=409, detail="Opening stock has already been posted for this item")

    posting = JournalPostingService(db, company_id, current_user.id)
    inventory = InventoryService(db, company_id, current_user.id)
    try:
        value = inventory.receive(
            item, data.quantity, data.unit_cost, "OPENING", data.entry_date,
            reference_type="Item", reference_id=item.id, reference_number=item.item_code,
            notes="Opening stock"
        )
        inventory_account = posting.account_for_role(inventory_role_for(item))
        obe_account = posting.account_for_role(SystemRole.OPENING_BALANCE_EQUITY)

        voucher = posting.create_voucher(
            entry_date=data.entry_date,
            narration=data.narration or f"Opening stock for {item.item_code}",
            lines=[
                posting.debit(inventory_account.id, value, f"Opening stock - {item.name}"),
                posting.credit(obe_account.id, value, "Opening balance equity"),
            ],
            source_type=SourceType.OPENING_BALANCE,
            reference_type="Item",
            reference_id=item.id,
            reference_number=item.item_code
        )
        item.opening_stock_voucher_id = voucher.id
        db.commit()
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "success": True,
        "message": "Opening stock posted",
        "quantity_on_hand": float(item.quantity_on_hand),
        "average_unit_cost": float(item.average_unit_cost),
        "voucher_id": voucher.id,
        "voucher_number": voucher.voucher_number
    }


@router.post("/{item_id}/adjust")
def adjust_stock(
    item_id: int,
    data: StockAdjustmentRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("inventory", "adjust"))
):
    """
    Signed stock adjustment.

    Positive: Dr Inventory / Cr Inventory Adjustment, valued at the given unit
    cost or the current average. Negative: the opposite, at average cost.
    """
    company_id = get_company_id(current_user)
    item = get_item_or_404(db, company_id, item_id)

    if not item.is_stocked:
        raise HTTPException(status_code=400, detail="Service items do not carry stock")

    quantity = to_decimal(data.quantity)
    if quantity == 0:
        raise HTTPException(status_code=400, detail="Adjustment quantity cannot be zero")

    adjustment_date = data.adjustment_date or date.today()
    posting = JournalPostingService(db, company_id, current_user.id)
    inventory = InventoryService(db, company_id, current_user.id)
    voucher = None

    try:
        inventory_account = posting.account_for_role(inventory_role_for(item))
        adjustment_account = posting.account_for_role(SystemRole.INVENTORY_ADJUSTMENT)

        if quantity > 0:
            unit_cost = data.unit_cost if data.unit_cost is not None else item.average_unit_cost
            value = inventory.receive(
                item, quantity, unit_cost, "ADJUSTMENT_PLUS", adjustment_date,
                reference_type="Item", reference_id=item.id, reference_number=item.item_code,
                notes=data.reason
            )
            lines = [
                posting.debit(inventory_account.id, value, data.reason),
                posting.credit(adjustment_account.id, value, data.reason),
            ]
        else:
            value = inventory.issue(
                item, -quantity, "ADJUSTMENT_MINUS", adjustment_date,
                reference_type="Item", reference_id=item.id, reference_number=item.item_code,
                notes=data.reason
            )
            lines = [
                posting.debit(adjustment_account.id, value, data.reason),
                posting.credit(inventory_account.id, value, data.reason),
            ]

        # Zero-cost stock moves quantity only
        if value > ZERO:
            voucher = posting.create_voucher(
                entry_date=adjustment_date,
                narration=f"Stock adjustment {item.item_code}: {data.reason}",
                lines=lines,
                source_type=SourceType.INVENTORY,
                reference_type="Item",
                reference_id=item.id,
                reference_number=item.item_code
            )
        db.commit()
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "success": True,
        "quantity_on_hand": float(item.quantity_on_hand),
        "average_unit_cost": float(item.average_unit_cost),
        "value": float(value),
        "voucher_number": voucher.voucher_number if voucher else None
    }
