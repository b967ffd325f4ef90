"""
Material Issue API
Stock issued straight to an expense account (consumables, samples, maintenance
spares) without a production order.

Issuing posts Dr expense / Cr inventory at the item's average cost. Editing
reverses the old voucher, returns the old quantity to stock and issues again;
cancelling does the first two and stops.
"""

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session
from sqlalchemy import desc
from typing import List, Optional
from datetime import date, datetime
import logging

from ledgerbook.database import get_db
from ledgerbook.models import User, Account, Item, JournalVoucher, MaterialIssue
from ledgerbook.services.dependency import get_company_id, require_permission
from ledgerbook.services.inventory import InventoryService, inventory_role_for
from ledgerbook.services.journal_posting import JournalPostingService, SourceType, to_decimal, ZERO
from ledgerbook.utils.numbering import next_document_number

router = APIRouter()
logger = logging.getLogger(__name__)

EXPENSE_ACCOUNT_TYPES = ("EXPENSE", "COGS")


# =============================================================================
# PYDANTIC SCHEMAS
# =============================================================================

class MaterialIssueCreate(BaseModel):
    issue_date: date
    item_id: int
    quantity: float = Field(..., gt=0)
    expense_account_id: int
    reference: Optional[str] = None
    notes: Optional[str] = None


class MaterialIssueUpdate(BaseModel):
    issue_date: Optional[date] = None
    item_id: Optional[int] = None
    quantity: Optional[float] = Field(None, gt=0)
    expense_account_id: Optional[int] = None
    reference: Optional[str] = None
    notes: Optional[str] = None


class MaterialIssueOut(BaseModel):
    id: int
    issue_number: str
    issue_date: date
    item_id: int
    quantity: float
    unit_cost: float
    total_cost: float
    expense_account_id: int
    reference: Optional[str] = None
    notes: Optional[str] = None
    status: str
    voucher_id: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True


# =============================================================================
# HELPERS
# =============================================================================

def get_issue_or_404(db: Session, company_id: int, issue_id: int) -> MaterialIssue:
    issue = db.query(MaterialIssue).filter(
        MaterialIssue.id == issue_id,
        MaterialIssue.company_id == company_id
    ).first()
    if not issue:
        raise HTTPException(status_code=404, detail="Material issue not found")
    return issue


def load_issue_targets(db: Session, company_id: int, item_id: int, account_id: int):
    """The stocked item to issue and the expense account to charge"""
    item = db.query(Item).filter(Item.id == item_id, Item.company_id == company_id).first()
    if not item:
        raise ValueError(f"Item {item_id} not found")
    if not item.is_stocked:
        raise ValueError(f"{item.name} is a service item and carries no stock")

    account = db.query(Account).filter(Account.id == account_id, Account.company_id == company_id).first()
    if not account:
        raise ValueError(f"Account {account_id} not found")
    if account.account_type.code not in EXPENSE_ACCOUNT_TYPES:
        raise ValueError(f"Account {account.code} is not an expense account")
    return item, account


def post_issue(posting: JournalPostingService, inventory: InventoryService,
               issue: MaterialIssue, item: Item, account: Account):
    """Take the stock out and post the charge; a zero-cost issue moves quantity only"""
    unit_cost = to_decimal(item.average_unit_cost)
    value = inventory.issue(
        item, issue.quantity, "MATERIAL_ISSUE", issue.issue_date,
        reference_type="MaterialIssue", reference_id=issue.id,
        reference_number=issue.issue_number, notes=issue.reference
    )
    issue.unit_cost = unit_cost
    issue.total_cost = value
    issue.voucher_id = None

    if value > ZERO:
        description = f"{item.name} issued to {account.code}"
        voucher = posting.create_voucher(
            entry_date=issue.issue_date,
            narration=f"Material issue {issue.issue_number}" + (f". Ref: {issue.reference}" if issue.reference else ""),
            lines=[
                posting.debit(account.id, value, description),
                posting.credit(posting.account_for_role(inventory_role_for(item)).id, value, description),
            ],
            source_type=SourceType.INVENTORY,
            reference_type="MaterialIssue",
            reference_id=issue.id,
            reference_number=issue.issue_number
        )
        issue.voucher_id = voucher.id


def undo_issue(db: Session, posting: JournalPostingService, inventory: InventoryService,
               issue: MaterialIssue, narration: str):
    """Reverse the issue voucher and put the quantity back at the cost it left at"""
    if issue.voucher_id:
        voucher = db.query(JournalVoucher).filter(JournalVoucher.id == issue.voucher_id).first()
        posting.reverse_voucher(voucher, narration=narration)

    inventory.receive(
        issue.item, issue.quantity, issue.unit_cost, "MATERIAL_RETURN", date.today(),
        reference_type="MaterialIssue", reference_id=issue.id,
        reference_number=issue.issue_number, notes=narration
    )


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get("", response_model=List[MaterialIssueOut])
def list_material_issues(
    item_id: Optional[int] = None,
    expense_account_id: Optional[int] = None,
    status: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("material_issues", "view"))
):
    company_id = get_company_id(current_user)

    query = db.query(MaterialIssue).filter(MaterialIssue.company_id == company_id)
    if item_id:
        query = query.filter(MaterialIssue.item_id == item_id)
    if expense_account_id:
        query = query.filter(MaterialIssue.expense_account_id == expense_account_id)
    if status:
        query = query.filter(MaterialIssue.status == status)
    if start_date:
        query = query.filter(MaterialIssue.issue_date >= start_date)
    if end_date:
        query = query.filter(MaterialIssue.issue_date <= end_date)

    return query.order_by(desc(MaterialIssue.issue_date), desc(MaterialIssue.id)).all()


@router.get("/{issue_id}", response_model=MaterialIssueOut)
def get_material_issue(
    issue_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("material_issues", "view"))
):
    return get_issue_or_404(db, get_company_id(current_user), issue_id)


@router.post("", response_model=MaterialIssueOut)
def create_material_issue(
    data: MaterialIssueCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("material_issues", "create"))
):
    """Issue stock to an expense account: Dr expense / Cr inventory at average cost"""
    company_id = get_company_id(current_user)
    posting = JournalPostingService(db, company_id, current_user.id)
    inventory = InventoryService(db, company_id, current_user.id)

    try:
        item, account = load_issue_targets(db, company_id, data.item_id, data.expense_account_id)

        issue = MaterialIssue(
            company_id=company_id,
            issue_number=next_document_number(
                db, MaterialIssue.issue_number, MaterialIssue.company_id, company_id, "MI-", 5
            ),
            status="issued",
            created_by=current_user.id,
            **data.model_dump()
        )
        db.add(issue)
        db.flush()

        post_issue(posting, inventory, issue, item, account)
        db.commit()
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    db.refresh(issue)
    logger.info(f"Material issue {issue.issue_number}: {issue.quantity} x {item.item_code} to {account.code}")
    return issue


@router.put("/{issue_id}", response_model=MaterialIssueOut)
def update_material_issue(
    issue_id: int,
    data: MaterialIssueUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("material_issues", "update"))
):
    """Undo the issue as it stands and issue again with the changes applied"""
    company_id = get_company_id(current_user)
    issue = get_issue_or_404(db, company_id, issue_id)
    if issue.status != "issued":
        raise HTTPException(status_code=400, detail=f"Material issue {issue.issue_number} is {issue.status}")

    posting = JournalPostingService(db, company_id, current_user.id)
    inventory = InventoryService(db, company_id, current_user.id)
    try:
        undo_issue(db, posting, inventory, issue, f"Material issue {issue.issue_number} amended")

        for field, value in data.model_dump(exclude_unset=True).items():
            if value is not None:
                setattr(issue, field, value)

        item, account = load_issue_targets(db, company_id, issue.item_id, issue.expense_account_id)
        issue.item = item
        post_issue(posting, inventory, issue, item, account)
        db.commit()
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    db.refresh(issue)
    logger.info(f"Material issue {issue.issue_number} amended by {current_user.email}")
    return issue


@router.delete("/{issue_id}")
def cancel_material_issue(
    issue_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("material_issues", "delete"))
):
    """Reverse the issue voucher and return the stock; the record stays as cancelled"""
    company_id = get_company_id(current_user)
    issue = get_issue_or_404(db, company_id, issue_id)
    if issue.status != "issued":
        raise HTTPException(status_code=400, detail=f"Material issue {issue.issue_number} is already {issue.status}")

    posting = JournalPostingService(db, company_id, current_user.id)
    inventory = InventoryService(db, company_id, current_user.id)
    try:
        undo_issue(db, posting, inventory, issue, f"Material issue {issue.issue_number} cancelled")
        issue.status = "cancelled"
        db.commit()
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    logger.info(f"Material issue {issue.issue_number} cancelled by {current_user.email}")
    return {"message": f"Material issue {issue.issue_number} cancelled"}
