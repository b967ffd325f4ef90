"""
Journal Voucher API Routes
Manual journals: create draft, post, delete draft, reverse; plus listing of
every voucher regardless of the document that produced it.
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session, joinedload
from sqlalchemy import or_, desc
from typing import Optional
from datetime import date
import logging

from ledgerbook.database import get_db
from ledgerbook.models import User, JournalVoucher, JournalVoucherLine
from ledgerbook.schemas import (
    JournalVoucher as JournalVoucherSchema, JournalVoucherCreate,
    JournalVoucherBrief, JournalVoucherList, ReverseRequest
)
from ledgerbook.services.dependency import (
    get_current_user, get_company_id, require_roles, WRITE_ROLES, POSTING_ROLES
)
from ledgerbook.services.journal_posting import JournalPostingService, PostingError, SourceType

logger = logging.getLogger(__name__)

router = APIRouter()

# Only manual journals and the opening balance import carry no document state.
# Every other voucher is undone through the document that wrote it.
MANUALLY_REVERSIBLE_REFERENCES = (None, "OpeningBalanceImport")


def _load_voucher(db: Session, company_id: int, voucher_id: int) -> Optional[JournalVoucher]:
    return db.query(JournalVoucher).options(
        joinedload(JournalVoucher.lines).joinedload(JournalVoucherLine.account)
    ).filter(
        JournalVoucher.id == voucher_id,
        JournalVoucher.company_id == company_id
    ).first()


@router.get("", response_model=JournalVoucherList)
def list_journal_vouchers(
    page: int = Query(1, ge=1),
    size: int = Query(50, ge=1, le=100),
    status: Optional[str] = None,
    source_type: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    search: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """List journal vouchers with pagination and filters"""
    company_id = get_company_id(current_user)

    query = db.query(JournalVoucher).filter(JournalVoucher.company_id == company_id)

    if status:
        query = query.filter(JournalVoucher.status == status)

    if source_type:
        query = query.filter(JournalVoucher.source_type == source_type)

    if start_date:
        query = query.filter(JournalVoucher.entry_date >= start_date)

    if end_date:
        query = query.filter(JournalVoucher.entry_date <= end_date)

    if search:
        query = query.filter(
            or_(
                JournalVoucher.voucher_number.ilike(f"%{search}%"),
                JournalVoucher.narration.ilike(f"%{search}%"),
                JournalVoucher.reference_number.ilike(f"%{search}%")
            )
        )

    total = query.count()

    vouchers = query.order_by(
        desc(JournalVoucher.entry_date),
        desc(JournalVoucher.id)
    ).offset((page - 1) * size).limit(size).all()

    return JournalVoucherList(
        vouchers=[JournalVoucherBrief.model_validate(v) for v in vouchers],
        total=total,
        page=page,
        size=size
    )


@router.get("/{voucher_id}", response_model=JournalVoucherSchema)
def get_journal_voucher(
    voucher_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Get a single journal voucher with all lines"""
    company_id = get_company_id(current_user)

    voucher = _load_voucher(db, company_id, voucher_id)
    if not voucher:
        raise HTTPException(status_code=404, detail="Journal voucher not found")

    return voucher


@router.post("", response_model=JournalVoucherSchema)
def create_journal_voucher(
    data: JournalVoucherCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*WRITE_ROLES))
):
    """Create a draft manual journal voucher. Debits must equal credits."""
    company_id = get_company_id(current_user)
    service = JournalPostingService(db, company_id, current_user.id)

    try:
        voucher = service.create_voucher(
            entry_date=data.entry_date,
            narration=data.narration,
            lines=[line.model_dump() for line in data.lines],
            source_type=SourceType.JOURNAL,
            reference_number=data.reference_number,
            post=False,
            strict=True
        )
        db.commit()
    except PostingError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    return _load_voucher(db, company_id, voucher.id)


@router.post("/{voucher_id}/post")
def post_journal_voucher(
    voucher_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*POSTING_ROLES))
):
    """Post a draft journal voucher"""
    company_id = get_company_id(current_user)

    voucher = db.query(JournalVoucher).filter(
        JournalVoucher.id == voucher_id,
        JournalVoucher.company_id == company_id,
        JournalVoucher.status == "draft"
    ).first()

    if not voucher:
        raise HTTPException(status_code=404, detail="Draft journal voucher not found")

    try:
        JournalPostingService(db, company_id, current_user.id).post_voucher(voucher)
        db.commit()
    except PostingError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    return {"message": "Journal voucher posted successfully", "voucher_number": voucher.voucher_number}


@router.delete("/{voucher_id}")
def delete_journal_voucher(
    voucher_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*WRITE_ROLES))
):
    """Delete a draft journal voucher. Posted vouchers can only be reversed."""
    company_id = get_company_id(current_user)

    voucher = db.query(JournalVoucher).filter(
        JournalVoucher.id == voucher_id,
        JournalVoucher.company_id == company_id
    ).first()

    if not voucher:
        raise HTTPException(status_code=404, detail="Journal voucher not found")

    if voucher.status != "draft":
        raise HTTPException(status_code=403, detail="Only draft vouchers can be deleted")

    number = voucher.voucher_number
    db.delete(voucher)
    db.commit()
    logger.info(f"Deleted draft voucher {number} for company {company_id}")

    return {"message": f"Journal voucher {number} deleted"}


@router.post("/{voucher_id}/reverse")
def reverse_journal_voucher(
    voucher_id: int,
    data: Optional[ReverseRequest] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*POSTING_ROLES))
):
    """Create a reversal voucher for a posted journal voucher"""
    company_id = get_company_id(current_user)

    original = _load_voucher(db, company_id, voucher_id)
    if not original:
        raise HTTPException(status_code=404, detail="Journal voucher not found")

    if original.is_reversal:
        raise HTTPException(status_code=400, detail=f"Voucher {original.voucher_number} is itself a reversal")
    if original.reference_type not in MANUALLY_REVERSIBLE_REFERENCES:
        raise HTTPException(
            status_code=400,
            detail=f"Voucher {original.voucher_number} belongs to {original.reference_type} "
                   f"{original.reference_number or original.reference_id}; reverse it from that document"
        )

    data = data or ReverseRequest()
    try:
        reversal = JournalPostingService(db, company_id, current_user.id).reverse_voucher(
            original, reversal_date=data.reversal_date, narration=data.narration
        )
        db.commit()
    except PostingError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "message": "Journal voucher reversed successfully",
        "original_voucher": original.voucher_number,
        "reversal_voucher": reversal.voucher_number,
        "reversal_id": reversal.id
    }
