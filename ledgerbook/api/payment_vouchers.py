"""
Payment Voucher API - money paid out of a bank/cash account.

Features:
- Expense lines with VAT and withholding tax
- Settlement of one or more supplier bills
- Approval workflow: Submitted -> Approved (posts) or Rejected; Approved -> Reversed
- Journal entry on approval (DR: expenses, VAT Input, AP / CR: WHT Payable, Bank)
"""
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session, joinedload
from sqlalchemy import desc
from typing import List, Optional, Literal
from datetime import date, datetime
from decimal import Decimal
import logging

from ledgerbook.database import get_db
from ledgerbook.models import (
    User, Account, Supplier, SupplierInvoice, PaymentVoucher, PaymentVoucherLine, PaymentAllocation, JournalVoucher
)
from ledgerbook.schemas import ReverseRequest
from ledgerbook.services.dependency import (
    get_current_user, get_company_id, get_company, require_roles,
    ensure_transactions_unlocked, WRITE_ROLES, POSTING_ROLES
)
from ledgerbook.services.journal_posting import JournalPostingService, SystemRole, SourceType, money, to_decimal, ZERO
from ledgerbook.services.settlement import apply_bill_payment, remove_bill_payment
from ledgerbook.utils.numbering import next_document_number

router = APIRouter()
logger = logging.getLogger(__name__)


# =============================================================================
# PYDANTIC SCHEMAS
# =============================================================================

class PaymentVoucherLineCreate(BaseModel):
    account_id: int
    description: Optional[str] = None
    amount: float = Field(..., gt=0)
    vat_rate: float = Field(0, ge=0, le=100)
    wht_rate: float = Field(0, ge=0, le=100)


class PaymentAllocationCreate(BaseModel):
    supplier_invoice_id: int
    amount: float = Field(..., gt=0)


class PaymentVoucherCreate(BaseModel):
    payment_date: date
    payee_type: Literal["supplier", "employee", "other"] = "supplier"
    payee_name: Optional[str] = None
    supplier_id: Optional[int] = None
    bank_account_id: int
    payment_mode: Literal["bank_transfer", "cheque", "cash"] = "bank_transfer"
    narration: Optional[str] = None
    lines: List[PaymentVoucherLineCreate] = []
    allocations: List[PaymentAllocationCreate] = []


class PaymentVoucherStatusUpdate(BaseModel):
    status: Literal["Approved", "Rejected"]
    reason: Optional[str] = None


class PaymentVoucherLineOut(BaseModel):
    id: int
    account_id: int
    description: Optional[str] = None
    amount: float
    vat_rate: float
    vat_amount: float
    wht_rate: float
    wht_amount: float

    class Config:
        from_attributes = True


class PaymentAllocationOut(BaseModel):
    id: int
    supplier_invoice_id: int
    amount: float

    class Config:
        from_attributes = True


class PaymentVoucherOut(BaseModel):
    id: int
    pv_number: str
    payment_date: date
    payee_type: str
    payee_name: str
    supplier_id: Optional[int] = None
    bank_account_id: int
    payment_mode: str
    narration: Optional[str] = None
    gross_amount: float
    vat_amount: float
    wht_amount: float
    net_payable: float
    status: str
    voucher_id: Optional[int] = None
    approved_by: Optional[int] = None
    approved_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    created_at: datetime
    lines: List[PaymentVoucherLineOut] = []
    allocations: List[PaymentAllocationOut] = []

    class Config:
        from_attributes = True


# =============================================================================
# HELPERS
# =============================================================================

def _percent(amount: Decimal, rate) -> Decimal:
    return money(amount * to_decimal(rate) / Decimal("100"))


def validate_allocations(db: Session, company_id: int, supplier_id: Optional[int],
                         allocations: List[PaymentAllocation]) -> List[SupplierInvoice]:
    """Bills must belong to the supplier, be open, and cover each allocated amount"""
    if not allocations:
        return []
    if not supplier_id:
        raise ValueError("Bill allocations require a supplier")

    bill_ids = [a.supplier_invoice_id for a in allocations]
    if len(set(bill_ids)) != len(bill_ids):
        raise ValueError("A bill can only be allocated once per payment voucher")

    bills = []
    for allocation in allocations:
        bill = db.query(SupplierInvoice).filter(
            SupplierInvoice.id == allocation.supplier_invoice_id,
            SupplierInvoice.company_id == company_id
        ).first()
        if not bill or bill.supplier_id != supplier_id:
            raise ValueError(f"Bill {allocation.supplier_invoice_id} does not belong to this supplier")
        if bill.status == "paid":
            raise ValueError(f"Bill {bill.bill_number} is already paid")
        if money(allocation.amount) > bill.amount_due:
            raise ValueError(
                f"Allocation {money(allocation.amount)} exceeds the amount due {bill.amount_due} on bill {bill.bill_number}"
            )
        bills.append(bill)
    return bills


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get("", response_model=List[PaymentVoucherOut])
def list_payment_vouchers(
    status: Optional[str] = None,
    supplier_id: Optional[int] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    company_id = get_company_id(current_user)

    query = db.query(PaymentVoucher).filter(PaymentVoucher.company_id == company_id)
    if status:
        query = query.filter(PaymentVoucher.status == status)
    if supplier_id:
        query = query.filter(PaymentVoucher.supplier_id == supplier_id)
    if start_date:
        query = query.filter(PaymentVoucher.payment_date >= start_date)
    if end_date:
        query = query.filter(PaymentVoucher.payment_date <= end_date)

    return query.order_by(desc(PaymentVoucher.payment_date), desc(PaymentVoucher.id)).all()


@router.get("/{pv_id}", response_model=PaymentVoucherOut)
def get_payment_voucher(
    pv_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    company_id = get_company_id(current_user)
    pv = db.query(PaymentVoucher).options(
        joinedload(PaymentVoucher.lines), joinedload(PaymentVoucher.allocations)
    ).filter(
        PaymentVoucher.id == pv_id,
        PaymentVoucher.company_id == company_id
    ).first()
    if not pv:
        raise HTTPException(status_code=404, detail="Payment voucher not found")
    return pv


@router.post("", response_model=PaymentVoucherOut)
def create_payment_voucher(
    data: PaymentVoucherCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*WRITE_ROLES))
):
    """Submit a payment voucher for approval"""
    company = get_company(current_user, db)
    ensure_transactions_unlocked(company)
    company_id = company.id

    if not data.lines and not data.allocations:
        raise HTTPException(status_code=400, detail="A payment voucher needs expense lines or bill allocations")

    bank_account = db.query(Account).filter(
        Account.id == data.bank_account_id,
        Account.company_id == company_id
    ).first()
    if not bank_account or not bank_account.is_bank_account or not bank_account.is_active:
        raise HTTPException(status_code=400, detail="Payment must be made from an active bank or cash account")

    supplier = None
    if data.supplier_id:
        supplier = db.query(Supplier).filter(
            Supplier.id == data.supplier_id,
            Supplier.company_id == company_id
        ).first()
        if not supplier:
            raise HTTPException(status_code=404, detail="Supplier not found")

    payee_name = data.payee_name or (supplier.name if supplier else None)
    if not payee_name:
        raise HTTPException(status_code=400, detail="Payee name is required")

    try:
        pv = PaymentVoucher(
            company_id=company_id,
            pv_number=next_document_number(
                db, PaymentVoucher.pv_number, PaymentVoucher.company_id, company_id,
                f"PV-{data.payment_date.year}-", 5
            ),
            payment_date=data.payment_date,
            payee_type=data.payee_type,
            payee_name=payee_name,
            supplier_id=data.supplier_id,
            bank_account_id=bank_account.id,
            payment_mode=data.payment_mode,
            narration=data.narration,
            status="Submitted",
            created_by=current_user.id
        )

        gross = vat = wht = ZERO
        for line_number, line in enumerate(data.lines, start=1):
            amount = money(line.amount)
            line_vat = _percent(amount, line.vat_rate)
            line_wht = _percent(amount, line.wht_rate)
            gross += amount
            vat += line_vat
            wht += line_wht
            pv.lines.append(PaymentVoucherLine(
                account_id=line.account_id,
                description=line.description,
                amount=amount,
                vat_rate=line.vat_rate,
                vat_amount=line_vat,
                wht_rate=line.wht_rate,
                wht_amount=line_wht,
                line_number=line_number
            ))

        for allocation in data.allocations:
            pv.allocations.append(PaymentAllocation(
                supplier_invoice_id=allocation.supplier_invoice_id,
                amount=money(allocation.amount)
            ))
            gross += money(allocation.amount)

        validate_allocations(db, company_id, data.supplier_id, pv.allocations)

        net = gross + vat - wht
        if net <= 0:
            raise ValueError("Net payable must be greater than zero")

        pv.gross_amount = gross
        pv.vat_amount = vat
        pv.wht_amount = wht
        pv.net_payable = net

        db.add(pv)
        db.commit()
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    db.refresh(pv)
    logger.info(f"Submitted payment voucher {pv.pv_number} to {pv.payee_name}: net {pv.net_payable}")
    return pv


@router.post("/{pv_id}/status", response_model=PaymentVoucherOut)
def update_payment_voucher_status(
    pv_id: int,
    data: PaymentVoucherStatusUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*POSTING_ROLES))
):
    """Approve (and post) or reject a submitted payment voucher"""
    company_id = get_company_id(current_user)
    pv = get_payment_voucher(pv_id, db, current_user)

    if pv.status != "Submitted":
        raise HTTPException(status_code=400, detail=f"Payment voucher is already {pv.status}")

    if data.status == "Rejected":
        pv.status = "Rejected"
        pv.rejection_reason = data.reason
        db.commit()
        db.refresh(pv)
        logger.info(f"Payment voucher {pv.pv_number} rejected by user {current_user.id}")
        return pv

    posting = JournalPostingService(db, company_id, current_user.id)
    try:
        bills = validate_allocations(db, company_id, pv.supplier_id, pv.allocations)

        lines = [
            posting.debit(line.account_id, line.amount, line.description or pv.narration)
            for line in pv.lines
        ]
        if to_decimal(pv.vat_amount) > 0:
            lines.append(posting.debit(posting.account_for_role(SystemRole.VAT_INPUT).id, pv.vat_amount, "Input VAT"))

        allocated = sum((to_decimal(a.amount) for a in pv.allocations), ZERO)
        if allocated > 0:
            ap_account = posting.account_for_role(SystemRole.ACCOUNTS_PAYABLE)
            lines.append(posting.debit(ap_account.id, allocated, f"Payment {pv.pv_number}",
                                       payee_type="supplier", payee_id=pv.supplier_id))
        if to_decimal(pv.wht_amount) > 0:
            lines.append(posting.credit(posting.account_for_role(SystemRole.WHT_PAYABLE).id,
                                        pv.wht_amount, "Withholding tax"))
        lines.append(posting.credit(pv.bank_account_id, pv.net_payable, f"Payment to {pv.payee_name}"))

        voucher = posting.create_voucher(
            entry_date=pv.payment_date,
            narration=pv.narration or f"Payment voucher {pv.pv_number} - {pv.payee_name}",
            lines=lines,
            source_type=SourceType.PAYMENT,
            reference_type="PaymentVoucher",
            reference_id=pv.id,
            reference_number=pv.pv_number
        )

        for allocation, bill in zip(pv.allocations, bills):
            apply_bill_payment(bill, allocation.amount)

        pv.voucher_id = voucher.id
        pv.status = "Approved"
        pv.approved_by = current_user.id
        pv.approved_at = datetime.utcnow()
        db.commit()
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    db.refresh(pv)
    return pv


@router.post("/{pv_id}/reverse", response_model=PaymentVoucherOut)
def reverse_payment_voucher(
    pv_id: int,
    data: Optional[ReverseRequest] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*POSTING_ROLES))
):
    """Reverse an approved payment voucher and reopen the bills it settled"""
    company_id = get_company_id(current_user)
    pv = get_payment_voucher(pv_id, db, current_user)

    if pv.status != "Approved":
        raise HTTPException(status_code=400, detail="Only approved payment vouchers can be reversed")

    data = data or ReverseRequest()
    posting = JournalPostingService(db, company_id, current_user.id)
    try:
        voucher = db.query(JournalVoucher).filter(JournalVoucher.id == pv.voucher_id).first()
        reversal = posting.reverse_voucher(
            voucher, reversal_date=data.reversal_date,
            narration=data.narration or f"Reversal of payment voucher {pv.pv_number}"
        )

        for allocation in pv.allocations:
            remove_bill_payment(allocation.supplier_invoice, allocation.amount)

        pv.status = "Reversed"
        db.commit()
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    logger.info(f"Reversed payment voucher {pv.pv_number} with {reversal.voucher_number}")
    db.refresh(pv)
    return pv
