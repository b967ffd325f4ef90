"""
Accounting Ledger API Routes
Handles Account Types, Chart of Accounts, Fiscal Periods and Tax Configurations
"""

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session, joinedload
from sqlalchemy import or_
from typing import List, Optional
from datetime import datetime, date
import calendar
import logging

from ledgerbook.database import get_db
from ledgerbook.models import (
    User, AccountType, Account, AccountBalance, FiscalPeriod, JournalVoucher, JournalVoucherLine, TaxConfig,
    BomOverhead, ProductionOverheadCost, Receipt, SupplierInvoiceLine, PaymentVoucher, PaymentVoucherLine,
    Expense, BankReconciliation, MaterialIssue
)
from ledgerbook.schemas import (
    AccountType as AccountTypeSchema,
    Account as AccountSchema, AccountCreate, AccountUpdate, AccountWithChildren,
    BulkAccountSave, FiscalPeriod as FiscalPeriodSchema,
    TaxConfig as TaxConfigSchema, TaxConfigCreate, TaxConfigUpdate
)
from ledgerbook.services.dependency import (
    get_current_user, get_company_id, get_company, require_roles, POSTING_ROLES
)
from ledgerbook.services.journal_posting import SystemRole
from ledgerbook.utils.company_seed import seed_chart_of_accounts, seed_account_types
from ledgerbook.utils.rate_limiter import limiter, RateLimits

logger = logging.getLogger(__name__)

router = APIRouter()

# Fields a system account keeps fixed; postings depend on them
SYSTEM_ACCOUNT_LOCKED_FIELDS = {"name", "account_type_id", "system_role", "is_header", "is_active"}


def _validate_system_role(db: Session, company_id: int, role: Optional[str], exclude_account_id: Optional[int] = None):
    if role is None:
        return
    if role not in SystemRole.ALL:
        raise HTTPException(status_code=400, detail=f"Unknown system role '{role}'")

    query = db.query(Account).filter(
        Account.company_id == company_id,
        Account.system_role == role
    )
    if exclude_account_id:
        query = query.filter(Account.id != exclude_account_id)
    holder = query.first()
    if holder:
        raise HTTPException(
            status_code=400,
            detail=f"System role '{role}' is already assigned to account {holder.code}"
        )


# Every column that points at an account; a referenced account is deactivated, never deleted
ACCOUNT_REFERENCES = (
    JournalVoucherLine.account_id,
    AccountBalance.account_id,
    TaxConfig.account_id,
    BomOverhead.account_id,
    ProductionOverheadCost.account_id,
    Receipt.account_id,
    SupplierInvoiceLine.account_id,
    PaymentVoucher.bank_account_id,
    PaymentVoucherLine.account_id,
    Expense.account_id,
    Expense.paid_from_account_id,
    BankReconciliation.account_id,
    MaterialIssue.expense_account_id,
)


def _account_in_use(db: Session, account_id: int) -> bool:
    """An account with postings, documents or configuration pointing at it cannot be deleted"""
    for column in ACCOUNT_REFERENCES:
        if db.query(column).filter(column == account_id).first():
            return True
    return False


# ============================================================================
# Account Types Endpoints
# ============================================================================

@router.get("/account-types", response_model=List[AccountTypeSchema])
def list_account_types(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """List all account types for the company"""
    company_id = get_company_id(current_user)

    types = db.query(AccountType).filter(
        AccountType.company_id == company_id,
        AccountType.is_active == True
    ).order_by(AccountType.display_order).all()

    return types


# ============================================================================
# Chart of Accounts Endpoints
# ============================================================================

@router.get("/accounts", response_model=List[AccountSchema])
def list_accounts(
    include_inactive: bool = False,
    account_type_id: Optional[int] = None,
    account_type: Optional[str] = None,
    is_bank_account: Optional[bool] = None,
    search: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """List all accounts with optional filters"""
    company_id = get_company_id(current_user)

    query = db.query(Account).options(
        joinedload(Account.account_type)
    ).filter(Account.company_id == company_id)

    if not include_inactive:
        query = query.filter(Account.is_active == True)

    if account_type_id:
        query = query.filter(Account.account_type_id == account_type_id)

    if account_type:
        query = query.join(AccountType, Account.account_type_id == AccountType.id).filter(
            AccountType.code == account_type.upper()
        )

    if is_bank_account is not None:
        query = query.filter(Account.is_bank_account == is_bank_account)

    if search:
        query = query.filter(
            or_(
                Account.code.ilike(f"%{search}%"),
                Account.name.ilike(f"%{search}%")
            )
        )

    return query.order_by(Account.code).all()


@router.get("/accounts/tree", response_model=List[AccountWithChildren])
def get_accounts_tree(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Get accounts as a hierarchical tree structure"""
    company_id = get_company_id(current_user)

    accounts = db.query(Account).options(
        joinedload(Account.account_type)
    ).filter(
        Account.company_id == company_id,
        Account.is_active == True
    ).order_by(Account.code).all()

    nodes = {a.id: AccountWithChildren.model_validate(a) for a in accounts}
    root_accounts = []

    for account in accounts:
        if account.parent_id and account.parent_id in nodes:
            nodes[account.parent_id].children.append(nodes[account.id])
        else:
            root_accounts.append(nodes[account.id])

    return root_accounts


@router.get("/accounts/{account_id}", response_model=AccountSchema)
def get_account(
    account_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Get a single account by ID"""
    company_id = get_company_id(current_user)

    account = db.query(Account).options(
        joinedload(Account.account_type)
    ).filter(
        Account.id == account_id,
        Account.company_id == company_id
    ).first()

    if not account:
        raise HTTPException(status_code=404, detail="Account not found")

    return account


@router.post("/accounts", response_model=AccountSchema)
def create_account(
    account: AccountCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*POSTING_ROLES))
):
    """Create a new account"""
    company_id = get_company_id(current_user)

    account_type = db.query(AccountType).filter(
        AccountType.id == account.account_type_id,
        AccountType.company_id == company_id
    ).first()

    if not account_type:
        raise HTTPException(status_code=400, detail="Invalid account type")

    existing = db.query(Account).filter(
        Account.company_id == company_id,
        Account.code == account.code
    ).first()

    if existing:
        raise HTTPException(status_code=400, detail=f"Account with code '{account.code}' already exists")

    if account.parent_id:
        parent = db.query(Account).filter(
            Account.id == account.parent_id,
            Account.company_id == company_id
        ).first()
        if not parent:
            raise HTTPException(status_code=400, detail="Parent account not found")

    _validate_system_role(db, company_id, account.system_role)

    db_account = Account(
        company_id=company_id,
        created_by=current_user.id,
        **account.model_dump()
    )
    db.add(db_account)
    db.commit()
    db.refresh(db_account)

    return db_account


@router.put("/accounts/{account_id}", response_model=AccountSchema)
def update_account(
    account_id: int,
    account: AccountUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*POSTING_ROLES))
):
    """Update an existing account"""
    company_id = get_company_id(current_user)

    db_account = db.query(Account).filter(
        Account.id == account_id,
        Account.company_id == company_id
    ).first()

    if not db_account:
        raise HTTPException(status_code=404, detail="Account not found")

    update_data = account.model_dump(exclude_unset=True)

    if db_account.is_system:
        changed = {
            field for field in SYSTEM_ACCOUNT_LOCKED_FIELDS & update_data.keys()
            if update_data[field] != getattr(db_account, field)
        }
        if changed:
            raise HTTPException(
                status_code=400,
                detail=f"Cannot modify {', '.join(sorted(changed))} on a system account"
            )

    if "account_type_id" in update_data:
        account_type = db.query(AccountType).filter(
            AccountType.id == update_data["account_type_id"],
            AccountType.company_id == company_id
        ).first()
        if not account_type:
            raise HTTPException(status_code=400, detail="Invalid account type")

    if update_data.get("parent_id"):
        if update_data["parent_id"] == db_account.id:
            raise HTTPException(status_code=400, detail="An account cannot be its own parent")
        parent = db.query(Account).filter(
            Account.id == update_data["parent_id"],
            Account.company_id == company_id
        ).first()
        if not parent:
            raise HTTPException(status_code=400, detail="Parent account not found")

    if "system_role" in update_data:
        _validate_system_role(db, company_id, update_data["system_role"], exclude_account_id=db_account.id)

    for field, value in update_data.items():
        setattr(db_account, field, value)

    db.commit()
    db.refresh(db_account)

    return db_account


@router.delete("/accounts/{account_id}")
def delete_account(
    account_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*POSTING_ROLES))
):
    """Delete (deactivate) an account"""
    company_id = get_company_id(current_user)

    account = db.query(Account).filter(
        Account.id == account_id,
        Account.company_id == company_id
    ).first()

    if not account:
        raise HTTPException(status_code=404, detail="Account not found")

    if account.is_system:
        raise HTTPException(status_code=400, detail="Cannot delete system account")

    if db.query(Account.id).filter(Account.parent_id == account.id).first():
        raise HTTPException(status_code=400, detail="Cannot delete an account that has child accounts")

    if _account_in_use(db, account.id):
        # Soft delete - just deactivate
        account.is_active = False
        db.commit()
        return {"message": "Account deactivated (referenced by postings or documents)"}

    db.delete(account)
    db.commit()

    return {"message": "Account deleted"}


@router.post("/accounts/bulk")
@limiter.limit(RateLimits.BULK_OPERATIONS)
def bulk_save_accounts(
    request: Request,
    payload: BulkAccountSave,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*POSTING_ROLES))
):
    """
    Replace the whole chart of accounts in one transaction.

    Rows are matched to existing accounts by code and updated in place;
    new codes are inserted. Accounts missing from the payload are deleted,
    or deactivated when they already carry postings. Any invalid row
    rejects the whole save.
    """
    company_id = get_company_id(current_user)
    rows = payload.accounts

    if not rows:
        raise HTTPException(status_code=400, detail="No accounts provided")

    type_map = {code.upper(): type_id for code, type_id in seed_account_types(db, company_id).items()}

    codes = [r.account_code.strip() for r in rows]
    duplicates = sorted({c for c in codes if codes.count(c) > 1})
    if duplicates:
        raise HTTPException(status_code=400, detail=f"Duplicate account codes: {', '.join(duplicates)}")

    roles = [r.system_role for r in rows if r.system_role]
    duplicate_roles = sorted({r for r in roles if roles.count(r) > 1})
    if duplicate_roles:
        raise HTTPException(status_code=400, detail=f"System roles assigned more than once: {', '.join(duplicate_roles)}")

    for i, row in enumerate(rows, start=1):
        if row.account_type.upper() not in type_map:
            raise HTTPException(status_code=400, detail=f"Row {i}: Unknown account type '{row.account_type}'")
        if row.system_role and row.system_role not in SystemRole.ALL:
            raise HTTPException(status_code=400, detail=f"Row {i}: Unknown system role '{row.system_role}'")
        if row.parent_account_code and row.parent_account_code not in codes:
            raise HTTPException(
                status_code=400,
                detail=f"Row {i}: Parent account '{row.parent_account_code}' is not in the chart"
            )
        if row.parent_account_code == row.account_code:
            raise HTTPException(status_code=400, detail=f"Row {i}: An account cannot be its own parent")

    try:
        existing = {
            a.code: a for a in db.query(Account).filter(Account.company_id == company_id).all()
        }

        # Release roles first so they can move between accounts
        for acct in existing.values():
            acct.system_role = None
        db.flush()

        saved = {}
        for row in rows:
            code = row.account_code.strip()
            acct = existing.get(code)
            if acct is None:
                acct = Account(company_id=company_id, code=code, created_by=current_user.id)
                db.add(acct)
            acct.name = row.account_name
            acct.account_type_id = type_map[row.account_type.upper()]
            acct.system_role = row.system_role
            acct.is_header = row.is_header
            acct.is_bank_account = row.is_bank_account
            acct.is_control_account = row.is_control_account
            acct.is_active = row.is_active
            saved[code] = acct
        db.flush()

        for row in rows:
            parent = saved.get(row.parent_account_code) if row.parent_account_code else None
            saved[row.account_code.strip()].parent_id = parent.id if parent else None

        removed = [a for code, a in existing.items() if code not in saved]
        for acct in removed:
            acct.parent_id = None
        db.flush()

        deleted = deactivated = 0
        for acct in removed:
            if _account_in_use(db, acct.id):
                acct.is_active = False
                deactivated += 1
            else:
                db.delete(acct)
                deleted += 1

        db.commit()
    except HTTPException:
        db.rollback()
        raise
    except Exception as e:
        db.rollback()
        logger.error(f"Bulk chart of accounts save failed for company {company_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to save chart of accounts")

    logger.info(
        f"Chart of accounts saved for company {company_id}: {len(saved)} rows, "
        f"{deleted} deleted, {deactivated} deactivated"
    )
    return {
        "success": True,
        "saved": len(saved),
        "deleted": deleted,
        "deactivated": deactivated
    }


# ============================================================================
# Fiscal Periods Endpoints
# ============================================================================

@router.get("/fiscal-periods", response_model=List[FiscalPeriodSchema])
def list_fiscal_periods(
    fiscal_year: Optional[int] = None,
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """List fiscal periods"""
    company_id = get_company_id(current_user)

    query = db.query(FiscalPeriod).filter(FiscalPeriod.company_id == company_id)

    if fiscal_year:
        query = query.filter(FiscalPeriod.fiscal_year == fiscal_year)

    if status:
        query = query.filter(FiscalPeriod.status == status)

    return query.order_by(FiscalPeriod.fiscal_year.desc(), FiscalPeriod.period_number).all()


@router.post("/fiscal-periods/generate")
def generate_fiscal_periods(
    fiscal_year: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*POSTING_ROLES))
):
    """Generate 12 monthly fiscal periods starting at the company's fiscal year start month"""
    company = get_company(current_user, db)

    existing = db.query(FiscalPeriod).filter(
        FiscalPeriod.company_id == company.id,
        FiscalPeriod.fiscal_year == fiscal_year
    ).first()

    if existing:
        raise HTTPException(status_code=400, detail=f"Fiscal periods for {fiscal_year} already exist")

    start_month = company.fiscal_year_start_month or 1
    for period_number in range(1, 13):
        month_index = start_month - 1 + period_number - 1
        year = fiscal_year + month_index // 12
        month = month_index % 12 + 1
        last_day = calendar.monthrange(year, month)[1]
        db.add(FiscalPeriod(
            company_id=company.id,
            fiscal_year=fiscal_year,
            period_number=period_number,
            period_name=f"{calendar.month_name[month]} {year}",
            start_date=date(year, month, 1),
            end_date=date(year, month, last_day),
            status="open"
        ))

    db.commit()

    return {"message": f"Generated 12 fiscal periods for {fiscal_year}", "count": 12}


@router.post("/fiscal-periods/{period_id}/close")
def close_fiscal_period(
    period_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*POSTING_ROLES))
):
    """Close a fiscal period"""
    company_id = get_company_id(current_user)

    period = db.query(FiscalPeriod).filter(
        FiscalPeriod.id == period_id,
        FiscalPeriod.company_id == company_id
    ).first()

    if not period:
        raise HTTPException(status_code=404, detail="Fiscal period not found")

    if period.status == "closed":
        raise HTTPException(status_code=400, detail="Period is already closed")

    unposted = db.query(JournalVoucher).filter(
        JournalVoucher.company_id == company_id,
        JournalVoucher.status == "draft",
        JournalVoucher.entry_date >= period.start_date,
        JournalVoucher.entry_date <= period.end_date
    ).count()

    if unposted > 0:
        raise HTTPException(
            status_code=400,
            detail=f"Cannot close period: {unposted} unposted journal vouchers exist"
        )

    period.status = "closed"
    period.closed_at = datetime.utcnow()
    period.closed_by = current_user.id

    db.commit()
    logger.info(f"Fiscal period {period.period_name} closed for company {company_id}")

    return {"message": f"Period '{period.period_name}' closed successfully"}


# ============================================================================
# Tax Configuration Endpoints
# ============================================================================

def _validate_tax_account(db: Session, company_id: int, account_id: Optional[int]):
    if account_id is None:
        return
    account = db.query(Account).filter(
        Account.id == account_id,
        Account.company_id == company_id,
        Account.is_header == False
    ).first()
    if not account:
        raise HTTPException(status_code=400, detail="Invalid tax account")


@router.get("/taxes", response_model=List[TaxConfigSchema])
def list_taxes(
    tax_type: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    company_id = get_company_id(current_user)
    query = db.query(TaxConfig).filter(TaxConfig.company_id == company_id)
    if tax_type:
        query = query.filter(TaxConfig.tax_type == tax_type.upper())
    return query.order_by(TaxConfig.tax_type, TaxConfig.name).all()


@router.post("/taxes", response_model=TaxConfigSchema)
def create_tax(
    tax: TaxConfigCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*POSTING_ROLES))
):
    company_id = get_company_id(current_user)
    _validate_tax_account(db, company_id, tax.account_id)

    db_tax = TaxConfig(company_id=company_id, **tax.model_dump())
    db.add(db_tax)
    db.commit()
    db.refresh(db_tax)
    return db_tax


@router.put("/taxes/{tax_id}", response_model=TaxConfigSchema)
def update_tax(
    tax_id: int,
    tax: TaxConfigUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*POSTING_ROLES))
):
    company_id = get_company_id(current_user)

    db_tax = db.query(TaxConfig).filter(
        TaxConfig.id == tax_id,
        TaxConfig.company_id == company_id
    ).first()
    if not db_tax:
        raise HTTPException(status_code=404, detail="Tax configuration not found")

    update_data = tax.model_dump(exclude_unset=True)
    if "account_id" in update_data:
        _validate_tax_account(db, company_id, update_data["account_id"])

    for field, value in update_data.items():
        setattr(db_tax, field, value)

    db.commit()
    db.refresh(db_tax)
    return db_tax


# ============================================================================
# Chart of Accounts Initialization
# ============================================================================

@router.post("/initialize-chart-of-accounts")
def initialize_chart_of_accounts(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*POSTING_ROLES))
):
    """Initialize default chart of accounts for a company"""
    company_id = get_company_id(current_user)

    existing = db.query(Account).filter(Account.company_id == company_id).first()
    if existing:
        raise HTTPException(status_code=400, detail="Chart of accounts already initialized")

    count = seed_chart_of_accounts(db, company_id, current_user.id)
    db.commit()

    return {"message": "Chart of accounts initialized successfully", "accounts_created": count}
