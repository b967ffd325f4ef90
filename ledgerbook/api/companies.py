from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List
import logging

from ledgerbook.database import get_db
from ledgerbook.models import User, Account
from ledgerbook.schemas import (
    Company as CompanySchema, CompanyUpdate, CompanySettings, CompanySettingsUpdate, CompanyLock
)
from ledgerbook.services.dependency import get_current_user, get_company, require_roles, POSTING_ROLES
from ledgerbook.services.journal_posting import SystemRole

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/company", response_model=CompanySchema)
def get_company_details(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return get_company(current_user, db)


@router.put("/company", response_model=CompanySchema)
def update_company_details(
    data: CompanyUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*POSTING_ROLES))
):
    company = get_company(current_user, db)

    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(company, field, value)

    db.commit()
    db.refresh(company)
    return company


@router.get("/company/settings", response_model=CompanySettings)
def get_company_settings(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return get_company(current_user, db)


@router.put("/company/settings", response_model=CompanySettings)
def update_company_settings(
    data: CompanySettingsUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*POSTING_ROLES))
):
    """Update base currency, fiscal year start, invoice terms, lock date and form lock"""
    company = get_company(current_user, db)

    update_data = data.model_dump(exclude_unset=True)
    if "base_currency" in update_data and update_data["base_currency"]:
        update_data["base_currency"] = update_data["base_currency"].upper()

    for field, value in update_data.items():
        setattr(company, field, value)

    db.commit()
    db.refresh(company)

    if "lock_date" in update_data:
        logger.info(f"Company {company.code} lock date set to {company.lock_date} by {current_user.email}")

    return company


@router.post("/company/lock")
def set_global_lock(
    data: CompanyLock,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*POSTING_ROLES))
):
    """Lock or unlock the receipt, payment voucher and expense forms"""
    company = get_company(current_user, db)
    company.transactions_locked = data.locked
    db.commit()

    logger.info(f"Company {company.code} transaction forms {'locked' if data.locked else 'unlocked'} by {current_user.email}")
    return {"success": True, "locked": company.transactions_locked}


@router.get("/company/system-accounts")
def get_system_accounts(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Show which account carries each system role, and which roles are unassigned"""
    company = get_company(current_user, db)

    accounts = db.query(Account).filter(
        Account.company_id == company.id,
        Account.system_role != None
    ).all()
    by_role = {a.system_role: a for a in accounts}

    result: List[dict] = []
    for role in SystemRole.ALL:
        account = by_role.get(role)
        result.append({
            "system_role": role,
            "account_id": account.id if account else None,
            "account_code": account.code if account else None,
            "account_name": account.name if account else None,
        })
    return result
