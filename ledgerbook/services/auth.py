import re
import secrets
import logging
from typing import Optional

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from ledgerbook.config import settings
from ledgerbook.models import User, Company
from ledgerbook.schemas import UserCreate, CompanyRegister
from ledgerbook.utils.company_seed import seed_account_types
from ledgerbook.utils.security import get_password_hash, verify_password, validate_password_complexity

logger = logging.getLogger(__name__)


def get_user_by_email(db: Session, email: str) -> Optional[User]:
    return db.query(User).filter(User.email == email).first()


def authenticate_user(db: Session, email: str, password: str) -> Optional[User]:
    user = get_user_by_email(db, email)
    if not user or not user.is_active:
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user


def _check_password(password: str):
    if not validate_password_complexity(password):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Password must be at least 8 characters and contain an uppercase letter and a digit"
        )


def _generate_company_code(db: Session, name: str) -> str:
    base = re.sub(r"[^A-Z0-9]", "", name.upper())[:6] or "CMP"
    while True:
        code = f"{base}-{secrets.token_hex(2).upper()}"
        if not db.query(Company).filter(Company.code == code).first():
            return code


def register_company(db: Session, data: CompanyRegister) -> User:
    """Create a company, its default account types and its first admin user"""
    if get_user_by_email(db, data.admin_email):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already registered")
    _check_password(data.password)

    company = Company(
        name=data.company_name,
        code=_generate_company_code(db, data.company_name),
        email=data.company_email,
        phone=data.company_phone,
        base_currency=(data.base_currency or settings.default_currency).upper(),
        invoice_terms_days=settings.invoice_due_days
    )
    db.add(company)
    db.flush()

    seed_account_types(db, company.id)

    user = User(
        email=data.admin_email,
        name=data.admin_name,
        hashed_password=get_password_hash(data.password),
        company_id=company.id,
        role="admin"
    )
    db.add(user)
    db.commit()
    db.refresh(user)

    logger.info(f"Registered company {company.code} with admin {user.email}")
    return user


def create_user(db: Session, user: UserCreate, company_id: int) -> User:
    """Add a user to an existing company"""
    if get_user_by_email(db, user.email):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already registered")
    _check_password(user.password)

    db_user = User(
        email=user.email,
        name=user.name,
        hashed_password=get_password_hash(user.password),
        company_id=company_id,
        role=user.role
    )
    db.add(db_user)
    db.commit()
    db.refresh(db_user)
    return db_user
