from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from ledgerbook.database import get_db
from ledgerbook.models import User, Company, UserPermission
from ledgerbook.utils.permissions import role_permissions
from ledgerbook.utils.security import verify_token

security = HTTPBearer()

ROLES = ("admin", "accountant", "clerk", "viewer")
WRITE_ROLES = ("admin", "accountant", "clerk")
POSTING_ROLES = ("admin", "accountant")


def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security), db: Session = Depends(get_db)):
    """Get the current authenticated user"""
    token = credentials.credentials
    email = verify_token(token)

    if not email:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token"
        )

    user = db.query(User).filter(User.email == email).first()

    if not user or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found"
        )

    return user


def get_company_id(user: User) -> int:
    """Get company ID for the current user"""
    if not user.company_id:
        raise HTTPException(status_code=400, detail="User not associated with a company")
    return user.company_id


def get_company(user: User, db: Session) -> Company:
    company = db.query(Company).filter(Company.id == get_company_id(user)).first()
    if not company:
        raise HTTPException(status_code=404, detail="Company not found")
    return company


def require_roles(*roles: str):
    """Dependency factory: allow only users whose role is in `roles`"""
    def role_checker(current_user: User = Depends(get_current_user)):
        if current_user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role '{current_user.role}' is not allowed to perform this action"
            )
        return current_user
    return role_checker


def effective_permissions(db: Session, user: User) -> set:
    """Role defaults plus the user's own grants, as (module, action) pairs"""
    granted = db.query(UserPermission.module, UserPermission.action).filter(
        UserPermission.user_id == user.id
    ).all()
    return set(role_permissions(user.role)) | {(module, action) for module, action in granted}


def require_permission(module: str, action: str):
    """Dependency factory: allow users whose role or own grants include module:action"""
    def permission_checker(
        current_user: User = Depends(get_current_user),
        db: Session = Depends(get_db)
    ):
        if (module, action) not in effective_permissions(db, current_user):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission '{module}:{action}' not authorized"
            )
        return current_user
    return permission_checker


def ensure_transactions_unlocked(company: Company):
    """Reject new receipts, payments and expenses while the company lock is on"""
    if company.transactions_locked:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Transaction forms are locked for this company"
        )
