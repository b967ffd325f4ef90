from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session
from typing import List
import logging

from ledgerbook.database import get_db
from ledgerbook.models import User, UserPermission
from ledgerbook.schemas import User as UserSchema, UserCreate, UserUpdate
from ledgerbook.services.auth import create_user
from ledgerbook.services.dependency import get_current_user, get_company_id, require_roles, effective_permissions
from ledgerbook.utils.permissions import ALL_PERMISSIONS, list_permissions, role_permissions

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/users", response_model=List[UserSchema])
def list_users(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    company_id = get_company_id(current_user)
    return db.query(User).filter(User.company_id == company_id).order_by(User.id).all()


@router.post("/users", response_model=UserSchema)
def invite_user(
    user: UserCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles("admin"))
):
    """Create a user in the admin's company with an initial password"""
    company_id = get_company_id(current_user)
    db_user = create_user(db, user, company_id)
    logger.info(f"User {db_user.email} ({db_user.role}) added to company {company_id} by {current_user.email}")
    return db_user


@router.put("/users/{user_id}", response_model=UserSchema)
def update_user(
    user_id: int,
    data: UserUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles("admin"))
):
    company_id = get_company_id(current_user)

    user = db.query(User).filter(
        User.id == user_id,
        User.company_id == company_id
    ).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    update_data = data.model_dump(exclude_unset=True)
    if user.id == current_user.id and update_data.get("is_active") is False:
        raise HTTPException(status_code=400, detail="You cannot deactivate your own account")
    if user.id == current_user.id and update_data.get("role") not in (None, "admin"):
        raise HTTPException(status_code=400, detail="You cannot remove your own admin role")

    for field, value in update_data.items():
        setattr(user, field, value)

    db.commit()
    db.refresh(user)
    return user


class UserPermissionsUpdate(BaseModel):
    permissions: List[str]  # "module:action"


def get_company_user_or_404(db: Session, company_id: int, user_id: int) -> User:
    user = db.query(User).filter(
        User.id == user_id,
        User.company_id == company_id
    ).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


def _describe(user: User, db: Session) -> dict:
    def keys(pairs):
        return sorted(f"{module}:{action}" for module, action in pairs)

    return {
        "user_id": user.id,
        "role": user.role,
        "role_permissions": keys(role_permissions(user.role)),
        "granted_permissions": keys((p.module, p.action) for p in user.permissions),
        "effective_permissions": keys(effective_permissions(db, user)),
    }


@router.get("/permissions")
def list_available_permissions(current_user: User = Depends(get_current_user)):
    return list_permissions()


@router.get("/users/{user_id}/permissions")
def get_user_permissions(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Role defaults, individual grants and the merged set the user works with"""
    company_id = get_company_id(current_user)
    if current_user.id != user_id and current_user.role != "admin":
        raise HTTPException(status_code=403, detail="Admin access required")
    return _describe(get_company_user_or_404(db, company_id, user_id), db)


@router.put("/users/{user_id}/permissions")
def update_user_permissions(
    user_id: int,
    data: UserPermissionsUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles("admin"))
):
    """Replace the user's individual grants; role defaults are unaffected"""
    company_id = get_company_id(current_user)
    user = get_company_user_or_404(db, company_id, user_id)

    requested = set()
    for key in data.permissions:
        module, _, action = key.partition(":")
        if (module, action) not in ALL_PERMISSIONS:
            raise HTTPException(status_code=400, detail=f"Unknown permission '{key}'")
        requested.add((module, action))

    # Clear existing grants
    db.query(UserPermission).filter(UserPermission.user_id == user.id).delete()
    for module, action in sorted(requested):
        db.add(UserPermission(user_id=user.id, module=module, action=action))
    db.commit()
    db.refresh(user)

    logger.info(f"Permissions for {user.email} set to {sorted(requested)} by {current_user.email}")
    return _describe(user, db)
