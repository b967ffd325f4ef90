from datetime import timedelta
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from ledgerbook.config import settings
from ledgerbook.database import get_db
from ledgerbook.models import User
from ledgerbook.schemas import CompanyRegister, UserLogin, Token, User as UserSchema
from ledgerbook.services.auth import register_company, authenticate_user
from ledgerbook.services.dependency import get_current_user
from ledgerbook.utils.rate_limiter import limiter, RateLimits
from ledgerbook.utils.security import create_access_token
import logging

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/register", response_model=UserSchema)
@limiter.limit(RateLimits.REGISTER)
async def register(request: Request, data: CompanyRegister, db: Session = Depends(get_db)):
    """Register a company together with its first admin user"""
    try:
        return register_company(db=db, data=data)
    except HTTPException:
        db.rollback()
        raise
    except Exception as e:
        db.rollback()
        logger.error(f"Registration failed for {data.admin_email}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error creating company"
        )


@router.post("/login", response_model=Token)
@limiter.limit(RateLimits.LOGIN)
async def login(request: Request, user_credentials: UserLogin, db: Session = Depends(get_db)):
    user = authenticate_user(db, user_credentials.email, user_credentials.password)
    if not user:
        logger.warning(f"Failed login attempt for {user_credentials.email}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    access_token_expires = timedelta(minutes=settings.access_token_expire_minutes)
    access_token = create_access_token(
        data={"sub": user.email}, expires_delta=access_token_expires
    )
    return {"access_token": access_token, "token_type": "bearer"}


@router.get("/me", response_model=UserSchema)
async def read_users_me(current_user: User = Depends(get_current_user)):
    return current_user
