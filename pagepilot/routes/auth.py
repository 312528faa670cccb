from typing import Any
import secrets

from fastapi import APIRouter, Depends, HTTPException, status, Response
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy import func
from sqlalchemy.orm import Session

from pagepilot.db import get_db
from pagepilot.models import User, ApiKey
from pagepilot.schemas import UserCreate, UserOut, OnboardingPayload
from pagepilot.security.auth import (
    verify_password, create_access_token, require_user, get_password_hash, hash_api_key, ACCESS_TOKEN_DAYS,
)
from pagepilot.services.rate_limit import auth_limiter
from pagepilot.logging_setup import log_event

router = APIRouter(prefix="/auth", tags=["auth"], dependencies=[Depends(auth_limiter)])

def _set_session_cookie(response: Response, token: str):
    response.set_cookie(
        key="access_token",
        value=token,
        httponly=True,
        samesite="lax",
        secure=True,
        max_age=ACCESS_TOKEN_DAYS * 24 * 60 * 60
    )

@router.post("/login")
def login(
    response: Response,
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db)
) -> dict[str, Any]:
    user = db.query(User).filter(func.lower(User.email) == func.lower(form_data.username.strip())).first()
    if not user or not user.is_active or not verify_password(form_data.password, user.password_hash):
        log_event("auth_login_failed", level="warning", email_domain=form_data.username.split("@")[-1])
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    access_token = create_access_token(data={"sub": str(user.id)})
    _set_session_cookie(response, access_token)
    return {"access_token": access_token, "token_type": "bearer"}

@router.post("/register")
def register(
    user_in: UserCreate,
    response: Response,
    db: Session = Depends(get_db)
) -> dict[str, Any]:
    existing_user = db.query(User).filter(func.lower(User.email) == func.lower(user_in.email.strip())).first()
    if existing_user:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="A user with this email already exists."
        )

    new_user = User(
        email=user_in.email.strip(),
        first_name=(user_in.first_name or "").strip() or None,
        last_name=(user_in.last_name or "").strip() or None,
        password_hash=get_password_hash(user_in.password),
        is_active=True,
        is_superadmin=False
    )
    db.add(new_user)
    db.commit()
    log_event("auth_registered", user_id=new_user.id)

    access_token = create_access_token(data={"sub": str(new_user.id)})
    _set_session_cookie(response, access_token)
    return {"access_token": access_token, "token_type": "bearer"}

@router.post("/logout")
def logout(response: Response) -> dict[str, str]:
    response.delete_cookie(key="access_token", httponly=True, samesite="lax", secure=True)
    return {"message": "Logged out successfully"}

@router.get("/me", response_model=UserOut)
def me(user: User = Depends(require_user)):
    return user

@router.patch("/complete-onboarding", response_model=UserOut)
def complete_onboarding(
    payload: OnboardingPayload,
    user: User = Depends(require_user),
    db: Session = Depends(get_db)
):
    """Stores campaign preferences and marks the user as onboarded."""
    if user.onboarding_complete:
        raise HTTPException(status_code=400, detail="User is already onboarded.")

    for field, value in payload.model_dump().items():
        setattr(user, field, value)
    user.onboarding_complete = True
    user.automation_active = payload.autopilot_enabled or payload.auto_posting_enabled or payload.auto_boosting_enabled
    db.commit()
    return user

@router.post("/api-keys")
def create_api_key(
    name: str = "Automation Key",
    user: User = Depends(require_user),
    db: Session = Depends(get_db)
) -> dict[str, Any]:
    """Issues a key for automation runners. The raw key is only shown once."""
    raw_key = f"pp_{secrets.token_urlsafe(32)}"
    record = ApiKey(user_id=user.id, name=name, key_hash=hash_api_key(raw_key))
    db.add(record)
    db.commit()
    return {"id": record.id, "name": record.name, "api_key": raw_key}
