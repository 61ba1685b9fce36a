import uuid
from fastapi import APIRouter, Depends, HTTPException
from jose import JWTError
from sqlalchemy.orm import Session
from slotbook.db.session import get_db
from slotbook.schemas.auth import LoginRequest, RegisterRequest, TokenPair
from slotbook.models.user import User
from slotbook.core.security import (
    create_access_token, create_refresh_token, decode_token, hash_password, verify_password,
)
from slotbook.api.deps import get_current_user

router = APIRouter(tags=["auth"])


def _pair(user: User) -> TokenPair:
    return TokenPair(
        access_token=create_access_token(user.id, role=user.role),
        refresh_token=create_refresh_token(user.id),
    )


@router.post("/auth/login", response_model=TokenPair)
def login(body: LoginRequest, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == body.email.strip().lower()).first()
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not verify_password(body.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return _pair(user)


@router.post("/auth/register", response_model=TokenPair)
def register(body: RegisterRequest, db: Session = Depends(get_db)):
    """Self sign-up always creates a client; staff roles are granted by an admin."""
    email = body.email.strip().lower()
    if not email or "@" not in email:
        raise HTTPException(status_code=400, detail="valid email required")
    if len(body.password) < 8:
        raise HTTPException(status_code=400, detail="Password too short")
    if db.query(User).filter(User.email == email).first():
        raise HTTPException(status_code=409, detail="email already exists")
    user = User(
        id=str(uuid.uuid4()),
        email=email,
        full_name=body.fullName or "",
        phone=body.phone or None,
        role="client",
        password_hash=hash_password(body.password),
        is_active=True,
    )
    db.add(user)
    db.commit()
    return _pair(user)


@router.post("/auth/refresh", response_model=TokenPair)
def refresh(refresh_token: str, db: Session = Depends(get_db)):
    try:
        payload = decode_token(refresh_token, expected_type="refresh")
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid refresh token")
    user = db.get(User, payload.get("sub"))
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="User not found or inactive")
    return _pair(user)


@router.get("/auth/me")
def me(me: User = Depends(get_current_user)):
    """Return current user info including role."""
    return {
        "id": me.id,
        "email": me.email,
        "fullName": me.full_name or "",
        "phone": me.phone or "",
        "role": me.role,
    }


@router.post("/auth/change-password")
def change_password(oldPassword: str, newPassword: str,
                    db: Session = Depends(get_db),
                    me: User = Depends(get_current_user)):
    if not verify_password(oldPassword, me.password_hash):
        raise HTTPException(status_code=400, detail="Old password incorrect")
    if len(newPassword) < 8:
        raise HTTPException(status_code=400, detail="Password too short")
    me.password_hash = hash_password(newPassword)
    db.commit()
    return {"ok": True}
