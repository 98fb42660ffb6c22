import secrets
from datetime import datetime, timedelta, timezone

import structlog
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..db import get_db
from ..config import settings
from ..models.models import Role, User
from ..schemas.auth import EmailRequest, LoginRequest, RegisterRequest, ResetPasswordRequest, VerifyEmailRequest
from ..services import notifications
from ..services.users import serialize_user
from .security import (
    create_access_token,
    get_current_user,
    get_password_hash,
    get_permission_map,
    verify_password,
)


router = APIRouter(prefix="/api/auth", tags=["auth"])
log = structlog.get_logger()

DEFAULT_ROLE = "user"


def _role(db: Session, name: str) -> Role:
    role = db.query(Role).filter(Role.name == name).first()
    if role is None:
        role = Role(name=name, permissions={})
        db.add(role)
        db.flush()
    return role


def _token_payload(user: User) -> dict:
    access = create_access_token(user.id, roles=sorted(user.role_names))
    return {"accessToken": access, "tokenType": "bearer", "user": serialize_user(user)}


def _issue_otp(user: User) -> str:
    """Store a fresh six-digit code on the user (hashed) and return it in clear."""
    code = str(secrets.randbelow(900000) + 100000)
    user.otp_hash = get_password_hash(code)
    user.otp_expires_at = datetime.now(timezone.utc) + timedelta(seconds=settings.otp_ttl_seconds)
    return code


def _check_otp(user: User, code: str) -> None:
    if not user.otp_hash or not user.otp_expires_at:
        raise HTTPException(status_code=400, detail="No valid OTP found for this user")
    expires_at = user.otp_expires_at
    # SQLite hands back naive datetimes
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    if expires_at < datetime.now(timezone.utc):
        raise HTTPException(status_code=400, detail="OTP has expired")
    if not verify_password(code.strip(), user.otp_hash):
        raise HTTPException(status_code=400, detail="Invalid OTP")


def _clear_otp(user: User) -> None:
    user.otp_hash = None
    user.otp_expires_at = None


def _user_by_email(db: Session, email: str) -> User:
    user = db.query(User).filter(User.email == email.lower()).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


def _otp_body(user: User, purpose: str, code: str, intro: str = "") -> str:
    return notifications.paragraph(
        f"Hello {user.first_name},",
        intro,
        f"Your {purpose} code is {code}.",
        f"It expires in {settings.otp_ttl_seconds // 60} minutes.",
    )


@router.post("/register", status_code=201)
def register(payload: RegisterRequest, db: Session = Depends(get_db)):
    email = payload.email.lower()
    if db.query(User.id).filter(User.email == email).first():
        raise HTTPException(status_code=409, detail="Email already registered")
    # The very first account bootstraps the installation as admin
    first_user = db.query(User.id).first() is None
    user = User(
        first_name=payload.first_name.strip(),
        last_name=(payload.last_name or "").strip() or None,
        email=email,
        password_hash=get_password_hash(payload.password),
        phone_number=payload.phone_number,
    )
    user.roles.append(_role(db, "admin" if first_user else DEFAULT_ROLE))
    code = _issue_otp(user)
    db.add(user)
    db.commit()
    db.refresh(user)
    log.info("user_registered", user_id=user.id, bootstrap_admin=first_user)

    notifications.notify_user(
        user,
        f"Welcome to {settings.app_name}",
        _otp_body(user, "email verification", code, intro="Your account has been created."),
    )
    return {"message": "User registered successfully", **_token_payload(user)}


@router.post("/login")
def login(req: LoginRequest, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == req.email.lower()).first()
    if not user or not verify_password(req.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not user.is_active:
        raise HTTPException(status_code=403, detail="Account disabled")
    user.last_login_at = datetime.now(timezone.utc)
    db.commit()
    return {"message": "Login successful", **_token_payload(user)}


@router.get("/me")
def me(user: User = Depends(get_current_user)):
    out = serialize_user(user)
    out["permissions"] = sorted(k for k, v in get_permission_map(user).items() if v)
    return out


@router.post("/verify-email")
def verify_email(payload: VerifyEmailRequest, db: Session = Depends(get_db)):
    user = _user_by_email(db, payload.email)
    if user.email_verified:
        raise HTTPException(status_code=400, detail="Email already verified")
    _check_otp(user, payload.otp)
    user.email_verified = True
    _clear_otp(user)
    db.commit()
    db.refresh(user)
    log.info("email_verified", user_id=user.id)
    return {"message": "Email verified successfully", "user": serialize_user(user)}


@router.post("/resend-verification")
def resend_verification(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    if user.email_verified:
        raise HTTPException(status_code=400, detail="Email already verified")
    code = _issue_otp(user)
    db.commit()
    notifications.notify_user(user, "Verify your email", _otp_body(user, "email verification", code))
    return {"message": "Verification OTP resent successfully"}


@router.post("/forgot-password")
def forgot_password(payload: EmailRequest, db: Session = Depends(get_db)):
    user = _user_by_email(db, payload.email)
    code = _issue_otp(user)
    db.commit()
    log.info("password_reset_requested", user_id=user.id)
    notifications.notify_user(user, "Reset your password", _otp_body(user, "password reset", code))
    return {"message": "Password reset OTP sent to email"}


@router.post("/reset-password")
def reset_password(payload: ResetPasswordRequest, db: Session = Depends(get_db)):
    user = _user_by_email(db, payload.email)
    _check_otp(user, payload.otp)
    user.password_hash = get_password_hash(payload.password)
    _clear_otp(user)
    db.commit()
    log.info("password_reset", user_id=user.id)
    return {"message": "Password reset successful"}
