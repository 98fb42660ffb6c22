import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional, List

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..models.models import User


pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
http_bearer = HTTPBearer(auto_error=False)

ADMIN_ROLES = {"admin", "superadmin"}
MANAGER_ROLES = ADMIN_ROLES | {"manager"}


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return pwd_context.verify(plain, hashed)
    except Exception:
        return False


def _create_token(sub: str, ttl_seconds: int, extra: Optional[dict] = None) -> str:
    now = datetime.now(tz=timezone.utc)
    payload = {
        "sub": sub,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=ttl_seconds)).timestamp()),
        "jti": str(uuid.uuid4()),
    }
    if extra:
        payload.update(extra)
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def create_access_token(user_id: int, roles: Optional[List[str]] = None) -> str:
    return _create_token(str(user_id), settings.jwt_ttl_seconds, extra={"roles": roles or []})


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


def user_from_token(token: str, db: Session) -> User:
    payload = decode_token(token)
    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid subject")
    user = db.query(User).filter(User.id == user_id).first()
    if user is None or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not active")
    return user


def get_current_user(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
    db: Session = Depends(get_db),
):
    if creds is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return user_from_token(creds.credentials, db)


def is_admin(user: User) -> bool:
    return bool(user.role_names & ADMIN_ROLES)


def is_manager(user: User) -> bool:
    """Admins count as managers."""
    return bool(user.role_names & MANAGER_ROLES)


def require_roles(*required_roles: str):
    """Require at least one of the given roles (admins always pass)."""
    wanted = {r.lower() for r in required_roles}

    def _dep(user: User = Depends(get_current_user)):
        if is_admin(user):
            return user
        if not (user.role_names & wanted):
            raise HTTPException(status_code=403, detail="Forbidden")
        return user

    return _dep


def require_permissions(*required_permissions: str):
    """
    Require at least one of the specified permissions (OR logic).
    If multiple permissions are provided, user needs at least one.
    """
    def _dep(user: User = Depends(get_current_user)):
        if is_admin(user):
            return user
        if not any(has_permission(user, perm) for perm in required_permissions):
            raise HTTPException(status_code=403, detail="Forbidden")
        return user

    return _dep


def get_permission_map(user: User) -> dict:
    perm_map = {}
    for r in user.roles:
        if r.permissions:
            perm_map.update(r.permissions)
    return perm_map


def has_permission(user: User, perm: str) -> bool:
    if is_admin(user):
        return True
    perm_map = get_permission_map(user)
    # "document:*" grants every document permission
    area = perm.split(":", 1)[0]
    return bool(perm_map.get(perm) or perm_map.get(f"{area}:*"))


# Every permission string a role may grant; "<area>:*" grants the whole area
PERMISSIONS = {
    "document:create": "Upload project documents",
    "document:update": "Edit project documents",
    "document:delete": "Delete project documents",
    "training:create": "Schedule trainings",
    "training:view": "View trainings",
    "training:update": "Edit trainings and their attendance",
    "training:remind": "Send training reminders",
}


def unknown_permissions(names) -> List[str]:
    areas = {p.split(":", 1)[0] for p in PERMISSIONS}
    bad = []
    for name in names:
        area, _, action = name.partition(":")
        if name in PERMISSIONS or (action == "*" and area in areas):
            continue
        bad.append(name)
    return sorted(bad)
