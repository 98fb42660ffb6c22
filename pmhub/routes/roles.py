from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..auth.security import PERMISSIONS, get_current_user, require_roles, unknown_permissions
from ..db import get_db
from ..models.models import Role, User
from ..schemas.users import RoleAssign, RoleCreate, RolePermissionsUpdate
from ..services.users import serialize_user


router = APIRouter(prefix="/api/roles", tags=["roles"])


def _serialize_role(r: Role) -> dict:
    return {
        "id": r.id,
        "name": r.name,
        "description": r.description,
        "permissions": dict(r.permissions or {}),
        "userCount": len(r.users),
    }


def _check_permission_names(names) -> None:
    bad = unknown_permissions(names)
    if bad:
        raise HTTPException(status_code=400, detail=f"Unknown permissions: {', '.join(bad)}")


def _get_role(db: Session, role_id: int) -> Role:
    role = db.query(Role).filter(Role.id == role_id).first()
    if not role:
        raise HTTPException(status_code=404, detail="Role not found")
    return role


@router.get("")
def list_roles(db: Session = Depends(get_db), _: User = Depends(require_roles("admin"))):
    return [_serialize_role(r) for r in db.query(Role).order_by(Role.name.asc()).all()]


@router.get("/permissions")
def list_permissions(_: User = Depends(get_current_user)):
    return {"permissions": [{"name": k, "description": v} for k, v in sorted(PERMISSIONS.items())]}


@router.post("", status_code=201)
def create_role(payload: RoleCreate, db: Session = Depends(get_db), _: User = Depends(require_roles("admin"))):
    _check_permission_names(payload.permissions)
    if db.query(Role.id).filter(Role.name == payload.name).first():
        raise HTTPException(status_code=409, detail="Role already exists")
    role = Role(name=payload.name, description=payload.description, permissions=dict(payload.permissions))
    db.add(role)
    db.commit()
    db.refresh(role)
    return {"message": "Role created", "role": _serialize_role(role)}


@router.put("/{role_id}/permissions")
def update_role_permissions(
    role_id: int,
    payload: RolePermissionsUpdate,
    db: Session = Depends(get_db),
    _: User = Depends(require_roles("admin")),
):
    role = _get_role(db, role_id)
    _check_permission_names(payload.permissions)
    merged = {} if payload.replace else dict(role.permissions or {})
    merged.update(payload.permissions)
    # Reassign so the JSON column is flagged dirty
    role.permissions = merged
    db.commit()
    db.refresh(role)
    return {"message": "Permissions updated", "role": _serialize_role(role)}


@router.post("/assign")
def assign_role(payload: RoleAssign, db: Session = Depends(get_db), _: User = Depends(require_roles("admin"))):
    user = db.query(User).filter(User.id == payload.user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    role = db.query(Role).filter(Role.name == payload.role_name).first()
    if not role:
        raise HTTPException(status_code=404, detail="Role not found")
    if role in user.roles:
        raise HTTPException(status_code=409, detail="User already has this role")
    user.roles.append(role)
    db.commit()
    db.refresh(user)
    return {"message": "Role assigned", "user": serialize_user(user)}


@router.delete("/{role_id}/users/{user_id}")
def remove_role(role_id: int, user_id: int, db: Session = Depends(get_db), _: User = Depends(require_roles("admin"))):
    user = db.query(User).filter(User.id == user_id).first()
    role = db.query(Role).filter(Role.id == role_id).first()
    if not user or not role:
        raise HTTPException(status_code=404, detail="User or role not found")
    if role not in user.roles:
        raise HTTPException(status_code=404, detail="User does not have this role")
    user.roles.remove(role)
    db.commit()
    db.refresh(user)
    return {"message": "Role removed", "user": serialize_user(user)}


@router.get("/{role_id}")
def get_role(role_id: int, db: Session = Depends(get_db), _: User = Depends(require_roles("admin"))):
    role = _get_role(db, role_id)
    out = _serialize_role(role)
    out["permissionsDetail"] = [
        {"name": name, "description": PERMISSIONS.get(name)}
        for name, granted in sorted((role.permissions or {}).items())
        if granted
    ]
    return {"role": out}


@router.delete("/{role_id}")
def delete_role(role_id: int, db: Session = Depends(get_db), _: User = Depends(require_roles("admin"))):
    role = _get_role(db, role_id)
    if role.users:
        raise HTTPException(status_code=400, detail="Cannot delete role: it is assigned to one or more users")
    db.delete(role)
    db.commit()
    return {"message": "Role deleted successfully"}
