from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, get_password_hash, is_admin, require_roles
from ..db import get_db
from ..models.models import Project, Role, TeamProject, User, UserTeam
from ..schemas.users import UserUpdate
from ..services.pagination import PageParams, page_response
from ..services.projects import serialize_project
from ..services.users import serialize_user


router = APIRouter(prefix="/api/users", tags=["users"])


def _get_user(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


def _require_self_or_admin(user_id: int, me: User) -> None:
    if user_id != me.id and not is_admin(me):
        raise HTTPException(status_code=403, detail="Forbidden")


def _apply_update(db: Session, user: User, payload: UserUpdate) -> None:
    data = payload.model_dump(exclude_unset=True)
    if "email" in data and data["email"]:
        email = data["email"].lower()
        clash = db.query(User.id).filter(User.email == email, User.id != user.id).first()
        if clash:
            raise HTTPException(status_code=409, detail="Email already in use")
        user.email = email
    if data.get("password"):
        user.password_hash = get_password_hash(data["password"])
    for field in ("first_name", "last_name", "phone_number", "image"):
        if field in data:
            setattr(user, field, data[field])
    db.commit()
    db.refresh(user)


@router.get("/me")
def get_me(me: User = Depends(get_current_user)):
    return serialize_user(me)


@router.put("/me")
def update_me(payload: UserUpdate, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    _apply_update(db, me, payload)
    return {"message": "Profile updated", "user": serialize_user(me)}


@router.get("")
def list_users(
    search: Optional[str] = None,
    role: Optional[str] = None,
    page: PageParams = Depends(),
    db: Session = Depends(get_db),
    _: User = Depends(require_roles("admin")),
):
    q = db.query(User)
    if search:
        like = f"%{search}%"
        q = q.filter(or_(User.first_name.ilike(like), User.last_name.ilike(like), User.email.ilike(like)))
    if role:
        q = q.filter(User.roles.any(Role.name == role.lower()))
    q = q.order_by(User.first_name.asc(), User.id.asc())
    return page_response("users", q, page, serialize_user)


@router.get("/{user_id}")
def get_user(user_id: int, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    _require_self_or_admin(user_id, me)
    return serialize_user(_get_user(db, user_id))


@router.put("/{user_id}")
def update_user(user_id: int, payload: UserUpdate, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    _require_self_or_admin(user_id, me)
    user = _get_user(db, user_id)
    _apply_update(db, user, payload)
    return {"message": "User updated", "user": serialize_user(user)}


@router.delete("/{user_id}")
def delete_user(user_id: int, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    _require_self_or_admin(user_id, me)
    user = _get_user(db, user_id)
    db.delete(user)
    db.commit()
    return {"message": "User deleted successfully"}


@router.get("/{user_id}/projects")
def get_user_projects(
    user_id: int,
    page: PageParams = Depends(),
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    _require_self_or_admin(user_id, me)
    _get_user(db, user_id)
    q = (
        db.query(Project)
        .join(TeamProject, TeamProject.project_id == Project.id)
        .join(UserTeam, UserTeam.team_id == TeamProject.team_id)
        .filter(UserTeam.user_id == user_id)
        .distinct()
        .order_by(Project.created_at.desc(), Project.id.desc())
    )
    return page_response("projects", q, page, serialize_project)
