from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_roles
from ..db import get_db
from ..models.models import Team, User, UserTeam
from ..schemas.projects import TeamAssign, TeamCreate, TeamUpdate
from ..services.pagination import PageParams, page_response
from ..services.serializers import iso, user_summary


router = APIRouter(prefix="/api/teams", tags=["teams"])


def serialize_team(t: Team, detail: bool = False) -> dict:
    out = {
        "id": t.id,
        "name": t.name,
        "description": t.description,
        "memberCount": len(t.members),
        "createdAt": iso(t.created_at),
        "updatedAt": iso(t.updated_at),
    }
    if detail:
        out["members"] = [
            {**user_summary(m.user), "role": m.role, "note": m.note}
            for m in sorted(t.members, key=lambda m: m.id)
        ]
        out["projects"] = [
            {"id": tp.project.id, "name": tp.project.name, "status": tp.project.status, "note": tp.note}
            for tp in t.projects
        ]
    return out


def _get_team(db: Session, team_id: int) -> Team:
    team = db.query(Team).filter(Team.id == team_id).first()
    if not team:
        raise HTTPException(status_code=404, detail="Team not found")
    return team


def _name_taken(db: Session, name: str, exclude_id: Optional[int] = None) -> bool:
    q = db.query(Team.id).filter(Team.name == name)
    if exclude_id is not None:
        q = q.filter(Team.id != exclude_id)
    return q.first() is not None


@router.post("", status_code=201)
def create_team(payload: TeamCreate, db: Session = Depends(get_db), _: User = Depends(require_roles("manager"))):
    name = payload.name.strip()
    if _name_taken(db, name):
        raise HTTPException(status_code=409, detail="Team name already exists")
    team = Team(name=name, description=payload.description)
    db.add(team)
    db.commit()
    db.refresh(team)
    return {"message": "Team created successfully", "team": serialize_team(team, detail=True)}


@router.get("")
def list_teams(
    search: Optional[str] = None,
    page: PageParams = Depends(),
    db: Session = Depends(get_db),
    _: User = Depends(get_current_user),
):
    q = db.query(Team)
    if search:
        like = f"%{search}%"
        q = q.filter(or_(Team.name.ilike(like), Team.description.ilike(like)))
    q = q.order_by(Team.name.asc(), Team.id.asc())
    return page_response("teams", q, page, serialize_team)


@router.get("/{team_id}")
def get_team(team_id: int, db: Session = Depends(get_db), _: User = Depends(get_current_user)):
    return serialize_team(_get_team(db, team_id), detail=True)


@router.put("/{team_id}")
def update_team(
    team_id: int,
    payload: TeamUpdate,
    db: Session = Depends(get_db),
    _: User = Depends(require_roles("manager")),
):
    team = _get_team(db, team_id)
    data = payload.model_dump(exclude_unset=True)
    if data.get("name"):
        name = data["name"].strip()
        if _name_taken(db, name, exclude_id=team.id):
            raise HTTPException(status_code=409, detail="Team name already exists")
        team.name = name
    if "description" in data:
        team.description = data["description"]
    db.commit()
    db.refresh(team)
    return {"message": "Team updated successfully", "team": serialize_team(team, detail=True)}


@router.delete("/{team_id}")
def delete_team(team_id: int, db: Session = Depends(get_db), _: User = Depends(require_roles("manager"))):
    team = _get_team(db, team_id)
    db.delete(team)
    db.commit()
    return {"message": "Team deleted successfully"}


@router.post("/{team_id}/users")
def assign_users(
    team_id: int,
    payload: TeamAssign,
    db: Session = Depends(get_db),
    _: User = Depends(require_roles("manager")),
):
    """Replace the team's member set with the given users."""
    team = _get_team(db, team_id)
    wanted = {}
    for m in payload.members:
        wanted[m.user_id] = m
    if wanted:
        found = {r[0] for r in db.query(User.id).filter(User.id.in_(list(wanted))).all()}
        missing = sorted(set(wanted) - found)
        if missing:
            raise HTTPException(status_code=404, detail=f"Users not found: {missing}")

    db.query(UserTeam).filter(UserTeam.team_id == team.id).delete(synchronize_session=False)
    for user_id, m in wanted.items():
        db.add(UserTeam(team_id=team.id, user_id=user_id, role=m.role, note=m.note))
    db.commit()
    db.expire(team)
    return {"message": "Team members updated", "team": serialize_team(team, detail=True)}


@router.delete("/{team_id}/users/{user_id}")
def remove_user(team_id: int, user_id: int, db: Session = Depends(get_db), _: User = Depends(require_roles("manager"))):
    _get_team(db, team_id)
    link = db.query(UserTeam).filter(UserTeam.team_id == team_id, UserTeam.user_id == user_id).first()
    if not link:
        raise HTTPException(status_code=404, detail="User is not a member of this team")
    db.delete(link)
    db.commit()
    return {"message": "User removed from team"}
