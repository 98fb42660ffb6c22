from datetime import date
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import update
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, is_manager, require_roles
from ..db import get_db
from ..models.models import Client, ClientProject, Project, Team, TeamProject, User
from ..schemas.projects import ClientLink, ProjectCreate, ProjectStatusUpdate, ProjectUpdate, TeamLink
from ..services import notifications
from ..services.access import can_access_project, is_project_member, project_member_ids, visible_project_ids
from ..services.pagination import PageParams, page_response
from ..services.projects import serialize_project
from ..services.uploads import delete_stored_urls
from ..services.users import serialize_user
from ..storage.provider import StorageProvider
from .files import get_storage


router = APIRouter(prefix="/api/projects", tags=["projects"])
log = structlog.get_logger()


def _get_project(db: Session, project_id: int) -> Project:
    project = db.query(Project).filter(Project.id == project_id).first()
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    return project


@router.post("", status_code=201)
def create_project(payload: ProjectCreate, db: Session = Depends(get_db), me: User = Depends(require_roles("manager"))):
    team_ids = list(dict.fromkeys(payload.team_ids))
    client_ids = list(dict.fromkeys(payload.client_ids))
    if team_ids:
        found = {r[0] for r in db.query(Team.id).filter(Team.id.in_(team_ids)).all()}
        if len(found) != len(team_ids):
            raise HTTPException(status_code=404, detail="One or more teams not found")
    if client_ids:
        found = {r[0] for r in db.query(Client.id).filter(Client.id.in_(client_ids)).all()}
        if len(found) != len(client_ids):
            raise HTTPException(status_code=404, detail="One or more clients not found")

    project = Project(
        name=payload.name.strip(),
        description=payload.description,
        start_date=payload.start_date,
        end_date=payload.end_date,
        status=payload.status,
        created_by=me.id,
    )
    db.add(project)
    db.flush()
    for tid in team_ids:
        db.add(TeamProject(team_id=tid, project_id=project.id))
    for cid in client_ids:
        db.add(ClientProject(client_id=cid, project_id=project.id))
    db.commit()
    db.refresh(project)
    log.info("project_created", project_id=project.id, user_id=me.id)
    return {"message": "Project created successfully", "project": serialize_project(project, detail=True)}


def _filtered(
    q,
    project_name: Optional[str],
    status: Optional[str],
    start_date: Optional[date],
):
    if project_name:
        q = q.filter(Project.name.ilike(f"%{project_name}%"))
    if status:
        q = q.filter(Project.status == status)
    if start_date:
        q = q.filter(Project.start_date >= start_date)
    return q.order_by(Project.created_at.desc(), Project.id.desc())


@router.get("")
def list_projects(
    project_name: Optional[str] = Query(None, alias="projectName"),
    status: Optional[str] = None,
    start_date: Optional[date] = Query(None, alias="startDate"),
    page: PageParams = Depends(),
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    q = db.query(Project)
    if not is_manager(me):
        q = q.filter(Project.id.in_(visible_project_ids(db, me)))
    return page_response("projects", _filtered(q, project_name, status, start_date), page, serialize_project)


@router.get("/my")
def my_projects(
    project_name: Optional[str] = Query(None, alias="projectName"),
    status: Optional[str] = None,
    start_date: Optional[date] = Query(None, alias="startDate"),
    page: PageParams = Depends(),
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    q = db.query(Project).filter(Project.id.in_(visible_project_ids(db, me)))
    return page_response("projects", _filtered(q, project_name, status, start_date), page, serialize_project)


@router.get("/{project_id}")
def get_project(project_id: int, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    project = _get_project(db, project_id)
    if not can_access_project(db, project, me):
        raise HTTPException(status_code=403, detail="Unauthorized to access this project")
    return serialize_project(project, detail=True)


@router.put("/{project_id}")
def update_project(
    project_id: int,
    payload: ProjectUpdate,
    db: Session = Depends(get_db),
    _: User = Depends(require_roles("manager")),
):
    project = _get_project(db, project_id)
    updates = payload.model_dump(exclude_unset=True)
    if "name" in updates and updates["name"] is None:
        updates.pop("name")
    start = updates.get("start_date", project.start_date)
    end = updates.get("end_date", project.end_date)
    if start and end and end < start:
        raise HTTPException(status_code=400, detail="endDate must not be before startDate")
    if updates:
        db.execute(update(Project).where(Project.id == project.id).values(**updates))
        db.commit()
        db.refresh(project)
    return {"message": "Project updated successfully", "project": serialize_project(project)}


@router.patch("/{project_id}/status")
def update_project_status(
    project_id: int,
    payload: ProjectStatusUpdate,
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    project = _get_project(db, project_id)
    if not is_manager(me) and not is_project_member(db, project.id, me.id):
        raise HTTPException(status_code=403, detail="Only team members or managers can change the status")
    previous = project.status
    project.status = payload.status
    db.commit()
    db.refresh(project)

    if payload.status == "Done" and previous != "Done":
        html = notifications.paragraph(
            f"Project {project.name} has been completed.",
            "Thank you for working with us.",
        )
        for link in project.clients:
            notifications.send_safely(link.client.email, f"Project completed: {project.name}", html)
    return {"message": "Project status updated", "project": serialize_project(project)}


@router.delete("/{project_id}")
def delete_project(
    project_id: int,
    db: Session = Depends(get_db),
    storage: StorageProvider = Depends(get_storage),
    me: User = Depends(require_roles("manager")),
):
    project = _get_project(db, project_id)
    urls = [u for d in project.documents for u in (d.urls or [])]
    db.delete(project)
    db.commit()
    delete_stored_urls(storage, urls)
    log.info("project_deleted", project_id=project_id, user_id=me.id)
    return {"message": "Project deleted successfully"}


@router.post("/{project_id}/teams", status_code=201)
def assign_team(
    project_id: int,
    payload: TeamLink,
    db: Session = Depends(get_db),
    _: User = Depends(require_roles("manager")),
):
    project = _get_project(db, project_id)
    team = db.query(Team).filter(Team.id == payload.team_id).first()
    if not team:
        raise HTTPException(status_code=404, detail="Team not found")
    exists = db.query(TeamProject.id).filter(TeamProject.team_id == team.id, TeamProject.project_id == project.id).first()
    if exists:
        raise HTTPException(status_code=409, detail="Team already assigned to this project")
    db.add(TeamProject(team_id=team.id, project_id=project.id, note=payload.note))
    db.commit()
    db.refresh(project)
    return {"message": "Team assigned to project", "project": serialize_project(project)}


@router.delete("/{project_id}/teams/{team_id}")
def remove_team(project_id: int, team_id: int, db: Session = Depends(get_db), _: User = Depends(require_roles("manager"))):
    _get_project(db, project_id)
    link = db.query(TeamProject).filter(TeamProject.team_id == team_id, TeamProject.project_id == project_id).first()
    if not link:
        raise HTTPException(status_code=404, detail="Team is not assigned to this project")
    db.delete(link)
    db.commit()
    return {"message": "Team removed from project"}


@router.post("/{project_id}/clients", status_code=201)
def add_client(
    project_id: int,
    payload: ClientLink,
    db: Session = Depends(get_db),
    _: User = Depends(require_roles("manager")),
):
    project = _get_project(db, project_id)
    client = db.query(Client).filter(Client.id == payload.client_id).first()
    if not client:
        raise HTTPException(status_code=404, detail="Client not found")
    exists = db.query(ClientProject.id).filter(ClientProject.client_id == client.id, ClientProject.project_id == project.id).first()
    if exists:
        raise HTTPException(status_code=409, detail="Client already associated with this project")
    db.add(ClientProject(client_id=client.id, project_id=project.id))
    db.commit()
    db.refresh(project)
    return {"message": "Client added to project", "project": serialize_project(project, detail=True)}


@router.delete("/{project_id}/clients/{client_id}")
def remove_client(project_id: int, client_id: int, db: Session = Depends(get_db), _: User = Depends(require_roles("manager"))):
    _get_project(db, project_id)
    link = db.query(ClientProject).filter(ClientProject.client_id == client_id, ClientProject.project_id == project_id).first()
    if not link:
        raise HTTPException(status_code=404, detail="Client is not associated with this project")
    db.delete(link)
    db.commit()
    return {"message": "Client removed from project"}


@router.get("/{project_id}/members")
def project_members(project_id: int, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    project = _get_project(db, project_id)
    if not can_access_project(db, project, me):
        raise HTTPException(status_code=403, detail="Unauthorized to access this project")
    ids = project_member_ids(db, project.id)
    if not ids:
        return []
    users = db.query(User).filter(User.id.in_(ids)).order_by(User.first_name.asc(), User.id.asc()).all()
    return [serialize_user(u) for u in users]
