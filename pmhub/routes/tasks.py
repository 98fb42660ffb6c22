from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, is_manager, require_roles
from ..db import get_db
from ..models.models import Project, Task, User
from ..schemas.projects import TaskCreate, TaskStatusUpdate, TaskUpdate
from ..services import notifications
from ..services.access import can_access_project, visible_project_ids
from ..services.pagination import PageParams, page_response
from ..services.projects import serialize_task


router = APIRouter(prefix="/api/tasks", tags=["tasks"])
log = structlog.get_logger()


def _get_task(db: Session, task_id: int) -> Task:
    task = db.query(Task).filter(Task.id == task_id).first()
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")
    return task


def _ensure_assignee(db: Session, user_id: Optional[int]) -> Optional[User]:
    if user_id is None:
        return None
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="Assigned user not found")
    return user


def _task_html(task: Task, headline: str) -> str:
    return notifications.paragraph(
        headline,
        f"Task: {task.title}",
        f"Project: {task.project.name}" if task.project else "",
        f"Status: {task.status}",
        f"Due: {task.due_date:%Y-%m-%d}" if task.due_date else "",
    )


@router.post("", status_code=201)
def create_task(payload: TaskCreate, db: Session = Depends(get_db), me: User = Depends(require_roles("manager"))):
    project = db.query(Project).filter(Project.id == payload.project_id).first()
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    assignee = _ensure_assignee(db, payload.assigned_to)

    task = Task(
        title=payload.title.strip(),
        description=payload.description,
        status=payload.status,
        due_date=payload.due_date,
        project_id=project.id,
        assigned_to=assignee.id if assignee else None,
        created_by=me.id,
    )
    db.add(task)
    db.commit()
    db.refresh(task)
    log.info("task_created", task_id=task.id, project_id=project.id)

    html = _task_html(task, f"{me.full_name} created a new task.")
    notifications.notify_staff(db, f"New task: {task.title}", html, include_managers=True, exclude_user_id=me.id)
    if assignee and assignee.id != me.id:
        notifications.notify_user(assignee, f"You have been assigned: {task.title}", html)
    return {"message": "Task created successfully", "task": serialize_task(task)}


@router.get("")
def list_tasks(
    status: Optional[str] = None,
    assigned_to: Optional[int] = Query(None, alias="assignedTo"),
    project_id: Optional[int] = Query(None, alias="projectId"),
    page: PageParams = Depends(),
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    q = db.query(Task)
    if not is_manager(me):
        q = q.filter(or_(Task.assigned_to == me.id, Task.project_id.in_(visible_project_ids(db, me))))
    if status:
        q = q.filter(Task.status == status)
    if assigned_to is not None:
        q = q.filter(Task.assigned_to == assigned_to)
    if project_id is not None:
        q = q.filter(Task.project_id == project_id)
    q = q.order_by(Task.created_at.desc(), Task.id.desc())
    return page_response("tasks", q, page, serialize_task)


@router.get("/my")
def my_tasks(
    status: Optional[str] = None,
    page: PageParams = Depends(),
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    q = db.query(Task).filter(Task.assigned_to == me.id)
    if status:
        q = q.filter(Task.status == status)
    q = q.order_by(Task.due_date.is_(None), Task.due_date.asc(), Task.id.asc())
    return page_response("tasks", q, page, serialize_task)


@router.get("/project/{project_id}")
def project_tasks(
    project_id: int,
    status: Optional[str] = None,
    page: PageParams = Depends(),
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    project = db.query(Project).filter(Project.id == project_id).first()
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    if not can_access_project(db, project, me):
        raise HTTPException(status_code=403, detail="Unauthorized to access this project")
    q = db.query(Task).filter(Task.project_id == project.id)
    if status:
        q = q.filter(Task.status == status)
    q = q.order_by(Task.created_at.desc(), Task.id.desc())
    return page_response("tasks", q, page, serialize_task)


@router.get("/{task_id}")
def get_task(task_id: int, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    task = _get_task(db, task_id)
    if task.assigned_to != me.id and not can_access_project(db, task.project, me):
        raise HTTPException(status_code=403, detail="Unauthorized to access this task")
    return serialize_task(task)


@router.put("/{task_id}")
def update_task(
    task_id: int,
    payload: TaskUpdate,
    db: Session = Depends(get_db),
    _: User = Depends(require_roles("manager")),
):
    task = _get_task(db, task_id)
    updates = payload.model_dump(exclude_unset=True)
    if "title" in updates and updates["title"] is None:
        updates.pop("title")
    if "assigned_to" in updates:
        _ensure_assignee(db, updates["assigned_to"])
    if updates:
        db.execute(update(Task).where(Task.id == task.id).values(**updates))
        db.commit()
        db.refresh(task)
    return {"message": "Task updated successfully", "task": serialize_task(task)}


@router.patch("/{task_id}/status")
def update_task_status(
    task_id: int,
    payload: TaskStatusUpdate,
    db: Session = Depends(get_db),
    me: User = Depends(require_roles("manager")),
):
    task = _get_task(db, task_id)
    task.status = payload.status
    db.commit()
    db.refresh(task)

    html = _task_html(task, f"{me.full_name} changed the status to {task.status}.")
    subject = f"Task status updated: {task.title}"
    notifications.notify_staff(db, subject, html, include_managers=True, exclude_user_id=me.id)
    if task.assignee and task.assignee.id != me.id:
        notifications.notify_user(task.assignee, subject, html)
    return {"message": "Task status updated", "task": serialize_task(task)}


@router.delete("/{task_id}")
def delete_task(task_id: int, db: Session = Depends(get_db), _: User = Depends(require_roles("manager"))):
    task = _get_task(db, task_id)
    db.delete(task)
    db.commit()
    return {"message": "Task deleted successfully"}
