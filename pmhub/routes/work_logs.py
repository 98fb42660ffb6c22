from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, is_admin, require_roles
from ..db import get_db
from ..models.models import Project, Task, User, WorkLog
from ..schemas.work_logs import WorkLogCreate, WorkLogUpdate
from ..services.pagination import PageParams, paginate
from ..services.serializers import iso, user_summary


router = APIRouter(prefix="/api/work-logs", tags=["work-logs"])


def serialize_work_log(wl: WorkLog) -> dict:
    return {
        "id": wl.id,
        "userId": wl.user_id,
        "user": user_summary(wl.user),
        "projectId": wl.project_id,
        "taskId": wl.task_id,
        "task": {"id": wl.task.id, "title": wl.task.title} if wl.task else None,
        "hoursWorked": wl.hours_worked,
        "description": wl.description,
        "date": iso(wl.log_date),
        "createdAt": iso(wl.created_at),
    }


def _page(q, page: PageParams) -> dict:
    total_hours = q.with_entities(func.coalesce(func.sum(WorkLog.hours_worked), 0)).order_by(None).scalar()
    rows, meta = paginate(q.order_by(WorkLog.log_date.desc(), WorkLog.id.desc()), page)
    return {"logs": [serialize_work_log(r) for r in rows], "totalHours": float(total_hours or 0), "pagination": meta}


def _date_range(q, start_date: Optional[date], end_date: Optional[date]):
    if start_date:
        q = q.filter(WorkLog.log_date >= start_date)
    if end_date:
        q = q.filter(WorkLog.log_date <= end_date)
    return q


def _get_log(db: Session, log_id: int, me: User) -> WorkLog:
    wl = db.query(WorkLog).filter(WorkLog.id == log_id).first()
    if not wl:
        raise HTTPException(status_code=404, detail="Work log not found")
    if wl.user_id != me.id and not is_admin(me):
        raise HTTPException(status_code=403, detail="Forbidden")
    return wl


@router.post("", status_code=201)
def log_work(payload: WorkLogCreate, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    if not db.query(Project.id).filter(Project.id == payload.project_id).first():
        raise HTTPException(status_code=404, detail="Project not found")
    if payload.task_id is not None:
        task = db.query(Task).filter(Task.id == payload.task_id).first()
        if not task:
            raise HTTPException(status_code=404, detail="Task not found")
        if task.project_id != payload.project_id:
            raise HTTPException(status_code=400, detail="Task does not belong to this project")

    wl = WorkLog(
        user_id=me.id,
        project_id=payload.project_id,
        task_id=payload.task_id,
        hours_worked=payload.hours_worked,
        description=payload.description,
        log_date=payload.log_date,
    )
    db.add(wl)
    db.commit()
    db.refresh(wl)
    return {"message": "Work log created successfully", "log": serialize_work_log(wl)}


@router.get("")
def my_logs(
    project_id: Optional[int] = Query(None, alias="projectId"),
    task_id: Optional[int] = Query(None, alias="taskId"),
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    page: PageParams = Depends(),
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    q = db.query(WorkLog).filter(WorkLog.user_id == me.id)
    if project_id is not None:
        q = q.filter(WorkLog.project_id == project_id)
    if task_id is not None:
        q = q.filter(WorkLog.task_id == task_id)
    return _page(_date_range(q, start_date, end_date), page)


@router.get("/project/{project_id}")
def project_logs(
    project_id: int,
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    page: PageParams = Depends(),
    db: Session = Depends(get_db),
    _: User = Depends(require_roles("manager")),
):
    if not db.query(Project.id).filter(Project.id == project_id).first():
        raise HTTPException(status_code=404, detail="Project not found")
    q = db.query(WorkLog).filter(WorkLog.project_id == project_id)
    return _page(_date_range(q, start_date, end_date), page)


@router.get("/search")
def search_logs(
    user_id: Optional[int] = Query(None, alias="userId"),
    user_name: Optional[str] = Query(None, alias="userName"),
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    page: PageParams = Depends(),
    db: Session = Depends(get_db),
    _: User = Depends(require_roles("manager")),
):
    """Logs of a user picked by id or by (partial) name."""
    if user_id is None and not user_name:
        raise HTTPException(status_code=400, detail="userId or userName is required")
    q = db.query(WorkLog).join(User, User.id == WorkLog.user_id)
    if user_id is not None:
        q = q.filter(WorkLog.user_id == user_id)
    if user_name:
        like = f"%{user_name}%"
        q = q.filter(or_(User.first_name.ilike(like), User.last_name.ilike(like)))
    return _page(_date_range(q, start_date, end_date), page)


@router.put("/{log_id}")
def update_log(log_id: int, payload: WorkLogUpdate, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    wl = _get_log(db, log_id, me)
    data = payload.model_dump(exclude_unset=True)
    for field in ("hours_worked", "log_date"):
        if data.get(field) is not None:
            setattr(wl, field, data[field])
    if "description" in data:
        wl.description = data["description"]
    db.commit()
    db.refresh(wl)
    return {"message": "Work log updated successfully", "log": serialize_work_log(wl)}


@router.delete("/{log_id}")
def delete_log(log_id: int, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    wl = _get_log(db, log_id, me)
    db.delete(wl)
    db.commit()
    return {"message": "Work log deleted successfully"}
