from datetime import date
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Query as SAQuery, Session

from ..auth.security import get_current_user, is_admin, is_manager, require_roles
from ..db import get_db
from ..models.models import Leave, User
from ..schemas.leaves import LeaveCreate, LeaveStatusUpdate, LeaveUpdate
from ..services import notifications
from ..services.pagination import PageParams, page_response
from ..services.serializers import iso, user_summary


router = APIRouter(prefix="/api/leaves", tags=["leaves"])
log = structlog.get_logger()


def serialize_leave(lv: Leave) -> dict:
    return {
        "id": lv.id,
        "userId": lv.user_id,
        "user": user_summary(lv.user),
        "startDate": iso(lv.start_date),
        "endDate": iso(lv.end_date),
        "reason": lv.reason,
        "status": lv.status,
        "createdAt": iso(lv.created_at),
        "updatedAt": iso(lv.updated_at),
    }


def _leave_html(lv: Leave, headline: str) -> str:
    return notifications.paragraph(
        headline,
        f"From {lv.start_date.isoformat()} to {lv.end_date.isoformat()}",
        f"Reason: {lv.reason}",
        f"Status: {lv.status}",
    )


def _get_leave(db: Session, leave_id: int) -> Leave:
    lv = db.query(Leave).filter(Leave.id == leave_id).first()
    if not lv:
        raise HTTPException(status_code=404, detail="Leave not found")
    return lv


def _filtered(q: SAQuery, status: Optional[str], start_date: Optional[date], end_date: Optional[date]) -> SAQuery:
    if status:
        q = q.filter(Leave.status == status)
    if start_date:
        q = q.filter(Leave.start_date >= start_date)
    if end_date:
        q = q.filter(Leave.end_date <= end_date)
    return q.order_by(Leave.start_date.desc(), Leave.id.desc())


@router.post("", status_code=201)
def create_leave(payload: LeaveCreate, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    lv = Leave(
        user_id=me.id,
        start_date=payload.start_date,
        end_date=payload.end_date,
        reason=payload.reason.strip(),
        status="pending",
    )
    db.add(lv)
    db.commit()
    db.refresh(lv)
    log.info("leave_created", leave_id=lv.id, user_id=me.id)

    notifications.notify_staff(
        db,
        f"Leave request from {me.full_name}",
        _leave_html(lv, f"{me.full_name} requested leave."),
        exclude_user_id=me.id,
    )
    return {"message": "Leave created successfully", "leave": serialize_leave(lv)}


@router.get("")
def list_leaves(
    status: Optional[str] = None,
    user_id: Optional[int] = Query(None, alias="userId"),
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    page: PageParams = Depends(),
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    q = db.query(Leave)
    if not is_manager(me):
        q = q.filter(Leave.user_id == me.id)
    elif user_id is not None:
        q = q.filter(Leave.user_id == user_id)
    return page_response("leaves", _filtered(q, status, start_date, end_date), page, serialize_leave)


@router.get("/my")
def my_leaves(
    status: Optional[str] = None,
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    page: PageParams = Depends(),
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    q = db.query(Leave).filter(Leave.user_id == me.id)
    return page_response("leaves", _filtered(q, status, start_date, end_date), page, serialize_leave)


@router.get("/user/{user_id}")
def leaves_by_user(
    user_id: int,
    status: Optional[str] = None,
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    page: PageParams = Depends(),
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    if user_id != me.id and not is_manager(me):
        raise HTTPException(status_code=403, detail="Forbidden")
    if not db.query(User.id).filter(User.id == user_id).first():
        raise HTTPException(status_code=404, detail="User not found")
    q = db.query(Leave).filter(Leave.user_id == user_id)
    return page_response("leaves", _filtered(q, status, start_date, end_date), page, serialize_leave)


@router.get("/{leave_id}")
def get_leave(leave_id: int, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    lv = _get_leave(db, leave_id)
    if lv.user_id != me.id and not is_manager(me):
        raise HTTPException(status_code=403, detail="Forbidden")
    return {"leave": serialize_leave(lv)}


@router.put("/{leave_id}")
def update_leave(leave_id: int, payload: LeaveUpdate, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    lv = _get_leave(db, leave_id)
    if lv.user_id != me.id:
        raise HTTPException(status_code=403, detail="Only the requester can edit this leave")
    if lv.status != "pending":
        raise HTTPException(status_code=400, detail="Cannot update a leave that is not pending")
    data = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None}
    if not data:
        raise HTTPException(status_code=400, detail="At least one field (startDate, endDate, reason) is required")
    start = data.get("start_date", lv.start_date)
    end = data.get("end_date", lv.end_date)
    if end < start:
        raise HTTPException(status_code=400, detail="endDate must not be before startDate")
    lv.start_date = start
    lv.end_date = end
    if "reason" in data:
        lv.reason = data["reason"].strip()
    db.commit()
    db.refresh(lv)

    notifications.notify_staff(
        db,
        f"Leave request updated by {me.full_name}",
        _leave_html(lv, f"{me.full_name} updated a leave request."),
        exclude_user_id=me.id,
    )
    return {"message": "Leave updated successfully", "leave": serialize_leave(lv)}


@router.patch("/{leave_id}/status")
def update_leave_status(
    leave_id: int,
    payload: LeaveStatusUpdate,
    db: Session = Depends(get_db),
    me: User = Depends(require_roles("manager")),
):
    lv = _get_leave(db, leave_id)
    lv.status = payload.status
    db.commit()
    db.refresh(lv)
    log.info("leave_status_changed", leave_id=lv.id, status=lv.status, by=me.id)

    notifications.notify_user(
        lv.user,
        f"Your leave request was {lv.status}",
        _leave_html(lv, f"{me.full_name} {lv.status} your leave request."),
    )
    return {"message": "Leave status updated successfully", "leave": serialize_leave(lv)}


@router.delete("/{leave_id}")
def delete_leave(leave_id: int, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    lv = _get_leave(db, leave_id)
    if lv.user_id != me.id and not is_admin(me):
        raise HTTPException(status_code=403, detail="Forbidden")
    owner = lv.user
    html = _leave_html(lv, f"{me.full_name} deleted a leave request.")
    db.delete(lv)
    db.commit()

    if owner is not None and owner.id != me.id:
        notifications.notify_user(owner, "Your leave request was deleted", html)
    else:
        notifications.notify_staff(db, f"Leave request withdrawn by {me.full_name}", html, exclude_user_id=me.id)
    return {"message": "Leave deleted successfully"}
