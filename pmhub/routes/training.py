from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import update
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_permissions
from ..db import get_db
from ..models.models import Training, TrainingAttendee, User
from ..schemas.training import AttendanceUpdate, TrainingCreate, TrainingStatusUpdate, TrainingUpdate
from ..services import notifications
from ..services.pagination import PageParams, page_response
from ..services.serializers import iso, user_summary


router = APIRouter(prefix="/api/training", tags=["training"])
log = structlog.get_logger()


def serialize_training(t: Training) -> dict:
    return {
        "id": t.id,
        "courseName": t.course_name,
        "nextTrainingDate": iso(t.next_training_date),
        "progress": t.progress,
        "status": t.status,
        "createdBy": t.created_by,
        "createdAt": iso(t.created_at),
        "updatedAt": iso(t.updated_at),
        "attendees": [
            {**user_summary(a.user), "attended": bool(a.attended)}
            for a in sorted(t.attendees, key=lambda a: a.id)
        ],
    }


def clamp_progress(value: int) -> int:
    return max(0, min(100, int(value)))


def status_for_progress(progress: int) -> Optional[str]:
    if progress == 100:
        return "Completed"
    if 0 < progress < 100:
        return "In Progress"
    return None


def _get_training(db: Session, training_id: int, lock: bool = False) -> Training:
    q = db.query(Training).filter(Training.id == training_id)
    if lock:
        q = q.with_for_update()
    training = q.first()
    if not training:
        raise HTTPException(status_code=404, detail="Training not found")
    return training


def _check_users(db: Session, user_ids: List[int]) -> List[int]:
    ids = list(dict.fromkeys(user_ids))
    found = {r[0] for r in db.query(User.id).filter(User.id.in_(ids)).all()} if ids else set()
    missing = sorted(set(ids) - found)
    if missing:
        raise HTTPException(status_code=404, detail=f"Users not found: {missing}")
    return ids


def _recipients(db: Session, training: Training) -> List[str]:
    emails = {a.user.email for a in training.attendees if a.user and a.user.email}
    emails.update(notifications.staff_emails(db))
    return sorted(emails)


def _broadcast(db: Session, training: Training, subject: str, html: str) -> int:
    sent = 0
    for email in _recipients(db, training):
        if notifications.send_safely(email, subject, html):
            sent += 1
    return sent


@router.post("", status_code=201)
def create_training(
    payload: TrainingCreate,
    db: Session = Depends(get_db),
    me: User = Depends(require_permissions("training:create")),
):
    attendee_ids = _check_users(db, payload.attendee_ids)
    progress = clamp_progress(payload.progress)
    training = Training(
        course_name=payload.course_name.strip(),
        next_training_date=payload.next_training_date,
        progress=progress,
        status=status_for_progress(progress) or payload.status,
        created_by=me.id,
    )
    db.add(training)
    db.flush()
    for uid in attendee_ids:
        db.add(TrainingAttendee(training_id=training.id, user_id=uid))
    db.commit()
    db.refresh(training)
    log.info("training_created", training_id=training.id, attendees=len(attendee_ids))
    return serialize_training(training)


@router.get("")
def list_trainings(
    search: Optional[str] = None,
    status: Optional[str] = None,
    page: PageParams = Depends(),
    db: Session = Depends(get_db),
    _: User = Depends(require_permissions("training:view")),
):
    q = db.query(Training)
    if search:
        q = q.filter(Training.course_name.ilike(f"%{search}%"))
    if status:
        q = q.filter(Training.status == status)
    q = q.order_by(Training.next_training_date.asc(), Training.id.asc())
    return page_response("trainings", q, page, serialize_training)


@router.get("/my")
def my_trainings(
    page: PageParams = Depends(),
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    q = (
        db.query(Training)
        .join(TrainingAttendee, TrainingAttendee.training_id == Training.id)
        .filter(TrainingAttendee.user_id == me.id)
        .order_by(Training.next_training_date.asc(), Training.id.asc())
    )
    return page_response("trainings", q, page, serialize_training)


@router.get("/{training_id}")
def get_training(training_id: int, db: Session = Depends(get_db), _: User = Depends(require_permissions("training:view"))):
    return serialize_training(_get_training(db, training_id))


@router.put("/{training_id}")
def update_training(
    training_id: int,
    payload: TrainingUpdate,
    db: Session = Depends(get_db),
    _: User = Depends(require_permissions("training:update")),
):
    training = _get_training(db, training_id, lock=True)
    data = payload.model_dump(exclude_unset=True)
    attendee_ids = data.pop("attendee_ids", None)

    updates = {}
    if data.get("course_name"):
        updates["course_name"] = data["course_name"].strip()
    if data.get("next_training_date"):
        updates["next_training_date"] = data["next_training_date"]
    if data.get("progress") is not None:
        progress = clamp_progress(data["progress"])
        updates["progress"] = progress
        auto_status = status_for_progress(progress)
        if auto_status:
            updates["status"] = auto_status
    if not updates and attendee_ids is None:
        raise HTTPException(status_code=400, detail="No fields to update")

    reached_full = updates.get("progress") == 100 and training.progress != 100
    if updates:
        db.execute(update(Training).where(Training.id == training.id).values(**updates))
    if attendee_ids is not None:
        ids = _check_users(db, attendee_ids)
        db.query(TrainingAttendee).filter(TrainingAttendee.training_id == training.id).delete(synchronize_session=False)
        for uid in ids:
            db.add(TrainingAttendee(training_id=training.id, user_id=uid))
    db.commit()
    training = _get_training(db, training_id)

    if reached_full:
        _broadcast(
            db,
            training,
            f"Training completed: {training.course_name}",
            notifications.paragraph(f"The training {training.course_name} has reached 100% progress."),
        )
    return serialize_training(training)


@router.patch("/{training_id}/status")
def update_training_status(
    training_id: int,
    payload: TrainingStatusUpdate,
    db: Session = Depends(get_db),
    _: User = Depends(require_permissions("training:update")),
):
    training = _get_training(db, training_id)
    training.status = payload.status
    db.commit()
    db.refresh(training)
    return {"message": "Training status updated", "training": serialize_training(training)}


@router.post("/{training_id}/remind")
def send_reminder(
    training_id: int,
    db: Session = Depends(get_db),
    _: User = Depends(require_permissions("training:remind")),
):
    training = _get_training(db, training_id)
    html = notifications.paragraph(
        f"Reminder: {training.course_name}",
        f"Next session: {training.next_training_date.isoformat()}",
        f"Progress: {training.progress}%",
    )
    sent = _broadcast(db, training, f"Training reminder: {training.course_name}", html)
    return {"message": "Reminder successfully sent to all attendees and admins", "sent": sent}


@router.patch("/{training_id}/attendees/{user_id}")
def mark_attendance(
    training_id: int,
    user_id: int,
    payload: AttendanceUpdate,
    db: Session = Depends(get_db),
    _: User = Depends(require_permissions("training:update")),
):
    _get_training(db, training_id)
    attendee = (
        db.query(TrainingAttendee)
        .filter(TrainingAttendee.training_id == training_id, TrainingAttendee.user_id == user_id)
        .first()
    )
    if not attendee:
        raise HTTPException(status_code=404, detail="User is not an attendee of this training")
    attendee.attended = payload.attended
    db.commit()
    return {"message": "Attendance updated", "userId": user_id, "attended": attendee.attended}


@router.delete("/{training_id}")
def delete_training(
    training_id: int,
    db: Session = Depends(get_db),
    _: User = Depends(require_permissions("training:update")),
):
    training = _get_training(db, training_id)
    db.delete(training)
    db.commit()
    return {"message": "Training deleted successfully"}
