from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, is_manager, require_roles
from ..db import get_db
from ..models.models import Project, Report, Team, User
from ..schemas.reports import ReportAssign, ReportCreate, ReportStatusUpdate, ReportUpdate
from ..services import notifications
from ..services.access import can_access_project, visible_project_ids
from ..services.pagination import PageParams, page_response
from ..services.reports import serialize_report, status_change
from ..services.serializers import serialize_document


router = APIRouter(prefix="/api/reports", tags=["reports"])
log = structlog.get_logger()


def _get_report(db: Session, report_id: int, me: User) -> Report:
    report = db.query(Report).filter(Report.id == report_id).first()
    if not report:
        raise HTTPException(status_code=404, detail="Report not found")
    if report.reporter_id != me.id and not can_access_project(db, report.project, me):
        raise HTTPException(status_code=403, detail="Unauthorized to access this report")
    return report


def _require_owner_or_manager(report: Report, me: User) -> None:
    if report.reporter_id != me.id and not is_manager(me):
        raise HTTPException(status_code=403, detail="Only the reporter or a manager can modify this report")


@router.post("", status_code=201)
def create_report(payload: ReportCreate, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    project = db.query(Project).filter(Project.id == payload.project_id).first()
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    if not can_access_project(db, project, me):
        raise HTTPException(status_code=403, detail="Unauthorized to report on this project")
    if payload.team_id is not None and not db.query(Team.id).filter(Team.id == payload.team_id).first():
        raise HTTPException(status_code=404, detail="Team not found")

    report = Report(
        title=payload.title.strip(),
        content=payload.content,
        project_id=project.id,
        team_id=payload.team_id,
        reporter_id=me.id,
        status="open",
    )
    db.add(report)
    db.commit()
    db.refresh(report)

    notifications.notify_staff(
        db,
        f"New report: {report.title}",
        notifications.paragraph(
            f"{me.full_name} submitted a report on project {project.name}.",
            report.title,
            report.content or "",
        ),
        exclude_user_id=me.id,
    )
    return {"message": "Report created successfully", "report": serialize_report(report)}


@router.get("")
def list_reports(
    project_id: Optional[int] = Query(None, alias="projectId"),
    user_name: Optional[str] = Query(None, alias="userName"),
    project_name: Optional[str] = Query(None, alias="projectName"),
    status: Optional[str] = None,
    page: PageParams = Depends(),
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    q = db.query(Report).join(Project, Project.id == Report.project_id).outerjoin(User, User.id == Report.reporter_id)
    if not is_manager(me):
        q = q.filter(or_(Report.reporter_id == me.id, Report.project_id.in_(visible_project_ids(db, me))))
    if project_id is not None:
        q = q.filter(Report.project_id == project_id)
    if status:
        q = q.filter(Report.status == status)
    if project_name:
        q = q.filter(Project.name.ilike(f"%{project_name}%"))
    if user_name:
        like = f"%{user_name}%"
        q = q.filter(or_(User.first_name.ilike(like), User.last_name.ilike(like)))
    q = q.order_by(Report.created_at.desc(), Report.id.desc())
    return page_response("reports", q, page, serialize_report)


@router.get("/{report_id}")
def get_report(report_id: int, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    return serialize_report(_get_report(db, report_id, me), with_documents=True)


@router.get("/{report_id}/documents")
def get_report_documents(report_id: int, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    report = _get_report(db, report_id, me)
    return {"reportId": report.id, "documents": [serialize_document(d) for d in report.documents]}


@router.put("/{report_id}")
def update_report(report_id: int, payload: ReportUpdate, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    report = _get_report(db, report_id, me)
    _require_owner_or_manager(report, me)
    updates = payload.model_dump(exclude_unset=True)
    if not updates:
        raise HTTPException(status_code=400, detail="No fields to update")
    if updates.get("team_id") is not None and not db.query(Team.id).filter(Team.id == updates["team_id"]).first():
        raise HTTPException(status_code=404, detail="Team not found")
    try:
        db.execute(update(Report).where(Report.id == report.id).values(**updates))
        db.commit()
    except Exception as e:
        db.rollback()
        log.error("report_update_failed", report_id=report_id, error=str(e))
        raise HTTPException(status_code=500, detail={"message": "Failed to update report", "details": str(e)})
    db.refresh(report)
    notifications.notify_staff(
        db,
        f"Report updated: {report.title}",
        notifications.paragraph(f"{me.full_name} updated the report \"{report.title}\".", f"Changed: {', '.join(sorted(updates))}"),
        exclude_user_id=me.id,
    )
    return {"message": "Report updated successfully", "report": serialize_report(report)}


@router.patch("/{report_id}/status")
def update_report_status(report_id: int, payload: ReportStatusUpdate, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    report = _get_report(db, report_id, me)
    _require_owner_or_manager(report, me)
    for key, value in status_change(report.status, payload.status, me.id).items():
        setattr(report, key, value)
    db.commit()
    db.refresh(report)
    if report.reporter and report.reporter_id != me.id:
        notifications.notify_user(
            report.reporter,
            f"Report {report.status}: {report.title}",
            notifications.paragraph(f"Your report \"{report.title}\" is now {report.status}."),
        )
    return {"message": "Report status updated", "report": serialize_report(report)}


@router.patch("/{report_id}/assign")
def assign_report(
    report_id: int,
    payload: ReportAssign,
    db: Session = Depends(get_db),
    me: User = Depends(require_roles("manager")),
):
    report = _get_report(db, report_id, me)
    assignee = db.query(User).filter(User.id == payload.user_id).first()
    if not assignee:
        raise HTTPException(status_code=404, detail="User not found")
    report.assigned_to = assignee.id
    db.commit()
    db.refresh(report)
    notifications.notify_user(
        assignee,
        f"Report assigned: {report.title}",
        notifications.paragraph(f"Hello {assignee.first_name},", f"{me.full_name} assigned you the report \"{report.title}\"."),
    )
    return {"message": "Report assigned successfully", "report": serialize_report(report)}


@router.delete("/{report_id}")
def delete_report(report_id: int, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    report = _get_report(db, report_id, me)
    _require_owner_or_manager(report, me)
    title = report.title
    # Documents stay with the project; their report link is cleared
    for doc in list(report.documents):
        doc.report_id = None
    db.delete(report)
    db.commit()
    notifications.notify_staff(
        db,
        f"Report deleted: {title}",
        notifications.paragraph(f"{me.full_name} deleted the report \"{title}\"."),
        exclude_user_id=me.id,
    )
    return {"message": "Report deleted successfully"}
