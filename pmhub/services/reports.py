from datetime import datetime
from typing import Any, Dict, Optional

from ..models.models import HseReport, Report
from .serializers import iso, serialize_document, serialize_hse_document, user_summary


REPORT_STATUSES = ("open", "pending", "closed")


def status_change(current: Optional[str], new: str, user_id: int) -> Dict[str, Any]:
    """Column values for a status rewrite; closing stamps the closer, reopening clears it."""
    values: Dict[str, Any] = {"status": new}
    if new == "closed" and current != "closed":
        values["closed_by"] = user_id
        values["closed_at"] = datetime.utcnow()
    elif new != "closed":
        values["closed_by"] = None
        values["closed_at"] = None
    return values


def serialize_report(r: Report, with_documents: bool = False) -> Dict[str, Any]:
    out = {
        "id": r.id,
        "title": r.title,
        "content": r.content,
        "status": r.status,
        "projectId": r.project_id,
        "project": {"id": r.project.id, "name": r.project.name} if r.project else None,
        "teamId": r.team_id,
        "reporterId": r.reporter_id,
        "reporter": user_summary(r.reporter),
        "assignedTo": r.assigned_to,
        "assignee": user_summary(r.assignee),
        "closedBy": r.closed_by,
        "closer": user_summary(r.closer),
        "closedAt": iso(r.closed_at),
        "createdAt": iso(r.created_at),
        "updatedAt": iso(r.updated_at),
    }
    if with_documents:
        out["documents"] = [serialize_document(d) for d in r.documents]
    return out


def serialize_hse_report(r: HseReport, with_documents: bool = True) -> Dict[str, Any]:
    out = {
        "id": r.id,
        "title": r.title,
        "dateOfReport": iso(r.date_of_report),
        "timeOfReport": r.time_of_report.strftime("%H:%M:%S") if r.time_of_report else None,
        "report": r.report,
        "status": r.status,
        "reporterId": r.reporter_id,
        "reporter": user_summary(r.reporter),
        "closedBy": r.closed_by,
        "closer": user_summary(r.closer),
        "closedAt": iso(r.closed_at),
        "createdAt": iso(r.created_at),
        "updatedAt": iso(r.updated_at),
    }
    if with_documents:
        out["documents"] = [serialize_hse_document(d) for d in r.documents]
    return out
