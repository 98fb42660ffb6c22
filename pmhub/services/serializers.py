from datetime import date, datetime, time
from typing import Any, Dict, Optional, Union

from ..models.models import Document, HseDocument, User


def iso(value: Optional[Union[date, datetime, time]]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def user_summary(u: Optional[User]) -> Optional[Dict[str, Any]]:
    if u is None:
        return None
    return {
        "id": u.id,
        "firstName": u.first_name,
        "lastName": u.last_name,
        "email": u.email,
        "fullName": u.full_name,
    }


def serialize_document(d: Document) -> Dict[str, Any]:
    return {
        "id": d.id,
        "name": d.name,
        "urls": list(d.urls or []),
        "projectId": d.project_id,
        "reportId": d.report_id,
        "uploadedBy": d.uploaded_by,
        "uploader": user_summary(d.uploader),
        "mimeType": d.mime_type,
        "size": d.size,
        "status": d.status,
        "createdAt": iso(d.created_at),
        "updatedAt": iso(d.updated_at),
    }


def serialize_hse_document(d: HseDocument) -> Dict[str, Any]:
    return {
        "id": d.id,
        "name": d.name,
        "urls": list(d.urls or []),
        "reportId": d.report_id,
        "uploadedBy": d.uploaded_by,
        "uploader": user_summary(d.uploader),
        "mimeType": d.mime_type,
        "size": d.size,
        "createdAt": iso(d.created_at),
        "updatedAt": iso(d.updated_at),
    }
