from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from sqlalchemy import update
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_permissions
from ..db import get_db
from ..models.models import Document, Project, Report, User
from ..services.access import can_access_project
from ..services.pagination import PageParams, page_response
from ..services.parsing import is_null, optional_int
from ..services.serializers import serialize_document
from ..services.uploads import delete_stored_urls, discard_uploads, first_upload, store_uploads
from ..storage.provider import StorageProvider
from .files import get_storage


router = APIRouter(prefix="/api/documents", tags=["documents"])
log = structlog.get_logger()

DOCUMENT_STATUSES = ("pending", "approved", "rejected", "completed", "not complete")


def _get_project(db: Session, project_id: int) -> Project:
    project = db.query(Project).filter(Project.id == project_id).first()
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    return project


def _check_report(db: Session, report_id: Optional[int], project_id: int) -> None:
    """A document may only be linked to a report of its own project."""
    if report_id is None:
        return
    report = db.query(Report).filter(Report.id == report_id).first()
    if not report:
        raise HTTPException(status_code=404, detail="Report not found")
    if report.project_id != project_id:
        raise HTTPException(status_code=400, detail="Report does not belong to this project")


@router.post("/project/{project_id}", status_code=201)
def upload_documents(
    project_id: int,
    files: Optional[List[UploadFile]] = File(None),
    report_id_raw: Optional[str] = Form(None, alias="reportId"),
    db: Session = Depends(get_db),
    storage: StorageProvider = Depends(get_storage),
    me: User = Depends(require_permissions("document:create")),
):
    if not files or not any(f.filename for f in files):
        raise HTTPException(status_code=400, detail="At least one file must be uploaded")
    project = _get_project(db, project_id)
    if not can_access_project(db, project, me):
        raise HTTPException(status_code=403, detail="Unauthorized to upload documents for this project")
    report_id = optional_int(report_id_raw, "reportId")
    _check_report(db, report_id, project.id)

    stored = store_uploads(storage, files, field="files")
    try:
        docs = [
            Document(
                name=s.original_name,
                urls=[s.url],
                project_id=project.id,
                report_id=report_id,
                uploaded_by=me.id,
                mime_type=s.mimetype,
                size=s.size,
                status="pending",
            )
            for s in stored
        ]
        db.add_all(docs)
        db.commit()
    except Exception as e:
        db.rollback()
        discard_uploads(storage, stored)
        log.error("document_create_failed", project_id=project_id, user_id=me.id, error=str(e))
        raise HTTPException(status_code=500, detail={"message": "Failed to upload documents", "details": str(e)})

    for d in docs:
        db.refresh(d)
    return {"message": "Documents uploaded successfully", "documents": [serialize_document(d) for d in docs]}


@router.get("/project/{project_id}")
def list_project_documents(
    project_id: int,
    name: Optional[str] = None,
    status: Optional[str] = None,
    report_id_raw: Optional[str] = Query(None, alias="reportId"),
    page: PageParams = Depends(),
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    project = _get_project(db, project_id)
    if not can_access_project(db, project, me):
        raise HTTPException(status_code=403, detail="Unauthorized to view documents for this project")
    q = db.query(Document).filter(Document.project_id == project.id)
    if name:
        q = q.filter(Document.name.ilike(f"%{name}%"))
    if status:
        q = q.filter(Document.status == status)
    if report_id_raw is not None:
        if is_null(report_id_raw):
            q = q.filter(Document.report_id.is_(None))
        else:
            q = q.filter(Document.report_id == optional_int(report_id_raw, "reportId"))
    q = q.order_by(Document.created_at.desc(), Document.id.desc())
    return page_response("documents", q, page, serialize_document)


@router.get("/{document_id}")
def get_document(document_id: int, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    doc = db.query(Document).filter(Document.id == document_id).first()
    if not doc:
        raise HTTPException(status_code=404, detail="Document not found")
    if not can_access_project(db, doc.project, me):
        raise HTTPException(status_code=403, detail="Unauthorized to view this document")
    return serialize_document(doc)


@router.put("/{document_id}")
def update_document(
    document_id: int,
    name: Optional[str] = Form(None),
    status: Optional[str] = Form(None),
    report_id_raw: Optional[str] = Form(None, alias="reportId"),
    files: Optional[List[UploadFile]] = File(None),
    db: Session = Depends(get_db),
    storage: StorageProvider = Depends(get_storage),
    me: User = Depends(require_permissions("document:update")),
):
    upload = first_upload(files)
    has_file = upload is not None
    if name is None and status is None and report_id_raw is None and not has_file:
        raise HTTPException(status_code=400, detail="At least one field (name, status, reportId or file) is required")
    if status is not None and status not in DOCUMENT_STATUSES:
        raise HTTPException(
            status_code=400,
            detail="Invalid status. Must be pending, approved, rejected, completed, or not complete",
        )
    if name is not None and not name.strip():
        raise HTTPException(status_code=400, detail="name cannot be empty")

    stored = store_uploads(storage, [upload]) if has_file else []
    old_urls: List[str] = []
    try:
        # Serialize concurrent edits of the same document
        doc = db.query(Document).filter(Document.id == document_id).with_for_update().first()
        if not doc:
            raise HTTPException(status_code=404, detail="Document not found")
        if not can_access_project(db, doc.project, me):
            raise HTTPException(status_code=403, detail="Unauthorized to update this document")

        updates = {}
        if name is not None:
            updates["name"] = name.strip()
        if status is not None:
            updates["status"] = status
        if report_id_raw is not None:
            report_id = optional_int(report_id_raw, "reportId")
            _check_report(db, report_id, doc.project_id)
            updates["report_id"] = report_id
        if stored:
            old_urls = list(doc.urls or [])
            updates["urls"] = [stored[0].url]
            updates["mime_type"] = stored[0].mimetype
            updates["size"] = stored[0].size

        db.execute(update(Document).where(Document.id == doc.id).values(**updates))
        db.commit()
    except HTTPException:
        db.rollback()
        discard_uploads(storage, stored)
        raise
    except Exception as e:
        db.rollback()
        discard_uploads(storage, stored)
        log.error("document_update_failed", document_id=document_id, user_id=me.id, error=str(e))
        raise HTTPException(status_code=500, detail={"message": "Failed to update document", "details": str(e)})

    # The replaced object is removed only after the new row state is durable
    delete_stored_urls(storage, old_urls)
    doc = db.query(Document).filter(Document.id == document_id).first()
    return {"message": "Document updated successfully", "document": serialize_document(doc)}


@router.delete("/{document_id}")
def delete_document(
    document_id: int,
    db: Session = Depends(get_db),
    storage: StorageProvider = Depends(get_storage),
    me: User = Depends(require_permissions("document:delete")),
):
    try:
        doc = db.query(Document).filter(Document.id == document_id).with_for_update().first()
        if not doc:
            raise HTTPException(status_code=404, detail="Document not found")
        if not can_access_project(db, doc.project, me):
            raise HTTPException(status_code=403, detail="Unauthorized to delete this document")
        urls = list(doc.urls or [])
        db.delete(doc)
        db.commit()
    except HTTPException:
        db.rollback()
        raise
    except Exception as e:
        db.rollback()
        log.error("document_delete_failed", document_id=document_id, user_id=me.id, error=str(e))
        raise HTTPException(status_code=500, detail={"message": "Failed to delete document", "details": str(e)})

    delete_stored_urls(storage, urls)
    return {"message": "Document deleted successfully"}
