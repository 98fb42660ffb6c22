from collections import Counter
from datetime import date, datetime, timedelta
from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from sqlalchemy import func, update
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, is_manager, require_roles
from ..db import get_db
from ..models.models import HseDocument, HseReport, Training, User
from ..schemas.reports import ReportStatusUpdate
from ..services import notifications
from ..services.pagination import PageParams, page_response
from ..services.parsing import id_list, is_null, optional_int, parse_date, parse_time
from ..services.reports import REPORT_STATUSES, serialize_hse_report, status_change
from ..services.serializers import serialize_hse_document
from ..services.uploads import StoredFile, delete_stored_urls, discard_uploads, first_upload, store_uploads
from ..storage.provider import StorageProvider
from .files import get_storage


router = APIRouter(prefix="/api/hse", tags=["hse"])
log = structlog.get_logger()


def _docs_from_uploads(stored: List[StoredFile], uploader_id: int, report_id: Optional[int]) -> List[HseDocument]:
    return [
        HseDocument(
            name=s.original_name,
            urls=[s.url],
            uploaded_by=uploader_id,
            report_id=report_id,
            mime_type=s.mimetype,
            size=s.size,
        )
        for s in stored
    ]


def _attach(db: Session, report_id: int, doc_ids: List[int]) -> None:
    if not doc_ids:
        return
    found = {r[0] for r in db.query(HseDocument.id).filter(HseDocument.id.in_(doc_ids)).all()}
    missing = [i for i in doc_ids if i not in found]
    if missing:
        raise HTTPException(status_code=404, detail=f"HSE documents not found: {missing}")
    db.query(HseDocument).filter(HseDocument.id.in_(doc_ids)).update(
        {HseDocument.report_id: report_id}, synchronize_session=False
    )


def _detach(db: Session, report_id: int, doc_ids: List[int]) -> None:
    if not doc_ids:
        return
    db.query(HseDocument).filter(HseDocument.id.in_(doc_ids), HseDocument.report_id == report_id).update(
        {HseDocument.report_id: None}, synchronize_session=False
    )


def _get_report(db: Session, report_id: int) -> HseReport:
    report = db.query(HseReport).filter(HseReport.id == report_id).first()
    if not report:
        raise HTTPException(status_code=404, detail="Report not found")
    return report


def _require_owner_or_manager(owner_id: Optional[int], me: User, what: str) -> None:
    if owner_id != me.id and not is_manager(me):
        raise HTTPException(status_code=403, detail=f"Only the owner or a manager can modify this {what}")


# =====================
# HSE reports
# =====================


@router.post("/reports", status_code=201)
def create_hse_report(
    title: Optional[str] = Form(None),
    date_of_report: Optional[str] = Form(None, alias="dateOfReport"),
    time_of_report: Optional[str] = Form(None, alias="timeOfReport"),
    report: Optional[str] = Form(None),
    attached_doc_ids: Optional[List[str]] = Form(None, alias="attachedDocIds"),
    files: Optional[List[UploadFile]] = File(None),
    db: Session = Depends(get_db),
    storage: StorageProvider = Depends(get_storage),
    me: User = Depends(get_current_user),
):
    if is_null(title) or is_null(date_of_report) or is_null(time_of_report) or is_null(report):
        raise HTTPException(status_code=400, detail="title, dateOfReport, timeOfReport, and report are required")
    report_date = parse_date(date_of_report, "dateOfReport")
    report_time = parse_time(time_of_report, "timeOfReport")
    attach_ids = id_list(attached_doc_ids, "attachedDocIds")

    stored = store_uploads(storage, files, field="files")
    try:
        hse_report = HseReport(
            title=title.strip(),
            date_of_report=report_date,
            time_of_report=report_time,
            report=report,
            reporter_id=me.id,
            status="open",
        )
        db.add(hse_report)
        db.flush()
        db.add_all(_docs_from_uploads(stored, me.id, hse_report.id))
        _attach(db, hse_report.id, attach_ids)
        db.commit()
    except HTTPException:
        db.rollback()
        discard_uploads(storage, stored)
        raise
    except Exception as e:
        db.rollback()
        discard_uploads(storage, stored)
        log.error("hse_report_create_failed", user_id=me.id, error=str(e))
        raise HTTPException(status_code=500, detail={"message": "Failed to create report", "details": str(e)})

    db.refresh(hse_report)
    notifications.notify_staff(
        db,
        f"New HSE report: {hse_report.title}",
        notifications.paragraph(
            f"{me.full_name} filed an HSE report for {hse_report.date_of_report.isoformat()}.",
            hse_report.title,
            hse_report.report,
        ),
        include_managers=True,
        exclude_user_id=me.id,
    )
    return {"message": "Report created", "report": serialize_hse_report(hse_report)}


@router.get("/reports")
def list_hse_reports(
    status: Optional[str] = None,
    search: Optional[str] = None,
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    page: PageParams = Depends(),
    db: Session = Depends(get_db),
    _: User = Depends(get_current_user),
):
    q = db.query(HseReport)
    if status:
        q = q.filter(HseReport.status == status)
    if search:
        like = f"%{search}%"
        q = q.filter(HseReport.title.ilike(like) | HseReport.report.ilike(like))
    start = parse_date(start_date, "startDate")
    end = parse_date(end_date, "endDate")
    if start:
        q = q.filter(HseReport.date_of_report >= start)
    if end:
        q = q.filter(HseReport.date_of_report <= end)
    q = q.order_by(HseReport.date_of_report.desc(), HseReport.id.desc())
    return page_response("reports", q, page, lambda r: serialize_hse_report(r, with_documents=False))


@router.get("/reports/by-document/{document_id}")
def get_report_by_document(document_id: int, db: Session = Depends(get_db), _: User = Depends(get_current_user)):
    doc = db.query(HseDocument).filter(HseDocument.id == document_id).first()
    if not doc or doc.report_id is None:
        raise HTTPException(status_code=404, detail="No report linked")
    return serialize_hse_report(_get_report(db, doc.report_id))


@router.get("/reports/{report_id}")
def get_hse_report(report_id: int, db: Session = Depends(get_db), _: User = Depends(get_current_user)):
    return serialize_hse_report(_get_report(db, report_id))


@router.get("/reports/{report_id}/documents")
def get_report_documents(report_id: int, db: Session = Depends(get_db), _: User = Depends(get_current_user)):
    report = _get_report(db, report_id)
    docs = (
        db.query(HseDocument)
        .filter(HseDocument.report_id == report.id)
        .order_by(HseDocument.created_at.desc(), HseDocument.id.desc())
        .all()
    )
    return {"reportId": report.id, "documents": [serialize_hse_document(d) for d in docs]}


@router.put("/reports/{report_id}")
def update_hse_report(
    report_id: int,
    title: Optional[str] = Form(None),
    date_of_report: Optional[str] = Form(None, alias="dateOfReport"),
    time_of_report: Optional[str] = Form(None, alias="timeOfReport"),
    report: Optional[str] = Form(None),
    status: Optional[str] = Form(None),
    attached_doc_ids: Optional[List[str]] = Form(None, alias="attachedDocIds"),
    detach_doc_ids: Optional[List[str]] = Form(None, alias="detachDocIds"),
    files: Optional[List[UploadFile]] = File(None),
    db: Session = Depends(get_db),
    storage: StorageProvider = Depends(get_storage),
    me: User = Depends(get_current_user),
):
    if status is not None and status not in REPORT_STATUSES:
        raise HTTPException(status_code=400, detail="Invalid status. Must be open, pending, or closed")
    attach_ids = id_list(attached_doc_ids, "attachedDocIds")
    detach_ids = id_list(detach_doc_ids, "detachDocIds")
    updates = {}
    if not is_null(title):
        updates["title"] = title.strip()
    if not is_null(date_of_report):
        updates["date_of_report"] = parse_date(date_of_report, "dateOfReport")
    if not is_null(time_of_report):
        updates["time_of_report"] = parse_time(time_of_report, "timeOfReport")
    if not is_null(report):
        updates["report"] = report

    stored = store_uploads(storage, files, field="files")
    try:
        existing = db.query(HseReport).filter(HseReport.id == report_id).with_for_update().first()
        if not existing:
            raise HTTPException(status_code=404, detail="Report not found")
        _require_owner_or_manager(existing.reporter_id, me, "report")
        if status is not None:
            updates.update(status_change(existing.status, status, me.id))
        if updates:
            db.execute(update(HseReport).where(HseReport.id == existing.id).values(**updates))
        db.add_all(_docs_from_uploads(stored, me.id, existing.id))
        _attach(db, existing.id, attach_ids)
        _detach(db, existing.id, detach_ids)
        db.commit()
    except HTTPException:
        db.rollback()
        discard_uploads(storage, stored)
        raise
    except Exception as e:
        db.rollback()
        discard_uploads(storage, stored)
        log.error("hse_report_update_failed", report_id=report_id, error=str(e))
        raise HTTPException(status_code=500, detail={"message": "Failed to update report", "details": str(e)})

    return {"message": "Report updated", "report": serialize_hse_report(_get_report(db, report_id))}


@router.patch("/reports/{report_id}/status")
def update_hse_report_status(
    report_id: int,
    payload: ReportStatusUpdate,
    db: Session = Depends(get_db),
    me: User = Depends(require_roles("manager")),
):
    hse_report = _get_report(db, report_id)
    previous = hse_report.status
    for key, value in status_change(previous, payload.status, me.id).items():
        setattr(hse_report, key, value)
    db.commit()
    db.refresh(hse_report)
    if hse_report.reporter and previous != hse_report.status:
        notifications.notify_user(
            hse_report.reporter,
            f"HSE report {hse_report.status}: {hse_report.title}",
            notifications.paragraph(f"Your HSE report \"{hse_report.title}\" moved from {previous} to {hse_report.status}."),
        )
    return {"message": f"Report status updated to {hse_report.status}", "report": serialize_hse_report(hse_report)}


@router.delete("/reports/{report_id}")
def delete_hse_report(report_id: int, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    hse_report = _get_report(db, report_id)
    _require_owner_or_manager(hse_report.reporter_id, me, "report")
    try:
        db.query(HseDocument).filter(HseDocument.report_id == hse_report.id).update(
            {HseDocument.report_id: None}, synchronize_session=False
        )
        db.delete(hse_report)
        db.commit()
    except Exception as e:
        db.rollback()
        log.error("hse_report_delete_failed", report_id=report_id, error=str(e))
        raise HTTPException(status_code=500, detail={"message": "Failed to delete report", "details": str(e)})
    return {"message": "Report deleted"}


# =====================
# HSE documents
# =====================


@router.post("/documents", status_code=201)
def create_hse_documents(
    files: Optional[List[UploadFile]] = File(None),
    report_id_raw: Optional[str] = Form(None, alias="reportId"),
    name: Optional[str] = Form(None),
    urls: Optional[List[str]] = Form(None),
    mime_type: Optional[str] = Form(None, alias="mimeType"),
    size: Optional[int] = Form(None),
    db: Session = Depends(get_db),
    storage: StorageProvider = Depends(get_storage),
    me: User = Depends(get_current_user),
):
    report_id = optional_int(report_id_raw, "reportId")
    if report_id is not None:
        _get_report(db, report_id)
    has_files = bool(files) and any(f.filename for f in files)
    link_urls = [u.strip() for u in (urls or []) if u and u.strip()]
    if not has_files and not (name and link_urls):
        raise HTTPException(status_code=400, detail="Upload at least one file or provide name and urls")

    stored = store_uploads(storage, files, field="files") if has_files else []
    try:
        docs = _docs_from_uploads(stored, me.id, report_id)
        if not stored:
            docs = [
                HseDocument(
                    name=name.strip(),
                    urls=link_urls,
                    uploaded_by=me.id,
                    report_id=report_id,
                    mime_type=mime_type,
                    size=size,
                )
            ]
        db.add_all(docs)
        db.commit()
    except Exception as e:
        db.rollback()
        discard_uploads(storage, stored)
        log.error("hse_document_create_failed", user_id=me.id, error=str(e))
        raise HTTPException(status_code=500, detail={"message": "Failed to create document", "details": str(e)})

    for d in docs:
        db.refresh(d)
    return {"message": "Documents created", "documents": [serialize_hse_document(d) for d in docs]}


@router.get("/documents")
def list_hse_documents(
    search: Optional[str] = None,
    type: Optional[str] = None,
    report_id_raw: Optional[str] = Query(None, alias="reportId"),
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    page: PageParams = Depends(),
    db: Session = Depends(get_db),
    _: User = Depends(get_current_user),
):
    q = db.query(HseDocument)
    if search:
        q = q.filter(HseDocument.name.ilike(f"%{search}%"))
    if type:
        q = q.filter(HseDocument.mime_type.ilike(f"%{type}%"))
    if report_id_raw is not None:
        if is_null(report_id_raw):
            q = q.filter(HseDocument.report_id.is_(None))
        else:
            q = q.filter(HseDocument.report_id == optional_int(report_id_raw, "reportId"))
    start = parse_date(start_date, "startDate")
    end = parse_date(end_date, "endDate")
    if start:
        q = q.filter(HseDocument.created_at >= datetime.combine(start, datetime.min.time()))
    if end:
        q = q.filter(HseDocument.created_at < datetime.combine(end + timedelta(days=1), datetime.min.time()))
    q = q.order_by(HseDocument.created_at.desc(), HseDocument.id.desc())
    return page_response("documents", q, page, serialize_hse_document)


@router.get("/documents/{document_id}")
def get_hse_document(document_id: int, db: Session = Depends(get_db), _: User = Depends(get_current_user)):
    doc = db.query(HseDocument).filter(HseDocument.id == document_id).first()
    if not doc:
        raise HTTPException(status_code=404, detail="Document not found")
    return serialize_hse_document(doc)


@router.put("/documents/{document_id}")
def update_hse_document(
    document_id: int,
    name: Optional[str] = Form(None),
    report_id_raw: Optional[str] = Form(None, alias="reportId"),
    files: Optional[List[UploadFile]] = File(None),
    db: Session = Depends(get_db),
    storage: StorageProvider = Depends(get_storage),
    me: User = Depends(get_current_user),
):
    upload = first_upload(files)
    has_file = upload is not None
    if name is None and report_id_raw is None and not has_file:
        raise HTTPException(status_code=400, detail="At least one field (name, reportId or file) is required")
    if name is not None and not name.strip():
        raise HTTPException(status_code=400, detail="name cannot be empty")

    stored = store_uploads(storage, [upload]) if has_file else []
    old_urls: List[str] = []
    try:
        doc = db.query(HseDocument).filter(HseDocument.id == document_id).with_for_update().first()
        if not doc:
            raise HTTPException(status_code=404, detail="Document not found")
        _require_owner_or_manager(doc.uploaded_by, me, "document")
        updates = {}
        if name is not None:
            updates["name"] = name.strip()
        if report_id_raw is not None:
            report_id = optional_int(report_id_raw, "reportId")
            if report_id is not None:
                _get_report(db, report_id)
            updates["report_id"] = report_id
        if stored:
            old_urls = list(doc.urls or [])
            updates["urls"] = [stored[0].url]
            updates["mime_type"] = stored[0].mimetype
            updates["size"] = stored[0].size
        db.execute(update(HseDocument).where(HseDocument.id == doc.id).values(**updates))
        db.commit()
    except HTTPException:
        db.rollback()
        discard_uploads(storage, stored)
        raise
    except Exception as e:
        db.rollback()
        discard_uploads(storage, stored)
        log.error("hse_document_update_failed", document_id=document_id, error=str(e))
        raise HTTPException(status_code=500, detail={"message": "Failed to update document", "details": str(e)})

    delete_stored_urls(storage, old_urls)
    doc = db.query(HseDocument).filter(HseDocument.id == document_id).first()
    return {"message": "Document updated", "document": serialize_hse_document(doc)}


@router.delete("/documents/{document_id}")
def delete_hse_document(
    document_id: int,
    db: Session = Depends(get_db),
    storage: StorageProvider = Depends(get_storage),
    me: User = Depends(get_current_user),
):
    try:
        doc = db.query(HseDocument).filter(HseDocument.id == document_id).with_for_update().first()
        if not doc:
            raise HTTPException(status_code=404, detail="Document not found")
        _require_owner_or_manager(doc.uploaded_by, me, "document")
        urls = list(doc.urls or [])
        db.delete(doc)
        db.commit()
    except HTTPException:
        db.rollback()
        raise
    except Exception as e:
        db.rollback()
        log.error("hse_document_delete_failed", document_id=document_id, error=str(e))
        raise HTTPException(status_code=500, detail={"message": "Failed to delete document", "details": str(e)})

    delete_stored_urls(storage, urls)
    return {"message": "Document deleted"}


# =====================
# Analytics
# =====================


def _month_keys(today: date, months: int = 12) -> List[str]:
    keys = []
    year, month = today.year, today.month
    for _ in range(months):
        keys.append(f"{year:04d}-{month:02d}")
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(keys))


@router.get("/analytics")
def hse_analytics(db: Session = Depends(get_db), _: User = Depends(require_roles("manager"))):
    by_status = dict(db.query(HseReport.status, func.count(HseReport.id)).group_by(HseReport.status).all())
    incidents = {
        "total": int(sum(by_status.values())),
        "open": int(by_status.get("open", 0)),
        "pending": int(by_status.get("pending", 0)),
        "closed": int(by_status.get("closed", 0)),
    }

    today = date.today()
    trainings = db.query(Training.status, Training.next_training_date).all()
    completed = sum(1 for s, _d in trainings if s == "Completed")
    overdue = sum(
        1 for s, d in trainings if s == "Urgent" or (d is not None and d < today and s not in ("Completed", "Cancelled"))
    )
    training = {
        "total": len(trainings),
        "completed": completed,
        "compliancePercentage": round(completed * 100.0 / len(trainings)) if trainings else 0,
        "overdue": overdue,
    }

    keys = _month_keys(today)
    window_start = date(int(keys[0][:4]), int(keys[0][5:]), 1)
    dates = [r[0] for r in db.query(HseReport.date_of_report).filter(HseReport.date_of_report >= window_start).all()]
    counts = Counter(d.strftime("%Y-%m") for d in dates if d is not None)
    monthly = [{"month": k, "incidents": counts.get(k, 0)} for k in keys]

    return {
        "data": {"incidents": incidents, "training": training, "trends": {"monthlyIncidents": monthly}},
        "generatedAt": datetime.utcnow().isoformat(),
    }
