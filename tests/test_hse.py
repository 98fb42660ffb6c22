import io
from datetime import date, timedelta

from conftest import auth_headers
from pmhub.models.models import HseDocument, Training


def _report_form(**overrides):
    data = {
        "title": "Slip near loading bay",
        "dateOfReport": "2024-05-01",
        "timeOfReport": "14:30",
        "report": "Wet floor, no injury.",
    }
    data.update(overrides)
    return data


def _create_report(client, user, files=None, **overrides):
    return client.post("/api/hse/reports", data=_report_form(**overrides), files=files, headers=auth_headers(user))


def test_create_report_with_upload_and_existing_document(client, session, make_user, sent_mail):
    admin = make_user("admin@example.com", roles=("admin",))
    worker = make_user("worker@example.com")
    loose = HseDocument(name="Site photo", urls=["https://cdn.example.com/a.jpg"], uploaded_by=worker.id)
    session.add(loose)
    session.commit()

    resp = _create_report(
        client,
        worker,
        files=[("files", ("note.txt", io.BytesIO(b"details"), "text/plain"))],
        attachedDocIds=f"[{loose.id}]",
    )
    assert resp.status_code == 201
    report = resp.json()["report"]
    assert report["status"] == "open"
    assert report["dateOfReport"] == "2024-05-01"
    assert report["timeOfReport"] == "14:30:00"
    assert sorted(d["name"] for d in report["documents"]) == ["Site photo", "note.txt"]
    assert any(admin.email in m["to"] for m in sent_mail)


def test_create_report_requires_fields(client, make_user):
    worker = make_user("worker@example.com")

    missing = _create_report(client, worker, title="")
    assert missing.status_code == 400
    assert missing.json()["message"] == "title, dateOfReport, timeOfReport, and report are required"

    bad_date = _create_report(client, worker, dateOfReport="01/05/2024")
    assert bad_date.status_code == 400


def test_create_report_with_unknown_document_discards_upload(client, make_user, storage):
    worker = make_user("worker@example.com")

    resp = _create_report(
        client,
        worker,
        files=[("files", ("note.txt", io.BytesIO(b"details"), "text/plain"))],
        attachedDocIds="4242",
    )
    assert resp.status_code == 404
    uploads = storage.base_dir / "uploads"
    assert not uploads.exists() or not any(uploads.iterdir())


def test_status_change_stamps_and_clears_closer(client, make_user, sent_mail):
    manager = make_user("manager@example.com", roles=("manager",))
    worker = make_user("worker@example.com")
    report_id = _create_report(client, worker).json()["report"]["id"]

    forbidden = client.patch(f"/api/hse/reports/{report_id}/status", json={"status": "closed"}, headers=auth_headers(worker))
    assert forbidden.status_code == 403

    closed = client.patch(f"/api/hse/reports/{report_id}/status", json={"status": "closed"}, headers=auth_headers(manager))
    assert closed.status_code == 200
    body = closed.json()["report"]
    assert body["closedBy"] == manager.id
    assert body["closedAt"] is not None
    assert any(worker.email in m["to"] for m in sent_mail)

    reopened = client.patch(f"/api/hse/reports/{report_id}/status", json={"status": "open"}, headers=auth_headers(manager))
    assert reopened.json()["report"]["closedBy"] is None
    assert reopened.json()["report"]["closedAt"] is None

    invalid = client.patch(f"/api/hse/reports/{report_id}/status", json={"status": "archived"}, headers=auth_headers(manager))
    assert invalid.status_code == 400


def test_update_attaches_and_detaches_documents(client, session, make_user):
    worker = make_user("worker@example.com")
    other = make_user("other@example.com")
    doc_a = HseDocument(name="A", urls=["https://cdn.example.com/a.pdf"], uploaded_by=worker.id)
    doc_b = HseDocument(name="B", urls=["https://cdn.example.com/b.pdf"], uploaded_by=worker.id)
    session.add_all([doc_a, doc_b])
    session.commit()
    report_id = _create_report(client, worker, attachedDocIds=str(doc_a.id)).json()["report"]["id"]

    assert client.put(
        f"/api/hse/reports/{report_id}", data={"title": "Hijack"}, headers=auth_headers(other)
    ).status_code == 403

    resp = client.put(
        f"/api/hse/reports/{report_id}",
        data={"title": "Slip (updated)", "attachedDocIds": [str(doc_b.id)], "detachDocIds": f"{doc_a.id}"},
        headers=auth_headers(worker),
    )
    assert resp.status_code == 200
    report = resp.json()["report"]
    assert report["title"] == "Slip (updated)"
    assert [d["name"] for d in report["documents"]] == ["B"]

    linked = client.get(f"/api/hse/reports/by-document/{doc_b.id}", headers=auth_headers(worker))
    assert linked.json()["id"] == report_id
    assert client.get(f"/api/hse/reports/by-document/{doc_a.id}", headers=auth_headers(worker)).status_code == 404


def test_delete_report_detaches_documents(client, session, make_user):
    worker = make_user("worker@example.com")
    doc = HseDocument(name="Keep me", urls=["https://cdn.example.com/k.pdf"], uploaded_by=worker.id)
    session.add(doc)
    session.commit()
    report_id = _create_report(client, worker, attachedDocIds=str(doc.id)).json()["report"]["id"]

    assert client.delete(f"/api/hse/reports/{report_id}", headers=auth_headers(worker)).status_code == 200
    kept = client.get(f"/api/hse/documents/{doc.id}", headers=auth_headers(worker))
    assert kept.status_code == 200
    assert kept.json()["reportId"] is None


def test_hse_documents_from_links_and_filters(client, make_user):
    worker = make_user("worker@example.com")

    assert client.post("/api/hse/documents", data={"name": "No links"}, headers=auth_headers(worker)).status_code == 400

    created = client.post(
        "/api/hse/documents",
        data={"name": "Induction deck", "urls": ["https://cdn.example.com/deck.pdf"], "mimeType": "application/pdf"},
        headers=auth_headers(worker),
    )
    assert created.status_code == 201
    doc = created.json()["documents"][0]
    assert doc["urls"] == ["https://cdn.example.com/deck.pdf"]

    report_id = _create_report(client, worker).json()["report"]["id"]
    client.post(
        "/api/hse/documents",
        data={"name": "Linked", "urls": ["https://cdn.example.com/l.pdf"], "reportId": str(report_id)},
        headers=auth_headers(worker),
    )

    unattached = client.get("/api/hse/documents?reportId=null", headers=auth_headers(worker)).json()
    assert [d["name"] for d in unattached["documents"]] == ["Induction deck"]
    by_type = client.get("/api/hse/documents?type=pdf", headers=auth_headers(worker)).json()
    assert by_type["pagination"]["totalItems"] == 1


def test_analytics_summarizes_incidents_and_training(client, session, make_user):
    manager = make_user("manager@example.com", roles=("manager",))
    worker = make_user("worker@example.com")
    today = date.today()
    session.add_all(
        [
            Training(course_name="First aid", next_training_date=today, progress=100, status="Completed"),
            Training(course_name="Ladders", next_training_date=today - timedelta(days=3), progress=0, status="Scheduled"),
            Training(course_name="Fire", next_training_date=today + timedelta(days=30), progress=0, status="Scheduled"),
        ]
    )
    session.commit()
    _create_report(client, worker, dateOfReport=today.isoformat())
    _create_report(client, worker, dateOfReport=today.isoformat())

    assert client.get("/api/hse/analytics", headers=auth_headers(worker)).status_code == 403

    data = client.get("/api/hse/analytics", headers=auth_headers(manager)).json()["data"]
    assert data["incidents"] == {"total": 2, "open": 2, "pending": 0, "closed": 0}
    assert data["training"] == {"total": 3, "completed": 1, "compliancePercentage": 33, "overdue": 1}
    monthly = data["trends"]["monthlyIncidents"]
    assert len(monthly) == 12
    assert monthly[-1] == {"month": today.strftime("%Y-%m"), "incidents": 2}


def test_hse_document_update_replaces_file(client, make_user, storage):
    worker = make_user("worker@example.com")
    other = make_user("other@example.com")
    doc = client.post(
        "/api/hse/documents",
        data={"name": "Permit", "urls": ["https://cdn.example.com/permit.pdf"]},
        headers=auth_headers(worker),
    ).json()["documents"][0]

    assert client.put(
        f"/api/hse/documents/{doc['id']}", data={"name": "Mine now"}, headers=auth_headers(other)
    ).status_code == 403

    resp = client.put(
        f"/api/hse/documents/{doc['id']}",
        files={"files": ("permit-v2.pdf", io.BytesIO(b"%PDF-1.4 v2"), "application/pdf")},
        headers=auth_headers(worker),
    )
    assert resp.status_code == 200
    updated = resp.json()["document"]
    assert updated["name"] == "Permit"
    assert updated["urls"] != doc["urls"]
    assert storage.exists(storage.key_from_url(updated["urls"][0]))
