import io

from conftest import auth_headers
from pmhub.services.reports import status_change

DOC_PERMS = {"document:create": True}


def _report(client, user, project_id, title="Cracked beam", **extra):
    return client.post(
        "/api/reports",
        json={"title": title, "content": "Level 3, grid C", "projectId": project_id, **extra},
        headers=auth_headers(user),
    )


def test_status_change_values():
    closing = status_change("open", "closed", 7)
    assert closing["status"] == "closed"
    assert closing["closed_by"] == 7
    assert closing["closed_at"] is not None
    assert status_change("closed", "closed", 9) == {"status": "closed"}
    assert status_change("closed", "pending", 9) == {"status": "pending", "closed_by": None, "closed_at": None}


def test_create_report_checks_project_access(client, make_user, make_project, sent_mail):
    admin = make_user("admin@example.com", roles=("admin",))
    worker = make_user("worker@example.com")
    outsider = make_user("outsider@example.com")
    project = make_project("Bridge", members=[worker])

    assert _report(client, worker, 999).status_code == 404
    assert _report(client, outsider, project.id).status_code == 403
    assert _report(client, worker, project.id, teamId=999).status_code == 404

    created = _report(client, worker, project.id)
    assert created.status_code == 201
    report = created.json()["report"]
    assert report["status"] == "open"
    assert report["reporter"]["email"] == "worker@example.com"
    assert report["project"] == {"id": project.id, "name": "Bridge"}
    assert [m["to"] for m in sent_mail] == [[admin.email]]


def test_list_reports_filters(client, make_user, make_project):
    manager = make_user("manager@example.com", roles=("manager",))
    worker = make_user("worker@example.com", first_name="Wes")
    other = make_user("other@example.com", first_name="Otto")
    bridge = make_project("Bridge", members=[worker])
    depot = make_project("Depot", members=[other])
    _report(client, worker, bridge.id, title="Beam")
    _report(client, other, depot.id, title="Door")

    assert client.get("/api/reports", headers=auth_headers(worker)).json()["pagination"]["totalItems"] == 1
    by_project = client.get("/api/reports?projectName=dep", headers=auth_headers(manager)).json()
    assert [r["title"] for r in by_project["reports"]] == ["Door"]
    by_user = client.get("/api/reports?userName=wes", headers=auth_headers(manager)).json()
    assert [r["title"] for r in by_user["reports"]] == ["Beam"]


def test_report_status_assign_and_update(client, make_user, make_project, sent_mail):
    manager = make_user("manager@example.com", roles=("manager",))
    worker = make_user("worker@example.com")
    teammate = make_user("teammate@example.com")
    project = make_project("Bridge", members=[worker, teammate])
    report = _report(client, worker, project.id).json()["report"]

    assert client.patch(
        f"/api/reports/{report['id']}/status", json={"status": "closed"}, headers=auth_headers(teammate)
    ).status_code == 403

    sent_mail.clear()
    closed = client.patch(
        f"/api/reports/{report['id']}/status", json={"status": "closed"}, headers=auth_headers(manager)
    ).json()["report"]
    assert closed["closedBy"] == manager.id
    assert closed["closer"]["email"] == "manager@example.com"
    assert [m["to"] for m in sent_mail] == [[worker.email]]

    reopened = client.patch(
        f"/api/reports/{report['id']}/status", json={"status": "pending"}, headers=auth_headers(worker)
    ).json()["report"]
    assert reopened["closedBy"] is None and reopened["closedAt"] is None

    assert client.patch(
        f"/api/reports/{report['id']}/assign", json={"userId": teammate.id}, headers=auth_headers(worker)
    ).status_code == 403
    assigned = client.patch(
        f"/api/reports/{report['id']}/assign", json={"userId": teammate.id}, headers=auth_headers(manager)
    ).json()["report"]
    assert assigned["assignedTo"] == teammate.id

    assert client.put(f"/api/reports/{report['id']}", json={}, headers=auth_headers(worker)).status_code == 400
    renamed = client.put(f"/api/reports/{report['id']}", json={"title": "Cracked beam (L3)"}, headers=auth_headers(worker))
    assert renamed.json()["report"]["title"] == "Cracked beam (L3)"


def test_delete_report_keeps_documents(client, make_user, make_project):
    editor = make_user("editor@example.com", roles=("editor",), permissions=DOC_PERMS)
    project = make_project("Bridge", members=[editor])
    report = _report(client, editor, project.id).json()["report"]
    doc = client.post(
        f"/api/documents/project/{project.id}",
        files=[("files", ("photo.png", io.BytesIO(b"\x89PNG"), "image/png"))],
        data={"reportId": str(report["id"])},
        headers=auth_headers(editor),
    ).json()["documents"][0]

    listed = client.get(f"/api/reports/{report['id']}/documents", headers=auth_headers(editor)).json()
    assert [d["id"] for d in listed["documents"]] == [doc["id"]]

    assert client.delete(f"/api/reports/{report['id']}", headers=auth_headers(editor)).status_code == 200
    kept = client.get(f"/api/documents/{doc['id']}", headers=auth_headers(editor))
    assert kept.status_code == 200
    assert kept.json()["reportId"] is None
