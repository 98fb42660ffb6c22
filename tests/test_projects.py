from conftest import auth_headers


def _client_record(client, manager, email="buyer@example.com", first_name="Dana"):
    return client.post(
        "/api/clients",
        json={"firstName": first_name, "lastName": "Buyer", "email": email},
        headers=auth_headers(manager),
    )


def test_create_project_requires_manager_and_valid_dates(client, make_user):
    manager = make_user("manager@example.com", roles=("manager",))
    worker = make_user("worker@example.com")

    body = {"name": "Bridge", "startDate": "2024-01-10", "endDate": "2024-03-01"}
    assert client.post("/api/projects", json=body, headers=auth_headers(worker)).status_code == 403

    backwards = client.post(
        "/api/projects",
        json={"name": "Bridge", "startDate": "2024-01-10", "endDate": "2024-01-01"},
        headers=auth_headers(manager),
    )
    assert backwards.status_code == 400

    missing_team = client.post("/api/projects", json={**body, "teamIds": [99]}, headers=auth_headers(manager))
    assert missing_team.status_code == 404

    created = client.post("/api/projects", json=body, headers=auth_headers(manager))
    assert created.status_code == 201
    project = created.json()["project"]
    assert project["status"] == "Pending"
    assert project["createdBy"] == manager.id
    assert project["clients"] == [] and project["tasks"] == []


def test_non_managers_only_see_their_projects(client, make_user, make_project):
    manager = make_user("manager@example.com", roles=("manager",))
    worker = make_user("worker@example.com")
    mine = make_project("Bridge", members=[worker])
    other = make_project("Depot")

    seen = client.get("/api/projects", headers=auth_headers(worker)).json()
    assert [p["id"] for p in seen["projects"]] == [mine.id]
    assert client.get(f"/api/projects/{other.id}", headers=auth_headers(worker)).status_code == 403

    everything = client.get("/api/projects?projectName=dep", headers=auth_headers(manager)).json()
    assert [p["name"] for p in everything["projects"]] == ["Depot"]

    members = client.get(f"/api/projects/{mine.id}/members", headers=auth_headers(worker)).json()
    assert [m["email"] for m in members] == ["worker@example.com"]


def test_done_status_emails_each_client(client, make_user, make_project, sent_mail):
    manager = make_user("manager@example.com", roles=("manager",))
    worker = make_user("worker@example.com")
    outsider = make_user("outsider@example.com")
    project = make_project("Bridge", members=[worker])
    buyer = _client_record(client, manager).json()["client"]
    assert (sent_mail[-1]["to"], sent_mail[-1]["subject"]) == (["buyer@example.com"], "Welcome")

    linked = client.post(f"/api/projects/{project.id}/clients", json={"clientId": buyer["id"]}, headers=auth_headers(manager))
    assert linked.status_code == 201
    again = client.post(f"/api/projects/{project.id}/clients", json={"clientId": buyer["id"]}, headers=auth_headers(manager))
    assert again.status_code == 409

    forbidden = client.patch(f"/api/projects/{project.id}/status", json={"status": "Done"}, headers=auth_headers(outsider))
    assert forbidden.status_code == 403
    bogus = client.patch(f"/api/projects/{project.id}/status", json={"status": "Finished"}, headers=auth_headers(worker))
    assert bogus.status_code == 400

    sent_mail.clear()
    done = client.patch(f"/api/projects/{project.id}/status", json={"status": "Done"}, headers=auth_headers(worker))
    assert done.status_code == 200
    assert done.json()["project"]["status"] == "Done"
    assert [m["to"] for m in sent_mail] == [["buyer@example.com"]]
    assert sent_mail[0]["subject"] == "Project completed: Bridge"

    # Already done: no second round of emails
    client.patch(f"/api/projects/{project.id}/status", json={"status": "Done"}, headers=auth_headers(worker))
    assert len(sent_mail) == 1


def test_update_and_team_links(client, make_user, make_project):
    manager = make_user("manager@example.com", roles=("manager",))
    project = make_project("Bridge")
    team = client.post("/api/teams", json={"name": "Steel"}, headers=auth_headers(manager)).json()["team"]

    bad = client.put(f"/api/projects/{project.id}", json={"startDate": "2024-05-01", "endDate": "2024-04-01"}, headers=auth_headers(manager))
    assert bad.status_code == 400
    renamed = client.put(f"/api/projects/{project.id}", json={"name": "Bridge II"}, headers=auth_headers(manager))
    assert renamed.json()["project"]["name"] == "Bridge II"

    linked = client.post(
        f"/api/projects/{project.id}/teams", json={"teamId": team["id"], "note": "night shift"}, headers=auth_headers(manager)
    )
    assert linked.status_code == 201
    assert {"id": team["id"], "name": "Steel", "note": "night shift"} in linked.json()["project"]["teams"]
    assert client.post(
        f"/api/projects/{project.id}/teams", json={"teamId": team["id"]}, headers=auth_headers(manager)
    ).status_code == 409

    assert client.delete(f"/api/projects/{project.id}/teams/{team['id']}", headers=auth_headers(manager)).status_code == 200
    assert client.delete(f"/api/projects/{project.id}/teams/{team['id']}", headers=auth_headers(manager)).status_code == 404


def test_delete_project_cascades(client, make_user, make_project):
    manager = make_user("manager@example.com", roles=("manager",))
    project = make_project("Bridge")
    task = client.post(
        "/api/tasks", json={"title": "Pour deck", "projectId": project.id}, headers=auth_headers(manager)
    ).json()["task"]

    assert client.delete(f"/api/projects/{project.id}", headers=auth_headers(manager)).status_code == 200
    assert client.get(f"/api/projects/{project.id}", headers=auth_headers(manager)).status_code == 404
    assert client.get(f"/api/tasks/{task['id']}", headers=auth_headers(manager)).status_code == 404


def test_create_task_notifies_staff_and_assignee(client, make_user, make_project, sent_mail):
    admin = make_user("admin@example.com", roles=("admin",))
    manager = make_user("manager@example.com", roles=("manager",))
    worker = make_user("worker@example.com")
    project = make_project("Bridge", members=[worker])

    assert client.post(
        "/api/tasks", json={"title": "Ghost", "projectId": 999}, headers=auth_headers(manager)
    ).status_code == 404
    assert client.post(
        "/api/tasks", json={"title": "Ghost", "projectId": project.id, "assignedTo": 999}, headers=auth_headers(manager)
    ).status_code == 404

    resp = client.post(
        "/api/tasks",
        json={"title": "Weld joints", "projectId": project.id, "assignedTo": worker.id, "dueDate": "2024-06-01T12:00:00"},
        headers=auth_headers(manager),
    )
    assert resp.status_code == 201
    task = resp.json()["task"]
    assert task["status"] == "To Do"
    assert task["assignee"]["email"] == "worker@example.com"
    assert task["project"] == {"id": project.id, "name": "Bridge"}

    recipients = {m["to"][0]: m["subject"] for m in sent_mail}
    assert recipients == {
        admin.email: "New task: Weld joints",
        worker.email: "You have been assigned: Weld joints",
    }


def test_task_listing_and_status(client, make_user, make_project, sent_mail):
    manager = make_user("manager@example.com", roles=("manager",))
    worker = make_user("worker@example.com")
    outsider = make_user("outsider@example.com")
    project = make_project("Bridge", members=[worker])
    other = make_project("Depot")

    def _task(title, project_id, assignee=None):
        body = {"title": title, "projectId": project_id}
        if assignee:
            body["assignedTo"] = assignee.id
        return client.post("/api/tasks", json=body, headers=auth_headers(manager)).json()["task"]

    visible = _task("Survey", project.id)
    assigned_elsewhere = _task("Paint", other.id, worker)
    _task("Fence", other.id)

    seen = client.get("/api/tasks", headers=auth_headers(worker)).json()["tasks"]
    assert sorted(t["id"] for t in seen) == sorted([visible["id"], assigned_elsewhere["id"]])
    mine = client.get("/api/tasks/my", headers=auth_headers(worker)).json()["tasks"]
    assert [t["id"] for t in mine] == [assigned_elsewhere["id"]]
    assert client.get(f"/api/tasks/{visible['id']}", headers=auth_headers(outsider)).status_code == 403
    assert client.get(f"/api/tasks/project/{other.id}", headers=auth_headers(outsider)).status_code == 403

    filtered = client.get(f"/api/tasks?projectId={other.id}&assignedTo={worker.id}", headers=auth_headers(manager)).json()
    assert filtered["pagination"]["totalItems"] == 1

    assert client.patch(
        f"/api/tasks/{visible['id']}/status", json={"status": "Done"}, headers=auth_headers(worker)
    ).status_code == 403
    sent_mail.clear()
    done = client.patch(
        f"/api/tasks/{assigned_elsewhere['id']}/status", json={"status": "Review"}, headers=auth_headers(manager)
    )
    assert done.json()["task"]["status"] == "Review"
    assert [m["to"] for m in sent_mail] == [[worker.email]]

    updated = client.put(
        f"/api/tasks/{visible['id']}", json={"assignedTo": outsider.id}, headers=auth_headers(manager)
    ).json()["task"]
    assert updated["assignedTo"] == outsider.id
    assert client.delete(f"/api/tasks/{visible['id']}", headers=auth_headers(manager)).status_code == 200


def test_team_membership_is_replaced(client, make_user):
    manager = make_user("manager@example.com", roles=("manager",))
    alice = make_user("alice@example.com")
    bob = make_user("bob@example.com")
    carol = make_user("carol@example.com")

    team = client.post("/api/teams", json={"name": "Crew A"}, headers=auth_headers(manager)).json()["team"]
    assert client.post("/api/teams", json={"name": "Crew A"}, headers=auth_headers(manager)).status_code == 409

    first = client.post(
        f"/api/teams/{team['id']}/users",
        json={"members": [{"userId": alice.id, "role": "lead"}, {"userId": bob.id}]},
        headers=auth_headers(manager),
    ).json()["team"]
    assert first["memberCount"] == 2
    assert first["members"][0]["role"] == "lead"

    second = client.post(
        f"/api/teams/{team['id']}/users",
        json={"members": [{"userId": bob.id}, {"userId": carol.id}]},
        headers=auth_headers(manager),
    ).json()["team"]
    assert sorted(m["email"] for m in second["members"]) == ["bob@example.com", "carol@example.com"]

    missing = client.post(
        f"/api/teams/{team['id']}/users", json={"members": [{"userId": 4242}]}, headers=auth_headers(manager)
    )
    assert missing.status_code == 404

    assert client.delete(f"/api/teams/{team['id']}/users/{bob.id}", headers=auth_headers(manager)).status_code == 200
    assert client.delete(f"/api/teams/{team['id']}/users/{bob.id}", headers=auth_headers(manager)).status_code == 404
    listing = client.get("/api/teams?search=crew", headers=auth_headers(alice)).json()
    assert listing["teams"][0]["memberCount"] == 1


def test_client_email_must_be_unique(client, make_user):
    manager = make_user("manager@example.com", roles=("manager",))
    worker = make_user("worker@example.com")

    assert _client_record(client, worker).status_code == 403
    first = _client_record(client, manager)
    assert first.status_code == 201
    assert _client_record(client, manager, email="BUYER@example.com").status_code == 409

    other = _client_record(client, manager, email="other@example.com", first_name="Omar").json()["client"]
    clash = client.put(f"/api/clients/{other['id']}", json={"email": "buyer@example.com"}, headers=auth_headers(manager))
    assert clash.status_code == 409

    found = client.get("/api/clients?search=omar", headers=auth_headers(worker)).json()
    assert [c["email"] for c in found["clients"]] == ["other@example.com"]
    assert client.delete(f"/api/clients/{other['id']}", headers=auth_headers(manager)).status_code == 200
    assert client.get(f"/api/clients/{other['id']}", headers=auth_headers(manager)).status_code == 404
