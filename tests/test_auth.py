import re
from datetime import datetime, timedelta, timezone

import pytest
from fastapi import HTTPException

from conftest import auth_headers
from pmhub.models.models import User
from pmhub.services.pagination import PageParams, pagination_meta


def _register(client, email, password="longenough1", first_name="Pat"):
    return client.post(
        "/api/auth/register",
        json={"firstName": first_name, "lastName": "Lee", "email": email, "password": password},
    )


def test_first_registered_user_is_admin(client, sent_mail):
    first = _register(client, "Boss@Example.com")
    assert first.status_code == 201
    body = first.json()
    assert body["user"]["email"] == "boss@example.com"
    assert body["user"]["roles"] == ["admin"]
    assert body["tokenType"] == "bearer"
    assert sent_mail[0]["to"] == ["boss@example.com"]

    second = _register(client, "crew@example.com")
    assert second.json()["user"]["roles"] == ["user"]


def test_register_rejects_duplicates_and_bad_input(client):
    _register(client, "pat@example.com")

    dup = _register(client, "PAT@example.com")
    assert dup.status_code == 409
    assert dup.json()["message"] == "Email already registered"

    short = _register(client, "short@example.com", password="abc")
    assert short.status_code == 400
    assert short.json()["message"] == "Validation error"
    assert any(d["field"] == "password" for d in short.json()["details"])


def test_login_and_me(client):
    _register(client, "pat@example.com")

    bad = client.post("/api/auth/login", json={"email": "pat@example.com", "password": "wrong-password"})
    assert bad.status_code == 401
    unknown = client.post("/api/auth/login", json={"email": "nobody@example.com", "password": "longenough1"})
    assert unknown.status_code == 401

    ok = client.post("/api/auth/login", json={"email": "PAT@example.com", "password": "longenough1"})
    assert ok.status_code == 200
    token = ok.json()["accessToken"]

    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["email"] == "pat@example.com"
    assert me.json()["lastLoginAt"] is not None


def test_protected_routes_need_a_valid_token(client):
    assert client.get("/api/auth/me").status_code == 401
    assert client.get("/api/auth/me", headers={"Authorization": "Bearer nope"}).status_code == 401


def test_users_list_is_admin_only(client, make_user):
    admin = make_user("admin@example.com", roles=("admin",), first_name="Ada")
    worker = make_user("worker@example.com", first_name="Wes")

    assert client.get("/api/users", headers=auth_headers(worker)).status_code == 403

    listing = client.get("/api/users?search=wes", headers=auth_headers(admin)).json()
    assert [u["email"] for u in listing["users"]] == ["worker@example.com"]
    assert listing["pagination"]["totalItems"] == 1


def test_users_can_only_touch_themselves(client, make_user):
    admin = make_user("admin@example.com", roles=("admin",))
    alice = make_user("alice@example.com")
    bob = make_user("bob@example.com")

    assert client.get(f"/api/users/{bob.id}", headers=auth_headers(alice)).status_code == 403
    assert client.put(f"/api/users/{bob.id}", json={"firstName": "B"}, headers=auth_headers(alice)).status_code == 403

    clash = client.put("/api/users/me", json={"email": "bob@example.com"}, headers=auth_headers(alice))
    assert clash.status_code == 409

    renamed = client.put(f"/api/users/{bob.id}", json={"firstName": "Robert"}, headers=auth_headers(admin))
    assert renamed.json()["user"]["firstName"] == "Robert"

    assert client.delete(f"/api/users/{bob.id}", headers=auth_headers(admin)).status_code == 200
    assert client.get(f"/api/users/{bob.id}", headers=auth_headers(admin)).status_code == 404


def test_roles_and_permissions(client, make_user):
    admin = make_user("admin@example.com", roles=("admin",))
    worker = make_user("worker@example.com")

    created = client.post(
        "/api/roles",
        json={"name": " Safety ", "permissions": {"training:view": True}},
        headers=auth_headers(admin),
    )
    assert created.status_code == 201
    role = created.json()["role"]
    assert role["name"] == "safety"
    assert client.post("/api/roles", json={"name": "safety"}, headers=auth_headers(admin)).status_code == 409

    merged = client.put(
        f"/api/roles/{role['id']}/permissions",
        json={"permissions": {"training:remind": True}},
        headers=auth_headers(admin),
    ).json()["role"]
    assert merged["permissions"] == {"training:view": True, "training:remind": True}

    assigned = client.post(
        "/api/roles/assign", json={"userId": worker.id, "roleName": "safety"}, headers=auth_headers(admin)
    )
    assert assigned.json()["user"]["roles"] == ["safety", "user"]
    assert client.post(
        "/api/roles/assign", json={"userId": worker.id, "roleName": "safety"}, headers=auth_headers(admin)
    ).status_code == 409

    perms = client.get("/api/auth/me", headers=auth_headers(worker)).json()["permissions"]
    assert perms == ["training:remind", "training:view"]

    removed = client.delete(f"/api/roles/{role['id']}/users/{worker.id}", headers=auth_headers(admin))
    assert removed.json()["user"]["roles"] == ["user"]
    assert client.get("/api/roles", headers=auth_headers(worker)).status_code == 403


def test_pagination_meta_rounds_pages_up():
    assert pagination_meta(0, 1, 20) == {"currentPage": 1, "totalPages": 0, "totalItems": 0, "itemsPerPage": 20}
    assert pagination_meta(41, 3, 20)["totalPages"] == 3
    assert pagination_meta(40, 2, 20)["totalPages"] == 2


@pytest.mark.parametrize("page,limit", [(0, 10), (1, 0), (-2, 5)])
def test_page_params_reject_non_positive_values(page, limit):
    with pytest.raises(HTTPException) as exc:
        PageParams(page=page, limit=limit)
    assert exc.value.status_code == 400


def test_list_endpoint_rejects_bad_paging(client, make_user):
    admin = make_user("admin@example.com", roles=("admin",))

    resp = client.get("/api/users?page=0", headers=auth_headers(admin))
    assert resp.status_code == 400
    assert resp.json()["message"] == "page and limit must be positive integers"
    assert client.get("/api/users?limit=abc", headers=auth_headers(admin)).status_code == 400


def test_request_id_is_echoed(client):
    resp = client.get("/health", headers={"X-Request-ID": "abc-123"})
    assert resp.json() == {"status": "ok"}
    assert resp.headers["X-Request-ID"] == "abc-123"
    assert client.get("/health").headers["X-Request-ID"]


def _mailed_code(mail):
    return re.search(r"code is (\d{6})", mail["html"]).group(1)


def test_email_verification(client, sent_mail):
    token = _register(client, "pat@example.com").json()["accessToken"]
    code = _mailed_code(sent_mail[-1])

    wrong = client.post("/api/auth/verify-email", json={"email": "pat@example.com", "otp": "000000"})
    assert wrong.status_code == 400
    assert wrong.json()["message"] == "Invalid OTP"
    assert client.post("/api/auth/verify-email", json={"email": "nobody@example.com", "otp": code}).status_code == 404

    ok = client.post("/api/auth/verify-email", json={"email": "PAT@example.com", "otp": code})
    assert ok.status_code == 200
    assert ok.json()["user"]["emailVerified"] is True

    again = client.post("/api/auth/verify-email", json={"email": "pat@example.com", "otp": code})
    assert again.json()["message"] == "Email already verified"
    resend = client.post("/api/auth/resend-verification", headers={"Authorization": f"Bearer {token}"})
    assert resend.status_code == 400


def test_resend_verification_mails_a_new_code(client, sent_mail):
    token = _register(client, "pat@example.com").json()["accessToken"]
    assert client.post("/api/auth/resend-verification").status_code == 401

    resp = client.post("/api/auth/resend-verification", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 200
    assert sent_mail[-1]["subject"] == "Verify your email"
    assert sent_mail[-1]["to"] == ["pat@example.com"]

    code = _mailed_code(sent_mail[-1])
    assert client.post("/api/auth/verify-email", json={"email": "pat@example.com", "otp": code}).status_code == 200


def test_password_reset(client, sent_mail):
    _register(client, "pat@example.com")
    assert client.post("/api/auth/forgot-password", json={"email": "nobody@example.com"}).status_code == 404

    assert client.post("/api/auth/forgot-password", json={"email": "pat@example.com"}).status_code == 200
    assert sent_mail[-1]["subject"] == "Reset your password"
    code = _mailed_code(sent_mail[-1])

    def reset(otp, password="brand-new-pass"):
        return client.post("/api/auth/reset-password", json={"email": "pat@example.com", "otp": otp, "password": password})

    assert reset("000000").json()["message"] == "Invalid OTP"
    assert reset(code, password="short").status_code == 400
    assert reset(code).status_code == 200

    assert client.post("/api/auth/login", json={"email": "pat@example.com", "password": "longenough1"}).status_code == 401
    assert client.post("/api/auth/login", json={"email": "pat@example.com", "password": "brand-new-pass"}).status_code == 200

    reused = reset(code)
    assert reused.status_code == 400
    assert reused.json()["message"] == "No valid OTP found for this user"


def test_expired_code_is_rejected(client, session, sent_mail):
    _register(client, "pat@example.com")
    client.post("/api/auth/forgot-password", json={"email": "pat@example.com"})
    code = _mailed_code(sent_mail[-1])

    user = session.query(User).filter(User.email == "pat@example.com").one()
    user.otp_expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)
    session.commit()

    resp = client.post(
        "/api/auth/reset-password", json={"email": "pat@example.com", "otp": code, "password": "brand-new-pass"}
    )
    assert resp.status_code == 400
    assert resp.json()["message"] == "OTP has expired"


def test_role_lookup_delete_and_permission_catalog(client, make_user):
    admin = make_user("admin@example.com", roles=("admin",))
    worker = make_user("worker@example.com")

    catalog = client.get("/api/roles/permissions", headers=auth_headers(worker)).json()["permissions"]
    assert {"name": "document:create", "description": "Upload project documents"} in catalog

    bogus = client.post(
        "/api/roles", json={"name": "auditor", "permissions": {"bogus:thing": True}}, headers=auth_headers(admin)
    )
    assert bogus.status_code == 400
    assert bogus.json()["message"] == "Unknown permissions: bogus:thing"

    role = client.post(
        "/api/roles",
        json={"name": "auditor", "permissions": {"document:update": True, "document:create": False, "training:*": True}},
        headers=auth_headers(admin),
    ).json()["role"]
    detail = client.get(f"/api/roles/{role['id']}", headers=auth_headers(admin)).json()["role"]
    assert detail["permissionsDetail"] == [
        {"name": "document:update", "description": "Edit project documents"},
        {"name": "training:*", "description": None},
    ]
    assert client.get("/api/roles/999", headers=auth_headers(admin)).status_code == 404

    client.post("/api/roles/assign", json={"userId": worker.id, "roleName": "auditor"}, headers=auth_headers(admin))
    in_use = client.delete(f"/api/roles/{role['id']}", headers=auth_headers(admin))
    assert in_use.status_code == 400

    client.delete(f"/api/roles/{role['id']}/users/{worker.id}", headers=auth_headers(admin))
    assert client.delete(f"/api/roles/{role['id']}", headers=auth_headers(worker)).status_code == 403
    assert client.delete(f"/api/roles/{role['id']}", headers=auth_headers(admin)).status_code == 200
    assert client.get(f"/api/roles/{role['id']}", headers=auth_headers(admin)).status_code == 404
