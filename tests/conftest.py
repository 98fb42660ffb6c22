import os

# Must be set before pmhub.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["RATE_LIMIT"] = "100000/minute"
os.environ["AUTO_CREATE_DB"] = "false"
os.environ["ENABLE_WEEKLY_SUMMARY"] = "false"
os.environ["PUBLIC_BASE_URL"] = "http://testserver"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from pmhub.auth.security import create_access_token, get_password_hash
from pmhub.db import Base, get_db
from pmhub.main import app
from pmhub.models.models import Project, Role, Team, TeamProject, User, UserTeam
from pmhub.routes.files import get_storage
from pmhub.services import mailer
from pmhub.storage.local_provider import LocalStorageProvider


def _make_session_factory():
    engine = create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


class FlakyDeleteStorage(LocalStorageProvider):
    """Local store whose deletes always fail, to exercise best-effort cleanup."""

    def delete(self, key: str) -> None:
        raise OSError(f"cannot delete {key}")


@pytest.fixture()
def session_factory():
    return _make_session_factory()


@pytest.fixture()
def session(session_factory):
    with session_factory() as s:
        yield s


@pytest.fixture()
def storage(tmp_path):
    return LocalStorageProvider(str(tmp_path / "storage"))


@pytest.fixture()
def sent_mail(monkeypatch):
    outbox = []

    def _fake_send(to, subject, html):
        recipients = [to] if isinstance(to, str) else list(to)
        outbox.append({"to": recipients, "subject": subject, "html": html})
        return True

    monkeypatch.setattr(mailer, "send_mail", _fake_send)
    return outbox


@pytest.fixture()
def client(session_factory, storage, sent_mail):
    def _get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_storage] = lambda: storage
    yield TestClient(app)
    app.dependency_overrides.clear()


def _make_user(session, email, roles=("user",), first_name="Test", last_name="User", permissions=None):
    role_objs = []
    for name in roles:
        role = session.query(Role).filter(Role.name == name).first()
        if role is None:
            role = Role(name=name, permissions=dict(permissions or {}))
            session.add(role)
            session.flush()
        role_objs.append(role)
    user = User(
        first_name=first_name,
        last_name=last_name,
        email=email,
        password_hash=get_password_hash("secret123"),
        is_active=True,
    )
    user.roles.extend(role_objs)
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def _make_project(session, name="Tower block", creator=None, members=()):
    """Project with one team holding `members`."""
    project = Project(name=name, status="Pending", created_by=creator.id if creator else None)
    team = Team(name=f"{name} crew")
    session.add_all([project, team])
    session.flush()
    session.add(TeamProject(team_id=team.id, project_id=project.id))
    for user in members:
        session.add(UserTeam(team_id=team.id, user_id=user.id))
    session.commit()
    session.refresh(project)
    return project


def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token(user.id, sorted(user.role_names))}"}


@pytest.fixture()
def make_user(session):
    def _factory(email, roles=("user",), **kwargs):
        return _make_user(session, email, roles=roles, **kwargs)

    return _factory


@pytest.fixture()
def make_project(session):
    def _factory(name="Tower block", creator=None, members=()):
        return _make_project(session, name=name, creator=creator, members=members)

    return _factory
