from datetime import datetime, date, time
from typing import Optional

from sqlalchemy import (
    Column,
    String,
    DateTime,
    Date,
    Time,
    Boolean,
    ForeignKey,
    Table,
    Integer,
    Float,
    JSON,
    UniqueConstraint,
    BigInteger,
    Text,
    Index,
)
from sqlalchemy.orm import relationship, Mapped, mapped_column

from ..db import Base


def int_pk() -> Mapped[int]:
    return mapped_column(Integer, primary_key=True, autoincrement=True)


def created_col() -> Mapped[datetime]:
    return mapped_column(DateTime(timezone=True), default=datetime.utcnow)


def updated_col() -> Mapped[datetime]:
    return mapped_column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)


# Association table for many-to-many User<->Role
user_roles = Table(
    "user_roles",
    Base.metadata,
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", Integer, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    UniqueConstraint("user_id", "role_id", name="uq_user_role"),
)


class Role(Base):
    __tablename__ = "roles"

    id: Mapped[int] = int_pk()
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(255))
    permissions: Mapped[Optional[dict]] = mapped_column(JSON, default=dict)  # {"document:create": true, ...}

    users = relationship("User", secondary=user_roles, back_populates="roles")


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = int_pk()
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[Optional[str]] = mapped_column(String(100))
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    phone_number: Mapped[Optional[str]] = mapped_column(String(50))
    image: Mapped[Optional[str]] = mapped_column(String(1024))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = created_col()
    updated_at: Mapped[datetime] = updated_col()
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    email_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    # One pending code at a time, for email verification or password reset
    otp_hash: Mapped[Optional[str]] = mapped_column(String(255))
    otp_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    roles = relationship("Role", secondary=user_roles, back_populates="users")
    teams = relationship("UserTeam", back_populates="user", cascade="all, delete-orphan")

    @property
    def full_name(self) -> str:
        name = " ".join([x for x in [self.first_name, self.last_name] if x]).strip()
        return name or self.email

    @property
    def role_names(self) -> set:
        return {(r.name or "").lower() for r in self.roles}


# =====================
# Projects, teams, clients
# =====================


class Team(Base):
    __tablename__ = "teams"

    id: Mapped[int] = int_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    description: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = created_col()
    updated_at: Mapped[datetime] = updated_col()

    members = relationship("UserTeam", back_populates="team", cascade="all, delete-orphan")
    projects = relationship("TeamProject", back_populates="team", cascade="all, delete-orphan")


class UserTeam(Base):
    __tablename__ = "user_teams"

    id: Mapped[int] = int_pk()
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    team_id: Mapped[int] = mapped_column(ForeignKey("teams.id", ondelete="CASCADE"), index=True)
    role: Mapped[Optional[str]] = mapped_column(String(100))
    note: Mapped[Optional[str]] = mapped_column(String(500))
    created_at: Mapped[datetime] = created_col()

    user = relationship("User", back_populates="teams")
    team = relationship("Team", back_populates="members")

    __table_args__ = (UniqueConstraint("user_id", "team_id", name="uq_user_team"),)


class Project(Base):
    __tablename__ = "projects"

    id: Mapped[int] = int_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    start_date: Mapped[Optional[date]] = mapped_column(Date)
    end_date: Mapped[Optional[date]] = mapped_column(Date)
    status: Mapped[str] = mapped_column(String(50), default="Pending", index=True)  # Pending|In Progress|Review|Done
    created_by: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = created_col()
    updated_at: Mapped[datetime] = updated_col()

    teams = relationship("TeamProject", back_populates="project", cascade="all, delete-orphan")
    clients = relationship("ClientProject", back_populates="project", cascade="all, delete-orphan")
    tasks = relationship("Task", back_populates="project", cascade="all, delete-orphan")
    documents = relationship("Document", back_populates="project", cascade="all, delete-orphan")
    reports = relationship("Report", back_populates="project", cascade="all, delete-orphan")
    work_logs = relationship("WorkLog", cascade="all, delete-orphan")


class TeamProject(Base):
    __tablename__ = "team_projects"

    id: Mapped[int] = int_pk()
    team_id: Mapped[int] = mapped_column(ForeignKey("teams.id", ondelete="CASCADE"), index=True)
    project_id: Mapped[int] = mapped_column(ForeignKey("projects.id", ondelete="CASCADE"), index=True)
    note: Mapped[Optional[str]] = mapped_column(String(500))
    created_at: Mapped[datetime] = created_col()

    team = relationship("Team", back_populates="projects")
    project = relationship("Project", back_populates="teams")

    __table_args__ = (UniqueConstraint("team_id", "project_id", name="uq_team_project"),)


class Client(Base):
    __tablename__ = "clients"

    id: Mapped[int] = int_pk()
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[Optional[str]] = mapped_column(String(100))
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    phone_number: Mapped[Optional[str]] = mapped_column(String(50))
    image: Mapped[Optional[str]] = mapped_column(String(1024))
    created_at: Mapped[datetime] = created_col()
    updated_at: Mapped[datetime] = updated_col()

    projects = relationship("ClientProject", back_populates="client", cascade="all, delete-orphan")


class ClientProject(Base):
    __tablename__ = "client_projects"

    id: Mapped[int] = int_pk()
    client_id: Mapped[int] = mapped_column(ForeignKey("clients.id", ondelete="CASCADE"), index=True)
    project_id: Mapped[int] = mapped_column(ForeignKey("projects.id", ondelete="CASCADE"), index=True)
    created_at: Mapped[datetime] = created_col()

    client = relationship("Client", back_populates="projects")
    project = relationship("Project", back_populates="clients")

    __table_args__ = (UniqueConstraint("client_id", "project_id", name="uq_client_project"),)


class Task(Base):
    __tablename__ = "tasks"

    id: Mapped[int] = int_pk()
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(50), default="To Do", index=True)  # To Do|In Progress|Review|Done
    due_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), index=True)
    project_id: Mapped[int] = mapped_column(ForeignKey("projects.id", ondelete="CASCADE"), index=True)
    assigned_to: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), index=True)
    created_by: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = created_col()
    updated_at: Mapped[datetime] = updated_col()

    project = relationship("Project", back_populates="tasks")
    assignee = relationship("User", foreign_keys=[assigned_to])


# =====================
# People: leave, work logs, training
# =====================


class Leave(Base):
    __tablename__ = "leaves"

    id: Mapped[int] = int_pk()
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)  # pending|approved|rejected
    created_at: Mapped[datetime] = created_col()
    updated_at: Mapped[datetime] = updated_col()

    user = relationship("User")


class WorkLog(Base):
    __tablename__ = "work_logs"

    id: Mapped[int] = int_pk()
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    project_id: Mapped[int] = mapped_column(ForeignKey("projects.id", ondelete="CASCADE"), index=True)
    task_id: Mapped[Optional[int]] = mapped_column(ForeignKey("tasks.id", ondelete="SET NULL"), index=True)
    hours_worked: Mapped[float] = mapped_column(Float, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    log_date: Mapped[date] = mapped_column("date", Date, nullable=False, index=True)
    created_at: Mapped[datetime] = created_col()

    user = relationship("User")
    task = relationship("Task")


class Training(Base):
    __tablename__ = "trainings"

    id: Mapped[int] = int_pk()
    course_name: Mapped[str] = mapped_column(String(255), nullable=False)
    next_training_date: Mapped[date] = mapped_column(Date, nullable=False)
    progress: Mapped[int] = mapped_column(Integer, default=0)
    status: Mapped[str] = mapped_column(String(20), default="Scheduled")  # Scheduled|In Progress|Urgent|Completed|Cancelled
    created_by: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = created_col()
    updated_at: Mapped[datetime] = updated_col()

    attendees = relationship("TrainingAttendee", back_populates="training", cascade="all, delete-orphan")


class TrainingAttendee(Base):
    __tablename__ = "training_attendees"

    id: Mapped[int] = int_pk()
    training_id: Mapped[int] = mapped_column(ForeignKey("trainings.id", ondelete="CASCADE"), index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    attended: Mapped[bool] = mapped_column(Boolean, default=False)

    training = relationship("Training", back_populates="attendees")
    user = relationship("User")

    __table_args__ = (UniqueConstraint("training_id", "user_id", name="uq_training_attendee"),)


# =====================
# Reports & documents
# =====================


class Report(Base):
    __tablename__ = "reports"

    id: Mapped[int] = int_pk()
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    content: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(20), default="open", index=True)  # open|pending|closed
    reporter_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), index=True)
    assigned_to: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    closed_by: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    project_id: Mapped[int] = mapped_column(ForeignKey("projects.id", ondelete="CASCADE"), index=True)
    team_id: Mapped[Optional[int]] = mapped_column(ForeignKey("teams.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = created_col()
    updated_at: Mapped[datetime] = updated_col()

    project = relationship("Project", back_populates="reports")
    reporter = relationship("User", foreign_keys=[reporter_id])
    closer = relationship("User", foreign_keys=[closed_by])
    assignee = relationship("User", foreign_keys=[assigned_to])
    documents = relationship("Document", back_populates="report")


class Document(Base):
    __tablename__ = "documents"

    id: Mapped[int] = int_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    urls: Mapped[list] = mapped_column(JSON, default=list)
    project_id: Mapped[int] = mapped_column(ForeignKey("projects.id", ondelete="CASCADE"), index=True)
    report_id: Mapped[Optional[int]] = mapped_column(ForeignKey("reports.id", ondelete="SET NULL"), index=True)
    uploaded_by: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    mime_type: Mapped[Optional[str]] = mapped_column(String(255))
    size: Mapped[Optional[int]] = mapped_column(BigInteger)
    status: Mapped[str] = mapped_column(String(20), default="pending")  # pending|approved|rejected|completed|not complete
    created_at: Mapped[datetime] = created_col()
    updated_at: Mapped[datetime] = updated_col()

    project = relationship("Project", back_populates="documents")
    report = relationship("Report", back_populates="documents")
    uploader = relationship("User")


class HseReport(Base):
    __tablename__ = "hse_reports"

    id: Mapped[int] = int_pk()
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    date_of_report: Mapped[date] = mapped_column(Date, nullable=False)
    time_of_report: Mapped[time] = mapped_column(Time, nullable=False)
    report: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="open", index=True)  # open|pending|closed
    reporter_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), index=True)
    closed_by: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = created_col()
    updated_at: Mapped[datetime] = updated_col()

    reporter = relationship("User", foreign_keys=[reporter_id])
    closer = relationship("User", foreign_keys=[closed_by])
    documents = relationship("HseDocument", back_populates="report")


class HseDocument(Base):
    __tablename__ = "hse_documents"

    id: Mapped[int] = int_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    urls: Mapped[list] = mapped_column(JSON, default=list)
    uploaded_by: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    report_id: Mapped[Optional[int]] = mapped_column(ForeignKey("hse_reports.id", ondelete="SET NULL"), index=True)
    mime_type: Mapped[Optional[str]] = mapped_column(String(255))
    size: Mapped[Optional[int]] = mapped_column(BigInteger)
    created_at: Mapped[datetime] = created_col()
    updated_at: Mapped[datetime] = updated_col()

    report = relationship("HseReport", back_populates="documents")
    uploader = relationship("User")


# =====================
# Messaging
# =====================


class Conversation(Base):
    __tablename__ = "conversations"

    id: Mapped[int] = int_pk()
    type: Mapped[str] = mapped_column(String(20), default="direct", index=True)  # direct|group
    name: Mapped[Optional[str]] = mapped_column(String(255))
    created_by: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    # "<low>:<high>" user pair for direct conversations; NULL for groups
    direct_key: Mapped[Optional[str]] = mapped_column(String(64), unique=True)
    created_at: Mapped[datetime] = created_col()
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    participants = relationship("Participant", back_populates="conversation", cascade="all, delete-orphan")
    messages = relationship(
        "Message", back_populates="conversation", cascade="all, delete-orphan", order_by="Message.created_at"
    )


class Participant(Base):
    __tablename__ = "participants"

    id: Mapped[int] = int_pk()
    conversation_id: Mapped[int] = mapped_column(ForeignKey("conversations.id", ondelete="CASCADE"), index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    joined_at: Mapped[datetime] = created_col()

    conversation = relationship("Conversation", back_populates="participants")
    user = relationship("User")

    __table_args__ = (UniqueConstraint("conversation_id", "user_id", name="uq_participant"),)


class Message(Base):
    __tablename__ = "messages"

    id: Mapped[int] = int_pk()
    conversation_id: Mapped[int] = mapped_column(ForeignKey("conversations.id", ondelete="CASCADE"), index=True)
    sender_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    receiver_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), index=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(String(20), default="text")  # text|image|file
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    is_edited: Mapped[bool] = mapped_column(Boolean, default=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, index=True)
    updated_at: Mapped[datetime] = updated_col()

    conversation = relationship("Conversation", back_populates="messages")
    sender = relationship("User", foreign_keys=[sender_id])
    receiver = relationship("User", foreign_keys=[receiver_id])

    __table_args__ = (Index("ix_messages_receiver_unread", "receiver_id", "is_read"),)
