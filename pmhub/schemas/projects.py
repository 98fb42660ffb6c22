from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import EmailStr, Field, model_validator

from .common import CamelModel


ProjectStatus = Literal["Pending", "In Progress", "Review", "Done"]
TaskStatus = Literal["To Do", "In Progress", "Review", "Done"]


class ProjectCreate(CamelModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    status: ProjectStatus = "Pending"
    team_ids: List[int] = Field(default_factory=list)
    client_ids: List[int] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_dates(self):
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("endDate must not be before startDate")
        return self


class ProjectUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class ProjectStatusUpdate(CamelModel):
    status: ProjectStatus


class TeamLink(CamelModel):
    team_id: int
    note: Optional[str] = None


class ClientLink(CamelModel):
    client_id: int


class TaskCreate(CamelModel):
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    status: TaskStatus = "To Do"
    due_date: Optional[datetime] = None
    project_id: int
    assigned_to: Optional[int] = None


class TaskUpdate(CamelModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    due_date: Optional[datetime] = None
    assigned_to: Optional[int] = None


class TaskStatusUpdate(CamelModel):
    status: TaskStatus


class TeamCreate(CamelModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None


class TeamUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None


class TeamMember(CamelModel):
    user_id: int
    role: Optional[str] = None
    note: Optional[str] = None


class TeamAssign(CamelModel):
    members: List[TeamMember]


class ClientCreate(CamelModel):
    first_name: str = Field(min_length=1, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    email: EmailStr
    phone_number: Optional[str] = None
    image: Optional[str] = None


class ClientUpdate(CamelModel):
    first_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    email: Optional[EmailStr] = None
    phone_number: Optional[str] = None
    image: Optional[str] = None
