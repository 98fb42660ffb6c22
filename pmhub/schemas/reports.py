from typing import Literal, Optional

from pydantic import Field

from .common import CamelModel


ReportStatus = Literal["open", "pending", "closed"]


class ReportCreate(CamelModel):
    title: str = Field(min_length=1, max_length=255)
    content: Optional[str] = None
    project_id: int
    team_id: Optional[int] = None


class ReportUpdate(CamelModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    content: Optional[str] = None
    team_id: Optional[int] = None


class ReportStatusUpdate(CamelModel):
    status: ReportStatus


class ReportAssign(CamelModel):
    user_id: int
