from datetime import date
from typing import Optional

from pydantic import Field

from .common import CamelModel


class WorkLogCreate(CamelModel):
    project_id: int
    task_id: Optional[int] = None
    hours_worked: float = Field(gt=0, le=24)
    description: Optional[str] = None
    log_date: date = Field(alias="date")


class WorkLogUpdate(CamelModel):
    hours_worked: Optional[float] = Field(default=None, gt=0, le=24)
    description: Optional[str] = None
    log_date: Optional[date] = Field(default=None, alias="date")
