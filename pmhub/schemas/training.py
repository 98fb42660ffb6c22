from datetime import date
from typing import List, Literal, Optional

from pydantic import Field

from .common import CamelModel


TrainingStatus = Literal["Scheduled", "In Progress", "Urgent", "Completed", "Cancelled"]


class TrainingCreate(CamelModel):
    course_name: str = Field(min_length=1, max_length=255)
    next_training_date: date
    attendee_ids: List[int] = Field(min_length=1)
    progress: int = 0
    status: TrainingStatus = "Scheduled"


class TrainingUpdate(CamelModel):
    course_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    next_training_date: Optional[date] = None
    # Clamped to 0-100 by the handler
    progress: Optional[int] = None
    attendee_ids: Optional[List[int]] = None


class TrainingStatusUpdate(CamelModel):
    status: TrainingStatus


class AttendanceUpdate(CamelModel):
    attended: bool = True
