from datetime import date
from typing import Literal, Optional

from pydantic import Field, model_validator

from .common import CamelModel


class LeaveCreate(CamelModel):
    start_date: date
    end_date: date
    reason: str = Field(min_length=1)

    @model_validator(mode="after")
    def check_range(self):
        if self.end_date < self.start_date:
            raise ValueError("endDate must not be before startDate")
        return self


class LeaveUpdate(CamelModel):
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    reason: Optional[str] = Field(default=None, min_length=1)


class LeaveStatusUpdate(CamelModel):
    status: Literal["approved", "rejected"]
