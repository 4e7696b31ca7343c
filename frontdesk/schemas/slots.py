from __future__ import annotations

from datetime import date, time
from typing import List, Optional

from pydantic import BaseModel, Field


class TimeSlot(BaseModel):
    index: int = Field(..., ge=0, description="Ordinal position in the daily grid")
    label: str = Field(..., description="Display label, e.g. '9:00 AM'")
    start: time


class SlotRequest(BaseModel):
    date: date
    resource_id: Optional[str] = Field(
        default=None,
        description="Assigned staff member. Omit or use 'unassigned' before assignment.",
    )
    duration_minutes: int = Field(..., description="Total duration of the selected services")


class SlotResponse(BaseModel):
    date: date
    resource_id: Optional[str]
    duration_minutes: int
    slots: List[TimeSlot]
