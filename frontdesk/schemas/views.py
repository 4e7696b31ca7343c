from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from frontdesk.schemas.appointment import Appointment


class ViewId(str, Enum):
    ALL_APPOINTMENTS = "all-appointments"
    TODAY = "today"
    PENDING_PAYMENTS = "pending-payments"
    STATISTICS = "aggregate-statistics"


PAGED_VIEWS = (ViewId.ALL_APPOINTMENTS, ViewId.TODAY, ViewId.PENDING_PAYMENTS)


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


class PageChangeRequest(BaseModel):
    page: int = Field(..., ge=0)
    size: Optional[int] = Field(default=None, ge=1)


class ViewSnapshot(BaseModel):
    view_id: ViewId
    page: int
    size: int
    sort_field: str
    sort_direction: SortDirection
    total_elements: int
    total_pages: int
    last_refreshed_at: Optional[datetime] = None
    last_error: Optional[str] = None
    items: List[Appointment] = Field(default_factory=list)


class AggregateStatistics(BaseModel):
    """Dashboard counters computed from a full sweep of the ledger."""

    total_customers: int = 0
    total_today_appointments: int = 0
    total_pending_payments: int = Field(
        default=0,
        description="Completed sessions whose payment is still pending",
    )
    total_daily_income: float = 0.0
    computed_at: Optional[datetime] = None
