"""Booking-grid availability.

The salon day is a fixed grid of equal cells (09:00-18:00 in 30 minute steps
unless configured otherwise). A booking occupies every cell it overlaps; a
start cell is offered for a requested duration only when the whole run of
cells it needs fits inside the grid and none of them is occupied.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime, time, tzinfo
from typing import Iterable, List, Optional, Set
from zoneinfo import ZoneInfo

from frontdesk.config import Settings
from frontdesk.schemas.appointment import Appointment, AppointmentStatus
from frontdesk.schemas.slots import TimeSlot
from frontdesk.services.exceptions import SlotCalculationError

UNASSIGNED = "unassigned"


def _parse_clock(value: str) -> time:
    hours, _, minutes = value.partition(":")
    return time(int(hours), int(minutes))


def format_slot_label(value: time) -> str:
    hour = value.hour % 12 or 12
    suffix = "AM" if value.hour < 12 else "PM"
    return f"{hour}:{value.minute:02d} {suffix}"


@dataclass(frozen=True)
class DailyGrid:
    open_time: time = time(9, 0)
    close_time: time = time(18, 0)
    granularity_minutes: int = 30
    tz: Optional[tzinfo] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "DailyGrid":
        return cls(
            open_time=_parse_clock(settings.grid_open),
            close_time=_parse_clock(settings.grid_close),
            granularity_minutes=settings.slot_granularity_minutes,
            tz=ZoneInfo(settings.timezone),
        )

    @property
    def cell_count(self) -> int:
        span = _minutes_of_day(self.close_time) - _minutes_of_day(self.open_time)
        return max(span // self.granularity_minutes, 0)

    def cells_needed(self, duration_minutes: int) -> int:
        return math.ceil(duration_minutes / self.granularity_minutes)

    def slot(self, index: int) -> TimeSlot:
        minutes = _minutes_of_day(self.open_time) + index * self.granularity_minutes
        start = time(minutes // 60, minutes % 60)
        return TimeSlot(index=index, label=format_slot_label(start), start=start)

    def slots(self) -> List[TimeSlot]:
        return [self.slot(index) for index in range(self.cell_count)]

    def occupied_cells(self, start: datetime, duration_minutes: int) -> range:
        """Cells of the grid a booking covers on its own day."""

        if self.tz is not None and start.tzinfo is not None:
            start = start.astimezone(self.tz)
        offset = (
            start.hour * 60
            + start.minute
            + start.second / 60
            - _minutes_of_day(self.open_time)
        )
        first = math.floor(offset / self.granularity_minutes)
        last = math.ceil((offset + duration_minutes) / self.granularity_minutes)
        return range(max(first, 0), min(last, self.cell_count))

    def local_date(self, start: datetime) -> date:
        if self.tz is not None and start.tzinfo is not None:
            return start.astimezone(self.tz).date()
        return start.date()


def _minutes_of_day(value: time) -> int:
    return value.hour * 60 + value.minute


DEFAULT_GRID = DailyGrid()


def available_slots(
    day: date,
    resource_id: Optional[str],
    requested_duration_minutes: int,
    existing_bookings: Iterable[Appointment],
    *,
    grid: DailyGrid = DEFAULT_GRID,
) -> List[TimeSlot]:
    """Return the start slots that can hold ``requested_duration_minutes``.

    ``resource_id`` of ``None`` or ``"unassigned"`` skips conflict checks: no
    staff member is held until the appointment is assigned, so only the end
    of day bounds the result.
    """

    if requested_duration_minutes is None or requested_duration_minutes <= 0:
        raise SlotCalculationError(
            f"Requested duration must be positive, got {requested_duration_minutes!r}"
        )

    needed = grid.cells_needed(requested_duration_minutes)
    occupied: Set[int] = set()
    if resource_id is not None and str(resource_id) != UNASSIGNED:
        for booking in existing_bookings:
            if booking.status is AppointmentStatus.CANCELLED:
                continue
            if booking.resource_id is None or str(booking.resource_id) != str(resource_id):
                continue
            if grid.local_date(booking.start) != day:
                continue
            occupied.update(grid.occupied_cells(booking.start, booking.duration_minutes))

    return [
        grid.slot(index)
        for index in range(grid.cell_count - needed + 1)
        if not any(cell in occupied for cell in range(index, index + needed))
    ]
