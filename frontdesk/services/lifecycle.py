"""Appointment state machine shared by the commands and the in-memory backend."""

from __future__ import annotations

from datetime import date, tzinfo
from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple

from frontdesk.schemas.appointment import Appointment, AppointmentStatus, PaymentStatus
from frontdesk.services.exceptions import ErrorCode

S = AppointmentStatus

TRANSITIONS: Dict[AppointmentStatus, FrozenSet[AppointmentStatus]] = {
    # complete_session may close a booked appointment without an in-progress step.
    S.BOOKED: frozenset({S.IN_PROGRESS, S.CANCELLED, S.NO_SHOW, S.COMPLETED, S.PAYMENT_PENDING}),
    S.IN_PROGRESS: frozenset({S.COMPLETED, S.PAYMENT_PENDING, S.PAID}),
    S.COMPLETED: frozenset({S.PAYMENT_PENDING, S.PAID}),
    S.PAYMENT_PENDING: frozenset({S.PAID}),
    S.PAID: frozenset(),
    S.CANCELLED: frozenset(),
    S.NO_SHOW: frozenset(),
}


class Action(str, Enum):
    CANCEL = "cancel"
    CONFIRM_PAYMENT = "confirm-payment"
    COMPLETE_SESSION = "complete-session"


def can_transition(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    return target in TRANSITIONS[current]


def check(
    appointment: Appointment,
    action: Action,
    today: date,
    tz: Optional[tzinfo] = None,
) -> Optional[Tuple[ErrorCode, str]]:
    """Return ``(code, reason)`` when ``action`` is not allowed, else ``None``."""

    status = appointment.status
    if action is Action.CANCEL:
        if status is not S.BOOKED:
            return ErrorCode.INVALID_STATUS, f"Cannot cancel an appointment that is {status.value}"
        return None

    if action is Action.CONFIRM_PAYMENT:
        if status is not S.PAYMENT_PENDING or appointment.payment_status is not PaymentStatus.PENDING:
            return (
                ErrorCode.INVALID_STATUS,
                f"Payment can only be confirmed while pending (status {status.value}, "
                f"payment {appointment.payment_status.value})",
            )
        return None

    if action is Action.COMPLETE_SESSION:
        if status not in (S.BOOKED, S.IN_PROGRESS):
            return ErrorCode.INVALID_STATUS, f"Cannot complete a session that is {status.value}"
        start = appointment.start
        if tz is not None and start.tzinfo is not None:
            start = start.astimezone(tz)
        if start.date() != today:
            return (
                ErrorCode.BUSINESS_RULE_VIOLATION,
                "Only appointments scheduled for today can be completed",
            )
        return None

    raise ValueError(f"Unknown action {action!r}")


def resulting_status(action: Action) -> Tuple[AppointmentStatus, Optional[PaymentStatus]]:
    """Status an appointment ends in after ``action``; ``None`` keeps the payment status."""

    if action is Action.CANCEL:
        return S.CANCELLED, None
    if action is Action.CONFIRM_PAYMENT:
        return S.PAID, PaymentStatus.COMPLETED
    return S.PAYMENT_PENDING, PaymentStatus.PENDING
