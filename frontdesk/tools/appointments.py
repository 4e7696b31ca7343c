from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from frontdesk.dependencies.services import get_commands, get_dashboard
from frontdesk.schemas.appointment import Appointment, BookingRequest, CancelRequest, CommandResult
from frontdesk.services import AppointmentCommands, ReceptionDashboard
from frontdesk.services.exceptions import ServiceError, http_status_for
from frontdesk.services.lifecycle import Action

router = APIRouter()


@router.post("/book", response_model=CommandResult)
async def book_appointment(
    req: BookingRequest,
    commands: AppointmentCommands = Depends(get_commands),
):
    try:
        return await commands.book(req)
    except ServiceError as exc:
        raise HTTPException(status_code=http_status_for(exc), detail=str(exc)) from exc


@router.post("/book/precheck")
async def book_precheck(
    req: BookingRequest,
    commands: AppointmentCommands = Depends(get_commands),
):
    return _hint(commands.slot_hint(req))


@router.get("/{appointment_id}", response_model=Appointment)
async def get_appointment(
    appointment_id: str,
    dashboard: ReceptionDashboard = Depends(get_dashboard),
):
    appointment = dashboard.ledger.get(appointment_id)
    if appointment is not None:
        return appointment
    try:
        appointment = await dashboard.service.get(appointment_id)
    except ServiceError as exc:
        raise HTTPException(status_code=http_status_for(exc), detail=str(exc)) from exc
    dashboard.ledger.upsert(appointment)
    return appointment


@router.get("/{appointment_id}/precheck/{action}")
async def precheck(
    appointment_id: str,
    action: Action,
    commands: AppointmentCommands = Depends(get_commands),
):
    return _hint(commands.precheck(appointment_id, action))


@router.post("/{appointment_id}/cancel", response_model=CommandResult)
async def cancel_appointment(
    appointment_id: str,
    req: CancelRequest,
    commands: AppointmentCommands = Depends(get_commands),
):
    try:
        return await commands.cancel(appointment_id, req.reason)
    except ServiceError as exc:
        raise HTTPException(status_code=http_status_for(exc), detail=str(exc)) from exc


@router.post("/{appointment_id}/confirm-payment", response_model=CommandResult)
async def confirm_payment(
    appointment_id: str,
    commands: AppointmentCommands = Depends(get_commands),
):
    try:
        return await commands.confirm_payment(appointment_id)
    except ServiceError as exc:
        raise HTTPException(status_code=http_status_for(exc), detail=str(exc)) from exc


@router.post("/{appointment_id}/complete-session", response_model=CommandResult)
async def complete_session(
    appointment_id: str,
    commands: AppointmentCommands = Depends(get_commands),
):
    try:
        return await commands.complete_session(appointment_id)
    except ServiceError as exc:
        raise HTTPException(status_code=http_status_for(exc), detail=str(exc)) from exc


def _hint(result: Optional[tuple]) -> dict:
    if result is None:
        return {"allowed": True, "code": None, "reason": None}
    code, reason = result
    return {"allowed": False, "code": code.value, "reason": reason}
