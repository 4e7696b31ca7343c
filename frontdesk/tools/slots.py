from fastapi import APIRouter, Depends, HTTPException

from frontdesk.dependencies.services import get_dashboard
from frontdesk.schemas.slots import SlotRequest, SlotResponse
from frontdesk.services import ReceptionDashboard
from frontdesk.services.exceptions import ServiceError, http_status_for

router = APIRouter()


@router.post("/available", response_model=SlotResponse)
async def available_slots(
    req: SlotRequest,
    dashboard: ReceptionDashboard = Depends(get_dashboard),
):
    try:
        return await dashboard.available_slots(req.date, req.resource_id, req.duration_minutes)
    except ServiceError as exc:
        raise HTTPException(status_code=http_status_for(exc), detail=str(exc)) from exc
