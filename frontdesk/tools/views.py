from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query

from frontdesk.dependencies.services import get_dashboard, get_view_registry
from frontdesk.schemas.appointment import Appointment
from frontdesk.schemas.views import AggregateStatistics, PageChangeRequest, ViewId, ViewSnapshot
from frontdesk.services import DerivedViewRegistry, ReceptionDashboard
from frontdesk.services.exceptions import ServiceError, http_status_for

router = APIRouter()


def _paged(view_id: ViewId) -> ViewId:
    if view_id is ViewId.STATISTICS:
        raise HTTPException(status_code=404, detail="Use /statistics for aggregate counters")
    return view_id


@router.get("/statistics", response_model=AggregateStatistics)
async def statistics(
    refresh: bool = False,
    dashboard: ReceptionDashboard = Depends(get_dashboard),
):
    try:
        return await dashboard.get_statistics(refresh=refresh)
    except ServiceError as exc:
        raise HTTPException(status_code=http_status_for(exc), detail=str(exc)) from exc


@router.get("/search", response_model=List[Appointment])
async def search(
    q: str = Query("", description="Customer name or phone fragment"),
    dashboard: ReceptionDashboard = Depends(get_dashboard),
):
    return dashboard.search(q)


@router.get("/{view_id}", response_model=ViewSnapshot)
async def get_view(
    view_id: ViewId,
    registry: DerivedViewRegistry = Depends(get_view_registry),
):
    try:
        return await registry.snapshot(_paged(view_id))
    except ServiceError as exc:
        raise HTTPException(status_code=http_status_for(exc), detail=str(exc)) from exc


@router.post("/{view_id}/page", response_model=ViewSnapshot)
async def change_page(
    view_id: ViewId,
    req: PageChangeRequest,
    registry: DerivedViewRegistry = Depends(get_view_registry),
):
    try:
        return await registry.change_page(_paged(view_id), req.page, req.size)
    except ServiceError as exc:
        raise HTTPException(status_code=http_status_for(exc), detail=str(exc)) from exc


@router.post("/{view_id}/refresh", response_model=ViewSnapshot)
async def refresh_view(
    view_id: ViewId,
    registry: DerivedViewRegistry = Depends(get_view_registry),
):
    view = registry.get(_paged(view_id))
    try:
        await view.refetch()
    except ServiceError as exc:
        raise HTTPException(status_code=http_status_for(exc), detail=str(exc)) from exc
    return view.snapshot()
