# frontdesk/mcp_server.py
from __future__ import annotations

import logging
from datetime import date
from typing import List, Optional

from mcp.server.fastmcp import Context, FastMCP
from pydantic import BaseModel, Field

from frontdesk.dependencies.services import get_dashboard_cached

log = logging.getLogger("frontdesk.mcp")

mcp = FastMCP("frontdesk_mcp")

# --------------------------
# Tool I/O models
# --------------------------
class SlotsAvailableInput(BaseModel):
    date: str = Field(..., description="Day to check, ISO format, e.g. '2025-09-22'")
    duration_minutes: int = Field(..., description="Total duration of the selected services")
    resource_id: Optional[str] = Field(
        None, description="Staff member id; omit for an unassigned booking"
    )

class SlotsAvailableOutput(BaseModel):
    date: str
    resource_id: Optional[str]
    labels: List[str]

class DashboardStatisticsOutput(BaseModel):
    total_customers: int
    total_today_appointments: int
    total_pending_payments: int
    total_daily_income: float

# --------------------------
# Tools
# --------------------------
@mcp.tool(name="slots_available", description="List free start times for a booking")
async def slots_available(input: SlotsAvailableInput, ctx: Context) -> SlotsAvailableOutput:
    log.debug("slots_available input=%s", input.model_dump())
    dashboard = get_dashboard_cached()
    result = await dashboard.available_slots(
        date.fromisoformat(input.date), input.resource_id, input.duration_minutes
    )
    out = SlotsAvailableOutput(
        date=input.date,
        resource_id=input.resource_id,
        labels=[slot.label for slot in result.slots],
    )
    log.debug("slots_available output=%s", out.model_dump())
    return out

@mcp.tool(name="dashboard_statistics", description="Reception dashboard counters")
async def dashboard_statistics(ctx: Context) -> DashboardStatisticsOutput:
    stats = await get_dashboard_cached().get_statistics()
    out = DashboardStatisticsOutput(
        total_customers=stats.total_customers,
        total_today_appointments=stats.total_today_appointments,
        total_pending_payments=stats.total_pending_payments,
        total_daily_income=stats.total_daily_income,
    )
    log.debug("dashboard_statistics output=%s", out.model_dump())
    return out

@mcp.tool(name="ping", description="Health check")
async def ping(message: str) -> str:
    log.debug("ping %s", message)
    return f"pong: {message}"
