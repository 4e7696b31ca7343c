from fastapi import APIRouter, Depends, HTTPException

from frontdesk.dependencies.services import get_dashboard
from frontdesk.schemas.events import ChannelStatus
from frontdesk.services import ReceptionDashboard

router = APIRouter()


@router.get("/status", response_model=ChannelStatus)
async def channel_status(dashboard: ReceptionDashboard = Depends(get_dashboard)):
    if dashboard.channel is None:
        raise HTTPException(status_code=404, detail="Real-time updates are not configured")
    return dashboard.channel.status()


@router.post("/reconnect", response_model=ChannelStatus)
async def reconnect(dashboard: ReceptionDashboard = Depends(get_dashboard)):
    if dashboard.channel is None:
        raise HTTPException(status_code=404, detail="Real-time updates are not configured")
    await dashboard.channel.reconnect()
    return dashboard.channel.status()


@router.get("/notifications")
async def notifications(dashboard: ReceptionDashboard = Depends(get_dashboard)):
    recent = getattr(dashboard.notifier, "recent", [])
    return [
        {
            "level": item.level,
            "title": item.title,
            "message": item.message,
            "code": item.code.value if item.code else None,
            "persistent": item.persistent,
            "created_at": item.created_at.isoformat(),
        }
        for item in recent
    ]
