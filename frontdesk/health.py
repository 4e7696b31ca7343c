# frontdesk/health.py
from fastapi import APIRouter, Depends

from frontdesk.dependencies.services import get_dashboard
from frontdesk.services import ReceptionDashboard

router = APIRouter()

@router.get("/health")
def health(dashboard: ReceptionDashboard = Depends(get_dashboard)):
    channel = dashboard.channel.status().health.value if dashboard.channel else "disabled"
    return {"ok": True, "mock_data": dashboard.client.use_mock_data, "channel": channel}

@router.get("/mcp/info")
def mcp_info():
    return {"status": "ok", "transport": "streamable-http", "path": "/mcp"}
