from __future__ import annotations

from functools import lru_cache

from fastapi import Depends

from frontdesk.clients.backend import SalonBackendClient
from frontdesk.config import Settings, get_settings
from frontdesk.services import AppointmentCommands, DerivedViewRegistry, ReceptionDashboard


@lru_cache(maxsize=1)
def get_backend_client_cached() -> SalonBackendClient:
    settings = get_settings()
    return SalonBackendClient(
        str(settings.backend_base_url) if settings.backend_base_url else None,
        timeout=settings.backend_timeout,
        use_mock_data=settings.use_mock_data,
        token=settings.backend_token,
    )


def get_backend_client(settings: Settings = Depends(get_settings)) -> SalonBackendClient:
    return get_backend_client_cached()


@lru_cache(maxsize=1)
def get_dashboard_cached() -> ReceptionDashboard:
    return ReceptionDashboard(get_settings(), get_backend_client_cached())


def get_dashboard(
    client: SalonBackendClient = Depends(get_backend_client),
) -> ReceptionDashboard:
    return get_dashboard_cached()


def get_view_registry(
    dashboard: ReceptionDashboard = Depends(get_dashboard),
) -> DerivedViewRegistry:
    return dashboard.views


def get_commands(
    dashboard: ReceptionDashboard = Depends(get_dashboard),
) -> AppointmentCommands:
    return dashboard.commands
