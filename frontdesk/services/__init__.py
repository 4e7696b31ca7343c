"""Service package public API definitions.

Service implementations are imported lazily. ``frontdesk.clients.backend``
imports ``frontdesk.services.exceptions``, which executes this module first;
importing the services eagerly here would pull the client back in and cause a
circular import at start up.
"""

from __future__ import annotations

from importlib import import_module
from typing import TYPE_CHECKING, Any

__all__ = [
    "AppointmentCommands",
    "AppointmentLedger",
    "AppointmentService",
    "DerivedViewRegistry",
    "EventChannel",
    "ReceptionDashboard",
    "ReconciliationOrchestrator",
    "StatisticsService",
]

_SERVICE_MODULES = {
    "AppointmentCommands": "commands",
    "AppointmentLedger": "ledger",
    "AppointmentService": "appointment",
    "DerivedViewRegistry": "views",
    "EventChannel": "channel",
    "ReceptionDashboard": "dashboard",
    "ReconciliationOrchestrator": "reconciliation",
    "StatisticsService": "statistics",
}


def __getattr__(name: str) -> Any:
    if name not in _SERVICE_MODULES:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

    module = import_module(f".{_SERVICE_MODULES[name]}", __name__)
    attr = getattr(module, name)
    globals()[name] = attr
    return attr


if TYPE_CHECKING:  # pragma: no cover - import for static analysis only
    from .appointment import AppointmentService as AppointmentService
    from .channel import EventChannel as EventChannel
    from .commands import AppointmentCommands as AppointmentCommands
    from .dashboard import ReceptionDashboard as ReceptionDashboard
    from .ledger import AppointmentLedger as AppointmentLedger
    from .reconciliation import ReconciliationOrchestrator as ReconciliationOrchestrator
    from .statistics import StatisticsService as StatisticsService
    from .views import DerivedViewRegistry as DerivedViewRegistry
