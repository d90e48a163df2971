"""Services around the conversation engine."""

from dmpilot.services.dashboard_service import DashboardService
from dmpilot.services.maintenance_service import MaintenanceScheduler

__all__ = [
    "DashboardService",
    "MaintenanceScheduler",
]
