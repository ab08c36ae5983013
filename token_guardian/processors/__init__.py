"""Background processors."""

from .token_maintenance_processor import (
    MaintenanceScheduler,
    TokenMaintenanceProcessor,
)

__all__ = ["MaintenanceScheduler", "TokenMaintenanceProcessor"]
