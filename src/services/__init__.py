"""Long-running services: sync scheduler and periodic task runner."""

from src.services.periodic import PeriodicTask, seconds_until_next
from src.services.sync_scheduler import SyncScheduler

__all__ = ["PeriodicTask", "SyncScheduler", "seconds_until_next"]
