"""
Background Services
"""
from .scheduler import MonitoringScheduler, SchedulerStats

__all__ = ["MonitoringScheduler", "SchedulerStats"]
