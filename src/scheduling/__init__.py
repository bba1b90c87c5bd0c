"""Periodic scan scheduling."""

from .scheduler import ScanScheduler, SchedulingReport
from .store import ScheduleRecord, ScheduleStore
