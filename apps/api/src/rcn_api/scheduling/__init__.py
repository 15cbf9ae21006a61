"""Recurring ledger sweeps."""

from .config import LedgerJob, ScheduleConfig, load_schedule
from .runner import LedgerJobScheduler

__all__ = ["LedgerJob", "LedgerJobScheduler", "ScheduleConfig", "load_schedule"]
