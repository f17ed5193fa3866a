"""Scheduled jobs: notification scanner and purge sweeper."""

from fencewatch.jobs.purge import PurgeSweeper
from fencewatch.jobs.scanner import NotificationScanner
from fencewatch.jobs.schedule import DailySchedule, IntervalSchedule, JobRunner

__all__ = ["DailySchedule", "IntervalSchedule", "JobRunner", "NotificationScanner", "PurgeSweeper"]
