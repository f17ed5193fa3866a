"""Purge sweeper: deletes violations whose owner has been notified."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import datetime, timedelta

from fencewatch._timeout import bounded
from fencewatch.models._base import utcnow
from fencewatch.models.reports import PurgeReport
from fencewatch.store.base import ViolationStore

_logger = logging.getLogger(__name__)


class PurgeSweeper:
    """Removes ``SENT`` violations older than ``retention``.

    ``UNSENT`` records are never eligible. Deletion is idempotent, so a run
    that fails halfway is simply repeated by the next schedule tick.
    """

    def __init__(
        self,
        store: ViolationStore,
        *,
        retention: timedelta = timedelta(0),
        operation_timeout: float | None = 30.0,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._retention = retention
        self._timeout = operation_timeout
        self._clock = clock

    def _cutoff(self, now: datetime) -> datetime | None:
        if self._retention <= timedelta(0):
            return None
        return now - self._retention

    async def run(self) -> PurgeReport:
        started_at = self._clock()
        start = time.monotonic()
        cutoff = self._cutoff(started_at)

        total_before = await bounded(self._store.count_all(), timeout=self._timeout, operation="count_all")
        sent_before = await bounded(
            self._store.count_sent(cutoff),
            timeout=self._timeout,
            operation="count_sent",
        )
        _logger.info("Found %d processed violations to purge", sent_before)

        purged = 0
        if sent_before > 0:
            purged = await bounded(self._store.delete_sent(cutoff), timeout=self._timeout, operation="delete_sent")
            _logger.info("Purged %d processed violations", purged)

        total_after = await bounded(self._store.count_all(), timeout=self._timeout, operation="count_all")
        report = PurgeReport(
            started_at=started_at,
            total_before=total_before,
            sent_before=sent_before,
            purged=purged,
            total_after=total_after,
            elapsed_ms=int((time.monotonic() - start) * 1000),
        )
        _logger.info("Purge operation completed %s", report.summary())
        return report
