"""Notification scanner.

Each run reads the unsent backlog, emails every owner and flips the record to
``SENT``. Records are handled independently: a failure on one is folded into
the run report and the record stays ``UNSENT`` for the next run.

Before emailing, a run claims the record for ``claim_lease``. Overlapping runs
read the same backlog, but only the run holding the claim sends, so an owner
is emailed twice only when a send succeeded and the following ``mark_sent``
did not. A failed send releases the claim straight away; a failed mark keeps
it until the lease runs out.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import datetime, timedelta

from fencewatch._redact import mask_email
from fencewatch._timeout import bounded
from fencewatch.exceptions import FenceWatchError
from fencewatch.models._base import utcnow
from fencewatch.models.reports import RecordOutcome, RecordStatus, ScanReport
from fencewatch.models.violation import UnreadableViolation, Violation
from fencewatch.notify.base import NotificationRequest, Notifier
from fencewatch.store.base import ViolationStore

_logger = logging.getLogger(__name__)


class NotificationScanner:
    def __init__(
        self,
        store: ViolationStore,
        notifier: Notifier,
        *,
        page_size: int | None = 500,
        claim_lease: timedelta = timedelta(minutes=5),
        operation_timeout: float | None = 30.0,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._page_size = page_size
        self._lease = claim_lease
        self._timeout = operation_timeout
        self._clock = clock

    async def run(self) -> ScanReport:
        """Process the current backlog once.

        Raises
        ------
        TransientError
            The backlog itself could not be read.
        """
        started_at = self._clock()
        start = time.monotonic()
        records = await bounded(
            self._store.find_unsent(self._page_size),
            timeout=self._timeout,
            operation="find_unsent",
        )
        if not records:
            _logger.debug("No new violations to process")
            return ScanReport(started_at=started_at)

        _logger.info("Found %d violations with unsent warnings", len(records))
        outcomes = [await self.process(record) for record in records]
        report = ScanReport.fold(started_at, outcomes, elapsed_ms=int((time.monotonic() - start) * 1000))
        _logger.info(
            "Violation processing completed. Success: %d, Failed: %d, Skipped: %d",
            report.succeeded,
            report.failed,
            report.skipped,
        )
        return report

    @staticmethod
    def _outcome(
        violation: Violation | UnreadableViolation,
        status: RecordStatus,
        *,
        reason: str = "",
        message_id: str | None = None,
    ) -> RecordOutcome:
        return RecordOutcome(
            violation_id=violation.violation_id,
            vehicle_id=violation.vehicle_id,
            status=status,
            reason=reason,
            message_id=message_id,
        )

    async def process(self, violation: Violation | UnreadableViolation) -> RecordOutcome:
        """Claim, notify and mark one violation; never raises for per-record failures."""
        if isinstance(violation, UnreadableViolation):
            _logger.warning(
                "Skipping unreadable violation %s vehicle %s: %s",
                violation.violation_id,
                violation.vehicle_id,
                violation.reason,
            )
            return self._outcome(violation, RecordStatus.INVALID, reason=violation.reason)

        _logger.debug(
            "Processing violation %s for vehicle %s (%s)",
            violation.violation_id,
            violation.vehicle_id,
            mask_email(violation.owner_email),
        )
        try:
            claimed = await bounded(
                self._store.claim(violation.violation_id, self._clock(), self._lease),
                timeout=self._timeout,
                operation="claim",
            )
        except FenceWatchError as exc:
            _logger.warning(
                "Could not claim violation %s vehicle %s: %s",
                violation.violation_id,
                violation.vehicle_id,
                exc,
            )
            return self._outcome(violation, RecordStatus.SEND_FAILED, reason=f"claim failed: {exc}")
        if not claimed:
            _logger.info("Violation %s is held by another run or already sent", violation.violation_id)
            return self._outcome(violation, RecordStatus.IN_PROGRESS)

        try:
            receipt = await bounded(
                self._notifier.send(NotificationRequest.for_violation(violation)),
                timeout=self._timeout,
                operation="send",
            )
        except FenceWatchError as exc:
            _logger.warning(
                "Failed to notify owner for violation %s vehicle %s: %s",
                violation.violation_id,
                violation.vehicle_id,
                exc,
            )
            await self._release(violation)
            return self._outcome(violation, RecordStatus.SEND_FAILED, reason=str(exc))
        except Exception as exc:
            _logger.exception(
                "Unexpected notifier failure for violation %s vehicle %s",
                violation.violation_id,
                violation.vehicle_id,
            )
            await self._release(violation)
            return self._outcome(violation, RecordStatus.SEND_FAILED, reason=repr(exc))

        try:
            result = await bounded(
                self._store.mark_sent(violation.violation_id, self._clock()),
                timeout=self._timeout,
                operation="mark_sent",
            )
        except FenceWatchError as exc:
            _logger.error(
                "Email %s sent but violation %s vehicle %s not marked; it will be notified again: %s",
                receipt.message_id,
                violation.violation_id,
                violation.vehicle_id,
                exc,
            )
            return self._outcome(
                violation,
                RecordStatus.MARK_FAILED,
                reason=str(exc),
                message_id=receipt.message_id,
            )

        _logger.debug(
            "Updated violation record %s, matched: %d, modified: %d",
            violation.violation_id,
            result.matched,
            result.modified,
        )
        if not result.transitioned:
            _logger.info("Violation %s was already marked sent by another run", violation.violation_id)
            return self._outcome(violation, RecordStatus.ALREADY_SENT, message_id=receipt.message_id)
        return self._outcome(violation, RecordStatus.SENT, message_id=receipt.message_id)

    async def _release(self, violation: Violation) -> None:
        try:
            await bounded(
                self._store.release(violation.violation_id),
                timeout=self._timeout,
                operation="release",
            )
        except FenceWatchError as exc:
            # The lease still expires on its own.
            _logger.warning("Could not release claim on violation %s: %s", violation.violation_id, exc)
