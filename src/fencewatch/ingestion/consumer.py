"""GPS fix consumer.

Handles one inbound fix per call. Invocations share no mutable state, so
any number of them may run concurrently against the same store.

Error policy:
- malformed input raises :class:`InvalidFixError` (drop, never retry)
- a fix with no registered owner is logged and dropped
- store failures and timeouts propagate as :class:`TransientError` so the
  queue redelivers the whole event
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from fencewatch._timeout import bounded
from fencewatch.geofence import Geofence
from fencewatch.models._base import utcnow
from fencewatch.models.gps import GpsFix
from fencewatch.models.reports import IngestOutcome, IngestStatus
from fencewatch.models.violation import Violation
from fencewatch.store.base import ViolationStore

_logger = logging.getLogger(__name__)


class FixConsumer:
    """Turns outside-the-boundary fixes into unsent violations."""

    def __init__(
        self,
        store: ViolationStore,
        geofence: Geofence,
        *,
        operation_timeout: float | None = 30.0,
        dedupe_open_violations: bool = False,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._geofence = geofence
        self._timeout = operation_timeout
        self._dedupe = dedupe_open_violations
        self._clock = clock

    async def handle(self, body: bytes | str | dict[str, Any]) -> IngestOutcome:
        """Parse a queue message body and process it."""
        return await self.handle_fix(GpsFix.from_message(body))

    async def handle_fix(self, fix: GpsFix) -> IngestOutcome:
        if self._geofence.is_inside(fix.longitude, fix.latitude):
            _logger.debug(
                "Vehicle %s at [%s, %s] is INSIDE the geofence",
                fix.vehicle_id,
                fix.latitude,
                fix.longitude,
            )
            return IngestOutcome(status=IngestStatus.INSIDE, vehicle_id=fix.vehicle_id)

        _logger.info(
            "Vehicle %s at [%s, %s] is OUTSIDE the geofence",
            fix.vehicle_id,
            fix.latitude,
            fix.longitude,
        )
        ownership = await bounded(
            self._store.find_owner(fix.vehicle_id),
            timeout=self._timeout,
            operation="find_owner",
        )
        if ownership is None:
            _logger.warning("No ownership record for vehicle %s; dropping fix", fix.vehicle_id)
            return IngestOutcome(status=IngestStatus.NO_OWNER, vehicle_id=fix.vehicle_id)

        violation = Violation.from_fix(fix, ownership, recorded_at=self._clock())
        if self._dedupe:
            created = await bounded(
                self._store.create_if_none_open(violation),
                timeout=self._timeout,
                operation="create_if_none_open",
            )
            if not created:
                _logger.info("Vehicle %s already has an open violation; not recording another", fix.vehicle_id)
                return IngestOutcome(status=IngestStatus.SUPPRESSED, vehicle_id=fix.vehicle_id)
        else:
            await bounded(self._store.create(violation), timeout=self._timeout, operation="create")

        _logger.info(
            "Violation %s recorded for vehicle %s",
            violation.violation_id,
            violation.vehicle_id,
        )
        return IngestOutcome(status=IngestStatus.RECORDED, vehicle_id=fix.vehicle_id, violation=violation)
