"""In-process violation store.

Documents are kept in the same shape the MongoDB store writes, guarded by a
single :class:`asyncio.Lock` so every operation is atomic. Used for tests and
for local runs without a database.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from pydantic import ValidationError

from fencewatch.exceptions import StoreError
from fencewatch.models.violation import UnreadableViolation, VehicleOwnership, Violation, read_violation
from fencewatch.store.base import MarkSentResult

_logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def _purgeable(doc: dict[str, Any], older_than: datetime | None) -> bool:
    if not doc.get("warningSent"):
        return False
    if older_than is None:
        return True
    sent_at = doc.get("warningSentAt")
    return sent_at is not None and sent_at <= older_than


class MemoryViolationStore:
    """Dictionary-backed implementation of :class:`ViolationStore`."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._violations: dict[str, dict[str, Any]] = {}
        self._owners: dict[str, dict[str, Any]] = {}

    async def add_owner(self, ownership: VehicleOwnership) -> None:
        """Register (or replace) the owner of a vehicle."""
        async with self._lock:
            self._owners[ownership.vehicle_id] = ownership.to_document()

    async def find_owner(self, vehicle_id: str) -> VehicleOwnership | None:
        async with self._lock:
            doc = self._owners.get(vehicle_id)
        if doc is None:
            return None
        try:
            return VehicleOwnership.model_validate(doc)
        except ValidationError as exc:
            _logger.warning("Ignoring unusable ownership record for vehicle %s: %s", vehicle_id, exc)
            return None

    async def create(self, violation: Violation) -> Violation:
        async with self._lock:
            if violation.violation_id in self._violations:
                raise StoreError(f"Duplicate violationId {violation.violation_id}", operation="create")
            self._violations[violation.violation_id] = violation.to_document()
        return violation

    async def create_if_none_open(self, violation: Violation) -> bool:
        async with self._lock:
            for doc in self._violations.values():
                if doc.get("vehicleId") == violation.vehicle_id and not doc.get("warningSent"):
                    return False
            self._violations[violation.violation_id] = violation.to_document()
        return True

    async def put_document(self, doc: dict[str, Any]) -> None:
        """Store a raw document as-is, e.g. one written by an older deployment."""
        async with self._lock:
            self._violations[str(doc.get("violationId") or len(self._violations))] = copy.deepcopy(doc)

    async def get(self, violation_id: str) -> Violation | None:
        async with self._lock:
            doc = self._violations.get(violation_id)
            snapshot = copy.deepcopy(doc) if doc is not None else None
        return Violation.from_document(snapshot) if snapshot is not None else None

    async def all(self) -> list[Violation]:
        async with self._lock:
            docs = copy.deepcopy(list(self._violations.values()))
        return [Violation.from_document(doc) for doc in docs]

    async def find_unsent(self, limit: int | None = None) -> list[Violation | UnreadableViolation]:
        async with self._lock:
            docs = [copy.deepcopy(doc) for doc in self._violations.values() if not doc.get("warningSent")]
        docs.sort(key=lambda doc: doc.get("created") or _EPOCH)
        if limit is not None and limit > 0:
            docs = docs[:limit]
        return [read_violation(doc) for doc in docs]

    async def claim(self, violation_id: str, now: datetime, lease: timedelta) -> bool:
        async with self._lock:
            doc = self._violations.get(violation_id)
            if doc is None or doc.get("warningSent"):
                return False
            claimed_until = doc.get("claimedUntil")
            if claimed_until is not None and claimed_until > now:
                return False
            doc["claimedUntil"] = now + lease
        return True

    async def release(self, violation_id: str) -> None:
        async with self._lock:
            doc = self._violations.get(violation_id)
            if doc is not None and not doc.get("warningSent"):
                doc.pop("claimedUntil", None)

    async def mark_sent(self, violation_id: str, notified_at: datetime) -> MarkSentResult:
        async with self._lock:
            doc = self._violations.get(violation_id)
            if doc is None or doc.get("warningSent"):
                return MarkSentResult(matched=0, modified=0)
            doc["warningSent"] = True
            doc["warningSentAt"] = notified_at
            doc.pop("claimedUntil", None)
        return MarkSentResult(matched=1, modified=1)

    async def delete_sent(self, older_than: datetime | None = None) -> int:
        async with self._lock:
            doomed = [key for key, doc in self._violations.items() if _purgeable(doc, older_than)]
            for key in doomed:
                del self._violations[key]
        return len(doomed)

    async def count_sent(self, older_than: datetime | None = None) -> int:
        async with self._lock:
            return sum(1 for doc in self._violations.values() if _purgeable(doc, older_than))

    async def count_all(self) -> int:
        async with self._lock:
            return len(self._violations)

    async def close(self) -> None:
        return None
