"""Violation store interface.

Every implementation must make each method atomic per document: two
concurrent ``mark_sent`` calls for the same id produce exactly one
``modified=1``, and ``delete_sent`` only ever removes documents whose
state is ``SENT`` at the moment of deletion.

A scanner takes a time-limited claim on a record before emailing its owner
(``claimedUntil`` on the document). While the claim is live no other run can
take it; ``mark_sent`` and ``release`` clear it.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

from fencewatch.models.violation import UnreadableViolation, VehicleOwnership, Violation

VIOLATIONS_COLLECTION = "violations"
OWNERS_COLLECTION = "userVehicles"


@dataclass(frozen=True)
class MarkSentResult:
    """Outcome of the conditional ``UNSENT -> SENT`` update."""

    matched: int
    modified: int

    @property
    def transitioned(self) -> bool:
        return self.modified > 0


class ViolationStore(Protocol):
    """Structural store interface used by the pipeline components.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production implementations concrete.
    """

    async def find_owner(self, vehicle_id: str) -> VehicleOwnership | None: ...

    async def create(self, violation: Violation) -> Violation: ...

    async def create_if_none_open(self, violation: Violation) -> bool: ...

    async def find_unsent(self, limit: int | None = None) -> list[Violation | UnreadableViolation]: ...

    async def claim(self, violation_id: str, now: datetime, lease: timedelta) -> bool: ...

    async def release(self, violation_id: str) -> None: ...

    async def mark_sent(self, violation_id: str, notified_at: datetime) -> MarkSentResult: ...

    async def delete_sent(self, older_than: datetime | None = None) -> int: ...

    async def count_sent(self, older_than: datetime | None = None) -> int: ...

    async def count_all(self) -> int: ...

    async def close(self) -> None: ...
