"""Per-invocation outcomes and run summaries."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from fencewatch.models.violation import Violation


class IngestStatus(StrEnum):
    INSIDE = "inside"
    NO_OWNER = "no_owner"
    RECORDED = "recorded"
    SUPPRESSED = "suppressed"


@dataclass(frozen=True)
class IngestOutcome:
    """Result of handling one GPS fix."""

    status: IngestStatus
    vehicle_id: str
    violation: Violation | None = None

    @property
    def violation_id(self) -> str | None:
        return self.violation.violation_id if self.violation is not None else None


class RecordStatus(StrEnum):
    SENT = "sent"
    SEND_FAILED = "send_failed"
    MARK_FAILED = "mark_failed"
    ALREADY_SENT = "already_sent"
    IN_PROGRESS = "in_progress"
    INVALID = "invalid"


@dataclass(frozen=True)
class RecordOutcome:
    """Result of notifying the owner of one violation."""

    violation_id: str
    vehicle_id: str
    status: RecordStatus
    reason: str = ""
    message_id: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == RecordStatus.SENT

    @property
    def failed(self) -> bool:
        return self.status in (RecordStatus.SEND_FAILED, RecordStatus.MARK_FAILED, RecordStatus.INVALID)


@dataclass(frozen=True)
class ScanReport:
    """Aggregate of one notification scanner run."""

    started_at: datetime
    outcomes: tuple[RecordOutcome, ...] = ()
    elapsed_ms: int = 0

    @property
    def scanned(self) -> int:
        return len(self.outcomes)

    @property
    def succeeded(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.ok)

    @property
    def failed(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.failed)

    @property
    def skipped(self) -> int:
        return sum(
            1 for outcome in self.outcomes if outcome.status in (RecordStatus.ALREADY_SENT, RecordStatus.IN_PROGRESS)
        )

    @property
    def failures(self) -> list[RecordOutcome]:
        return [outcome for outcome in self.outcomes if outcome.failed]

    @classmethod
    def fold(cls, started_at: datetime, outcomes: Iterable[RecordOutcome], *, elapsed_ms: int = 0) -> ScanReport:
        return cls(started_at=started_at, outcomes=tuple(outcomes), elapsed_ms=elapsed_ms)

    def summary(self) -> dict[str, int]:
        return {
            "scanned": self.scanned,
            "success": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
        }


@dataclass(frozen=True)
class PurgeReport:
    """Aggregate of one purge sweeper run."""

    started_at: datetime
    total_before: int = 0
    sent_before: int = 0
    purged: int = 0
    total_after: int = 0
    elapsed_ms: int = 0

    def summary(self) -> dict[str, int]:
        return {
            "violationsCountBefore": self.total_before,
            "sentCountBefore": self.sent_before,
            "purgedCount": self.purged,
            "violationsCountAfter": self.total_after,
            "executionTimeMs": self.elapsed_ms,
        }
