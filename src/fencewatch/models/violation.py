"""Violation and vehicle ownership models."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import AliasChoices, Field, ValidationError, field_validator

from fencewatch.models._base import FenceModel, UtcTimestamp, utcnow
from fencewatch.models.gps import GpsFix


class NotificationState(StrEnum):
    UNSENT = "unsent"
    SENT = "sent"


class VehicleOwnership(FenceModel):
    """Maps a vehicle to the contact that receives its violation emails.

    Stored in ``userVehicles`` as ``{vid, email}``; maintained by an
    external registration process.
    """

    vehicle_id: str = Field(validation_alias=AliasChoices("vid", "vehicleId", "vehicle_id"))
    email: str

    @field_validator("vehicle_id", "email")
    @classmethod
    def _strip(cls, value: str) -> str:
        text = value.strip()
        if not text:
            raise ValueError("must be non-empty")
        return text

    def to_document(self) -> dict[str, Any]:
        return {"vid": self.vehicle_id, "email": self.email}


def new_violation_id() -> str:
    return str(uuid.uuid4())


class Violation(FenceModel):
    """One detected geofence excursion and its notification lifecycle.

    ``violation_id`` is generated once and is the key for every later
    update. ``owner_email`` is copied from the ownership record at creation
    so a later ownership change does not redirect an existing notice.
    ``notified_at`` is only ever set together with the ``SENT`` state.
    """

    violation_id: str = Field(default_factory=new_violation_id)
    vehicle_id: str
    owner_email: str
    latitude: float
    longitude: float
    event_timestamp: UtcTimestamp
    recorded_at: UtcTimestamp = Field(default_factory=utcnow)
    notification_state: NotificationState = NotificationState.UNSENT
    notified_at: UtcTimestamp | None = None

    @classmethod
    def from_fix(
        cls,
        fix: GpsFix,
        ownership: VehicleOwnership,
        *,
        recorded_at: datetime | None = None,
    ) -> Violation:
        """Build a fresh, unsent violation for *fix*."""
        return cls(
            vehicle_id=fix.vehicle_id,
            owner_email=ownership.email,
            latitude=fix.latitude,
            longitude=fix.longitude,
            event_timestamp=fix.event_timestamp,
            recorded_at=recorded_at or utcnow(),
        )

    @property
    def is_sent(self) -> bool:
        return self.notification_state == NotificationState.SENT

    def mark_sent(self, notified_at: datetime) -> Violation:
        """Return a copy transitioned to ``SENT``."""
        return self.model_copy(
            update={"notification_state": NotificationState.SENT, "notified_at": notified_at},
        )

    def to_document(self) -> dict[str, Any]:
        """Document form stored in the ``violations`` collection."""
        return {
            "violationId": self.violation_id,
            "vehicleId": self.vehicle_id,
            "email": self.owner_email,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "timestamp": self.event_timestamp,
            "created": self.recorded_at,
            "warningSent": self.is_sent,
            "warningSentAt": self.notified_at,
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> Violation:
        sent = bool(doc.get("warningSent", False))
        return cls(
            violation_id=doc["violationId"],
            vehicle_id=doc["vehicleId"],
            owner_email=doc["email"],
            latitude=doc["latitude"],
            longitude=doc["longitude"],
            event_timestamp=doc["timestamp"],
            recorded_at=doc.get("created") or utcnow(),
            notification_state=NotificationState.SENT if sent else NotificationState.UNSENT,
            notified_at=doc.get("warningSentAt") if sent else None,
        )


@dataclass(frozen=True)
class UnreadableViolation:
    """A stored violation document that no longer converts to :class:`Violation`.

    Kept as a value so one bad row is reported per record instead of
    failing the whole read.
    """

    violation_id: str
    vehicle_id: str
    reason: str


def read_violation(doc: dict[str, Any]) -> Violation | UnreadableViolation:
    """Convert one stored document, reporting a bad one instead of raising."""
    try:
        return Violation.from_document(doc)
    except KeyError as exc:
        reason = f"missing field {exc}"
    except ValidationError as exc:
        reason = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
        )
    return UnreadableViolation(
        violation_id=str(doc.get("violationId") or doc.get("_id") or "?"),
        vehicle_id=str(doc.get("vehicleId") or "?"),
        reason=reason,
    )
