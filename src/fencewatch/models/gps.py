"""Inbound GPS fix model."""

from __future__ import annotations

import json
import math
from typing import Any

from pydantic import AliasChoices, Field, ValidationError, field_validator

from fencewatch.exceptions import InvalidFixError
from fencewatch.models._base import FenceModel, UtcTimestamp


class GpsFix(FenceModel):
    """A single position report for one vehicle.

    Parameters
    ----------
    vehicle_id : str
        Vehicle identifier (``vehicleId`` on the wire).
    latitude : float
        Latitude in degrees, within [-90, 90].
    longitude : float
        Longitude in degrees, within [-180, 180].
    event_timestamp : datetime
        When the fix was taken (``timestamp`` on the wire).
    """

    vehicle_id: str = Field(validation_alias=AliasChoices("vehicleId", "vehicle_id", "vid"))
    latitude: float = Field(validation_alias=AliasChoices("latitude", "lat"))
    longitude: float = Field(validation_alias=AliasChoices("longitude", "lon", "lng"))
    event_timestamp: UtcTimestamp = Field(
        validation_alias=AliasChoices("timestamp", "eventTimestamp", "event_timestamp"),
    )

    @field_validator("vehicle_id", mode="before")
    @classmethod
    def _normalize_vehicle_id(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            value = str(value)
        if isinstance(value, str):
            value = value.strip()
            if not value:
                raise ValueError("vehicleId must be non-empty")
        return value

    @field_validator("latitude", "longitude")
    @classmethod
    def _finite(cls, value: float) -> float:
        if not math.isfinite(value):
            raise ValueError("coordinate must be finite")
        return value

    @field_validator("latitude")
    @classmethod
    def _latitude_range(cls, value: float) -> float:
        if not -90.0 <= value <= 90.0:
            raise ValueError("latitude must be within [-90, 90]")
        return value

    @field_validator("longitude")
    @classmethod
    def _longitude_range(cls, value: float) -> float:
        if not -180.0 <= value <= 180.0:
            raise ValueError("longitude must be within [-180, 180]")
        return value

    @classmethod
    def from_message(cls, body: bytes | str | dict[str, Any]) -> GpsFix:
        """Parse a queue message body.

        Raises
        ------
        InvalidFixError
            The body is not JSON, not an object, or fails validation.
        """
        payload: Any = body
        if isinstance(body, (bytes, bytearray)):
            try:
                payload = body.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise InvalidFixError("GPS message is not UTF-8") from exc
        if isinstance(payload, str):
            try:
                payload = json.loads(payload)
            except json.JSONDecodeError as exc:
                raise InvalidFixError(f"GPS message is not JSON: {payload[:64]!r}") from exc
        if not isinstance(payload, dict):
            raise InvalidFixError("GPS message is not a JSON object")

        vehicle_hint = payload.get("vehicleId")
        try:
            return cls.model_validate(payload)
        except ValidationError as exc:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) or "<root>" for err in exc.errors())
            raise InvalidFixError(
                f"Invalid GPS fix ({fields})",
                vehicle_id=vehicle_hint if isinstance(vehicle_hint, str) else None,
            ) from exc

    def to_message(self) -> dict[str, Any]:
        """Wire form: ``{timestamp, vehicleId, latitude, longitude}``."""
        return {
            "timestamp": self.event_timestamp.isoformat().replace("+00:00", "Z"),
            "vehicleId": self.vehicle_id,
            "latitude": self.latitude,
            "longitude": self.longitude,
        }
