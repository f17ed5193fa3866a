"""Service configuration for fencewatch."""

from __future__ import annotations

import dataclasses
import datetime as dt
import os
from pathlib import Path
from typing import Any

from fencewatch.exceptions import FenceWatchConfigError

#: Centre of the default circular boundary (latitude, longitude).
DEFAULT_GEOFENCE_CENTER: tuple[float, float] = (45.39574634172982, -75.74740191869692)


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _parse_center(value: str) -> tuple[float, float]:
    """Parse ``"lat,lon"`` into a tuple."""
    parts = [part.strip() for part in value.split(",")]
    if len(parts) != 2:
        raise FenceWatchConfigError(f"Geofence centre must be 'lat,lon', got {value!r}")
    try:
        return float(parts[0]), float(parts[1])
    except ValueError as exc:
        raise FenceWatchConfigError(f"Geofence centre is not numeric: {value!r}") from exc


def _parse_clock(value: str) -> dt.time:
    """Parse ``"HH:MM"`` (UTC) into a :class:`datetime.time`."""
    try:
        parsed = dt.time.fromisoformat(value.strip())
    except ValueError as exc:
        raise FenceWatchConfigError(f"Purge time must be HH:MM, got {value!r}") from exc
    return parsed.replace(tzinfo=dt.UTC)


def _number(env_key: str, raw: str, kind: type[int] | type[float]) -> int | float:
    try:
        return kind(raw)
    except ValueError as exc:
        raise FenceWatchConfigError(f"{env_key} must be a number, got {raw!r}") from exc


@dataclasses.dataclass(frozen=True)
class FenceWatchConfig:
    """Service configuration.

    Parameters
    ----------
    store_url : str or None
        MongoDB connection string. ``None`` selects the in-process store,
        which is only suitable for local runs and tests.
    database : str
        Database holding the ``violations`` and ``userVehicles`` collections.
    notifier_connection_string : str or None
        Azure Communication Services connection string
        (``endpoint=https://...;accesskey=...``).
    sender_address : str or None
        ``From`` address registered with the email service.
    queue_url : str
        MQTT broker URL (``mqtt://`` or ``mqtts://``, optional credentials).
    queue_name : str
        Topic carrying GPS fixes.
    queue_client_id : str
        Persistent MQTT client id. Together with a non-clean session this
        lets the broker redeliver unacknowledged fixes after a restart.
    geofence_center : tuple of float
        ``(latitude, longitude)`` of the circular boundary.
    geofence_radius_km : float
        Radius of the circular boundary.
    geofence_polygon_path : Path or None
        GeoJSON Polygon file. When set it replaces the circular boundary.
    scan_interval : float
        Seconds between notification scanner runs.
    scan_page_size : int
        Maximum unsent violations handled per scanner run.
    claim_lease : float
        Seconds a scanner run holds a violation while emailing its owner.
        Must exceed the time one send and mark can take.
    purge_at : datetime.time
        Time of day (UTC) the purge sweeper runs.
    purge_retention : float
        Seconds a sent violation is kept before it becomes purgeable.
    operation_timeout : float
        Upper bound in seconds for any single store or notifier call.
    shutdown_grace : float
        Seconds to wait for in-flight work when shutting down.
    max_concurrent_messages : int
        Upper bound on GPS fixes handled in parallel.
    dedupe_open_violations : bool
        Suppress new violations for a vehicle that already has an unsent one.
    mqtt_keepalive : int
        MQTT keepalive in seconds.
    """

    store_url: str | None = None
    database: str = "geofence"
    notifier_connection_string: str | None = None
    sender_address: str | None = None
    queue_url: str = "mqtt://localhost:1883"
    queue_name: str = "gps"
    queue_client_id: str = "fencewatch-consumer"
    geofence_center: tuple[float, float] = DEFAULT_GEOFENCE_CENTER
    geofence_radius_km: float = 20.0
    geofence_polygon_path: Path | None = None
    scan_interval: float = 60.0
    scan_page_size: int = 500
    claim_lease: float = 300.0
    purge_at: dt.time = dt.time(0, 0, tzinfo=dt.UTC)
    purge_retention: float = 0.0
    operation_timeout: float = 30.0
    shutdown_grace: float = 30.0
    max_concurrent_messages: int = 16
    dedupe_open_violations: bool = False
    mqtt_keepalive: int = 60

    @property
    def has_notifier(self) -> bool:
        return bool(self.notifier_connection_string)

    def require_notifier(self) -> tuple[str, str]:
        """Return ``(connection_string, sender_address)`` or raise."""
        if not self.notifier_connection_string:
            raise FenceWatchConfigError("COMMUNICATION_SERVICES_CONNECTION_STRING is not configured")
        if not self.sender_address:
            raise FenceWatchConfigError("FENCEWATCH_SENDER_ADDRESS is not configured")
        return self.notifier_connection_string, self.sender_address

    @classmethod
    def from_env(cls, **overrides: Any) -> FenceWatchConfig:
        """Create configuration from environment variables.

        Connection strings use the same variable names as the existing
        deployment (``MONGODB_CONNECTION_STRING``,
        ``COMMUNICATION_SERVICES_CONNECTION_STRING``,
        ``SERVICE_BUS_QUEUE_NAME``); everything else is read from
        ``FENCEWATCH_*`` variables. Explicit keyword arguments override
        environment values.
        """
        env = os.environ

        _ENV_STRING_MAP = {
            "MONGODB_CONNECTION_STRING": "store_url",
            "FENCEWATCH_DATABASE": "database",
            "COMMUNICATION_SERVICES_CONNECTION_STRING": "notifier_connection_string",
            "FENCEWATCH_SENDER_ADDRESS": "sender_address",
            "FENCEWATCH_QUEUE_URL": "queue_url",
            "SERVICE_BUS_QUEUE_NAME": "queue_name",
            "FENCEWATCH_QUEUE_NAME": "queue_name",
            "FENCEWATCH_QUEUE_CLIENT_ID": "queue_client_id",
        }
        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_STRING_MAP.items():
            val = env.get(env_key)
            if val is not None and val.strip():
                config_kwargs[field_name] = val.strip()

        _ENV_NUMBER_MAP: dict[str, tuple[str, type[int] | type[float]]] = {
            "FENCEWATCH_GEOFENCE_RADIUS_KM": ("geofence_radius_km", float),
            "FENCEWATCH_SCAN_INTERVAL": ("scan_interval", float),
            "FENCEWATCH_SCAN_PAGE_SIZE": ("scan_page_size", int),
            "FENCEWATCH_CLAIM_LEASE": ("claim_lease", float),
            "FENCEWATCH_PURGE_RETENTION": ("purge_retention", float),
            "FENCEWATCH_OPERATION_TIMEOUT": ("operation_timeout", float),
            "FENCEWATCH_SHUTDOWN_GRACE": ("shutdown_grace", float),
            "FENCEWATCH_MAX_CONCURRENT_MESSAGES": ("max_concurrent_messages", int),
            "FENCEWATCH_MQTT_KEEPALIVE": ("mqtt_keepalive", int),
        }
        for env_key, (field_name, kind) in _ENV_NUMBER_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = _number(env_key, val, kind)

        center_env = env.get("FENCEWATCH_GEOFENCE_CENTER")
        if center_env is not None and "geofence_center" not in overrides:
            config_kwargs["geofence_center"] = _parse_center(center_env)

        polygon_env = env.get("FENCEWATCH_GEOFENCE_POLYGON")
        if polygon_env and "geofence_polygon_path" not in overrides:
            config_kwargs["geofence_polygon_path"] = Path(polygon_env)

        purge_env = env.get("FENCEWATCH_PURGE_AT")
        if purge_env is not None and "purge_at" not in overrides:
            config_kwargs["purge_at"] = _parse_clock(purge_env)

        if "dedupe_open_violations" not in overrides:
            config_kwargs["dedupe_open_violations"] = _env_bool(
                env.get("FENCEWATCH_DEDUPE_OPEN_VIOLATIONS"),
                False,
            )

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
