"""Notifier interface and violation email rendering."""

from __future__ import annotations

import html
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from fencewatch.models.violation import Violation

SUBJECT = "URGENT: Geofence Boundary Violation Alert"


@dataclass(frozen=True)
class NotificationRequest:
    """Everything needed to tell an owner about one violation."""

    to_email: str
    vehicle_id: str
    latitude: float
    longitude: float
    event_timestamp: datetime
    violation_id: str = ""

    @classmethod
    def for_violation(cls, violation: Violation) -> NotificationRequest:
        return cls(
            to_email=violation.owner_email,
            vehicle_id=violation.vehicle_id,
            latitude=violation.latitude,
            longitude=violation.longitude,
            event_timestamp=violation.event_timestamp,
            violation_id=violation.violation_id,
        )


@dataclass(frozen=True)
class DeliveryReceipt:
    message_id: str
    status: str = "Succeeded"


@dataclass(frozen=True)
class EmailContent:
    subject: str
    plain_text: str
    html: str


class Notifier(Protocol):
    """Delivers one notification; raises :class:`NotificationError` on failure."""

    async def send(self, request: NotificationRequest) -> DeliveryReceipt: ...


def render_violation_email(request: NotificationRequest) -> EmailContent:
    when = request.event_timestamp.strftime("%Y-%m-%d %H:%M:%S %Z").strip()
    location = f"[{request.latitude:.6f}, {request.longitude:.6f}]"
    plain = (
        f"Your vehicle with ID {request.vehicle_id} is outside the allowed boundary.\n"
        f"Violation time: {when}\n"
        f"Last known location: {location}\n"
        "Please return the vehicle to the authorized area immediately."
    )
    vehicle = html.escape(request.vehicle_id)
    body = f"""<html>
  <body style="font-family: Arial, sans-serif; padding: 20px; color: #333;">
    <div style="max-width: 600px; margin: 0 auto; border: 1px solid #ddd; padding: 20px; border-radius: 5px;">
      <h1 style="color: #cc0000; margin-top: 0;">Geofence Violation Alert</h1>
      <p>This is an automated notification about a geofence boundary violation.</p>
      <div style="background-color: #f8f8f8; border-left: 4px solid #cc0000; padding: 15px; margin: 20px 0;">
        <p><strong>Vehicle ID:</strong> {vehicle}</p>
        <p><strong>Violation Time:</strong> {html.escape(when)}</p>
        <p><strong>Last Known Location:</strong> {location}</p>
      </div>
      <p style="font-weight: bold; color: #cc0000;">Your vehicle is outside the allowed boundary.</p>
      <p>Please take immediate action to return your vehicle to the authorized area.</p>
      <hr style="border: none; border-top: 1px solid #ddd; margin: 20px 0;">
      <p style="font-size: 12px; color: #666;">This is an automated message. Do not reply to this email.</p>
    </div>
  </body>
</html>"""
    return EmailContent(subject=SUBJECT, plain_text=plain, html=body)
