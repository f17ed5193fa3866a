"""Owner notification."""

from fencewatch.notify.acs import AcsEmailNotifier
from fencewatch.notify.base import (
    DeliveryReceipt,
    EmailContent,
    NotificationRequest,
    Notifier,
    render_violation_email,
)

__all__ = [
    "AcsEmailNotifier",
    "DeliveryReceipt",
    "EmailContent",
    "NotificationRequest",
    "Notifier",
    "render_violation_email",
]
