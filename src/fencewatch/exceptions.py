"""Custom exception hierarchy for fencewatch."""

from __future__ import annotations


class FenceWatchError(Exception):
    """Base exception for all fencewatch errors."""


class FenceWatchConfigError(FenceWatchError):
    """Invalid or missing configuration."""


class InvalidFixError(FenceWatchError):
    """Inbound GPS fix is malformed and can never be processed.

    Redelivering the same message would fail the same way, so the queue
    adapter acknowledges and drops it after logging.
    """

    def __init__(self, message: str, *, vehicle_id: str | None = None) -> None:
        self.vehicle_id = vehicle_id
        super().__init__(message)


class TransientError(FenceWatchError):
    """Failure expected to clear on retry (connectivity, timeouts, throttling)."""


class StoreError(TransientError):
    """Document store operation failed."""

    def __init__(self, message: str, *, operation: str = "") -> None:
        self.operation = operation
        super().__init__(message)


class NotificationError(TransientError):
    """Owner notification could not be delivered."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        message_id: str | None = None,
    ) -> None:
        self.status_code = status_code
        self.message_id = message_id
        super().__init__(message)


class OperationTimeoutError(TransientError):
    """A bounded store or notifier call exceeded its timeout."""

    def __init__(self, message: str, *, operation: str = "", timeout: float | None = None) -> None:
        self.operation = operation
        self.timeout = timeout
        super().__init__(message)
