"""Azure Communication Services email notifier.

Sends through the ``emails:send`` REST operation and polls the returned
operation until the service reports a terminal status.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any
from urllib.parse import urlsplit

import aiohttp

from fencewatch._redact import mask_email, redact_headers
from fencewatch.exceptions import FenceWatchConfigError, NotificationError
from fencewatch.notify._hmac import signed_headers
from fencewatch.notify.base import DeliveryReceipt, NotificationRequest, render_violation_email

_logger = logging.getLogger(__name__)

API_VERSION = "2023-03-31"
_TERMINAL_OK = "Succeeded"
_TERMINAL_FAILED = frozenset({"Failed", "Canceled"})


def _utcnow() -> datetime:
    return datetime.now(UTC)


def parse_connection_string(value: str) -> tuple[str, str]:
    """Split ``endpoint=https://...;accesskey=...`` into ``(endpoint, access_key)``."""
    fields: dict[str, str] = {}
    for part in value.split(";"):
        if not part.strip():
            continue
        key, sep, val = part.partition("=")
        if not sep:
            raise FenceWatchConfigError("Malformed notifier connection string")
        fields[key.strip().lower()] = val.strip()
    endpoint = fields.get("endpoint")
    access_key = fields.get("accesskey")
    if not endpoint or not access_key:
        raise FenceWatchConfigError("Notifier connection string needs endpoint and accesskey")
    return endpoint.rstrip("/"), access_key


class AcsEmailNotifier:
    """Email notifier backed by Azure Communication Services.

    Usage::

        async with AcsEmailNotifier(connection_string, sender) as notifier:
            receipt = await notifier.send(request)
    """

    def __init__(
        self,
        connection_string: str,
        sender_address: str,
        *,
        session: aiohttp.ClientSession | None = None,
        poll_interval: float = 1.0,
        max_polls: int = 30,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._endpoint, self._access_key = parse_connection_string(connection_string)
        self._host = urlsplit(self._endpoint).netloc
        self._sender = sender_address
        self._external_session = session is not None
        self._http = session
        self._poll_interval = poll_interval
        self._max_polls = max_polls
        self._clock = clock

    async def __aenter__(self) -> AcsEmailNotifier:
        if self._http is None:
            self._http = aiohttp.ClientSession()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if not self._external_session and self._http is not None:
            await self._http.close()
        self._http = None

    def _require_http(self) -> aiohttp.ClientSession:
        if self._http is None:
            raise NotificationError("Notifier not initialized. Use 'async with AcsEmailNotifier(...)'")
        return self._http

    def build_message(self, request: NotificationRequest) -> dict[str, Any]:
        content = render_violation_email(request)
        return {
            "senderAddress": self._sender,
            "content": {
                "subject": content.subject,
                "plainText": content.plain_text,
                "html": content.html,
            },
            "recipients": {"to": [{"address": request.to_email}]},
        }

    async def _request(self, method: str, url: str, body: bytes = b"") -> tuple[int, dict[str, str], Any]:
        http = self._require_http()
        parts = urlsplit(url)
        path_and_query = f"{parts.path}?{parts.query}" if parts.query else parts.path
        headers = signed_headers(
            method=method,
            host=parts.netloc or self._host,
            path_and_query=path_and_query,
            body=body,
            access_key=self._access_key,
            now=self._clock(),
        )
        headers["content-type"] = "application/json"
        _logger.debug("ACS request %s %s headers=%s", method, parts.path, redact_headers(headers))
        try:
            async with http.request(method, url, data=body or None, headers=headers) as resp:
                text = await resp.text()
                status = resp.status
                resp_headers = {k.lower(): v for k, v in resp.headers.items()}
        except aiohttp.ClientError as exc:
            raise NotificationError(f"{method} {parts.path} failed: {exc}") from exc

        payload: Any = None
        if text:
            try:
                payload = json.loads(text)
            except json.JSONDecodeError:
                payload = text
        return status, resp_headers, payload

    async def send(self, request: NotificationRequest) -> DeliveryReceipt:
        """Send one violation email and wait for the service to accept it."""
        url = f"{self._endpoint}/emails:send?api-version={API_VERSION}"
        body = json.dumps(self.build_message(request), separators=(",", ":")).encode("utf-8")

        _logger.debug(
            "Sending violation email to %s for vehicle %s",
            mask_email(request.to_email),
            request.vehicle_id,
        )
        status, headers, payload = await self._request("POST", url, body)
        if status != 202:
            raise NotificationError(
                f"Email send rejected: HTTP {status} {str(payload)[:200]}",
                status_code=status,
            )

        accepted = payload if isinstance(payload, dict) else {}
        message_id = str(accepted.get("id", ""))
        operation_url = headers.get("operation-location")
        if not operation_url:
            return DeliveryReceipt(message_id=message_id, status=str(accepted.get("status", "Running")))
        return await self._poll_until_done(operation_url, message_id, headers)

    async def _poll_until_done(self, operation_url: str, message_id: str, headers: dict[str, str]) -> DeliveryReceipt:
        retry_after = headers.get("retry-after")
        for _ in range(self._max_polls):
            delay = self._poll_interval
            if retry_after is not None:
                try:
                    delay = float(retry_after)
                except ValueError:
                    pass
            await asyncio.sleep(delay)

            status, headers, payload = await self._request("GET", operation_url)
            if status != 200 or not isinstance(payload, dict):
                raise NotificationError(
                    f"Email status poll failed: HTTP {status}",
                    status_code=status,
                    message_id=message_id,
                )
            op_status = str(payload.get("status", ""))
            message_id = str(payload.get("id") or message_id)
            if op_status == _TERMINAL_OK:
                _logger.debug("Email %s delivered to service", message_id)
                return DeliveryReceipt(message_id=message_id, status=op_status)
            if op_status in _TERMINAL_FAILED:
                error = payload.get("error") or {}
                detail = error.get("message", "") if isinstance(error, dict) else str(error)
                raise NotificationError(
                    f"Email {message_id} {op_status.lower()}: {detail}",
                    status_code=status,
                    message_id=message_id,
                )
            retry_after = headers.get("retry-after")

        raise NotificationError(
            f"Email {message_id} still pending after {self._max_polls} polls",
            message_id=message_id,
        )
