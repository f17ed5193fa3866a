from __future__ import annotations

import base64
import hashlib
import hmac
import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import aiohttp
import pytest

from fencewatch.exceptions import FenceWatchConfigError, NotificationError
from fencewatch.notify import AcsEmailNotifier, NotificationRequest, render_violation_email
from fencewatch.notify._hmac import content_hash, http_date, signed_headers
from fencewatch.notify.acs import parse_connection_string

_KEY = base64.b64encode(b"super-secret-key").decode()
_CONN = f"endpoint=https://fleet.communication.azure.com/;accesskey={_KEY}"
_NOW = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)


@dataclass
class FakeResponse:
    status: int
    body: Any = None
    headers: dict[str, str] = field(default_factory=dict)

    async def text(self) -> str:
        if self.body is None:
            return ""
        return self.body if isinstance(self.body, str) else json.dumps(self.body)

    async def __aenter__(self) -> FakeResponse:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        return None


@dataclass
class FakeSession:
    responses: list[FakeResponse | Exception]
    requests: list[tuple[str, str, bytes | None, dict[str, str]]] = field(default_factory=list)
    closed: bool = False

    def request(self, method: str, url: str, *, data: bytes | None = None, headers: dict[str, str]) -> FakeResponse:
        self.requests.append((method, url, data, headers))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    async def close(self) -> None:
        self.closed = True


def _request() -> NotificationRequest:
    return NotificationRequest(
        to_email="a@x.com",
        vehicle_id="V1",
        latitude=50.0,
        longitude=50.0,
        event_timestamp=_NOW,
        violation_id="vid-1",
    )


def _notifier(session: FakeSession) -> AcsEmailNotifier:
    return AcsEmailNotifier(
        _CONN,
        "alerts@fleet.example",
        session=session,  # type: ignore[arg-type]
        poll_interval=0.0,
        max_polls=3,
        clock=lambda: _NOW,
    )


def test_parse_connection_string() -> None:
    assert parse_connection_string(_CONN) == ("https://fleet.communication.azure.com", _KEY)


@pytest.mark.parametrize("value", ["endpoint=https://x", "accesskey=abc", "garbage"])
def test_parse_connection_string_rejects_incomplete(value: str) -> None:
    with pytest.raises(FenceWatchConfigError):
        parse_connection_string(value)


def test_content_hash_of_empty_body() -> None:
    assert content_hash(b"") == "47DEQpj8HBSa+/TImW+5JCeuQeRkm5NMpJWZG3hSuFU="


def test_http_date_is_rfc1123_gmt() -> None:
    assert http_date(_NOW) == "Sat, 01 Mar 2025 12:00:00 GMT"


def test_signed_headers_match_hmac_of_string_to_sign() -> None:
    body = b'{"a":1}'
    headers = signed_headers(
        method="post",
        host="fleet.communication.azure.com",
        path_and_query="/emails:send?api-version=2023-03-31",
        body=body,
        access_key=_KEY,
        now=_NOW,
    )
    body_hash = base64.b64encode(hashlib.sha256(body).digest()).decode()
    string_to_sign = (
        "POST\n/emails:send?api-version=2023-03-31\n"
        f"Sat, 01 Mar 2025 12:00:00 GMT;fleet.communication.azure.com;{body_hash}"
    )
    expected = base64.b64encode(
        hmac.new(b"super-secret-key", string_to_sign.encode(), hashlib.sha256).digest(),
    ).decode()

    assert headers["x-ms-content-sha256"] == body_hash
    assert headers["x-ms-date"] == "Sat, 01 Mar 2025 12:00:00 GMT"
    assert headers["authorization"] == (
        f"HMAC-SHA256 SignedHeaders=x-ms-date;host;x-ms-content-sha256&Signature={expected}"
    )


def test_rendered_email_escapes_vehicle_id() -> None:
    request = NotificationRequest(
        to_email="a@x.com",
        vehicle_id="<V1>",
        latitude=1.0,
        longitude=2.0,
        event_timestamp=_NOW,
    )
    content = render_violation_email(request)
    assert "&lt;V1&gt;" in content.html
    assert "<V1>" in content.plain_text
    assert content.subject.startswith("URGENT")


@pytest.mark.asyncio
async def test_send_posts_message_and_polls_until_succeeded() -> None:
    operation_url = "https://fleet.communication.azure.com/emails/operations/op-1?api-version=2023-03-31"
    session = FakeSession(
        responses=[
            FakeResponse(202, {"id": "op-1", "status": "Running"}, {"Operation-Location": operation_url}),
            FakeResponse(200, {"id": "op-1", "status": "Running"}),
            FakeResponse(200, {"id": "op-1", "status": "Succeeded"}),
        ]
    )
    notifier = _notifier(session)

    receipt = await notifier.send(_request())

    assert receipt.message_id == "op-1"
    assert receipt.status == "Succeeded"
    method, url, data, headers = session.requests[0]
    assert method == "POST"
    assert url == "https://fleet.communication.azure.com/emails:send?api-version=2023-03-31"
    assert data is not None
    message = json.loads(data)
    assert message["senderAddress"] == "alerts@fleet.example"
    assert message["recipients"] == {"to": [{"address": "a@x.com"}]}
    assert headers["authorization"].startswith("HMAC-SHA256 ")
    assert [r[0] for r in session.requests] == ["POST", "GET", "GET"]


@pytest.mark.asyncio
async def test_send_rejected_raises_notification_error() -> None:
    session = FakeSession(responses=[FakeResponse(401, {"error": {"code": "Denied"}})])
    with pytest.raises(NotificationError) as excinfo:
        await _notifier(session).send(_request())
    assert excinfo.value.status_code == 401


@pytest.mark.asyncio
async def test_failed_operation_raises_notification_error() -> None:
    session = FakeSession(
        responses=[
            FakeResponse(202, {"id": "op-2"}, {"operation-location": "https://fleet.communication.azure.com/op-2"}),
            FakeResponse(200, {"id": "op-2", "status": "Failed", "error": {"message": "bad recipient"}}),
        ]
    )
    with pytest.raises(NotificationError, match="bad recipient") as excinfo:
        await _notifier(session).send(_request())
    assert excinfo.value.message_id == "op-2"


@pytest.mark.asyncio
async def test_operation_still_running_after_max_polls() -> None:
    running = FakeResponse(200, {"id": "op-3", "status": "Running"})
    session = FakeSession(
        responses=[
            FakeResponse(202, {"id": "op-3"}, {"operation-location": "https://fleet.communication.azure.com/op-3"}),
            running,
            running,
            running,
        ]
    )
    with pytest.raises(NotificationError, match="still pending"):
        await _notifier(session).send(_request())


@pytest.mark.asyncio
async def test_transport_error_raises_notification_error() -> None:
    session = FakeSession(responses=[aiohttp.ClientConnectionError("reset by peer")])
    with pytest.raises(NotificationError):
        await _notifier(session).send(_request())


@pytest.mark.asyncio
async def test_external_session_is_not_closed() -> None:
    session = FakeSession(responses=[])
    async with _notifier(session):
        pass
    assert not session.closed
