"""HMAC-SHA256 request signing for Azure Communication Services.

String to sign::

    <METHOD>\\n<path-and-query>\\n<x-ms-date>;<host>;<x-ms-content-sha256>

The signature is ``base64(HMAC-SHA256(base64decode(access_key), string))``.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
from datetime import datetime
from email.utils import format_datetime

SIGNED_HEADERS = "x-ms-date;host;x-ms-content-sha256"


def content_hash(body: bytes) -> str:
    """Base64 SHA-256 digest of the request body."""
    return base64.b64encode(hashlib.sha256(body).digest()).decode("ascii")


def http_date(moment: datetime) -> str:
    """RFC 1123 date in GMT, as expected by ``x-ms-date``."""
    return format_datetime(moment, usegmt=True)


def build_string_to_sign(method: str, path_and_query: str, date: str, host: str, body_hash: str) -> str:
    return f"{method.upper()}\n{path_and_query}\n{date};{host};{body_hash}"


def sign(string_to_sign: str, access_key: str) -> str:
    key = base64.b64decode(access_key)
    digest = hmac.new(key, string_to_sign.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def signed_headers(
    *,
    method: str,
    host: str,
    path_and_query: str,
    body: bytes,
    access_key: str,
    now: datetime,
) -> dict[str, str]:
    """Headers that authenticate one request."""
    date = http_date(now)
    body_hash = content_hash(body)
    signature = sign(build_string_to_sign(method, path_and_query, date, host, body_hash), access_key)
    return {
        "x-ms-date": date,
        "x-ms-content-sha256": body_hash,
        "authorization": f"HMAC-SHA256 SignedHeaders={SIGNED_HEADERS}&Signature={signature}",
    }
