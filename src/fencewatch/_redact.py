"""Helpers for safe logging.

fencewatch handles connection strings with embedded credentials and owner
email addresses. This module redacts them before they reach the logs.
"""

from __future__ import annotations

import re
from collections.abc import Mapping

_KEY_VALUE_SECRET = re.compile(r"(?i)\b(accesskey|sharedaccesskey|password|pwd)=([^;]+)")
_URL_PASSWORD = re.compile(r"(://[^:/@;]+):([^@/]+)@")
_SIGNATURE = re.compile(r"(Signature=)[^&\s]+")


def redact_connection_string(value: str) -> str:
    """Mask credentials in a URL or ``key=value;`` connection string."""
    value = _URL_PASSWORD.sub(r"\1:<redacted>@", value)
    return _KEY_VALUE_SECRET.sub(lambda m: f"{m.group(1)}=<redacted>", value)


def mask_email(address: str) -> str:
    """Return ``a***@example.com`` for ``alice@example.com``."""
    local, sep, domain = address.partition("@")
    if not sep:
        return "<redacted>"
    return f"{local[:1]}***@{domain}"


def redact_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Copy of outgoing request *headers* with the HMAC signature masked.

    The scheme and the signed header list stay visible so a rejected
    signature can still be diagnosed from a debug log.
    """
    return {
        name: _SIGNATURE.sub(r"\1<redacted>", value) if name.lower() == "authorization" else value
        for name, value in headers.items()
    }
