"""Bounded awaiting for store and notifier calls."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from fencewatch.exceptions import OperationTimeoutError

T = TypeVar("T")


async def bounded(awaitable: Awaitable[T], *, timeout: float | None, operation: str) -> T:
    """Await *awaitable*, converting a timeout into :class:`OperationTimeoutError`.

    ``timeout=None`` or ``<= 0`` disables the bound.
    """
    if timeout is None or timeout <= 0:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except TimeoutError as exc:
        raise OperationTimeoutError(
            f"{operation} did not complete within {timeout:g}s",
            operation=operation,
            timeout=timeout,
        ) from exc
