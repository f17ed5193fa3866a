"""Shared, long-lived resources: the store connection pool and the notifier.

One :class:`Resources` instance is created at process start and handed to
every component. Each resource is opened at most once, behind a lock, the
first time it is requested, and released in reverse order on ``close()``.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any

from fencewatch.config import FenceWatchConfig
from fencewatch.exceptions import FenceWatchError
from fencewatch.notify.acs import AcsEmailNotifier
from fencewatch.notify.base import Notifier
from fencewatch.store.base import ViolationStore
from fencewatch.store.memory import MemoryViolationStore
from fencewatch.store.mongo import MongoViolationStore

_logger = logging.getLogger(__name__)


class Resources:
    """Owner of the process-wide store and notifier handles.

    Usage::

        async with Resources(config) as resources:
            store = await resources.store()
            notifier = await resources.notifier()

    A ``store`` passed in is owned by the instance and closed with it.
    """

    def __init__(
        self,
        config: FenceWatchConfig,
        *,
        store: ViolationStore | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        self._config = config
        self._store = store
        self._notifier = notifier
        self._lock = asyncio.Lock()
        self._stack = contextlib.AsyncExitStack()
        self._closed = False
        if store is not None:
            self._stack.push_async_callback(store.close)

    async def __aenter__(self) -> Resources:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    def _require_open(self) -> None:
        if self._closed:
            raise FenceWatchError("Resources already closed")

    async def store(self) -> ViolationStore:
        """Return the shared store, connecting on first use."""
        async with self._lock:
            self._require_open()
            if self._store is None:
                self._store = await self._open_store()
                self._stack.push_async_callback(self._store.close)
            return self._store

    async def notifier(self) -> Notifier:
        """Return the shared notifier, opening its HTTP session on first use."""
        async with self._lock:
            self._require_open()
            if self._notifier is None:
                connection_string, sender = self._config.require_notifier()
                self._notifier = await self._stack.enter_async_context(
                    AcsEmailNotifier(connection_string, sender),
                )
                _logger.debug("Email notifier ready sender=%s", sender)
            return self._notifier

    async def _open_store(self) -> ViolationStore:
        config = self._config
        if config.store_url:
            return await MongoViolationStore.connect(
                config.store_url,
                config.database,
                timeout=config.operation_timeout,
                dedupe_open_violations=config.dedupe_open_violations,
            )
        _logger.warning("MONGODB_CONNECTION_STRING not set; using in-process store (data is not durable)")
        return MemoryViolationStore()

    async def close(self) -> None:
        """Release everything opened through this handle."""
        async with self._lock:
            if self._closed:
                return
            self._closed = True
            await self._stack.aclose()
            _logger.debug("Shared resources released")
