"""Long-running service: queue consumer plus the two scheduled jobs."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import Any, Protocol

from fencewatch._redact import redact_connection_string
from fencewatch.config import FenceWatchConfig
from fencewatch.geofence import Geofence, load_geofence
from fencewatch.ingestion.consumer import FixConsumer
from fencewatch.ingestion.mqtt import FixQueueRuntime, parse_broker_url
from fencewatch.jobs.purge import PurgeSweeper
from fencewatch.jobs.scanner import NotificationScanner
from fencewatch.jobs.schedule import DailySchedule, IntervalSchedule, JobRunner
from fencewatch.resources import Resources

_logger = logging.getLogger(__name__)


class QueueRuntime(Protocol):
    def start(self) -> None: ...

    def stop_accepting(self) -> None: ...

    async def drain(self, timeout: float | None = None) -> bool: ...

    def stop(self) -> None: ...


QueueFactory = Callable[[Callable[[bytes], Awaitable[Any]]], QueueRuntime]


class FenceWatchService:
    """Wires the consumer, scanner and sweeper around one :class:`Resources`.

    Parameters
    ----------
    config : FenceWatchConfig
        Service configuration.
    resources : Resources
        Shared store and notifier handle. The service closes it on stop.
    geofence : Geofence, optional
        Boundary to evaluate against; built from ``config`` when omitted.
    queue_factory : callable, optional
        Builds the queue runtime for a message handler. Defaults to an MQTT
        subscriber on ``config.queue_url``.
    """

    def __init__(
        self,
        config: FenceWatchConfig,
        resources: Resources,
        *,
        geofence: Geofence | None = None,
        queue_factory: QueueFactory | None = None,
    ) -> None:
        self._config = config
        self._resources = resources
        self._geofence = geofence
        self._queue_factory = queue_factory or self._mqtt_runtime
        self._queue: QueueRuntime | None = None
        self._runners: list[JobRunner] = []
        self._stop_requested = asyncio.Event()
        self._started = False

    async def __aenter__(self) -> FenceWatchService:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()

    def _mqtt_runtime(self, handler: Callable[[bytes], Awaitable[Any]]) -> QueueRuntime:
        config = self._config
        return FixQueueRuntime(
            loop=asyncio.get_running_loop(),
            handler=handler,
            broker=parse_broker_url(config.queue_url),
            topic=config.queue_name,
            client_id=config.queue_client_id,
            keepalive=config.mqtt_keepalive,
            max_concurrent=config.max_concurrent_messages,
        )

    async def start(self) -> None:
        if self._started:
            return
        config = self._config
        geofence = self._geofence or load_geofence(config)
        store = await self._resources.store()
        # Notifier config is checked before subscribing.
        notifier = await self._resources.notifier()

        consumer = FixConsumer(
            store,
            geofence,
            operation_timeout=config.operation_timeout,
            dedupe_open_violations=config.dedupe_open_violations,
        )
        scanner = NotificationScanner(
            store,
            notifier,
            page_size=config.scan_page_size,
            claim_lease=timedelta(seconds=config.claim_lease),
            operation_timeout=config.operation_timeout,
        )
        sweeper = PurgeSweeper(
            store,
            retention=timedelta(seconds=config.purge_retention),
            operation_timeout=config.operation_timeout,
        )
        self._runners = [
            JobRunner("scan", scanner.run, IntervalSchedule(config.scan_interval)),
            JobRunner("purge", sweeper.run, DailySchedule(config.purge_at)),
        ]

        self._queue = self._queue_factory(consumer.handle)
        _logger.info(
            "Starting fencewatch queue=%s topic=%s",
            redact_connection_string(config.queue_url),
            config.queue_name,
        )
        self._queue.start()
        for runner in self._runners:
            runner.start()
        self._started = True

    def request_stop(self) -> None:
        self._stop_requested.set()

    async def wait_stopped(self) -> None:
        await self._stop_requested.wait()

    async def stop(self) -> None:
        """Stop intake, let in-flight work finish, then release resources."""
        if not self._started:
            await self._resources.close()
            return
        self._started = False
        grace = self._config.shutdown_grace
        queue = self._queue
        self._queue = None

        if queue is not None:
            queue.stop_accepting()
        await asyncio.gather(*(runner.stop(grace) for runner in self._runners))
        if queue is not None:
            await queue.drain(grace)
            queue.stop()
        self._runners = []
        await self._resources.close()
        _logger.info("fencewatch stopped")

    async def run_forever(self) -> None:
        """Run until SIGINT/SIGTERM or :meth:`request_stop`."""
        loop = asyncio.get_running_loop()
        installed: list[signal.Signals] = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError, RuntimeError):
                loop.add_signal_handler(sig, self.request_stop)
                installed.append(sig)
        try:
            async with self:
                await self.wait_stopped()
                _logger.info("Shutdown requested")
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)
