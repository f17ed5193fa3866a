"""Timer triggers for the scheduled jobs.

A :class:`JobRunner` fires its job on every schedule tick as an independent
task. A run that outlasts the tick interval does not delay the next one, so
jobs must be safe to run concurrently with themselves.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import math
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime, time, timedelta
from typing import Any, Protocol

from fencewatch.models._base import utcnow

_logger = logging.getLogger(__name__)


class Schedule(Protocol):
    def next_fire(self, now: datetime) -> datetime: ...


@dataclass(frozen=True)
class IntervalSchedule:
    """Fires on multiples of ``seconds`` since the epoch (every 60s = top of each minute)."""

    seconds: float

    def __post_init__(self) -> None:
        if self.seconds <= 0:
            raise ValueError("interval must be positive")

    def next_fire(self, now: datetime) -> datetime:
        ts = now.timestamp()
        slot = math.floor(ts / self.seconds) + 1
        return datetime.fromtimestamp(slot * self.seconds, tz=UTC)


@dataclass(frozen=True)
class DailySchedule:
    """Fires once a day at ``at`` (UTC when naive)."""

    at: time

    def next_fire(self, now: datetime) -> datetime:
        tz = self.at.tzinfo or UTC
        local_now = now.astimezone(tz)
        candidate = datetime.combine(local_now.date(), self.at.replace(tzinfo=None), tzinfo=tz)
        if candidate <= local_now:
            candidate += timedelta(days=1)
        return candidate.astimezone(UTC)


class JobRunner:
    """Runs ``job`` on ``schedule`` until stopped."""

    def __init__(
        self,
        name: str,
        job: Callable[[], Awaitable[Any]],
        schedule: Schedule,
        *,
        run_on_start: bool = False,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.name = name
        self._job = job
        self._schedule = schedule
        self._run_on_start = run_on_start
        self._clock = clock
        self._stopping = asyncio.Event()
        self._loop_task: asyncio.Task[None] | None = None
        self._runs: set[asyncio.Task[None]] = set()
        self.completed = 0
        self.failed = 0

    @property
    def in_flight(self) -> int:
        return len(self._runs)

    def start(self) -> None:
        if self._loop_task is not None:
            return
        self._stopping.clear()
        self._loop_task = asyncio.get_running_loop().create_task(self._loop(), name=f"{self.name}-timer")

    def trigger(self) -> asyncio.Task[None]:
        """Start one run now, independently of the timer."""
        task = asyncio.get_running_loop().create_task(self._run_once(), name=f"{self.name}-run")
        self._runs.add(task)
        task.add_done_callback(self._runs.discard)
        return task

    async def _loop(self) -> None:
        if self._run_on_start:
            self.trigger()
        while not self._stopping.is_set():
            now = self._clock()
            fire_at = self._schedule.next_fire(now)
            delay = max(0.0, (fire_at - now).total_seconds())
            _logger.debug("%s next run at %s", self.name, fire_at.isoformat())
            try:
                await asyncio.wait_for(self._stopping.wait(), delay)
            except TimeoutError:
                self.trigger()

    async def _run_once(self) -> None:
        _logger.debug("%s run started", self.name)
        try:
            result = await self._job()
        except Exception:
            self.failed += 1
            _logger.exception("%s run failed; retrying on next schedule", self.name)
            return
        self.completed += 1
        _logger.debug("%s run finished: %s", self.name, result)

    async def stop(self, timeout: float | None = None) -> bool:
        """Stop the timer and wait for in-flight runs.

        Returns ``False`` when runs were still active after ``timeout``;
        those are cancelled.
        """
        self._stopping.set()
        loop_task = self._loop_task
        self._loop_task = None
        if loop_task is not None:
            await loop_task

        pending = set(self._runs)
        if not pending:
            return True
        _logger.info("Waiting for %d in-flight %s runs", len(pending), self.name)
        _done, still_pending = await asyncio.wait(pending, timeout=timeout)
        for task in still_pending:
            task.cancel()
        for task in still_pending:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if still_pending:
            _logger.warning("Cancelled %d %s runs after %ss", len(still_pending), self.name, timeout)
            return False
        return True
