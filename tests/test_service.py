from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import pytest

from fencewatch.config import FenceWatchConfig
from fencewatch.exceptions import FenceWatchConfigError, FenceWatchError
from fencewatch.models import IngestStatus, VehicleOwnership
from fencewatch.notify import DeliveryReceipt, NotificationRequest
from fencewatch.resources import Resources
from fencewatch.service import FenceWatchService
from fencewatch.store import MemoryViolationStore


@dataclass
class FakeNotifier:
    sent: list[NotificationRequest] = field(default_factory=list)

    async def send(self, request: NotificationRequest) -> DeliveryReceipt:
        self.sent.append(request)
        return DeliveryReceipt(message_id=f"msg-{len(self.sent)}")


class TrackingStore(MemoryViolationStore):
    def __init__(self, events: list[str]) -> None:
        super().__init__()
        self.events = events

    async def close(self) -> None:
        self.events.append("store.close")


@dataclass
class FakeQueue:
    handler: Callable[[bytes], Awaitable[Any]]
    events: list[str]

    def start(self) -> None:
        self.events.append("queue.start")

    def stop_accepting(self) -> None:
        self.events.append("queue.stop_accepting")

    async def drain(self, timeout: float | None = None) -> bool:
        self.events.append("queue.drain")
        return True

    def stop(self) -> None:
        self.events.append("queue.stop")


def _config() -> FenceWatchConfig:
    return FenceWatchConfig(scan_interval=3600, shutdown_grace=1.0)


def _service(events: list[str], store: MemoryViolationStore) -> tuple[FenceWatchService, list[FakeQueue]]:
    queues: list[FakeQueue] = []

    def factory(handler: Callable[[bytes], Awaitable[Any]]) -> FakeQueue:
        queue = FakeQueue(handler, events)
        queues.append(queue)
        return queue

    resources = Resources(_config(), store=store, notifier=FakeNotifier())
    return FenceWatchService(_config(), resources, queue_factory=factory), queues


@pytest.mark.asyncio
async def test_service_routes_queue_messages_to_consumer() -> None:
    events: list[str] = []
    store = TrackingStore(events)
    await store.add_owner(VehicleOwnership(vid="V1", email="a@x.com"))
    service, queues = _service(events, store)

    async with service:
        body = json.dumps(
            {"timestamp": "2025-03-01T12:00:00Z", "vehicleId": "V1", "latitude": 50, "longitude": 50},
        ).encode()
        outcome = await queues[0].handler(body)

    assert outcome.status == IngestStatus.RECORDED
    assert len(await store.find_unsent()) == 1


@pytest.mark.asyncio
async def test_service_shutdown_order() -> None:
    events: list[str] = []
    service, _ = _service(events, TrackingStore(events))

    await service.start()
    await service.stop()

    assert events == [
        "queue.start",
        "queue.stop_accepting",
        "queue.drain",
        "queue.stop",
        "store.close",
    ]


@pytest.mark.asyncio
async def test_run_forever_returns_after_stop_request() -> None:
    events: list[str] = []
    service, _ = _service(events, TrackingStore(events))

    service.request_stop()
    await asyncio.wait_for(service.run_forever(), timeout=2.0)

    assert events[0] == "queue.start"
    assert events[-1] == "store.close"


@pytest.mark.asyncio
async def test_resources_initialise_store_once() -> None:
    resources = Resources(FenceWatchConfig())
    opened = 0
    open_store = resources._open_store

    async def counting_open() -> Any:
        nonlocal opened
        opened += 1
        await asyncio.sleep(0)
        return await open_store()

    resources._open_store = counting_open  # type: ignore[method-assign]

    stores = await asyncio.gather(*(resources.store() for _ in range(10)))

    assert opened == 1
    assert all(s is stores[0] for s in stores)
    assert isinstance(stores[0], MemoryViolationStore)
    await resources.close()


@pytest.mark.asyncio
async def test_resources_refuse_use_after_close() -> None:
    resources = Resources(FenceWatchConfig())
    await resources.close()
    await resources.close()
    with pytest.raises(FenceWatchError):
        await resources.store()


@pytest.mark.asyncio
async def test_resources_notifier_requires_configuration() -> None:
    async with Resources(FenceWatchConfig()) as resources:
        with pytest.raises(FenceWatchConfigError):
            await resources.notifier()


@pytest.mark.asyncio
async def test_service_does_not_subscribe_without_notifier() -> None:
    events: list[str] = []

    def factory(handler: Callable[[bytes], Awaitable[Any]]) -> FakeQueue:
        return FakeQueue(handler, events)

    resources = Resources(_config(), store=TrackingStore(events))
    service = FenceWatchService(_config(), resources, queue_factory=factory)

    with pytest.raises(FenceWatchConfigError):
        await service.start()
    await service.stop()

    assert events == ["store.close"]
