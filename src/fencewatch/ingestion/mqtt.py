"""MQTT queue adapter for inbound GPS fixes.

paho-mqtt runs its network loop on a background thread; every received
message is handed to the asyncio loop and processed as its own task.
Messages are subscribed at QoS 1 with manual acknowledgement:

- handler succeeded, or the fix is malformed: PUBACK
- transient failure: retried locally with backoff, and left unacknowledged
  once ``max_deliveries`` is exhausted

The broker resends an unacknowledged QoS 1 message only when the session
reconnects. After ``redelivery_delay`` the runtime therefore cycles the
connection once for all messages abandoned in that window.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, cast
from urllib.parse import unquote, urlsplit

import paho.mqtt.client as mqtt
from paho.mqtt.packettypes import PacketTypes
from paho.mqtt.properties import Properties

from fencewatch.exceptions import FenceWatchConfigError, InvalidFixError, TransientError

SESSION_EXPIRY_SECONDS = 24 * 3600


@dataclass(frozen=True)
class BrokerAddress:
    """Broker connection details parsed from ``mqtt[s]://user:pass@host:port``."""

    host: str
    port: int
    tls: bool = False
    username: str | None = None
    password: str | None = None


def parse_broker_url(url: str) -> BrokerAddress:
    parts = urlsplit(url.strip())
    if parts.scheme not in ("mqtt", "mqtts", "tcp", "ssl"):
        raise FenceWatchConfigError(f"Unsupported queue URL scheme {parts.scheme!r}")
    if not parts.hostname:
        raise FenceWatchConfigError("Queue URL has no host")
    tls = parts.scheme in ("mqtts", "ssl")
    try:
        port = parts.port or (8883 if tls else 1883)
    except ValueError as exc:
        raise FenceWatchConfigError(f"Queue URL has an invalid port: {exc}") from exc
    return BrokerAddress(
        host=parts.hostname,
        port=port,
        tls=tls,
        username=unquote(parts.username) if parts.username else None,
        password=unquote(parts.password) if parts.password else None,
    )


@dataclass
class QueueStats:
    """Running counters reported when the runtime stops."""

    received: int = 0
    acked: int = 0
    invalid: int = 0
    retried: int = 0
    abandoned: int = 0
    reconnects: int = 0


class FixQueueRuntime:
    """Threaded paho-mqtt subscriber that feeds fixes to an async handler."""

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        handler: Callable[[bytes], Awaitable[Any]],
        broker: BrokerAddress,
        topic: str,
        client_id: str,
        keepalive: int = 60,
        max_concurrent: int = 16,
        max_deliveries: int = 5,
        retry_delay: float = 2.0,
        redelivery_delay: float = 30.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self._loop = loop
        self._handler = handler
        self._broker = broker
        self._topic = topic
        self._client_id = client_id
        self._keepalive = keepalive
        self._semaphore = asyncio.Semaphore(max(1, max_concurrent))
        self._max_deliveries = max(1, max_deliveries)
        self._retry_delay = retry_delay
        self._redelivery_delay = redelivery_delay
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._accepting = False
        self._tasks: set[asyncio.Task[None]] = set()
        self._redelivery: asyncio.Task[None] | None = None
        self.stats = QueueStats()

    @property
    def is_running(self) -> bool:
        return self._client is not None

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def start(self) -> None:
        """Connect, subscribe and start the network thread."""
        self._logger.debug(
            "Queue runtime start host=%s port=%s topic=%s client_id=%s",
            self._broker.host,
            self._broker.port,
            self._topic,
            self._client_id,
        )
        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=self._client_id,
            protocol=mqtt.MQTTv5,
            manual_ack=True,
        )
        client.enable_logger(self._logger)
        if self._broker.username is not None:
            client.username_pw_set(self._broker.username, self._broker.password)
        if self._broker.tls:
            client.tls_set()

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.value != 0:
                self._logger.warning("Queue connect failed: %s", reason_code)
                return
            self._logger.info("Queue connected; subscribing topic=%s", self._topic)
            c.subscribe(self._topic, qos=1)

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            self._loop.call_soon_threadsafe(self._dispatch, bytes(msg.payload), msg.mid, msg.qos)

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if self._accepting:
                self._logger.warning("Queue disconnected: %s", reason_code)

        client.on_connect = on_connect
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        properties = Properties(PacketTypes.CONNECT)
        properties.SessionExpiryInterval = SESSION_EXPIRY_SECONDS

        self._accepting = True
        client.connect(
            self._broker.host,
            self._broker.port,
            keepalive=self._keepalive,
            clean_start=False,
            properties=properties,
        )
        client.loop_start()
        self._client = client

    def stop_accepting(self) -> None:
        """Stop taking new messages; in-flight tasks keep running."""
        if not self._accepting:
            return
        self._accepting = False
        if self._redelivery is not None:
            self._redelivery.cancel()
        client = self._client
        if client is not None:
            client.unsubscribe(self._topic)
        self._logger.debug("Queue runtime no longer accepting messages")

    async def drain(self, timeout: float | None = None) -> bool:
        """Wait for in-flight messages. Returns ``False`` if the timeout hit first."""
        pending = set(self._tasks)
        if not pending:
            return True
        self._logger.info("Waiting for %d in-flight GPS fixes", len(pending))
        _done, still_pending = await asyncio.wait(pending, timeout=timeout)
        if still_pending:
            self._logger.warning("%d GPS fixes still in flight after %ss", len(still_pending), timeout)
            return False
        return True

    def stop(self) -> None:
        """Disconnect and stop the network thread."""
        self._accepting = False
        client = self._client
        self._client = None
        if client is None:
            return
        try:
            client.disconnect()
        finally:
            client.loop_stop()
            self._logger.info(
                "Queue runtime stopped received=%d acked=%d invalid=%d retried=%d abandoned=%d reconnects=%d",
                self.stats.received,
                self.stats.acked,
                self.stats.invalid,
                self.stats.retried,
                self.stats.abandoned,
                self.stats.reconnects,
            )

    def _dispatch(self, payload: bytes, mid: int, qos: int) -> None:
        if not self._accepting:
            # Left unacknowledged; the broker redelivers after restart.
            return
        self.stats.received += 1
        task = self._loop.create_task(self._process(payload, mid, qos))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _ack(self, mid: int, qos: int) -> None:
        client = self._client
        if client is None or qos == 0:
            return
        client.ack(mid, qos)
        self.stats.acked += 1

    async def _process(self, payload: bytes, mid: int, qos: int) -> None:
        for delivery in range(1, self._max_deliveries + 1):
            try:
                async with self._semaphore:
                    outcome = await self._handler(payload)
            except InvalidFixError as exc:
                self.stats.invalid += 1
                self._logger.warning("Dropping malformed GPS message mid=%s: %s", mid, exc)
                self._ack(mid, qos)
                return
            except TransientError as exc:
                if delivery >= self._max_deliveries:
                    break
                self.stats.retried += 1
                delay = self._retry_delay * (2 ** (delivery - 1))
                self._logger.warning(
                    "Transient failure on GPS message mid=%s delivery=%d, retrying in %.1fs: %s",
                    mid,
                    delivery,
                    delay,
                    exc,
                )
                await asyncio.sleep(delay)
                continue
            except Exception:
                self._logger.exception("Unexpected failure handling GPS message mid=%s", mid)
                break
            else:
                self._logger.debug("GPS message mid=%s handled: %s", mid, outcome)
                self._ack(mid, qos)
                return

        self.stats.abandoned += 1
        self._logger.error("GPS message mid=%s left unacknowledged for broker redelivery", mid)
        self._request_redelivery()

    def _request_redelivery(self) -> None:
        if not self._accepting or self._redelivery is not None:
            return
        task = self._loop.create_task(self._redeliver())
        self._redelivery = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _redeliver(self) -> None:
        try:
            await asyncio.sleep(self._redelivery_delay)
            client = self._client
            if client is None or not self._accepting:
                return
            self.stats.reconnects += 1
            self._logger.warning("Reconnecting queue session to receive unacknowledged GPS messages again")
            await self._loop.run_in_executor(None, self._cycle_session, client)
        finally:
            self._redelivery = None

    def _cycle_session(self, client: mqtt.Client) -> None:
        client.disconnect()
        client.loop_stop()
        try:
            client.reconnect()
        except OSError as exc:
            # The network loop keeps retrying the connection.
            self._logger.warning("Queue reconnect failed: %s", exc)
        client.loop_start()
