"""MQTT adapter encapsulating paho-mqtt client usage."""

from __future__ import annotations

import asyncio
import concurrent.futures
import contextlib
import logging
import uuid
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    List,
    Optional,
    Set,
)

import paho.mqtt.client as mqtt

from .. import constants
from ..config import BrokerConfig, TimeoutConfig
from ..errors import TransportError

LOGGER = logging.getLogger(__name__)
PAHO_LOGGER = logging.getLogger("paho.mqtt.client")

MessageHandler = Callable[[str, bytes], Awaitable[None] | None]
PayloadHandler = Callable[[bytes], Awaitable[None] | None]


class MQTTConnectionError(TransportError):
    """Raised when the MQTT client fails to talk to the broker."""


def new_client_id() -> str:
    return f"{constants.APP_NAME}-{uuid.uuid4().hex[:8]}"


def _is_failure(code: Any) -> bool:
    flag = getattr(code, "is_failure", None)
    if flag is not None:
        return bool(flag)
    return int(code) >= 0x80


class MQTTClient:
    """Async-friendly wrapper over the threaded paho-mqtt client."""

    def __init__(
        self,
        config: BrokerConfig,
        *,
        client_id: str,
        keepalive: Optional[int] = None,
    ) -> None:
        self.config = config
        self.client_id = client_id
        self.keepalive = keepalive or config.keepalive

        self._client: Optional[mqtt.Client] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._connected_event: Optional[asyncio.Event] = None
        self._disconnect_event: Optional[asyncio.Event] = None
        self._message_handler: Optional[MessageHandler] = None
        self._last_connect_rc: Any = None
        self._connect_failed = False
        self._connected: bool = False
        self._pending_subscriptions: Dict[int, asyncio.Future[List[Any]]] = {}
        self._handler_futures: Set[concurrent.futures.Future[Any]] = set()

    async def connect(self, timeout: float = 30.0) -> None:
        """Connect to the MQTT broker and wait for acknowledgement."""

        self._loop = asyncio.get_running_loop()
        self._connected_event = asyncio.Event()
        self._disconnect_event = asyncio.Event()
        self._last_connect_rc = None
        self._connect_failed = False

        client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=self.client_id)
        client.enable_logger(PAHO_LOGGER)

        if self.config.username:
            client.username_pw_set(self.config.username, self.config.password)

        client.on_connect = self._on_connect
        client.on_connect_fail = self._on_connect_fail
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message
        client.on_subscribe = self._on_subscribe

        self._client = client

        LOGGER.info("Connecting to MQTT broker %s", self.config.uri)

        try:
            client.connect_async(self.config.host, self.config.port, self.keepalive)
        except (OSError, ValueError) as exc:
            self._client = None
            raise MQTTConnectionError(f"Invalid MQTT broker address: {exc}") from exc
        client.loop_start()

        try:
            await asyncio.wait_for(self._connected_event.wait(), timeout=timeout)
            if self._connect_failed:
                raise MQTTConnectionError(
                    f"Unable to reach MQTT broker {self.config.uri}"
                )
            if self._last_connect_rc is None or self._last_connect_rc != 0:
                raise MQTTConnectionError(
                    f"MQTT broker rejected connection (rc={self._last_connect_rc})"
                )
        except asyncio.TimeoutError as exc:
            client.loop_stop()
            self._client = None
            raise MQTTConnectionError("Timed out connecting to MQTT broker") from exc
        except (MQTTConnectionError, asyncio.CancelledError):
            client.loop_stop()
            self._client = None
            raise

    async def disconnect(self, timeout: float = 5.0) -> None:
        """Gracefully disconnect from the broker."""

        if not self._client:
            return

        assert self._disconnect_event is not None

        self._client.disconnect()

        try:
            await asyncio.wait_for(self._disconnect_event.wait(), timeout=timeout)
        finally:
            self._client.loop_stop()
            self._client = None
            self._connected = False

    async def publish(
        self,
        topic: str,
        payload: bytes,
        qos: int = constants.MQTT_QOS,
        retain: bool = False,
        timeout: float = 10.0,
    ) -> None:
        """Publish ``payload`` and wait until the broker acknowledges it."""

        if not self._client:
            raise RuntimeError("MQTT client not connected")

        info = self._client.publish(topic, payload, qos=qos, retain=retain)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise MQTTConnectionError(f"Publish failed with rc={info.rc}")

        try:
            await asyncio.to_thread(info.wait_for_publish, timeout)
        except (RuntimeError, ValueError) as exc:
            raise MQTTConnectionError(f"Publish failed: {exc}") from exc

        if not info.is_published():
            raise MQTTConnectionError(
                f"Timed out waiting for publish acknowledgement on {topic}"
            )
        LOGGER.debug("Published %d bytes to %s", len(payload), topic)

    async def subscribe(
        self, topic: str, qos: int = constants.MQTT_QOS, timeout: float = 10.0
    ) -> None:
        """Subscribe to ``topic`` and wait for the broker's SUBACK."""

        if not self._client or not self._loop:
            raise RuntimeError("MQTT client not connected")

        result, mid = self._client.subscribe(topic, qos=qos)
        if result != mqtt.MQTT_ERR_SUCCESS:
            raise MQTTConnectionError(f"Subscribe failed with rc={result}")

        future: asyncio.Future[List[Any]] = self._loop.create_future()
        self._pending_subscriptions[mid] = future
        try:
            codes = await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise MQTTConnectionError(
                f"Timed out waiting for subscription acknowledgement on {topic}"
            ) from exc
        finally:
            self._pending_subscriptions.pop(mid, None)

        if any(_is_failure(code) for code in codes):
            raise MQTTConnectionError(f"Broker refused subscription to {topic}: {codes}")
        LOGGER.debug("Subscribed to %s", topic)

    def set_message_handler(self, handler: Optional[MessageHandler]) -> None:
        self._message_handler = handler

    def is_connected(self) -> bool:
        return self._connected

    async def cancel_handlers(self) -> None:
        """Cancel message handlers that are still running and wait for them to settle."""

        pending = [future for future in list(self._handler_futures) if not future.done()]
        for future in pending:
            future.cancel()
        if pending:
            await asyncio.gather(
                *(asyncio.wrap_future(future) for future in pending),
                return_exceptions=True,
            )

    # ------------------------------------------------------------------
    # Internal callbacks bridging the threaded paho callbacks into asyncio
    # ------------------------------------------------------------------
    def _signal(self, event: Optional[asyncio.Event]) -> None:
        if event is None:
            return
        if self._loop:
            self._loop.call_soon_threadsafe(event.set)
        else:
            event.set()

    def _on_connect(self, client: mqtt.Client, userdata, flags, reason_code, properties) -> None:
        self._last_connect_rc = reason_code
        if reason_code == 0:
            LOGGER.info("Connected to MQTT broker")
            self._connected = True
        else:
            LOGGER.error("MQTT connection failed with rc=%s", reason_code)
            self._connected = False
        self._signal(self._connected_event)

    def _on_connect_fail(self, client: mqtt.Client, userdata) -> None:
        LOGGER.warning("MQTT broker %s is unreachable", self.config.uri)
        self._connect_failed = True
        self._signal(self._connected_event)

    def _on_disconnect(
        self, client: mqtt.Client, userdata, disconnect_flags, reason_code, properties
    ) -> None:
        LOGGER.info("Disconnected from MQTT broker (rc=%s)", reason_code)
        self._connected = False
        self._signal(self._disconnect_event)

    def _on_subscribe(
        self, client: mqtt.Client, userdata, mid: int, reason_codes, properties
    ) -> None:
        if self._loop:
            self._loop.call_soon_threadsafe(
                self._resolve_subscription, mid, list(reason_codes)
            )

    def _resolve_subscription(self, mid: int, codes: Iterable[Any]) -> None:
        future = self._pending_subscriptions.get(mid)
        if future is not None and not future.done():
            future.set_result(list(codes))

    def _on_message(
        self, client: mqtt.Client, userdata, message: mqtt.MQTTMessage
    ) -> None:
        handler = self._message_handler
        loop = self._loop
        if not handler or not loop:
            return

        try:
            result = handler(message.topic, message.payload)
            if asyncio.iscoroutine(result):
                future = asyncio.run_coroutine_threadsafe(result, loop)
                self._handler_futures.add(future)
                future.add_done_callback(self._handler_futures.discard)
        except Exception:  # pragma: no cover
            LOGGER.exception("MQTT message handler raised an exception")


class Subscription:
    """Bounded inbox fed by an active MQTT subscription."""

    def __init__(self, topic: str, *, maxsize: int = 64) -> None:
        self.topic = topic
        self._queue: asyncio.Queue[bytes] = asyncio.Queue(maxsize=maxsize)

    async def receive(self) -> bytes:
        return await self._queue.get()

    async def _handle(self, topic: str, payload: bytes) -> None:
        try:
            self._queue.put_nowait(bytes(payload))
        except asyncio.QueueFull:
            LOGGER.warning("Dropping message on %s; inbox is full", topic)


ClientFactory = Callable[..., MQTTClient]


class MQTTChannel:
    """Short-lived broker sessions: one connection per publish or subscription."""

    def __init__(
        self,
        broker: BrokerConfig,
        timeouts: Optional[TimeoutConfig] = None,
        *,
        queue_size: int = 64,
        client_factory: ClientFactory = MQTTClient,
    ) -> None:
        self.broker = broker
        self.timeouts = timeouts or TimeoutConfig()
        self.queue_size = queue_size
        self._client_factory = client_factory

    @contextlib.asynccontextmanager
    async def session(self) -> AsyncIterator[MQTTClient]:
        """Connect with a fresh client id and always disconnect on exit."""

        client = self._client_factory(self.broker, client_id=new_client_id())
        await client.connect(timeout=self.timeouts.connect_seconds)
        try:
            yield client
        finally:
            try:
                await client.disconnect(timeout=self.timeouts.disconnect_grace_seconds)
            except asyncio.TimeoutError:
                LOGGER.debug("Broker did not confirm disconnect within grace period")

    async def publish(self, topic: str, payload: bytes) -> None:
        async with self.session() as client:
            await client.publish(
                topic,
                payload,
                qos=constants.MQTT_QOS,
                retain=False,
                timeout=self.timeouts.ack_seconds,
            )

    @contextlib.asynccontextmanager
    async def subscription(self, topic: str) -> AsyncIterator[Subscription]:
        async with self.session() as client:
            inbox = Subscription(topic, maxsize=self.queue_size)
            client.set_message_handler(inbox._handle)
            await client.subscribe(
                topic, qos=constants.MQTT_QOS, timeout=self.timeouts.ack_seconds
            )
            try:
                yield inbox
            finally:
                client.set_message_handler(None)
                await client.cancel_handlers()

    async def subscribe(
        self, topic: str, on_message: PayloadHandler, cancel: asyncio.Event
    ) -> None:
        """Forward every payload on ``topic`` to ``on_message`` until ``cancel`` is set.

        Each payload is handled in its own task, so handlers may complete
        out of order.
        """

        async def _dispatch(_topic: str, payload: bytes) -> None:
            try:
                result = on_message(bytes(payload))
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                LOGGER.exception("Subscription handler for %s failed", topic)

        async with self.session() as client:
            client.set_message_handler(_dispatch)
            await client.subscribe(
                topic, qos=constants.MQTT_QOS, timeout=self.timeouts.ack_seconds
            )
            try:
                await cancel.wait()
            finally:
                client.set_message_handler(None)
                await client.cancel_handlers()
