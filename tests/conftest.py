import asyncio
import contextlib
from typing import Any, Iterable, List, Optional, Tuple

import pytest

from smartplug_control.config import ControlConfig, default_config
from smartplug_control.errors import TransportError


class FakeInbox:
    """In-memory stand-in for a UDP listener or MQTT subscription."""

    def __init__(self, payloads: Iterable[bytes] = ()) -> None:
        self._queue: asyncio.Queue[bytes] = asyncio.Queue()
        self.reads = 0
        for payload in payloads:
            self.push(payload)

    def push(self, payload: bytes) -> None:
        self._queue.put_nowait(payload)

    async def receive(self) -> bytes:
        self.reads += 1
        return await self._queue.get()


class FakeUDP:
    def __init__(self, events: List[Tuple[str, Any]]) -> None:
        self.events = events
        self.inbox = FakeInbox()
        self.broadcasts: List[bytes] = []
        self.broadcast_error: Optional[TransportError] = None
        self.listen_error: Optional[TransportError] = None
        self.replies: List[bytes] = []
        self.reply_delay: Optional[float] = None
        self.open_listeners = 0
        self.closed_listeners = 0

    async def broadcast(self, payload: bytes) -> None:
        self.events.append(("udp.broadcast", payload))
        if self.broadcast_error is not None:
            raise self.broadcast_error
        self.broadcasts.append(payload)
        for reply in self.replies:
            if self.reply_delay is None:
                self.inbox.push(reply)
            else:
                asyncio.get_running_loop().call_later(
                    self.reply_delay, self.inbox.push, reply
                )

    @contextlib.asynccontextmanager
    async def listener(self, port: Optional[int] = None):
        self.events.append(("udp.listen", port))
        if self.listen_error is not None:
            raise self.listen_error
        self.open_listeners += 1
        try:
            yield self.inbox
        finally:
            self.open_listeners -= 1
            self.closed_listeners += 1


class FakeMQTT:
    def __init__(self, events: List[Tuple[str, Any]]) -> None:
        self.events = events
        self.inbox = FakeInbox()
        self.published: List[Tuple[str, bytes]] = []
        self.subscriptions: List[str] = []
        self.publish_error: Optional[TransportError] = None
        self.subscribe_error: Optional[TransportError] = None
        self.messages: List[bytes] = []
        self.open_sessions = 0

    async def publish(self, topic: str, payload: bytes) -> None:
        self.events.append(("mqtt.publish", (topic, payload)))
        self.published.append((topic, payload))
        if self.publish_error is not None:
            raise self.publish_error

    @contextlib.asynccontextmanager
    async def subscription(self, topic: str):
        self.events.append(("mqtt.subscribe", topic))
        if self.subscribe_error is not None:
            raise self.subscribe_error
        self.subscriptions.append(topic)
        self.open_sessions += 1
        try:
            yield self.inbox
        finally:
            self.open_sessions -= 1

    async def subscribe(self, topic: str, on_message, cancel: asyncio.Event) -> None:
        async with self.subscription(topic):
            tasks = [asyncio.create_task(on_message(message)) for message in self.messages]
            try:
                await cancel.wait()
            finally:
                await asyncio.gather(*tasks)


@pytest.fixture
def events() -> List[Tuple[str, Any]]:
    return []


@pytest.fixture
def fake_udp(events) -> FakeUDP:
    return FakeUDP(events)


@pytest.fixture
def fake_mqtt(events) -> FakeMQTT:
    return FakeMQTT(events)


@pytest.fixture
def config() -> ControlConfig:
    config = default_config()
    config.broker.host = "broker.local"
    config.timeouts.discover_seconds = 1.0
    config.timeouts.progress_interval_seconds = 0.05
    config.timeouts.settle_seconds = 0.0
    config.timeouts.state_check_seconds = 0.5
    return config
