"""Protocol definitions for the transports the controller drives."""

from __future__ import annotations

import asyncio
from typing import AsyncContextManager, Awaitable, Callable, Optional, Protocol

PayloadCallback = Callable[[bytes], Awaitable[None] | None]


class Inbox(Protocol):
    """Source of raw inbound payloads owned by one operation."""

    async def receive(self) -> bytes:
        """Wait for the next payload."""
        ...


class DatagramTransport(Protocol):
    """Local-network broadcast transport."""

    async def broadcast(self, payload: bytes) -> None:
        """Send ``payload`` to every host on the subnet, raising TransportError on failure."""
        ...

    def listener(self, port: Optional[int] = None) -> AsyncContextManager[Inbox]:
        """Bind the receive port for the lifetime of the context."""
        ...

    async def listen(self, on_receive: PayloadCallback, cancel: asyncio.Event) -> None:
        ...


class BrokerTransport(Protocol):
    """Publish/subscribe transport addressed by topic."""

    async def publish(self, topic: str, payload: bytes) -> None:
        """Deliver ``payload`` at least once, raising TransportError on failure."""
        ...

    def subscription(self, topic: str) -> AsyncContextManager[Inbox]:
        """Subscribe to ``topic`` for the lifetime of the context."""
        ...

    async def subscribe(
        self, topic: str, on_message: PayloadCallback, cancel: asyncio.Event
    ) -> None:
        ...
