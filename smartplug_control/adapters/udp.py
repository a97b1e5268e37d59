"""UDP broadcast channel used for discovery, adoption and fallback delivery."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import socket
from typing import AsyncIterator, Awaitable, Callable, Optional, Tuple

from ..config import NetworkConfig
from ..errors import TransportError

LOGGER = logging.getLogger(__name__)

DatagramHandler = Callable[[bytes], Awaitable[None] | None]


class _QueueProtocol(asyncio.DatagramProtocol):
    """Pushes every inbound datagram onto a bounded queue."""

    def __init__(self, queue: asyncio.Queue[bytes]) -> None:
        self._queue = queue
        self.closed: asyncio.Future[None] = asyncio.get_running_loop().create_future()

    def datagram_received(self, data: bytes, addr: Tuple[str, int]) -> None:
        LOGGER.debug("Datagram from %s:%s (%d bytes)", addr[0], addr[1], len(data))
        try:
            self._queue.put_nowait(data)
        except asyncio.QueueFull:
            LOGGER.warning("Dropping datagram from %s; inbox is full", addr[0])

    def error_received(self, exc: Exception) -> None:
        LOGGER.warning("UDP listener read error: %s", exc)

    def connection_lost(self, exc: Optional[Exception]) -> None:
        if not self.closed.done():
            self.closed.set_result(None)


class UDPListener:
    """A bound receive socket owned by a single operation."""

    def __init__(
        self,
        transport: asyncio.DatagramTransport,
        protocol: _QueueProtocol,
        queue: asyncio.Queue[bytes],
    ) -> None:
        self._transport = transport
        self._protocol = protocol
        self._queue = queue

    @property
    def local_port(self) -> int:
        return self._transport.get_extra_info("sockname")[1]

    async def receive(self) -> bytes:
        return await self._queue.get()

    async def close(self) -> None:
        """Close the socket and wait until the port is released."""

        if not self._transport.is_closing():
            self._transport.close()
        await self._protocol.closed


class UDPChannel:
    """Sends on the device port and listens on the controller port."""

    def __init__(self, network: Optional[NetworkConfig] = None) -> None:
        self.network = network or NetworkConfig()

    async def broadcast(self, payload: bytes) -> None:
        """Send ``payload`` once to the limited-broadcast address."""

        loop = asyncio.get_running_loop()
        target = (self.network.broadcast_address, self.network.send_port)

        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        except OSError as exc:
            raise TransportError(f"Unable to open UDP socket: {exc}") from exc

        with sock:
            try:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
                sock.setblocking(False)
                await loop.sock_sendto(sock, payload, target)
            except OSError as exc:
                raise TransportError(
                    f"UDP broadcast to {target[0]}:{target[1]} failed: {exc}"
                ) from exc

        LOGGER.debug("Broadcast %d bytes to %s:%s", len(payload), *target)

    @contextlib.asynccontextmanager
    async def listener(self, port: Optional[int] = None) -> AsyncIterator[UDPListener]:
        """Bind the receive port for the duration of the ``async with`` block."""

        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[bytes] = asyncio.Queue(maxsize=self.network.queue_size)
        local_addr = (
            self.network.listen_address,
            self.network.receive_port if port is None else port,
        )

        try:
            transport, protocol = await loop.create_datagram_endpoint(
                lambda: _QueueProtocol(queue), local_addr=local_addr
            )
        except OSError as exc:
            raise TransportError(
                f"Unable to listen on UDP {local_addr[0]}:{local_addr[1]}: {exc}"
            ) from exc

        listener = UDPListener(transport, protocol, queue)
        LOGGER.debug("Listening for datagrams on %s:%s", local_addr[0], listener.local_port)
        try:
            yield listener
        finally:
            await listener.close()

    async def listen(self, on_receive: DatagramHandler, cancel: asyncio.Event) -> None:
        """Invoke ``on_receive`` for each datagram until ``cancel`` is set."""

        async with self.listener() as inbox:
            stop = asyncio.create_task(cancel.wait())
            read: Optional[asyncio.Task[bytes]] = None
            try:
                while True:
                    read = asyncio.create_task(inbox.receive())
                    done, _ = await asyncio.wait(
                        {read, stop}, return_when=asyncio.FIRST_COMPLETED
                    )
                    if read not in done:
                        break
                    try:
                        result = on_receive(read.result())
                        if asyncio.iscoroutine(result):
                            await result
                    except Exception:
                        LOGGER.exception("UDP datagram handler failed")
                    if cancel.is_set():
                        break
            finally:
                stop.cancel()
                if read is not None:
                    read.cancel()
