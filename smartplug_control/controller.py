"""Device operations built from the UDP and MQTT channels."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from .adapters import MQTTChannel, UDPChannel
from .config import ControlConfig
from .core.envelope import decode, encode
from .core.models import (
    TOPIC_SENSOR,
    TOPIC_SET,
    TOPIC_STATE,
    TRANSPORT_MQTT,
    TRANSPORT_UDP,
    ActivateRequest,
    AdoptRequest,
    Delivery,
    DeviceReport,
    DiscoverRequest,
    DiscoverResult,
    OperationResult,
    OperationStatus,
    OtaProgress,
    PlugState,
    PowerReading,
    StateResult,
    SwitchRequest,
    SwitchResult,
    UpgradeRequest,
    UpgradeResult,
    device_topic,
    validate_mac,
)
from .core.protocols import BrokerTransport, DatagramTransport, Inbox
from .errors import DecodingError, TransportError, ValidationError
from .transport import DeliveryError, deliver

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

TickCallback = Callable[[], None]
PowerCallback = Callable[[PowerReading], Awaitable[None] | None]
ProgressCallback = Callable[[OtaProgress], None]


def format_device(report: DeviceReport) -> str:
    return (
        f"Device found! Type: {report.type_name}, Name: {report.name}, "
        f"Mac: {report.mac}, IP: {report.ip}"
    )


def format_plug_state(state: PlugState) -> str:
    lines = []
    for index in range(len(state.plugs)):
        flag = state.is_on(index)
        label = "unknown" if flag is None else ("on" if flag else "off")
        lines.append(f"Plug {index}: {label}")
    return "\n".join(lines)


def format_power(reading: PowerReading) -> str:
    power = "unknown" if reading.power is None else f"{reading.power:g}"
    uptime = "unknown" if reading.uptime_seconds is None else str(reading.uptime_seconds)
    return f"Power: {power}W, Uptime: {uptime} seconds"


def _delivery_message(action: str, mac: str, delivery: Delivery) -> str:
    if delivery.fell_back:
        return (
            f"MQTT server is not available ({delivery.primary_error}); "
            f"{action} sent to {mac} via UDP broadcast"
        )
    return f"{action} sent to {mac} via MQTT"


def _failed_delivery(exc: DeliveryError) -> Delivery:
    return Delivery(transport=TRANSPORT_UDP, primary_error=exc.primary_error)


async def _cancel(task: Optional[asyncio.Task]) -> None:
    if task is None:
        return
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task


class DeviceController:
    """Runs one protocol exchange per call against a single plug device.

    Every operation owns the sockets and broker connections it opens and
    releases them before returning. Transport failures and deadlines are
    reported through the returned result; only :class:`ValidationError`
    is raised, and always before any network activity.
    """

    def __init__(
        self,
        config: ControlConfig,
        *,
        udp: Optional[DatagramTransport] = None,
        mqtt: Optional[BrokerTransport] = None,
    ) -> None:
        self._config = config
        self._udp: DatagramTransport = udp or UDPChannel(config.network)
        self._mqtt: BrokerTransport = mqtt or MQTTChannel(
            config.broker, config.timeouts, queue_size=config.network.queue_size
        )

    def topic(self, mac: str, suffix: str) -> str:
        return device_topic(self._config.device.device_type, mac, suffix)

    # ------------------------------------------------------------------
    # Discovery and provisioning (UDP only)
    # ------------------------------------------------------------------
    async def discover(self, *, on_tick: Optional[TickCallback] = None) -> DiscoverResult:
        """Ask devices to report themselves and return the first answer.

        Only the first well-formed reply is used; other devices answering
        the same broadcast are ignored.
        """

        timeouts = self._config.timeouts
        payload = encode(DiscoverRequest().to_envelope())
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeouts.discover_seconds
        ticker: Optional[asyncio.Task[None]] = None

        try:
            async with self._udp.listener() as inbox:
                if on_tick is not None:
                    ticker = asyncio.create_task(
                        self._tick(timeouts.progress_interval_seconds, on_tick)
                    )
                try:
                    await self._udp.broadcast(payload)
                    report = await asyncio.wait_for(
                        self._next(inbox, DeviceReport.from_envelope),
                        timeout=max(0.0, deadline - loop.time()),
                    )
                finally:
                    await _cancel(ticker)
        except asyncio.TimeoutError:
            LOGGER.info("No device answered within %.1fs", timeouts.discover_seconds)
            return DiscoverResult(
                OperationStatus.TIMEOUT,
                "Timeout finding device, consider UDP is not reliable, "
                "you may try again later",
            )
        except TransportError as exc:
            LOGGER.warning("Discovery failed: %s", exc)
            return DiscoverResult(OperationStatus.FAILED, f"Discovery failed: {exc}")

        LOGGER.info("Discovered device %s at %s", report.mac, report.ip)
        return DiscoverResult(
            OperationStatus.SUCCESS,
            format_device(report),
            delivery=Delivery(transport=TRANSPORT_UDP),
            device=report,
        )

    async def adopt(self, mac: str) -> OperationResult:
        """Broadcast the broker settings to ``mac``; no acknowledgement is awaited."""

        mac = validate_mac(mac)
        broker = self._config.broker
        request = AdoptRequest(
            mac=mac,
            mqtt_uri=broker.host,
            mqtt_port=broker.port,
            mqtt_user=broker.username or "",
            mqtt_password=broker.password or "",
        )

        try:
            await self._udp.broadcast(encode(request.to_envelope()))
        except TransportError as exc:
            LOGGER.warning("Adopt broadcast failed: %s", exc)
            return OperationResult(OperationStatus.FAILED, f"Adopt failed: {exc}")

        return OperationResult(
            OperationStatus.SUCCESS,
            f"Adopt by sending MQTT server {broker.uri} to device {mac}",
            delivery=Delivery(transport=TRANSPORT_UDP),
        )

    # ------------------------------------------------------------------
    # Commands (MQTT with UDP fallback)
    # ------------------------------------------------------------------
    async def activate(self, mac: str, code: str) -> OperationResult:
        mac = validate_mac(mac)
        if not code:
            raise ValidationError("Activation code is required")

        payload = encode(ActivateRequest(mac=mac, code=code).to_envelope())
        try:
            delivery = await deliver(self._mqtt, self._udp, self.topic(mac, TOPIC_SET), payload)
        except DeliveryError as exc:
            return OperationResult(
                OperationStatus.FAILED, str(exc), delivery=_failed_delivery(exc)
            )

        return OperationResult(
            OperationStatus.SUCCESS,
            _delivery_message("Activation code", mac, delivery),
            delivery=delivery,
        )

    async def switch_plug(self, mac: str, plug: int, on: bool) -> SwitchResult:
        """Switch one plug and, when the broker carried the command, read back the state."""

        mac = validate_mac(mac)
        request = SwitchRequest(mac=mac, plug=plug, on=on)
        payload = encode(request.to_envelope())

        try:
            delivery = await deliver(self._mqtt, self._udp, self.topic(mac, TOPIC_SET), payload)
        except DeliveryError as exc:
            return SwitchResult(
                OperationStatus.FAILED, str(exc), delivery=_failed_delivery(exc)
            )

        action = f"Plug {plug} {'on' if on else 'off'}"
        message = _delivery_message(action, mac, delivery)
        if delivery.fell_back:
            # the state topic lives on the broker that just failed
            return SwitchResult(OperationStatus.SUCCESS, message, delivery=delivery)

        await asyncio.sleep(self._config.timeouts.settle_seconds)
        check = await self.monitor_state(
            mac, timeout=self._config.timeouts.state_check_seconds
        )
        return SwitchResult(
            OperationStatus.SUCCESS,
            f"{message}\n{check.message}",
            delivery=delivery,
            state=check.state,
        )

    async def upgrade(
        self,
        mac: str,
        ota_url: str,
        *,
        on_progress: Optional[ProgressCallback] = None,
    ) -> UpgradeResult:
        """Request an OTA upgrade over MQTT and follow progress reports on UDP.

        There is no fallback: a device that cannot be reached through the
        broker cannot be upgraded. Without ``timeouts.upgrade_seconds`` the
        progress phase waits until the device reports 100%.
        """

        mac = validate_mac(mac)
        if not ota_url:
            raise ValidationError("OTA address is required")

        payload = encode(UpgradeRequest(mac=mac, ota_url=ota_url).to_envelope())
        timeout = self._config.timeouts.upgrade_seconds
        last: Optional[float] = None

        async def _follow(inbox: Inbox) -> None:
            nonlocal last
            while True:
                progress = await self._next(inbox, OtaProgress.from_envelope)
                last = progress.percent
                if on_progress is not None:
                    on_progress(progress)
                if progress.complete:
                    return

        try:
            async with self._udp.listener() as inbox:
                try:
                    await self._mqtt.publish(self.topic(mac, TOPIC_SET), payload)
                except TransportError as exc:
                    LOGGER.warning("Upgrade request could not be published: %s", exc)
                    return UpgradeResult(
                        OperationStatus.FAILED,
                        f"Upgrade request could not be published: {exc}",
                    )
                LOGGER.info("Upgrade of %s requested from %s", mac, ota_url)
                await asyncio.wait_for(_follow(inbox), timeout=timeout)
        except asyncio.TimeoutError:
            return UpgradeResult(
                OperationStatus.TIMEOUT,
                f"Upgrade did not complete within {timeout:g}s (last progress: {last})",
                progress=last,
            )
        except TransportError as exc:
            return UpgradeResult(
                OperationStatus.FAILED,
                f"Unable to listen for upgrade progress: {exc}",
            )

        return UpgradeResult(
            OperationStatus.SUCCESS,
            f"Upgrade of {mac} completed",
            delivery=Delivery(transport=TRANSPORT_MQTT),
            progress=last,
        )

    # ------------------------------------------------------------------
    # Monitoring (MQTT only)
    # ------------------------------------------------------------------
    async def monitor_power(
        self,
        mac: str,
        on_reading: PowerCallback,
        *,
        cancel: Optional[asyncio.Event] = None,
    ) -> OperationResult:
        """Report every sensor envelope until ``cancel`` is set."""

        mac = validate_mac(mac)
        cancel = cancel or asyncio.Event()
        topic = self.topic(mac, TOPIC_SENSOR)

        async def _handle(payload: bytes) -> None:
            try:
                reading = PowerReading.from_envelope(decode(payload))
            except DecodingError as exc:
                LOGGER.debug("Ignoring sensor payload: %s", exc)
                return
            result = on_reading(reading)
            if asyncio.iscoroutine(result):
                await result

        try:
            await self._mqtt.subscribe(topic, _handle, cancel)
        except TransportError as exc:
            LOGGER.warning("Power monitoring failed: %s", exc)
            return OperationResult(
                OperationStatus.FAILED, f"Unable to monitor power: {exc}"
            )

        return OperationResult(OperationStatus.SUCCESS, "Power monitoring stopped")

    async def monitor_state(
        self, mac: str, *, timeout: Optional[float] = None
    ) -> StateResult:
        """Return the first plug state report published by ``mac``."""

        mac = validate_mac(mac)
        topic = self.topic(mac, TOPIC_STATE)

        try:
            async with self._mqtt.subscription(topic) as inbox:
                state = await asyncio.wait_for(
                    self._next(inbox, PlugState.from_envelope), timeout=timeout
                )
        except asyncio.TimeoutError:
            return StateResult(
                OperationStatus.TIMEOUT,
                f"No plug state reported by {mac} within {timeout:g}s",
            )
        except TransportError as exc:
            LOGGER.warning("State monitoring failed: %s", exc)
            return StateResult(
                OperationStatus.FAILED, f"Unable to read plug state: {exc}"
            )

        return StateResult(
            OperationStatus.SUCCESS, format_plug_state(state), state=state
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    @staticmethod
    async def _next(inbox: Inbox, parse: Callable[[dict], T]) -> T:
        while True:
            raw = await inbox.receive()
            try:
                return parse(decode(raw))
            except DecodingError as exc:
                LOGGER.debug("Ignoring payload: %s", exc)

    @staticmethod
    async def _tick(interval: float, on_tick: TickCallback) -> None:
        while True:
            await asyncio.sleep(interval)
            on_tick()
