"""MQTT-first command delivery with a single UDP broadcast fallback."""

from __future__ import annotations

import logging

from .core.models import TRANSPORT_MQTT, TRANSPORT_UDP, Delivery
from .core.protocols import BrokerTransport, DatagramTransport
from .errors import TransportError

LOGGER = logging.getLogger(__name__)


class DeliveryError(TransportError):
    """Raised when both the broker and the broadcast fallback failed."""

    def __init__(self, primary_error: str, fallback_error: str) -> None:
        super().__init__(
            f"MQTT delivery failed ({primary_error}); "
            f"UDP broadcast fallback failed ({fallback_error})"
        )
        self.primary_error = primary_error
        self.fallback_error = fallback_error


async def deliver(
    mqtt: BrokerTransport,
    udp: DatagramTransport,
    topic: str,
    payload: bytes,
) -> Delivery:
    """Publish ``payload`` on ``topic``; broadcast the same bytes if that fails.

    No transport is retried. The returned :class:`Delivery` records which
    transport carried the command and the broker error when the fallback ran.
    """

    try:
        await mqtt.publish(topic, payload)
    except TransportError as exc:
        primary_error = str(exc)
        LOGGER.warning(
            "MQTT server is not available (%s), using UDP broadcast", primary_error
        )
    else:
        return Delivery(transport=TRANSPORT_MQTT)

    try:
        await udp.broadcast(payload)
    except TransportError as exc:
        LOGGER.warning("UDP broadcast fallback failed: %s", exc)
        raise DeliveryError(primary_error, str(exc)) from exc

    return Delivery(transport=TRANSPORT_UDP, primary_error=primary_error)
