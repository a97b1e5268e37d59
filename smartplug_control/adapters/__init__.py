"""Adapter modules for the UDP and MQTT transports."""

from .mqtt import MQTTChannel, MQTTClient, MQTTConnectionError, Subscription
from .udp import UDPChannel, UDPListener

__all__ = [
    "MQTTChannel",
    "MQTTClient",
    "MQTTConnectionError",
    "Subscription",
    "UDPChannel",
    "UDPListener",
]
