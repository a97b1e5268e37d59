"""Constants used across the smartplug-control package."""

from __future__ import annotations

from pathlib import Path

APP_NAME = "smartplug-control"
DEFAULT_CONFIG_FILENAME = f"{APP_NAME}.cfg"
DEFAULT_CONFIG_PATH = Path.home() / ".config" / APP_NAME / DEFAULT_CONFIG_FILENAME

DEFAULT_BROKER_HOST = "localhost"
DEFAULT_BROKER_PORT = 1883
DEFAULT_DEVICE_TYPE = "ztc1"

# Controller sends on 10182, devices answer on 10181.
DEVICE_SEND_PORT = 10182
DEVICE_RECEIVE_PORT = 10181
BROADCAST_ADDRESS = "255.255.255.255"
LISTEN_ADDRESS = "0.0.0.0"

PLUG_COUNT = 6

# "at-least-once"
MQTT_QOS = 1
