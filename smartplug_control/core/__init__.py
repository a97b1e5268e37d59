"""Core primitives for smartplug-control."""

from .envelope import Envelope, decode, encode
from .models import (
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
    validate_plug_index,
)

__all__ = [
    "ActivateRequest",
    "AdoptRequest",
    "Delivery",
    "DeviceReport",
    "DiscoverRequest",
    "DiscoverResult",
    "Envelope",
    "OperationResult",
    "OperationStatus",
    "OtaProgress",
    "PlugState",
    "PowerReading",
    "StateResult",
    "SwitchRequest",
    "SwitchResult",
    "UpgradeRequest",
    "UpgradeResult",
    "decode",
    "device_topic",
    "encode",
    "validate_mac",
    "validate_plug_index",
]
