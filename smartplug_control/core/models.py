"""Typed request and reply records exchanged with the plug firmware.

Envelopes stay loose JSON on the wire; these records are built or decoded
once at the transport boundary so the controller never reaches into raw
mappings.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

from .. import constants
from ..errors import DecodingError, ValidationError

TOPIC_SET = "set"
TOPIC_STATE = "state"
TOPIC_SENSOR = "sensor"
_TOPIC_SUFFIXES = frozenset({TOPIC_SET, TOPIC_STATE, TOPIC_SENSOR})

TRANSPORT_MQTT = "mqtt"
TRANSPORT_UDP = "udp"


def device_topic(device_type: str, mac: str, suffix: str) -> str:
    """Return ``device/<type>/<mac>/<suffix>``."""

    if suffix not in _TOPIC_SUFFIXES:
        raise ValueError(f"Unknown topic suffix: {suffix!r}")
    return f"device/{device_type}/{mac}/{suffix}"


def validate_mac(mac: str) -> str:
    mac = (mac or "").strip()
    if not mac:
        raise ValidationError("Device mac address is required")
    return mac


def validate_plug_index(plug: int) -> int:
    if isinstance(plug, bool) or not isinstance(plug, int):
        raise ValidationError(f"Plug index must be an integer, got {plug!r}")
    if not 0 <= plug < constants.PLUG_COUNT:
        raise ValidationError(
            f"Plug index value should be between 0 and {constants.PLUG_COUNT - 1}, got {plug}"
        )
    return plug


# ----------------------------------------------------------------------
# Requests
# ----------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class DiscoverRequest:
    def to_envelope(self) -> Dict[str, Any]:
        return {"cmd": "device report"}


@dataclass(frozen=True, slots=True)
class AdoptRequest:
    mac: str
    mqtt_uri: str
    mqtt_port: int
    mqtt_user: str = ""
    mqtt_password: str = ""

    def to_envelope(self) -> Dict[str, Any]:
        return {
            "mac": self.mac,
            "setting": {
                "mqtt_uri": self.mqtt_uri,
                # firmware expects the port as a string
                "mqtt_port": str(self.mqtt_port),
                "mqtt_user": self.mqtt_user,
                "mqtt_password": self.mqtt_password,
            },
        }


@dataclass(frozen=True, slots=True)
class ActivateRequest:
    mac: str
    code: str

    def to_envelope(self) -> Dict[str, Any]:
        return {"mac": self.mac, "lock": self.code}


@dataclass(frozen=True, slots=True)
class SwitchRequest:
    mac: str
    plug: int
    on: bool

    def __post_init__(self) -> None:
        validate_plug_index(self.plug)

    def to_envelope(self) -> Dict[str, Any]:
        return {"mac": self.mac, f"plug_{self.plug}": {"on": 1 if self.on else 0}}


@dataclass(frozen=True, slots=True)
class UpgradeRequest:
    mac: str
    ota_url: str

    def to_envelope(self) -> Dict[str, Any]:
        return {"mac": self.mac, "setting": {"ota": self.ota_url}}


# ----------------------------------------------------------------------
# Replies
# ----------------------------------------------------------------------
def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def _number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True, slots=True)
class DeviceReport:
    name: Optional[str]
    mac: Optional[str]
    type_name: Optional[str]
    ip: Optional[str]

    @classmethod
    def from_envelope(cls, envelope: Mapping[str, Any]) -> "DeviceReport":
        if not any(key in envelope for key in ("name", "mac", "type_name", "ip")):
            raise DecodingError("Envelope is not a device report")
        return cls(
            name=_text(envelope.get("name")),
            mac=_text(envelope.get("mac")),
            type_name=_text(envelope.get("type_name")),
            ip=_text(envelope.get("ip")),
        )


@dataclass(frozen=True, slots=True)
class PowerReading:
    power: Optional[float]
    uptime_seconds: Optional[int]

    @classmethod
    def from_envelope(cls, envelope: Mapping[str, Any]) -> "PowerReading":
        if "power" not in envelope and "total_time" not in envelope:
            raise DecodingError("Envelope carries neither power nor total_time")
        uptime = _number(envelope.get("total_time"))
        return cls(
            power=_number(envelope.get("power")),
            uptime_seconds=int(uptime) if uptime is not None else None,
        )


@dataclass(frozen=True, slots=True)
class PlugState:
    """On/off flags of plugs 0..5; ``None`` when the device omitted a plug."""

    plugs: Tuple[Optional[bool], ...]

    @classmethod
    def from_envelope(cls, envelope: Mapping[str, Any]) -> "PlugState":
        flags = []
        for index in range(constants.PLUG_COUNT):
            plug = envelope.get(f"plug_{index}")
            on = plug.get("on") if isinstance(plug, Mapping) else None
            value = _number(on) if not isinstance(on, bool) else float(on)
            flags.append(None if value is None else int(value) == 1)

        if all(flag is None for flag in flags):
            raise DecodingError("Envelope carries no plug state")
        return cls(plugs=tuple(flags))

    def is_on(self, plug: int) -> Optional[bool]:
        return self.plugs[validate_plug_index(plug)]


@dataclass(frozen=True, slots=True)
class OtaProgress:
    percent: float

    @classmethod
    def from_envelope(cls, envelope: Mapping[str, Any]) -> "OtaProgress":
        value = _number(envelope.get("ota_progress"))
        if value is None:
            raise DecodingError("Envelope carries no ota_progress")
        return cls(percent=value)

    @property
    def complete(self) -> bool:
        return self.percent >= 100


# ----------------------------------------------------------------------
# Operation outcomes
# ----------------------------------------------------------------------
class OperationStatus(str, Enum):
    SUCCESS = "success"
    TIMEOUT = "timeout"
    FAILED = "failed"


@dataclass(slots=True)
class Delivery:
    """How a command reached the device."""

    transport: str
    primary_error: Optional[str] = None

    @property
    def fell_back(self) -> bool:
        return self.primary_error is not None


@dataclass(slots=True)
class OperationResult:
    status: OperationStatus
    message: str
    delivery: Optional[Delivery] = None

    @property
    def ok(self) -> bool:
        return self.status is OperationStatus.SUCCESS


@dataclass(slots=True)
class DiscoverResult(OperationResult):
    device: Optional[DeviceReport] = None


@dataclass(slots=True)
class StateResult(OperationResult):
    state: Optional[PlugState] = None


@dataclass(slots=True)
class SwitchResult(OperationResult):
    state: Optional[PlugState] = None


@dataclass(slots=True)
class UpgradeResult(OperationResult):
    progress: Optional[float] = None
