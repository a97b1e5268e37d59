"""Configuration loader for smartplug-control."""

from __future__ import annotations

import dataclasses
from configparser import ConfigParser
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from . import constants


@dataclass(slots=True)
class BrokerConfig:
    host: str = constants.DEFAULT_BROKER_HOST
    port: int = constants.DEFAULT_BROKER_PORT
    username: Optional[str] = None
    password: Optional[str] = None
    keepalive: int = 60

    @property
    def uri(self) -> str:
        return f"tcp://{self.host}:{self.port}"


@dataclass(slots=True)
class DeviceConfig:
    device_type: str = constants.DEFAULT_DEVICE_TYPE


@dataclass(slots=True)
class NetworkConfig:
    broadcast_address: str = constants.BROADCAST_ADDRESS
    listen_address: str = constants.LISTEN_ADDRESS
    send_port: int = constants.DEVICE_SEND_PORT
    receive_port: int = constants.DEVICE_RECEIVE_PORT
    queue_size: int = 64


@dataclass(slots=True)
class TimeoutConfig:
    discover_seconds: float = 30.0
    progress_interval_seconds: float = 1.0
    settle_seconds: float = 2.0
    state_check_seconds: float = 10.0
    connect_seconds: float = 10.0
    ack_seconds: float = 10.0
    disconnect_grace_seconds: float = 0.25
    upgrade_seconds: Optional[float] = None  # None waits for 100% indefinitely


@dataclass(slots=True)
class LoggingConfig:
    level: str = "WARNING"
    path: Optional[Path] = None
    log_network: bool = False


@dataclass(slots=True)
class ControlConfig:
    broker: BrokerConfig
    device: DeviceConfig
    network: NetworkConfig
    timeouts: TimeoutConfig
    logging: LoggingConfig
    raw: ConfigParser
    path: Path


def default_config() -> ControlConfig:
    """Return a configuration made only of built-in defaults."""

    return ControlConfig(
        broker=BrokerConfig(),
        device=DeviceConfig(),
        network=NetworkConfig(),
        timeouts=TimeoutConfig(),
        logging=LoggingConfig(),
        raw=ConfigParser(),
        path=constants.DEFAULT_CONFIG_PATH,
    )


def _optional(parser: ConfigParser, section: str, key: str) -> Optional[str]:
    value = parser.get(section, key, fallback="").strip()
    return value or None


def load_config(path: Optional[Path] = None) -> ControlConfig:
    """Load configuration from disk, applying defaults where necessary."""

    config_path = path or constants.DEFAULT_CONFIG_PATH
    parser = ConfigParser()
    parser.read_dict(
        {
            "broker": {
                "host": constants.DEFAULT_BROKER_HOST,
                "port": str(constants.DEFAULT_BROKER_PORT),
                "keepalive": "60",
            },
            "device": {
                "type": constants.DEFAULT_DEVICE_TYPE,
            },
            "network": {
                "broadcast_address": constants.BROADCAST_ADDRESS,
                "listen_address": constants.LISTEN_ADDRESS,
                "send_port": str(constants.DEVICE_SEND_PORT),
                "receive_port": str(constants.DEVICE_RECEIVE_PORT),
                "queue_size": "64",
            },
            "timeouts": {
                "discover_seconds": "30",
                "progress_interval_seconds": "1",
                "settle_seconds": "2",
                "state_check_seconds": "10",
                "connect_seconds": "10",
                "ack_seconds": "10",
                "disconnect_grace_seconds": "0.25",
            },
            "logging": {
                "level": "WARNING",
                "log_network": "false",
            },
        }
    )

    if config_path.exists():
        parser.read(config_path)

    host_value = parser.get("broker", "host")
    port_value = parser.getint("broker", "port", fallback=constants.DEFAULT_BROKER_PORT)

    if ":" in host_value:
        host_part, port_part = host_value.rsplit(":", 1)
        try:
            parsed_port = int(port_part)
        except ValueError:
            pass
        else:
            host_value = host_part
            port_value = parsed_port
            parser.set("broker", "host", host_part)
            parser.set("broker", "port", str(parsed_port))

    broker = BrokerConfig(
        host=host_value,
        port=port_value,
        username=_optional(parser, "broker", "username"),
        password=_optional(parser, "broker", "password"),
        keepalive=max(1, parser.getint("broker", "keepalive", fallback=60)),
    )

    device = DeviceConfig(
        device_type=parser.get("device", "type", fallback=constants.DEFAULT_DEVICE_TYPE),
    )

    network = NetworkConfig(
        broadcast_address=parser.get("network", "broadcast_address"),
        listen_address=parser.get("network", "listen_address"),
        send_port=parser.getint("network", "send_port"),
        receive_port=parser.getint("network", "receive_port"),
        queue_size=max(1, parser.getint("network", "queue_size", fallback=64)),
    )

    defaults = TimeoutConfig()
    upgrade_value = _optional(parser, "timeouts", "upgrade_seconds")

    timeouts = TimeoutConfig(
        discover_seconds=parser.getfloat(
            "timeouts", "discover_seconds", fallback=defaults.discover_seconds
        ),
        progress_interval_seconds=max(
            0.01,
            parser.getfloat(
                "timeouts",
                "progress_interval_seconds",
                fallback=defaults.progress_interval_seconds,
            ),
        ),
        settle_seconds=max(
            0.0,
            parser.getfloat("timeouts", "settle_seconds", fallback=defaults.settle_seconds),
        ),
        state_check_seconds=parser.getfloat(
            "timeouts", "state_check_seconds", fallback=defaults.state_check_seconds
        ),
        connect_seconds=parser.getfloat(
            "timeouts", "connect_seconds", fallback=defaults.connect_seconds
        ),
        ack_seconds=parser.getfloat(
            "timeouts", "ack_seconds", fallback=defaults.ack_seconds
        ),
        disconnect_grace_seconds=parser.getfloat(
            "timeouts",
            "disconnect_grace_seconds",
            fallback=defaults.disconnect_grace_seconds,
        ),
        upgrade_seconds=float(upgrade_value) if upgrade_value else None,
    )

    log_path_value = _optional(parser, "logging", "path")
    logging_config = LoggingConfig(
        level=parser.get("logging", "level", fallback="WARNING"),
        path=Path(log_path_value).expanduser() if log_path_value else None,
        log_network=parser.getboolean("logging", "log_network", fallback=False),
    )

    return ControlConfig(
        broker=broker,
        device=device,
        network=network,
        timeouts=timeouts,
        logging=logging_config,
        raw=parser,
        path=config_path,
    )


def with_broker_overrides(
    config: ControlConfig,
    *,
    host: Optional[str] = None,
    port: Optional[int] = None,
    username: Optional[str] = None,
    password: Optional[str] = None,
) -> ControlConfig:
    """Return a copy of ``config`` with command-line broker settings applied."""

    broker = config.broker
    changes = {}
    if host:
        changes["host"] = host
    if port is not None:
        changes["port"] = port
    if username is not None:
        changes["username"] = username or None
    if password is not None:
        changes["password"] = password or None

    if not changes:
        return config
    return dataclasses.replace(config, broker=dataclasses.replace(broker, **changes))


def with_device_type(config: ControlConfig, device_type: Optional[str]) -> ControlConfig:
    if not device_type or device_type == config.device.device_type:
        return config
    return dataclasses.replace(config, device=DeviceConfig(device_type=device_type))
