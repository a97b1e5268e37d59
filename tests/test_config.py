from pathlib import Path

from smartplug_control import constants
from smartplug_control.config import load_config, with_broker_overrides, with_device_type


def test_load_config_defaults(tmp_path: Path) -> None:
    config = load_config(tmp_path / "smartplug-control.cfg")

    assert config.broker.host == constants.DEFAULT_BROKER_HOST
    assert config.broker.port == 1883
    assert config.broker.username is None
    assert config.broker.uri == "tcp://localhost:1883"
    assert config.device.device_type == "ztc1"
    assert config.network.send_port == 10182
    assert config.network.receive_port == 10181
    assert config.network.broadcast_address == "255.255.255.255"
    assert config.timeouts.discover_seconds == 30.0
    assert config.timeouts.progress_interval_seconds == 1.0
    assert config.timeouts.settle_seconds == 2.0
    assert config.timeouts.disconnect_grace_seconds == 0.25
    assert config.timeouts.upgrade_seconds is None
    assert config.logging.path is None


def test_load_config_parses_broker_host_with_port(tmp_path: Path) -> None:
    config_path = tmp_path / "smartplug-control.cfg"
    config_path.write_text("[broker]\nhost = 10.0.0.2:1884\n", encoding="utf-8")

    config = load_config(config_path)

    assert config.broker.host == "10.0.0.2"
    assert config.broker.port == 1884
    assert config.raw.get("broker", "host") == "10.0.0.2"
    assert config.raw.get("broker", "port") == "1884"


def test_load_config_overrides_defaults(tmp_path: Path) -> None:
    config_path = tmp_path / "smartplug-control.cfg"
    config_path.write_text(
        """
[broker]
host = mqtt.example.com
username = plug
password = secret

[device]
type = ztc2

[network]
receive_port = 20181

[timeouts]
discover_seconds = 5
upgrade_seconds = 600

[logging]
level = DEBUG
path = ~/smartplug.log
""",
        encoding="utf-8",
    )

    config = load_config(config_path)

    assert config.broker.host == "mqtt.example.com"
    assert config.broker.username == "plug"
    assert config.broker.password == "secret"
    assert config.device.device_type == "ztc2"
    assert config.network.receive_port == 20181
    assert config.timeouts.discover_seconds == 5.0
    assert config.timeouts.upgrade_seconds == 600.0
    assert config.logging.level == "DEBUG"
    assert config.logging.path == Path("~/smartplug.log").expanduser()


def test_broker_overrides_return_copy(tmp_path: Path) -> None:
    config = load_config(tmp_path / "missing.cfg")

    updated = with_broker_overrides(config, host="10.0.0.9", port=1999, username="")

    assert updated.broker.host == "10.0.0.9"
    assert updated.broker.port == 1999
    assert updated.broker.username is None
    assert config.broker.host == constants.DEFAULT_BROKER_HOST
    assert with_broker_overrides(config) is config


def test_device_type_override(tmp_path: Path) -> None:
    config = load_config(tmp_path / "missing.cfg")

    assert with_device_type(config, None) is config
    assert with_device_type(config, "ztc2").device.device_type == "ztc2"
