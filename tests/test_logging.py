import logging

import pytest

from smartplug_control.logging import configure_logging


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    paho_level = logging.getLogger("paho").level
    yield
    for handler in list(root.handlers):
        root.removeHandler(handler)
        if handler not in handlers:
            handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)
    logging.getLogger("paho").setLevel(paho_level)


def test_paho_client_logger_capped_without_network_logging():
    configure_logging("DEBUG", log_network=False)

    assert logging.getLogger("smartplug_control.adapters.mqtt").isEnabledFor(logging.DEBUG)
    assert not logging.getLogger("paho.mqtt.client").isEnabledFor(logging.DEBUG)


def test_network_logging_follows_requested_level():
    configure_logging("DEBUG", log_network=False)
    configure_logging("DEBUG", log_network=True)

    assert logging.getLogger("paho.mqtt.client").isEnabledFor(logging.DEBUG)


def test_log_file_is_created(tmp_path):
    log_path = tmp_path / "logs" / "smartplug-control.log"

    configure_logging("INFO", log_path=log_path)
    logging.getLogger("smartplug_control").info("hello")

    assert "| INFO | smartplug_control | hello" in log_path.read_text(encoding="utf-8")
