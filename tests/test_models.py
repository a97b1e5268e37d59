import pytest

from smartplug_control.core import (
    ActivateRequest,
    AdoptRequest,
    DeviceReport,
    DiscoverRequest,
    OtaProgress,
    PlugState,
    PowerReading,
    SwitchRequest,
    UpgradeRequest,
    device_topic,
    validate_mac,
    validate_plug_index,
)
from smartplug_control.errors import DecodingError, ValidationError


def test_device_topic_layout():
    assert device_topic("ztc1", "11111111e10d", "set") == "device/ztc1/11111111e10d/set"
    assert device_topic("ztc1", "aa", "state") == "device/ztc1/aa/state"
    assert device_topic("ztc1", "aa", "sensor") == "device/ztc1/aa/sensor"

    with pytest.raises(ValueError):
        device_topic("ztc1", "aa", "power")


@pytest.mark.parametrize("plug", range(6))
@pytest.mark.parametrize("on, flag", [(True, 1), (False, 0)])
def test_switch_request_touches_only_target_plug(plug, on, flag):
    envelope = SwitchRequest(mac="aa", plug=plug, on=on).to_envelope()

    assert envelope == {"mac": "aa", f"plug_{plug}": {"on": flag}}


@pytest.mark.parametrize("plug", [-1, 6, 42])
def test_switch_request_rejects_out_of_range_plug(plug):
    with pytest.raises(ValidationError):
        SwitchRequest(mac="aa", plug=plug, on=True)


def test_validate_plug_index_rejects_bool():
    with pytest.raises(ValidationError):
        validate_plug_index(True)


def test_validate_mac_strips_and_requires_value():
    assert validate_mac(" aa ") == "aa"
    with pytest.raises(ValidationError):
        validate_mac("")


def test_request_envelopes_match_firmware_fields():
    assert DiscoverRequest().to_envelope() == {"cmd": "device report"}
    assert AdoptRequest("aa", "10.0.0.2", 1883, "user", "secret").to_envelope() == {
        "mac": "aa",
        "setting": {
            "mqtt_uri": "10.0.0.2",
            "mqtt_port": "1883",
            "mqtt_user": "user",
            "mqtt_password": "secret",
        },
    }
    assert ActivateRequest("aa", "1234").to_envelope() == {"mac": "aa", "lock": "1234"}
    assert UpgradeRequest("aa", "http://ota/fw.bin").to_envelope() == {
        "mac": "aa",
        "setting": {"ota": "http://ota/fw.bin"},
    }


def test_device_report_from_envelope():
    report = DeviceReport.from_envelope(
        {"name": "zTC1_e10d", "mac": "11111111e10d", "type_name": "zTC1", "ip": "10.0.0.123"}
    )

    assert report == DeviceReport("zTC1_e10d", "11111111e10d", "zTC1", "10.0.0.123")

    with pytest.raises(DecodingError):
        DeviceReport.from_envelope({"cmd": "device report"})


def test_power_reading_accepts_strings_and_numbers():
    assert PowerReading.from_envelope({"power": "12.5", "total_time": 3600.0}) == PowerReading(
        power=12.5, uptime_seconds=3600
    )
    assert PowerReading.from_envelope({"total_time": 5}) == PowerReading(None, 5)

    with pytest.raises(DecodingError):
        PowerReading.from_envelope({"plug_0": {"on": 1}})


def test_plug_state_marks_missing_plugs_unknown():
    state = PlugState.from_envelope(
        {"plug_0": {"on": 1}, "plug_1": {"on": 0}, "plug_4": {"on": True}}
    )

    assert state.plugs == (True, False, None, None, True, None)
    assert state.is_on(0) is True
    assert state.is_on(2) is None

    with pytest.raises(DecodingError):
        PlugState.from_envelope({"power": 3})


def test_ota_progress_completion():
    assert OtaProgress.from_envelope({"ota_progress": 55}).complete is False
    assert OtaProgress.from_envelope({"ota_progress": 100}).complete is True
    assert OtaProgress.from_envelope({"ota_progress": "101"}).complete is True

    with pytest.raises(DecodingError):
        OtaProgress.from_envelope({"name": "zTC1"})
