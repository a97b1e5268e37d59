import pytest

from smartplug_control.core import decode, encode
from smartplug_control.errors import DecodingError, EncodingError


def test_encode_is_compact_and_sorted():
    assert encode({"mac": "11111111e10d", "lock": "abc"}) == (
        b'{"lock":"abc","mac":"11111111e10d"}'
    )


def test_round_trip_nested_mapping():
    envelope = {
        "mac": "11111111e10d",
        "setting": {"mqtt_uri": "10.0.0.2", "mqtt_port": "1883"},
        "plug_3": {"on": 1},
        "power": 12.5,
        "enabled": True,
        "name": "zTC1_e10d",
    }

    assert decode(encode(envelope)) == envelope


def test_encode_rejects_unserialisable_values():
    with pytest.raises(EncodingError):
        encode({"mac": object()})

    with pytest.raises(EncodingError):
        encode({"power": float("nan")})


@pytest.mark.parametrize(
    "payload",
    [b"not json", b"[1, 2, 3]", b'"text"', b"\xff\xfe", b""],
)
def test_decode_rejects_non_objects(payload):
    with pytest.raises(DecodingError):
        decode(payload)


def test_decode_accepts_text():
    assert decode('{"ota_progress": 55}') == {"ota_progress": 55}


def test_decoding_error_is_value_error():
    with pytest.raises(ValueError):
        decode(b"{")
