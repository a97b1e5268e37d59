"""JSON envelope codec shared by the UDP and MQTT channels."""

from __future__ import annotations

import json
from typing import Any, Dict, Mapping

from ..errors import DecodingError, EncodingError

Envelope = Dict[str, Any]


def encode(fields: Mapping[str, Any]) -> bytes:
    """Serialise ``fields`` to compact, key-sorted UTF-8 JSON."""

    try:
        text = json.dumps(
            fields,
            separators=(",", ":"),
            sort_keys=True,
            ensure_ascii=False,
            allow_nan=False,
        )
    except (TypeError, ValueError) as exc:
        raise EncodingError(f"Envelope is not JSON serialisable: {exc}") from exc
    return text.encode("utf-8")


def decode(payload: bytes | bytearray | str) -> Envelope:
    """Parse a wire payload into a mapping.

    Streaming receivers treat :class:`DecodingError` as "skip this message".
    """

    try:
        if isinstance(payload, (bytes, bytearray)):
            payload = bytes(payload).decode("utf-8")
        value = json.loads(payload)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise DecodingError(f"Payload is not valid JSON: {exc}") from exc

    if not isinstance(value, dict):
        raise DecodingError(
            f"Payload must be a JSON object, got {type(value).__name__}"
        )
    return value
