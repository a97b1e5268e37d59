"""Exception hierarchy shared by the codec, channels and controller."""

from __future__ import annotations


class ControlError(RuntimeError):
    """Base class for every smartplug-control failure."""


class EncodingError(ControlError, ValueError):
    """Raised when an envelope cannot be serialised to JSON."""


class DecodingError(ControlError, ValueError):
    """Raised when a payload is not a JSON object or lacks a required field."""


class TransportError(ControlError):
    """Raised when a UDP socket or MQTT broker operation fails."""


class ValidationError(ControlError):
    """Raised for caller-supplied parameters that are out of range."""
