"""Stateless conversion of notification payloads into :class:`SensorPacket`."""

from __future__ import annotations

import logging
import math

from google.protobuf.message import DecodeError as ProtobufDecodeError

from .models import SensorPacket
from .wire import parse_attitude

logger = logging.getLogger(__name__)


class DecodeError(ValueError):
    """Payload bytes are not a valid ``Attitude`` encoding."""


def decode(payload: bytes) -> SensorPacket:
    """Decode one notification payload.

    This is a pure function of its input: it never touches connection state,
    so a bad payload can only ever cost the single sample it carried.

    Proto3 omits fields holding their default value, so a payload may be
    shorter than the full message; missing fields decode as ``0.0``.

    Args:
        payload: Raw characteristic value as delivered by the notification.

    Returns:
        SensorPacket: Sample whose timestamp is the reference epoch plus the
            encoded ``time`` seconds.

    Raises:
        DecodeError: If the payload is empty, is not a valid protobuf
            encoding, or encodes a non-finite time value.
    """
    if not payload:
        raise DecodeError("Empty payload")

    try:
        message = parse_attitude(bytes(payload))
    except ProtobufDecodeError as e:
        raise DecodeError(f"Invalid attitude encoding: {e}") from e

    if not math.isfinite(message.time):
        raise DecodeError(f"Invalid time field: {message.time!r}")

    packet = SensorPacket(timestamp=message.time, rx=message.rx, ry=message.ry, rz=message.rz)
    logger.debug("Decoded payload %s -> %s", bytes(payload).hex(" "), packet)
    return packet
