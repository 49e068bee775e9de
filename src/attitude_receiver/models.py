"""Data models shared by the radio layer and the connection state machine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional


# Fixed reference epoch for sample timestamps (2001-01-01 00:00:00 UTC)
REFERENCE_EPOCH = datetime(2001, 1, 1, tzinfo=timezone.utc)


class AdapterState(Enum):
    """Power/authorization state of the local Bluetooth adapter."""

    UNKNOWN = "unknown"
    RESETTING = "resetting"
    UNSUPPORTED = "unsupported"
    UNAUTHORIZED = "unauthorized"
    POWERED_OFF = "powered_off"
    POWERED_ON = "powered_on"


@dataclass(eq=False)
class PeripheralHandle:
    """Opaque reference to one discovered remote device.

    Handles deliberately compare by identity: every discovery produces a new
    handle, so events belonging to an earlier link to the same address never
    match the handle the session currently tracks.

    Attributes:
        address: Platform address of the device (MAC on Linux/Windows, UUID on macOS).
        name: Advertised local name, if any.
        rssi: Signal strength at discovery time, for logging only.
        native: Backend object (``bleak.backends.device.BLEDevice``) used to connect.
    """

    address: str
    name: Optional[str] = None
    rssi: Optional[int] = None
    native: Any = field(default=None, repr=False)

    def __str__(self) -> str:
        return f"{self.name or '<unnamed>'} ({self.address})"


@dataclass(frozen=True)
class ServiceHandle:
    """A discovered GATT service."""

    uuid: str
    native: Any = field(default=None, repr=False, compare=False)


@dataclass(frozen=True)
class CharacteristicHandle:
    """A discovered GATT characteristic."""

    uuid: str
    native: Any = field(default=None, repr=False, compare=False)


@dataclass(frozen=True)
class SensorPacket:
    """One attitude sample notified by the peripheral.

    The frozen dataclass keeps samples immutable while they flow from the
    decoder to the sink. Samples are not retained after the sink returns.

    Attributes:
        timestamp: Seconds since :data:`REFERENCE_EPOCH` (``double`` in the protobuf message).
        rx: Rotation about the X axis (``float`` in the protobuf message).
        ry: Rotation about the Y axis (``float`` in the protobuf message).
        rz: Rotation about the Z axis (``float`` in the protobuf message).
    """

    timestamp: float
    rx: float
    ry: float
    rz: float

    @property
    def moment(self) -> datetime:
        """Absolute UTC time of the sample."""
        return REFERENCE_EPOCH + timedelta(seconds=self.timestamp)

    def format_line(self) -> str:
        """Render the sample as a single log line."""
        return (
            f"{self.moment.isoformat(timespec='milliseconds')} "
            f"rx={self.rx:.6f} ry={self.ry:.6f} rz={self.rz:.6f}"
        )
