"""Events delivered by the radio (and by timers) to the central state machine.

Every callback from the Bluetooth stack is turned into one of these objects
and posted on a single ``asyncio.Queue``. The state machine consumes them one
at a time, in arrival order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from .models import AdapterState, CharacteristicHandle, PeripheralHandle, ServiceHandle
from .session import Phase


@dataclass(frozen=True)
class AdapterStateChanged:
    state: AdapterState
    detail: Optional[str] = None


@dataclass(frozen=True)
class PeripheralDiscovered:
    peripheral: PeripheralHandle


@dataclass(frozen=True)
class PeripheralConnected:
    peripheral: PeripheralHandle


@dataclass(frozen=True)
class ConnectFailed:
    peripheral: PeripheralHandle
    error: Optional[BaseException] = None


@dataclass(frozen=True)
class PeripheralDisconnected:
    peripheral: PeripheralHandle


@dataclass(frozen=True)
class ServicesDiscovered:
    peripheral: PeripheralHandle
    services: tuple[ServiceHandle, ...] = ()
    error: Optional[BaseException] = None


@dataclass(frozen=True)
class CharacteristicsDiscovered:
    peripheral: PeripheralHandle
    service: ServiceHandle
    characteristics: tuple[CharacteristicHandle, ...] = ()
    error: Optional[BaseException] = None


@dataclass(frozen=True)
class NotifyStateChanged:
    peripheral: PeripheralHandle
    characteristic: CharacteristicHandle
    enabled: bool
    error: Optional[BaseException] = None


@dataclass(frozen=True)
class ValueUpdated:
    peripheral: PeripheralHandle
    characteristic: CharacteristicHandle
    value: Optional[bytes] = field(default=None, repr=False)
    error: Optional[BaseException] = None


@dataclass(frozen=True)
class PhaseDeadlineExpired:
    """A per-phase deadline fired; only meaningful if ``generation`` is still armed."""

    peripheral: PeripheralHandle
    phase: Phase
    generation: int


@dataclass(frozen=True)
class ScanRetryDue:
    """Backoff delay after a reset elapsed."""

    generation: int
