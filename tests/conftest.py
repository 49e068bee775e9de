from __future__ import annotations

from typing import Any, Iterable, Optional

from attitude_receiver.central import CentralService
from attitude_receiver.config import ReceiverConfig
from attitude_receiver.events import (
    AdapterStateChanged,
    CharacteristicsDiscovered,
    NotifyStateChanged,
    PeripheralConnected,
    PeripheralDiscovered,
    ServicesDiscovered,
)
from attitude_receiver.failure import FailureReporter
from attitude_receiver.identifiers import ATTITUDE_CHAR, ATTITUDE_SERVICE
from attitude_receiver.models import (
    AdapterState,
    CharacteristicHandle,
    PeripheralHandle,
    SensorPacket,
    ServiceHandle,
)
from attitude_receiver.radio import Radio

# bleak reports lowercase UUIDs
SERVICE = ServiceHandle(uuid=ATTITUDE_SERVICE.lower())
CHARACTERISTIC = CharacteristicHandle(uuid=ATTITUDE_CHAR.lower())


class FakeRadio(Radio):
    """Records every command; results are injected by the test as events."""

    def __init__(self) -> None:
        self.calls: list[tuple[Any, ...]] = []
        self.scanning = False
        self.closed = False

    def open(self) -> None:
        self.calls.append(("open",))

    async def close(self) -> None:
        self.closed = True

    @property
    def is_scanning(self) -> bool:
        return self.scanning

    def start_scan(self, service_ids: Iterable[str]) -> None:
        self.scanning = True
        self.calls.append(("start_scan", tuple(service_ids)))

    def stop_scan(self) -> None:
        self.scanning = False
        self.calls.append(("stop_scan",))

    def connect(self, peripheral: PeripheralHandle) -> None:
        self.calls.append(("connect", peripheral))

    def cancel_connection(self, peripheral: PeripheralHandle) -> None:
        self.calls.append(("cancel_connection", peripheral))

    def discover_services(self, peripheral: PeripheralHandle, service_ids: Iterable[str]) -> None:
        self.calls.append(("discover_services", peripheral, tuple(service_ids)))

    def discover_characteristics(
        self,
        peripheral: PeripheralHandle,
        service: ServiceHandle,
        characteristic_ids: Iterable[str],
    ) -> None:
        self.calls.append(("discover_characteristics", peripheral, service, tuple(characteristic_ids)))

    def set_notify(self, peripheral: PeripheralHandle, characteristic: CharacteristicHandle) -> None:
        self.calls.append(("set_notify", peripheral, characteristic))

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)


class Harness:
    """A central wired to a FakeRadio, a recording sink and a non-exiting reporter."""

    def __init__(self, config: Optional[ReceiverConfig] = None) -> None:
        self.radio = FakeRadio()
        self.samples: list[SensorPacket] = []
        self.exits: list[int] = []
        self.reporter = FailureReporter(terminate=self.exits.append)  # type: ignore[arg-type]
        self.central = CentralService(
            config or ReceiverConfig(retry_base_delay=0.0, retry_max_delay=0.0),
            radio=self.radio,
            reporter=self.reporter,
            sink=self.samples.append,
        )

    @property
    def session(self):
        return self.central.session

    def send(self, *events: Any) -> None:
        for event in events:
            self.central.dispatch(event)

    def power_on(self) -> None:
        self.send(AdapterStateChanged(state=AdapterState.POWERED_ON))

    def discover(self, name: str = "attitude-A") -> PeripheralHandle:
        peripheral = PeripheralHandle(address=f"AA:BB:CC:DD:EE:{len(self.radio.calls):02X}", name=name)
        self.send(PeripheralDiscovered(peripheral=peripheral))
        return peripheral

    def subscribe(self, peripheral: PeripheralHandle) -> None:
        self.send(
            PeripheralConnected(peripheral=peripheral),
            ServicesDiscovered(peripheral=peripheral, services=(SERVICE,)),
            CharacteristicsDiscovered(peripheral=peripheral, service=SERVICE, characteristics=(CHARACTERISTIC,)),
            NotifyStateChanged(peripheral=peripheral, characteristic=CHARACTERISTIC, enabled=True),
        )
