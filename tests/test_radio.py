"""Tests for the Bleak-backed radio, with Bleak's scanner and client replaced by fakes."""

import asyncio
from types import SimpleNamespace

import pytest
from bleak.exc import BleakError

import attitude_receiver.radio as radio_module
from attitude_receiver.events import (
    AdapterStateChanged,
    CharacteristicsDiscovered,
    ConnectFailed,
    NotifyStateChanged,
    PeripheralConnected,
    PeripheralDisconnected,
    PeripheralDiscovered,
    ServicesDiscovered,
    ValueUpdated,
)
from attitude_receiver.identifiers import ATTITUDE_CHAR, ATTITUDE_SERVICE
from attitude_receiver.models import AdapterState, PeripheralHandle
from attitude_receiver.radio import BleakRadio, classify_adapter_error


class FakeScanner:
    instances = []
    start_error = None

    def __init__(self, detection_callback=None, service_uuids=None):
        self.detection_callback = detection_callback
        self.service_uuids = service_uuids
        self.running = False
        FakeScanner.instances.append(self)

    async def start(self):
        if FakeScanner.start_error is not None:
            raise FakeScanner.start_error
        self.running = True

    async def stop(self):
        self.running = False


class FakeClient:
    instances = []
    connect_error = None
    gatt = []

    def __init__(self, address_or_device, disconnected_callback=None, timeout=10.0):
        self.target = address_or_device
        self.disconnected_callback = disconnected_callback
        self.timeout = timeout
        self.is_connected = False
        self.disconnects = 0
        self.notify_handler = None
        FakeClient.instances.append(self)

    @property
    def services(self):
        return FakeClient.gatt

    async def connect(self):
        if FakeClient.connect_error is not None:
            raise FakeClient.connect_error
        self.is_connected = True

    async def disconnect(self):
        self.is_connected = False
        self.disconnects += 1

    async def start_notify(self, characteristic, callback):
        self.notify_handler = callback


@pytest.fixture(autouse=True)
def fake_bleak(monkeypatch):
    FakeScanner.instances = []
    FakeScanner.start_error = None
    FakeClient.instances = []
    FakeClient.connect_error = None
    characteristic = SimpleNamespace(uuid=ATTITUDE_CHAR.lower())
    FakeClient.gatt = [
        SimpleNamespace(uuid="0000180a-0000-1000-8000-00805f9b34fb", characteristics=[]),
        SimpleNamespace(
            uuid=ATTITUDE_SERVICE.lower(),
            characteristics=[SimpleNamespace(uuid="00002a29-0000-1000-8000-00805f9b34fb"), characteristic],
        ),
    ]
    monkeypatch.setattr(radio_module, "BleakScanner", FakeScanner)
    monkeypatch.setattr(radio_module, "BleakClient", FakeClient)


async def settle():
    for _ in range(20):
        await asyncio.sleep(0)


def drain(queue):
    events = []
    while not queue.empty():
        events.append(queue.get_nowait())
    return events


@pytest.mark.parametrize(
    "exc, expected",
    [
        (BleakError("No Bluetooth adapters found."), AdapterState.UNSUPPORTED),
        (BleakError("Bluetooth device is turned off"), AdapterState.POWERED_OFF),
        (BleakError("Bluetooth adapter is resetting"), AdapterState.RESETTING),
        (PermissionError("Permission denied"), AdapterState.UNAUTHORIZED),
        (FileNotFoundError(2, "No such file or directory"), AdapterState.UNSUPPORTED),
        (BleakError("org.bluez.Error.Failed"), AdapterState.UNKNOWN),
    ],
)
def test_classify_adapter_error_by_message(exc, expected):
    assert classify_adapter_error(exc) is expected


@pytest.mark.parametrize(
    "reason, expected",
    [
        ("DENIED_BY_USER", AdapterState.UNAUTHORIZED),
        ("NO_BLUETOOTH", AdapterState.UNSUPPORTED),
        ("POWERED_OFF", AdapterState.POWERED_OFF),
    ],
)
def test_classify_adapter_error_prefers_reason(reason, expected):
    exc = BleakError("Bluetooth not available")
    exc.reason = SimpleNamespace(name=reason)

    assert classify_adapter_error(exc) is expected


@pytest.mark.asyncio
async def test_open_reports_powered_on_adapter():
    events = asyncio.Queue()
    radio = BleakRadio(events)

    radio.open()
    await settle()
    await radio.close()

    assert drain(events) == [AdapterStateChanged(state=AdapterState.POWERED_ON)]
    assert len(FakeScanner.instances) == 1
    assert not FakeScanner.instances[0].running


@pytest.mark.asyncio
async def test_open_reports_missing_adapter():
    FakeScanner.start_error = BleakError("No Bluetooth adapters found.")
    events = asyncio.Queue()
    radio = BleakRadio(events, adapter_poll_interval=0.01)

    radio.open()
    await settle()
    await radio.close()

    [event] = drain(events)
    assert event.state is AdapterState.UNSUPPORTED
    assert event.detail == "No Bluetooth adapters found."


@pytest.mark.asyncio
async def test_scan_posts_discoveries_with_fresh_handles():
    events = asyncio.Queue()
    radio = BleakRadio(events)

    radio.start_scan([ATTITUDE_SERVICE])
    await settle()

    assert radio.is_scanning
    [scanner] = FakeScanner.instances
    assert scanner.running
    assert scanner.service_uuids == [ATTITUDE_SERVICE.lower()]

    device = SimpleNamespace(address="AA:BB:CC:DD:EE:FF", name="attitude")
    adv = SimpleNamespace(rssi=-60, service_uuids=[ATTITUDE_SERVICE.lower()], local_name=None)
    scanner.detection_callback(device, adv)
    scanner.detection_callback(device, adv)

    first, second = drain(events)
    assert isinstance(first, PeripheralDiscovered)
    assert first.peripheral.address == "AA:BB:CC:DD:EE:FF"
    assert first.peripheral.rssi == -60
    assert first.peripheral.native is device
    assert first.peripheral is not second.peripheral

    radio.stop_scan()
    await settle()
    assert not scanner.running

    # Late callbacks after stop are dropped
    scanner.detection_callback(device, adv)
    assert events.empty()
    await radio.close()


@pytest.mark.asyncio
async def test_scan_start_failure_reports_adapter_state():
    FakeScanner.start_error = BleakError("Bluetooth device is turned off")
    events = asyncio.Queue()
    radio = BleakRadio(events)

    radio.start_scan([ATTITUDE_SERVICE])
    await settle()

    assert not radio.is_scanning
    [event] = drain(events)
    assert event.state is AdapterState.POWERED_OFF
    await radio.close()


@pytest.mark.asyncio
async def test_connect_discover_and_subscribe():
    events = asyncio.Queue()
    radio = BleakRadio(events, connect_timeout=7.0)
    peripheral = PeripheralHandle(address="AA:BB:CC:DD:EE:FF")

    radio.connect(peripheral)
    await settle()
    assert drain(events) == [PeripheralConnected(peripheral=peripheral)]
    [client] = FakeClient.instances
    assert client.target == "AA:BB:CC:DD:EE:FF"
    assert client.timeout == 7.0

    radio.discover_services(peripheral, [ATTITUDE_SERVICE])
    [services_event] = drain(events)
    assert isinstance(services_event, ServicesDiscovered)
    [service] = services_event.services
    assert service.uuid == ATTITUDE_SERVICE.lower()

    radio.discover_characteristics(peripheral, service, [ATTITUDE_CHAR])
    [chars_event] = drain(events)
    assert isinstance(chars_event, CharacteristicsDiscovered)
    [characteristic] = chars_event.characteristics
    assert characteristic.uuid == ATTITUDE_CHAR.lower()

    radio.set_notify(peripheral, characteristic)
    await settle()
    assert drain(events) == [
        NotifyStateChanged(peripheral=peripheral, characteristic=characteristic, enabled=True)
    ]

    client.notify_handler(None, bytearray(b"\x01\x02"))
    [value_event] = drain(events)
    assert isinstance(value_event, ValueUpdated)
    assert value_event.value == b"\x01\x02"
    assert value_event.peripheral is peripheral

    await radio.close()
    assert client.disconnects == 1


@pytest.mark.asyncio
async def test_connect_failure_is_posted():
    FakeClient.connect_error = BleakError("Device with address AA:BB was not found.")
    events = asyncio.Queue()
    radio = BleakRadio(events)
    peripheral = PeripheralHandle(address="AA:BB")

    radio.connect(peripheral)
    await settle()

    [event] = drain(events)
    assert isinstance(event, ConnectFailed)
    assert event.peripheral is peripheral
    assert event.error is FakeClient.connect_error
    await radio.close()


@pytest.mark.asyncio
async def test_link_loss_is_posted():
    events = asyncio.Queue()
    radio = BleakRadio(events)
    peripheral = PeripheralHandle(address="AA:BB")
    radio.connect(peripheral)
    await settle()
    drain(events)

    [client] = FakeClient.instances
    client.disconnected_callback(client)

    assert drain(events) == [PeripheralDisconnected(peripheral=peripheral)]
    radio.discover_services(peripheral, [ATTITUDE_SERVICE])
    [event] = drain(events)
    assert event.error is not None
    await radio.close()


@pytest.mark.asyncio
async def test_cancel_connection_releases_link():
    events = asyncio.Queue()
    radio = BleakRadio(events)
    peripheral = PeripheralHandle(address="AA:BB")
    radio.connect(peripheral)
    await settle()

    radio.cancel_connection(peripheral)
    await settle()

    [client] = FakeClient.instances
    assert client.disconnects == 1
    await radio.close()
    assert client.disconnects == 1


async def next_state(events):
    event = await asyncio.wait_for(events.get(), timeout=1.0)
    assert isinstance(event, AdapterStateChanged)
    return event.state


@pytest.mark.asyncio
async def test_power_cycle_during_scan_is_reported():
    events = asyncio.Queue()
    radio = BleakRadio(events, adapter_poll_interval=0.01, adapter_recheck_interval=0.01)
    radio.open()
    assert await next_state(events) is AdapterState.POWERED_ON

    radio.start_scan([ATTITUDE_SERVICE])
    await settle()
    assert radio.is_scanning

    # A running scanner keeps quiet when the adapter goes away; only a restart fails
    FakeScanner.start_error = BleakError("Bluetooth adapter is not powered")
    assert await next_state(events) is AdapterState.POWERED_OFF
    assert not radio.is_scanning

    FakeScanner.start_error = None
    assert await next_state(events) is AdapterState.POWERED_ON

    radio.start_scan([ATTITUDE_SERVICE])
    await settle()
    assert radio.is_scanning
    assert FakeScanner.instances[-1].running
    assert FakeScanner.instances[-1].service_uuids == [ATTITUDE_SERVICE.lower()]
    await radio.close()


@pytest.mark.asyncio
async def test_recheck_keeps_running_scan_filtered():
    events = asyncio.Queue()
    radio = BleakRadio(events, adapter_recheck_interval=0.01)
    radio.open()
    assert await next_state(events) is AdapterState.POWERED_ON

    radio.start_scan([ATTITUDE_SERVICE])
    await settle()
    first_scanner = FakeScanner.instances[-1]
    await asyncio.sleep(0.05)

    restarted = [s for s in FakeScanner.instances if s.detection_callback is not None]
    assert len(restarted) >= 2
    assert not first_scanner.running
    assert restarted[-1].running
    assert restarted[-1].service_uuids == [ATTITUDE_SERVICE.lower()]
    assert events.empty()
    await radio.close()
