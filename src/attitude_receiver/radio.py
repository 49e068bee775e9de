"""Bluetooth radio collaborator for the attitude central.

This module wraps the cross-platform Bleak library behind a small,
callback-free interface. Commands issued by the state machine return
immediately; the actual Bleak coroutine runs in a background task and its
outcome is posted as an event on the central's queue. This keeps every
session mutation on the single task that consumes the queue.

Core pieces:
- **Radio**: abstract command interface the controllers depend on
- **BleakRadio**: production implementation on top of ``BleakScanner`` and
  ``BleakClient``
- **classify_adapter_error**: maps Bleak/OS errors onto :class:`AdapterState`

Requirements:
- bleak: Cross-platform BLE library for device communication
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Iterable, Optional

from bleak import BleakClient, BleakScanner
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData
from bleak.exc import BleakError

from .events import (
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
from .identifiers import normalize_uuid
from .models import AdapterState, CharacteristicHandle, PeripheralHandle, ServiceHandle

logger = logging.getLogger(__name__)


class Radio(ABC):
    """Command interface of the local Bluetooth stack.

    Implementations must never call back into the state machine directly.
    Every result, including adapter-state changes, discoveries and
    notifications, is delivered as an event on the queue handed to the
    implementation at construction time.

    All command methods are synchronous and non-blocking so they can be called
    from inside an event handler.
    """

    @abstractmethod
    def open(self) -> None:
        """Start observing the adapter; the first AdapterStateChanged follows."""

    @abstractmethod
    async def close(self) -> None:
        """Stop scanning, drop every link and cancel background work."""

    @property
    @abstractmethod
    def is_scanning(self) -> bool:
        """True while a discovery session is active or being started."""

    @abstractmethod
    def start_scan(self, service_ids: Iterable[str]) -> None:
        """Begin continuous discovery filtered to ``service_ids``."""

    @abstractmethod
    def stop_scan(self) -> None:
        """End discovery. No-op if not scanning."""

    @abstractmethod
    def connect(self, peripheral: PeripheralHandle) -> None:
        """Request a link; answered by PeripheralConnected or ConnectFailed."""

    @abstractmethod
    def cancel_connection(self, peripheral: PeripheralHandle) -> None:
        """Abort a pending connect or disconnect an established link."""

    @abstractmethod
    def discover_services(self, peripheral: PeripheralHandle, service_ids: Iterable[str]) -> None:
        """Answered by ServicesDiscovered."""

    @abstractmethod
    def discover_characteristics(
        self,
        peripheral: PeripheralHandle,
        service: ServiceHandle,
        characteristic_ids: Iterable[str],
    ) -> None:
        """Answered by CharacteristicsDiscovered."""

    @abstractmethod
    def set_notify(self, peripheral: PeripheralHandle, characteristic: CharacteristicHandle) -> None:
        """Enable notifications; answered by NotifyStateChanged, then ValueUpdated events."""


# Substrings of backend error messages, checked in this order
_UNAUTHORIZED_HINTS = ("not authorized", "unauthorized", "permission", "denied", "notpermitted")
_UNSUPPORTED_HINTS = (
    "no bluetooth adapter",
    "not supported",
    "unsupported",
    "no such adapter",
    "adapter not found",
)
_POWERED_OFF_HINTS = ("powered off", "turned off", "not powered", "notready", "not ready")
_RESETTING_HINTS = ("resetting",)


def classify_adapter_error(exc: BaseException) -> AdapterState:
    """Map a scanner start failure onto an adapter state.

    Recent Bleak releases attach a ``reason`` enum to "Bluetooth not available"
    errors; older ones (and the BlueZ/WinRT backends) only provide a message,
    so the message is inspected as a fallback.

    Args:
        exc: Exception raised while starting a ``BleakScanner``.

    Returns:
        AdapterState: Best matching state. ``UNKNOWN`` when nothing matches,
            which the adapter watcher treats as "probe again later".
    """
    reason = getattr(exc, "reason", None)
    reason_name = str(getattr(reason, "name", "") or "").upper()
    if reason_name:
        if "DENIED" in reason_name or "UNAUTHORIZED" in reason_name:
            return AdapterState.UNAUTHORIZED
        if reason_name == "NO_BLUETOOTH" or "UNSUPPORTED" in reason_name:
            return AdapterState.UNSUPPORTED
        if "POWERED_OFF" in reason_name:
            return AdapterState.POWERED_OFF

    message = str(exc).lower()
    if any(hint in message for hint in _UNAUTHORIZED_HINTS):
        return AdapterState.UNAUTHORIZED
    if any(hint in message for hint in _UNSUPPORTED_HINTS):
        return AdapterState.UNSUPPORTED
    if any(hint in message for hint in _POWERED_OFF_HINTS):
        return AdapterState.POWERED_OFF
    if any(hint in message for hint in _RESETTING_HINTS):
        return AdapterState.RESETTING
    if isinstance(exc, FileNotFoundError):
        # No BlueZ/D-Bus socket on this host
        return AdapterState.UNSUPPORTED
    return AdapterState.UNKNOWN


class BleakRadio(Radio):
    """Production radio built on Bleak.

    Key behaviours:

    1. **Adapter watching**: Bleak has no adapter-state callback, so the
       adapter is probed by briefly starting a scanner. The probe runs at
       startup, every ``adapter_poll_interval`` seconds while the adapter is
       not powered on, and every ``adapter_recheck_interval`` seconds while it
       is. A running scanner does not fail when the adapter is switched off,
       so a recheck during a scan restarts the scanner instead.

    2. **Serialized scanner control**: start/stop requests are executed in
       order under a lock so a quick start → stop cannot interleave.

    3. **One client per handle**: links are keyed by the peripheral handle,
       so a superseded handle's client can be torn down without affecting
       the current one.

    Attributes:
        _events: Queue shared with the central state machine.
        _scanner: Active scanner, or None.
        _scanning: Logical scan state as requested by the central.
        _clients: Bleak clients keyed by peripheral handle.
        _connect_tasks: Pending connect coroutines keyed by peripheral handle.
    """

    def __init__(
        self,
        events: asyncio.Queue[Any],
        *,
        adapter_poll_interval: float = 5.0,
        adapter_recheck_interval: float = 30.0,
        connect_timeout: float = 15.0,
    ) -> None:
        self._events = events
        self._adapter_poll_interval = adapter_poll_interval
        self._adapter_recheck_interval = adapter_recheck_interval
        self._connect_timeout = connect_timeout

        self._adapter_state = AdapterState.UNKNOWN
        self._adapter_changed = asyncio.Event()
        self._scanner: Optional[BleakScanner] = None
        self._scan_filter: list[str] = []
        self._scanner_lock = asyncio.Lock()
        self._scanning = False
        self._clients: dict[PeripheralHandle, BleakClient] = {}
        self._connect_tasks: dict[PeripheralHandle, asyncio.Task[None]] = {}
        self._tasks: set[asyncio.Task[Any]] = set()
        self._watcher: Optional[asyncio.Task[None]] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def open(self) -> None:
        if self._watcher is None:
            self._watcher = self._spawn(self._watch_adapter())

    async def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._watcher = None

        self._scanning = False
        async with self._scanner_lock:
            await self._stop_scanner()

        for peripheral, client in list(self._clients.items()):
            try:
                await client.disconnect()
            except (BleakError, OSError, asyncio.TimeoutError) as e:
                logger.debug("Disconnect of %s during shutdown failed: %s", peripheral, e)
        self._clients.clear()
        self._connect_tasks.clear()
        logger.info("Radio closed")

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------
    @property
    def is_scanning(self) -> bool:
        return self._scanning

    def start_scan(self, service_ids: Iterable[str]) -> None:
        if self._scanning:
            return
        self._scanning = True
        self._spawn(self._start_scanner([normalize_uuid(s) for s in service_ids]))

    def stop_scan(self) -> None:
        if not self._scanning:
            return
        self._scanning = False
        self._spawn(self._stop_scanner_locked())

    async def _start_scanner(self, service_ids: list[str]) -> None:
        async with self._scanner_lock:
            if not self._scanning or self._scanner is not None:
                return
            scanner = BleakScanner(detection_callback=self._on_detection, service_uuids=service_ids)
            try:
                await scanner.start()
            except (BleakError, OSError) as e:
                self._scanning = False
                state = classify_adapter_error(e)
                logger.warning("Scanner start failed (%s): %s", state.name, e)
                self._set_adapter_state(state, str(e))
                return
            self._scanner = scanner
            self._scan_filter = service_ids
            logger.debug("Scanner running: services=%s", service_ids)

    async def _stop_scanner_locked(self) -> None:
        async with self._scanner_lock:
            if self._scanning:
                # A newer start request won the race; keep scanning
                return
            await self._stop_scanner()

    async def _stop_scanner(self) -> None:
        scanner, self._scanner = self._scanner, None
        if scanner is None:
            return
        try:
            await scanner.stop()
        except (BleakError, OSError) as e:
            logger.warning("Scanner stop failed: %s", e)

    def _on_detection(self, device: BLEDevice, adv: AdvertisementData) -> None:
        if not self._scanning:
            return
        logger.debug(
            "Device discovered: addr=%s name=%s rssi=%s uuids=%s",
            device.address,
            device.name,
            getattr(adv, "rssi", None),
            getattr(adv, "service_uuids", None),
        )
        handle = PeripheralHandle(
            address=device.address,
            name=device.name or getattr(adv, "local_name", None),
            rssi=getattr(adv, "rssi", None),
            native=device,
        )
        self._post(PeripheralDiscovered(peripheral=handle))

    # ------------------------------------------------------------------
    # Adapter state
    # ------------------------------------------------------------------
    async def _watch_adapter(self) -> None:
        while True:
            state, detail = await self._probe_adapter()
            self._set_adapter_state(state, detail)
            if state in (AdapterState.UNSUPPORTED, AdapterState.UNAUTHORIZED):
                return

            if state is AdapterState.POWERED_ON:
                # Woken early when a scan failure reports a change
                self._adapter_changed.clear()
                try:
                    await asyncio.wait_for(self._adapter_changed.wait(), self._adapter_recheck_interval)
                except asyncio.TimeoutError:
                    pass
            else:
                await asyncio.sleep(self._adapter_poll_interval)

    async def _probe_adapter(self) -> tuple[AdapterState, Optional[str]]:
        async with self._scanner_lock:
            if self._scanner is not None:
                return await self._restart_scanner()
            probe = BleakScanner()
            try:
                await probe.start()
                await probe.stop()
            except (BleakError, OSError) as e:
                return classify_adapter_error(e), str(e)
        return AdapterState.POWERED_ON, None

    async def _restart_scanner(self) -> tuple[AdapterState, Optional[str]]:
        # Caller holds the scanner lock
        await self._stop_scanner()
        scanner = BleakScanner(detection_callback=self._on_detection, service_uuids=self._scan_filter)
        try:
            await scanner.start()
        except (BleakError, OSError) as e:
            logger.warning("Scanner restart failed: %s", e)
            return classify_adapter_error(e), str(e)
        self._scanner = scanner
        return AdapterState.POWERED_ON, None

    def _set_adapter_state(self, state: AdapterState, detail: Optional[str] = None) -> None:
        if state is self._adapter_state:
            return
        self._adapter_state = state
        if state is not AdapterState.POWERED_ON:
            # The stack suspends everything; forget the logical scan
            self._scanning = False
        self._adapter_changed.set()
        self._post(AdapterStateChanged(state=state, detail=detail))

    # ------------------------------------------------------------------
    # Links
    # ------------------------------------------------------------------
    def connect(self, peripheral: PeripheralHandle) -> None:
        if peripheral in self._connect_tasks or peripheral in self._clients:
            return
        task = self._spawn(self._connect(peripheral))
        self._connect_tasks[peripheral] = task

    async def _connect(self, peripheral: PeripheralHandle) -> None:
        def on_disconnect(_: BleakClient) -> None:
            logger.warning("BLE connection lost (callback): %s", peripheral)
            self._clients.pop(peripheral, None)
            self._post(PeripheralDisconnected(peripheral=peripheral))

        client = BleakClient(
            peripheral.native if peripheral.native is not None else peripheral.address,
            disconnected_callback=on_disconnect,
            timeout=self._connect_timeout,
        )
        self._clients[peripheral] = client
        try:
            await client.connect()
            if not client.is_connected:
                raise BleakError("BLE connection failed.")
        except asyncio.CancelledError:
            self._clients.pop(peripheral, None)
            await self._quiet_disconnect(peripheral, client)
            raise
        except (BleakError, OSError, asyncio.TimeoutError) as e:
            self._clients.pop(peripheral, None)
            self._post(ConnectFailed(peripheral=peripheral, error=e))
            return
        finally:
            self._connect_tasks.pop(peripheral, None)
        self._post(PeripheralConnected(peripheral=peripheral))

    def cancel_connection(self, peripheral: PeripheralHandle) -> None:
        task = self._connect_tasks.pop(peripheral, None)
        if task is not None:
            task.cancel()
        client = self._clients.pop(peripheral, None)
        if client is not None:
            self._spawn(self._quiet_disconnect(peripheral, client))

    async def _quiet_disconnect(self, peripheral: PeripheralHandle, client: BleakClient) -> None:
        try:
            await client.disconnect()
            logger.debug("Released link to %s", peripheral)
        except (BleakError, OSError, asyncio.TimeoutError) as e:
            logger.debug("Disconnect of %s failed: %s", peripheral, e)

    # ------------------------------------------------------------------
    # GATT
    # ------------------------------------------------------------------
    def discover_services(self, peripheral: PeripheralHandle, service_ids: Iterable[str]) -> None:
        wanted = {normalize_uuid(s) for s in service_ids}
        client = self._clients.get(peripheral)
        if client is None or not client.is_connected:
            self._post(ServicesDiscovered(peripheral=peripheral, error=BleakError("Not connected")))
            return
        try:
            # Bleak resolves the GATT table as part of connect()
            collection = client.services
            found = tuple(
                ServiceHandle(uuid=s.uuid, native=s)
                for s in collection
                if normalize_uuid(s.uuid) in wanted
            )
        except BleakError as e:
            self._post(ServicesDiscovered(peripheral=peripheral, error=e))
            return
        self._post(ServicesDiscovered(peripheral=peripheral, services=found))

    def discover_characteristics(
        self,
        peripheral: PeripheralHandle,
        service: ServiceHandle,
        characteristic_ids: Iterable[str],
    ) -> None:
        wanted = {normalize_uuid(c) for c in characteristic_ids}
        if peripheral not in self._clients or service.native is None:
            self._post(
                CharacteristicsDiscovered(
                    peripheral=peripheral, service=service, error=BleakError("Not connected")
                )
            )
            return
        found = tuple(
            CharacteristicHandle(uuid=c.uuid, native=c)
            for c in service.native.characteristics
            if normalize_uuid(c.uuid) in wanted
        )
        self._post(CharacteristicsDiscovered(peripheral=peripheral, service=service, characteristics=found))

    def set_notify(self, peripheral: PeripheralHandle, characteristic: CharacteristicHandle) -> None:
        self._spawn(self._start_notify(peripheral, characteristic))

    async def _start_notify(self, peripheral: PeripheralHandle, characteristic: CharacteristicHandle) -> None:
        client = self._clients.get(peripheral)
        if client is None:
            self._post(
                NotifyStateChanged(
                    peripheral=peripheral,
                    characteristic=characteristic,
                    enabled=False,
                    error=BleakError("Not connected"),
                )
            )
            return

        def handle(_sender: Any, data: bytearray) -> None:
            self._post(ValueUpdated(peripheral=peripheral, characteristic=characteristic, value=bytes(data)))

        try:
            await client.start_notify(characteristic.native or characteristic.uuid, handle)
        except (BleakError, OSError, asyncio.TimeoutError) as e:
            self._post(
                NotifyStateChanged(peripheral=peripheral, characteristic=characteristic, enabled=False, error=e)
            )
            return
        self._post(NotifyStateChanged(peripheral=peripheral, characteristic=characteristic, enabled=True))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _post(self, event: Any) -> None:
        self._events.put_nowait(event)

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro)  # type: ignore[arg-type]
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task
