"""Controllers driving the scan → connect → discover → subscribe chain.

Each controller owns one step of the connection lifecycle and reacts to the
events of that step. They all share the same :class:`ConnectionSession`, and
every recoverable failure funnels into :meth:`ScanController.restart_scan`.

Events whose peripheral is not the one currently tracked, or that arrive in
a phase where they are not expected, are ignored: after a reset, anything
still in flight for the superseded peripheral is inert.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from .decoder import DecodeError, decode
from .events import (
    AdapterStateChanged,
    CharacteristicsDiscovered,
    ConnectFailed,
    NotifyStateChanged,
    PeripheralConnected,
    PeripheralDisconnected,
    PeripheralDiscovered,
    PhaseDeadlineExpired,
    ScanRetryDue,
    ServicesDiscovered,
    ValueUpdated,
)
from .failure import FailureReporter, TerminalError
from .identifiers import TargetDescriptor
from .models import AdapterState, CharacteristicHandle, PeripheralHandle, SensorPacket
from .radio import Radio
from .retry import BackoffPolicy
from .session import ConnectionSession, Phase
from .timers import PhaseDeadline, RetryTimer

logger = logging.getLogger(__name__)
sample_logger = logging.getLogger("attitude_receiver.samples")

SampleSink = Callable[[SensorPacket], None]


def log_sample(packet: SensorPacket) -> None:
    """Default sink: one log line per decoded sample."""
    sample_logger.info("%s", packet.format_line())


class ScanController:
    """Starts, stops and restarts discovery of the target service.

    ``restart_scan`` is the single recovery entry point. It clears the tracked
    peripheral first, then scans again after a backoff delay.
    """

    def __init__(
        self,
        session: ConnectionSession,
        radio: Radio,
        target: TargetDescriptor,
        deadline: PhaseDeadline,
        retry_timer: RetryTimer,
        backoff: BackoffPolicy,
    ) -> None:
        self._session = session
        self._radio = radio
        self._target = target
        self._deadline = deadline
        self._retry_timer = retry_timer
        self._backoff = backoff

    def start_scan(self) -> None:
        if not self._session.is_powered_on:
            logger.debug("Not scanning: adapter is %s", self._session.adapter_state.name)
            return
        if self._session.has_peripheral:
            logger.debug("Not scanning: %s is tracked", self._session.current_peripheral)
            return
        self._retry_timer.cancel()
        self._session.enter_scanning()
        if self._radio.is_scanning:
            return
        logger.info("Starting scan for peripherals (service %s).", self._target.service_id)
        self._radio.start_scan([self._target.service_id])

    def stop_scan(self) -> None:
        if not self._session.is_powered_on:
            return
        if not self._radio.is_scanning:
            return
        logger.info("Stopping scan for peripherals.")
        self._radio.stop_scan()

    def restart_scan(self) -> None:
        previous = self._session.reset()
        self._deadline.disarm()
        if previous is not None:
            self._radio.cancel_connection(previous)

        delay = self._backoff.next_delay()
        if delay <= 0:
            self.start_scan()
            return
        logger.info(
            "Restarting scan in %.2fs (consecutive failures: %d)",
            delay,
            self._backoff.failures,
        )
        self._retry_timer.schedule(delay)

    def mark_recovered(self) -> None:
        """Clear the failure count once a subscription is up."""
        self._backoff.reset()

    def on_retry_due(self, event: ScanRetryDue) -> None:
        if not self._retry_timer.is_live(event):
            return
        self._retry_timer.consume()
        self.start_scan()


class AdapterStateMonitor:
    """Tracks the adapter state and routes the two terminal states."""

    def __init__(
        self,
        session: ConnectionSession,
        scan: ScanController,
        reporter: FailureReporter,
    ) -> None:
        self._session = session
        self._scan = scan
        self._reporter = reporter

    def on_state(self, event: AdapterStateChanged) -> None:
        state = event.state
        self._session.adapter_state = state

        if state is AdapterState.POWERED_ON:
            logger.info("BLE is now powered on.")
            if self._session.has_peripheral:
                return
            self._scan.start_scan()
        elif state is AdapterState.POWERED_OFF:
            logger.info("BLE is now powered off.")
        elif state is AdapterState.UNAUTHORIZED:
            self._reporter.report(TerminalError.ADAPTER_UNAUTHORIZED)
        elif state is AdapterState.UNSUPPORTED:
            self._reporter.report(TerminalError.ADAPTER_UNSUPPORTED)
        else:
            logger.info("BLE adapter state: %s%s", state.name, f" ({event.detail})" if event.detail else "")


class GattDiscoveryController:
    """Walks service discovery → characteristic discovery → notification enable.

    Each step runs only if the previous one succeeded for the current
    peripheral, under its own deadline.
    """

    def __init__(
        self,
        session: ConnectionSession,
        radio: Radio,
        target: TargetDescriptor,
        scan: ScanController,
        deadline: PhaseDeadline,
        *,
        discovery_timeout: float = 10.0,
        subscribe_timeout: float = 10.0,
    ) -> None:
        self._session = session
        self._radio = radio
        self._target = target
        self._scan = scan
        self._deadline = deadline
        self._discovery_timeout = discovery_timeout
        self._subscribe_timeout = subscribe_timeout
        self._pending_notify: Optional[tuple[PeripheralHandle, CharacteristicHandle]] = None

    def begin(self, peripheral: PeripheralHandle) -> None:
        self._pending_notify = None
        self._deadline.arm(peripheral, Phase.DISCOVERING_SERVICES, self._discovery_timeout)
        logger.info("Discovering services on %s", peripheral)
        self._radio.discover_services(peripheral, [self._target.service_id])

    def on_services(self, event: ServicesDiscovered) -> None:
        peripheral = event.peripheral
        if not self._expecting(peripheral, Phase.DISCOVERING_SERVICES):
            return
        self._deadline.disarm()

        if event.error is not None:
            logger.warning("Failed to discover services: %s", event.error)
            self._scan.restart_scan()
            return
        service = next((s for s in event.services if self._target.is_service(s.uuid)), None)
        if service is None:
            logger.warning("Couldn't find any appropriate services on the peripheral.")
            self._scan.restart_scan()
            return

        logger.info("Service found: %s", service.uuid)
        self._session.advance(Phase.DISCOVERING_CHARACTERISTICS)
        self._deadline.arm(peripheral, Phase.DISCOVERING_CHARACTERISTICS, self._discovery_timeout)
        self._radio.discover_characteristics(peripheral, service, [self._target.characteristic_id])

    def on_characteristics(self, event: CharacteristicsDiscovered) -> None:
        peripheral = event.peripheral
        if not self._expecting(peripheral, Phase.DISCOVERING_CHARACTERISTICS):
            return
        if self._pending_notify is not None and self._pending_notify[0] is peripheral:
            logger.debug("Duplicate characteristic discovery result ignored")
            return
        self._deadline.disarm()

        if event.error is not None:
            logger.warning("Failed to discover characteristics: %s", event.error)
            self._scan.restart_scan()
            return
        characteristic = next(
            (c for c in event.characteristics if self._target.is_characteristic(c.uuid)), None
        )
        if characteristic is None:
            logger.warning("Couldn't find the 'attitude' characteristic.")
            self._scan.restart_scan()
            return

        logger.info("Starting notification subscription: char=%s", characteristic.uuid)
        self._pending_notify = (peripheral, characteristic)
        self._deadline.arm(peripheral, Phase.DISCOVERING_CHARACTERISTICS, self._subscribe_timeout)
        self._radio.set_notify(peripheral, characteristic)

    def on_notify_state(self, event: NotifyStateChanged) -> None:
        peripheral = event.peripheral
        if not self._expecting(peripheral, Phase.DISCOVERING_CHARACTERISTICS):
            return
        pending = self._pending_notify
        if pending is None or pending[0] is not peripheral:
            return
        self._pending_notify = None
        self._deadline.disarm()

        if event.error is not None or not event.enabled:
            logger.warning("Failed to enable notifications: %s", event.error or "disabled by peripheral")
            self._scan.restart_scan()
            return

        self._session.advance(Phase.SUBSCRIBED)
        self._scan.mark_recovered()
        logger.info("Subscribed to %s on %s", event.characteristic.uuid, peripheral)

    def _expecting(self, peripheral: PeripheralHandle, phase: Phase) -> bool:
        if not self._session.is_current(peripheral) or self._session.phase is not phase:
            logger.debug(
                "Ignoring stale discovery result for %s (session: %s)",
                peripheral,
                self._session.describe(),
            )
            return False
        return True


class ConnectionController:
    """Turns the first discovered peripheral into a connected link."""

    def __init__(
        self,
        session: ConnectionSession,
        radio: Radio,
        scan: ScanController,
        discovery: GattDiscoveryController,
        deadline: PhaseDeadline,
        *,
        connect_timeout: float = 15.0,
    ) -> None:
        self._session = session
        self._radio = radio
        self._scan = scan
        self._discovery = discovery
        self._deadline = deadline
        self._connect_timeout = connect_timeout

    def on_discovered(self, event: PeripheralDiscovered) -> None:
        # First match wins; nothing is re-evaluated once a peripheral is tracked
        if self._session.has_peripheral or self._session.phase is not Phase.SCANNING:
            logger.debug("Ignoring discovery of %s (session: %s)", event.peripheral, self._session.describe())
            return
        logger.info("Device selected by service UUID match: %s", event.peripheral)
        self.connect(event.peripheral)

    def connect(self, peripheral: PeripheralHandle) -> None:
        self._session.track(peripheral)
        self._deadline.arm(peripheral, Phase.CONNECTING, self._connect_timeout)
        logger.info("BLE connection starting: %s", peripheral)
        self._radio.connect(peripheral)
        self._scan.stop_scan()

    def on_connected(self, event: PeripheralConnected) -> None:
        peripheral = event.peripheral
        if not self._session.is_current(peripheral) or self._session.phase is not Phase.CONNECTING:
            logger.debug("Releasing link to superseded peripheral %s", peripheral)
            self._radio.cancel_connection(peripheral)
            return
        self._deadline.disarm()
        logger.info("BLE connection established: %s", peripheral)
        self._session.advance(Phase.DISCOVERING_SERVICES)
        self._discovery.begin(peripheral)

    def on_connect_failed(self, event: ConnectFailed) -> None:
        if not self._session.is_current(event.peripheral):
            return
        if event.error is not None:
            logger.warning("Failed to connect to peripheral: %s", event.error)
        else:
            logger.warning("Failed to connect to peripheral.")
        self._scan.restart_scan()

    def on_disconnected(self, event: PeripheralDisconnected) -> None:
        if not self._session.is_current(event.peripheral):
            return
        logger.warning("BLE connection lost: %s (phase %s)", event.peripheral, self._session.phase.name)
        self._scan.restart_scan()

    def on_deadline(self, event: PhaseDeadlineExpired) -> None:
        if not self._deadline.is_live(event):
            return
        if not self._session.is_current(event.peripheral) or self._session.phase is not event.phase:
            return
        logger.warning("Timed out in %s for %s", event.phase.name, event.peripheral)
        self._scan.restart_scan()


class NotificationChannel:
    """Decodes value updates of the subscribed characteristic and feeds the sink.

    Nothing here ever resets the session: an empty or malformed notification
    only costs that one sample.
    """

    def __init__(
        self,
        session: ConnectionSession,
        target: TargetDescriptor,
        sink: SampleSink = log_sample,
        decoder: Callable[[bytes], SensorPacket] = decode,
    ) -> None:
        self._session = session
        self._target = target
        self._sink = sink
        self._decode = decoder
        self.samples = 0
        self.empty_notifications = 0
        self.decode_failures = 0

    def on_value(self, event: ValueUpdated) -> None:
        if (
            not self._session.is_current(event.peripheral)
            or self._session.phase is not Phase.SUBSCRIBED
            or not self._target.is_characteristic(event.characteristic.uuid)
        ):
            logger.debug("Ignoring notification from %s", event.peripheral)
            return

        if event.error is not None:
            logger.warning("Notification error: %s", event.error)
            return
        if not event.value:
            self.empty_notifications += 1
            logger.warning("Notification carried no data.")
            return

        try:
            packet = self._decode(event.value)
        except DecodeError as e:
            self.decode_failures += 1
            logger.warning("Failed to decode payload (%d bytes): %s", len(event.value), e)
            return

        self.samples += 1
        try:
            self._sink(packet)
        except Exception as e:
            logger.exception("Sample sink error: %s", e)
