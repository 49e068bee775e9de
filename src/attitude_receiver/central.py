"""Composition root and event loop of the attitude central.

The central consumes one event at a time from a single ``asyncio.Queue``.
Radio callbacks, timer expiries and discovery results all arrive through that
queue, so no two handlers ever run concurrently and the session needs no
locking.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional

from .config import ReceiverConfig
from .controllers import (
    AdapterStateMonitor,
    ConnectionController,
    GattDiscoveryController,
    NotificationChannel,
    SampleSink,
    ScanController,
    log_sample,
)
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
from .failure import FailureReporter
from .identifiers import TARGET, TargetDescriptor
from .radio import BleakRadio, Radio
from .retry import BackoffPolicy
from .session import ConnectionSession
from .timers import EventTimers, PhaseDeadline, RetryTimer

logger = logging.getLogger(__name__)


class CentralService:
    """Single-peripheral BLE central: wires the controllers and runs the event loop.

    Args:
        config: Deadlines and backoff settings.
        events: Queue every collaborator posts to. Created if omitted.
        radio: Radio implementation. Defaults to :class:`BleakRadio` on ``events``.
        reporter: Terminal-error sink. Defaults to one that exits the process.
        sink: Receives every decoded sample. Defaults to a log line per sample.
        target: Service/characteristic pair to look for.

    Note:
        Construct the service inside a running event loop when relying on the
        default radio; Bleak objects bind to the loop they are created on.
    """

    def __init__(
        self,
        config: Optional[ReceiverConfig] = None,
        *,
        events: Optional[asyncio.Queue[Any]] = None,
        radio: Optional[Radio] = None,
        reporter: Optional[FailureReporter] = None,
        sink: SampleSink = log_sample,
        target: TargetDescriptor = TARGET,
    ) -> None:
        self.config = config or ReceiverConfig()
        self.events: asyncio.Queue[Any] = events if events is not None else asyncio.Queue()
        self.radio = radio or BleakRadio(
            self.events,
            adapter_poll_interval=self.config.adapter_poll_interval,
            adapter_recheck_interval=self.config.adapter_recheck_interval,
            connect_timeout=self.config.connect_timeout,
        )
        self.session = ConnectionSession()
        self.reporter = reporter or FailureReporter()

        self.timers = EventTimers(self.events)
        deadline = PhaseDeadline(self.timers)
        backoff = BackoffPolicy(self.config.retry_base_delay, self.config.retry_max_delay)

        self.scan = ScanController(
            self.session, self.radio, target, deadline, RetryTimer(self.timers), backoff
        )
        self.adapter = AdapterStateMonitor(self.session, self.scan, self.reporter)
        self.discovery = GattDiscoveryController(
            self.session,
            self.radio,
            target,
            self.scan,
            deadline,
            discovery_timeout=self.config.discovery_timeout,
            subscribe_timeout=self.config.subscribe_timeout,
        )
        self.connection = ConnectionController(
            self.session,
            self.radio,
            self.scan,
            self.discovery,
            deadline,
            connect_timeout=self.config.connect_timeout,
        )
        self.notifications = NotificationChannel(self.session, target, sink)

        self._handlers: dict[type, Callable[[Any], None]] = {
            AdapterStateChanged: self.adapter.on_state,
            PeripheralDiscovered: self.connection.on_discovered,
            PeripheralConnected: self.connection.on_connected,
            ConnectFailed: self.connection.on_connect_failed,
            PeripheralDisconnected: self.connection.on_disconnected,
            PhaseDeadlineExpired: self.connection.on_deadline,
            ServicesDiscovered: self.discovery.on_services,
            CharacteristicsDiscovered: self.discovery.on_characteristics,
            NotifyStateChanged: self.discovery.on_notify_state,
            ValueUpdated: self.notifications.on_value,
            ScanRetryDue: self.scan.on_retry_due,
        }

    def dispatch(self, event: Any) -> None:
        """Handle exactly one event on the calling task."""
        handler = self._handlers.get(type(event))
        if handler is None:
            logger.warning("Unhandled event: %r", event)
            return
        handler(event)

    async def run(self) -> None:
        """Open the radio and process events until the task is cancelled or exits.

        The loop only ends through ``SystemExit`` raised by the failure
        reporter, cancellation, or an interrupt.
        """
        logger.info("Starting central service...")
        self.radio.open()
        try:
            while True:
                event = await self.events.get()
                self.dispatch(event)
        finally:
            self.timers.cancel_all()
            await self.radio.close()
            logger.info(
                "Central service stopped: %d samples, %d empty, %d undecodable",
                self.notifications.samples,
                self.notifications.empty_notifications,
                self.notifications.decode_failures,
            )


async def serve(config: ReceiverConfig) -> None:
    await CentralService(config).run()
