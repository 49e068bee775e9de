"""Timers that deliver their expiry as events on the central's queue."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from .events import PhaseDeadlineExpired, ScanRetryDue
from .models import PeripheralHandle
from .session import Phase

logger = logging.getLogger(__name__)


class EventTimers:
    """Schedules events on the queue after a delay.

    Expired timers only post an event; the handler runs later, in order, on the
    task consuming the queue. A zero delay still goes through the queue.
    """

    def __init__(self, events: asyncio.Queue[Any]) -> None:
        self._events = events
        self._handles: set[asyncio.TimerHandle] = set()

    def schedule(self, delay: float, event: Any) -> asyncio.TimerHandle:
        loop = asyncio.get_running_loop()

        def fire() -> None:
            self._handles.discard(handle)
            self._events.put_nowait(event)

        handle = loop.call_later(max(0.0, delay), fire)
        self._handles.add(handle)
        return handle

    def cancel(self, handle: Optional[asyncio.TimerHandle]) -> None:
        if handle is None:
            return
        handle.cancel()
        self._handles.discard(handle)

    def cancel_all(self) -> None:
        for handle in list(self._handles):
            handle.cancel()
        self._handles.clear()

    @property
    def pending(self) -> int:
        return len(self._handles)


class PhaseDeadline:
    """One cancellable deadline for whichever phase is currently in flight.

    Arming a new deadline supersedes the previous one. Each arm bumps a
    generation number carried by the expiry event, so an expiry that was
    already queued when the deadline got disarmed is recognised as stale.
    """

    def __init__(self, timers: EventTimers) -> None:
        self._timers = timers
        self._generation = 0
        self._handle: Optional[asyncio.TimerHandle] = None
        self._armed = False

    def arm(self, peripheral: PeripheralHandle, phase: Phase, timeout: float) -> None:
        self.disarm()
        self._generation += 1
        self._armed = True
        self._handle = self._timers.schedule(
            timeout,
            PhaseDeadlineExpired(peripheral=peripheral, phase=phase, generation=self._generation),
        )
        logger.debug("Deadline armed: %s in %.1fs (gen %d)", phase.name, timeout, self._generation)

    def disarm(self) -> None:
        self._timers.cancel(self._handle)
        self._handle = None
        self._armed = False

    def is_live(self, event: PhaseDeadlineExpired) -> bool:
        return self._armed and event.generation == self._generation


class RetryTimer:
    """Delays the scan that follows a reset."""

    def __init__(self, timers: EventTimers) -> None:
        self._timers = timers
        self._generation = 0
        self._handle: Optional[asyncio.TimerHandle] = None

    def schedule(self, delay: float) -> None:
        self.cancel()
        self._generation += 1
        self._handle = self._timers.schedule(delay, ScanRetryDue(generation=self._generation))

    def cancel(self) -> None:
        self._timers.cancel(self._handle)
        self._handle = None

    def is_live(self, event: ScanRetryDue) -> bool:
        return self._handle is not None and event.generation == self._generation

    def consume(self) -> None:
        self._handle = None
