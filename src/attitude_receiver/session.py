"""Mutable connection state owned by the event-processing task."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional

from .models import AdapterState, PeripheralHandle

logger = logging.getLogger(__name__)


class Phase(Enum):
    """Where the central is in the scan → connect → discover → subscribe chain."""

    IDLE = "idle"
    SCANNING = "scanning"
    CONNECTING = "connecting"
    DISCOVERING_SERVICES = "discovering_services"
    DISCOVERING_CHARACTERISTICS = "discovering_characteristics"
    SUBSCRIBED = "subscribed"


# Phases in which a peripheral is tracked
LINKED_PHASES = frozenset(
    {
        Phase.CONNECTING,
        Phase.DISCOVERING_SERVICES,
        Phase.DISCOVERING_CHARACTERISTICS,
        Phase.SUBSCRIBED,
    }
)


class ConnectionSession:
    """Core state of the central: adapter state, tracked peripheral and phase.

    The session is created once at the composition root and handed to every
    controller. Only the single task consuming the event queue calls the
    mutating methods, so no locking is involved.

    Invariants:
        - ``current_peripheral`` is set only while ``phase`` is in
          :data:`LINKED_PHASES`.
        - :meth:`reset` clears the peripheral before entering ``SCANNING``.
    """

    def __init__(self) -> None:
        self.adapter_state = AdapterState.UNKNOWN
        self._current_peripheral: Optional[PeripheralHandle] = None
        self._phase = Phase.IDLE

    @property
    def current_peripheral(self) -> Optional[PeripheralHandle]:
        return self._current_peripheral

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def is_powered_on(self) -> bool:
        return self.adapter_state is AdapterState.POWERED_ON

    @property
    def has_peripheral(self) -> bool:
        return self._current_peripheral is not None

    def is_current(self, peripheral: PeripheralHandle) -> bool:
        """True if ``peripheral`` is the very handle being tracked (identity, not address)."""
        return self._current_peripheral is not None and self._current_peripheral is peripheral

    def track(self, peripheral: PeripheralHandle) -> None:
        """Start tracking ``peripheral`` and enter ``CONNECTING``."""
        if self._current_peripheral is not None and self._current_peripheral is not peripheral:
            raise RuntimeError(
                f"Session already tracks {self._current_peripheral}; reset before tracking {peripheral}"
            )
        self._current_peripheral = peripheral
        self._set_phase(Phase.CONNECTING)

    def advance(self, phase: Phase) -> None:
        """Move to a later linked phase for the tracked peripheral."""
        if phase not in LINKED_PHASES or self._current_peripheral is None:
            raise RuntimeError(f"Cannot enter {phase.name} without a tracked peripheral")
        self._set_phase(phase)

    def enter_scanning(self) -> None:
        if self._current_peripheral is not None:
            raise RuntimeError("Cannot scan while a peripheral is tracked")
        self._set_phase(Phase.SCANNING)

    def reset(self) -> Optional[PeripheralHandle]:
        """Drop the tracked peripheral and go back to ``SCANNING``.

        Returns:
            The peripheral that was tracked, if any, so the caller can release
            its link.
        """
        previous = self._current_peripheral
        self._current_peripheral = None
        self._set_phase(Phase.SCANNING)
        return previous

    def describe(self) -> str:
        return (
            f"adapter={self.adapter_state.name} phase={self._phase.name} "
            f"peripheral={self._current_peripheral or '-'}"
        )

    def _set_phase(self, phase: Phase) -> None:
        if phase is not self._phase:
            logger.debug("Session phase %s -> %s", self._phase.name, phase.name)
        self._phase = phase
